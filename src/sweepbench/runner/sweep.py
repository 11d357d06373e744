from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence

from sweepbench.config.sweep import ErrorPolicy, StepSpec, SweepConfig, render
from sweepbench.errors import (
    ConfigPatchError,
    ProcessSpawnError,
    StepExecutionError,
    SweepError,
    SweepInterruptedError,
)
from sweepbench.runner.process import (
    ProcessSpawner,
    SignalForwarder,
    Step,
    StepResult,
    SubprocessSpawner,
)
from sweepbench.runner.report import format_result_line
from sweepbench.sweeps.patch import patch_config_line
from sweepbench.utils import get_logger

logger = get_logger(__name__)

StepFactory = Callable[[int], Sequence[Step]]
ResultCallback = Callable[[StepResult], None]
ProgressCallback = Callable[[str], None]
Patcher = Callable[..., str]


@dataclass
class SweepFailure:
    value: Optional[int]
    step: Optional[int]
    error: SweepError


@dataclass
class SweepOutcome:
    results: List[StepResult] = field(default_factory=list)
    failures: List[SweepFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures


def steps_from_specs(
    specs: Sequence[StepSpec], common_env: Optional[dict] = None
) -> StepFactory:
    """Build a step factory that instantiates ``{v}`` in each spec for a value."""

    def build(value: Optional[int]) -> List[Step]:
        steps: List[Step] = []
        for spec in specs:
            env = {key: render(val, value) for key, val in (common_env or {}).items()}
            env.update({key: render(val, value) for key, val in spec.env.items()})
            steps.append(
                Step(
                    command=[render(arg, value) for arg in spec.command],
                    cwd=spec.cwd,
                    env=env,
                    description=render(spec.description, value) if spec.description else None,
                )
            )
        return steps

    return build


class SweepRunner:
    """Patch the target line for each sweep value, then run that value's steps.

    Values and steps run strictly one after another. With the ``fail_fast``
    policy the first error propagates, carrying the results and failures
    collected so far in ``error.results`` and ``error.failures``. With
    ``continue`` the error is recorded, the remaining steps of that value are
    skipped and the sweep moves on to the next value. SIGINT/SIGTERM received
    at any point of the sweep end it with ``SweepInterruptedError``, whatever
    the policy.
    """

    def __init__(
        self,
        spawner: Optional[ProcessSpawner] = None,
        policy: ErrorPolicy = ErrorPolicy.FAIL_FAST,
        patcher: Patcher = patch_config_line,
        on_result: Optional[ResultCallback] = None,
        on_progress: Optional[ProgressCallback] = None,
        signals: Optional[SignalForwarder] = None,
    ) -> None:
        self.spawner = spawner or SubprocessSpawner(signals=signals)
        self.signals = signals or getattr(self.spawner, "signals", None) or SignalForwarder()
        self.policy = ErrorPolicy(policy)
        self.patcher = patcher
        self.on_result = on_result
        self.on_progress = on_progress
        self._original_line: Optional[str] = None

    def run(
        self,
        config: SweepConfig,
        steps: StepFactory,
        setup: Sequence[Step] = (),
        restore: bool = False,
        dry_run: bool = False,
    ) -> SweepOutcome:
        outcome = SweepOutcome()
        if dry_run:
            self._dry_run(config, steps, setup)
            return outcome

        self._original_line = None
        completed = False
        with self.signals.installed():
            try:
                try:
                    self._run_steps(None, setup, outcome)
                    for value in config.values:
                        self.signals.check(value=value)
                        self._run_value(config, value, steps, outcome)
                except SweepError as exc:
                    exc.results = list(outcome.results)
                    exc.failures = list(outcome.failures) + [
                        SweepFailure(value=exc.value, step=exc.step, error=exc)
                    ]
                    raise
                completed = True
            finally:
                if restore and self._original_line is not None:
                    self._restore(config, self._original_line, raise_errors=completed)
        return outcome

    def _restore(self, config: SweepConfig, line: str, raise_errors: bool) -> None:
        try:
            self.patcher(config.target, config.pattern, line)
        except ConfigPatchError as exc:
            logger.error(
                "Could not restore original config line",
                extra={"target": str(config.target), "error": str(exc)},
            )
            if raise_errors:
                raise
            return
        logger.info("Restored original config line", extra={"target": str(config.target)})

    def _run_value(
        self,
        config: SweepConfig,
        value: int,
        steps: StepFactory,
        outcome: SweepOutcome,
    ) -> None:
        try:
            previous = self.patcher(
                config.target, config.pattern, config.replacement(value), value=value
            )
        except ConfigPatchError as exc:
            exc.value = value
            self._record(outcome, SweepFailure(value=value, step=None, error=exc))
            return
        if self._original_line is None:
            self._original_line = previous
        self.signals.check(value=value)

        self._progress(f"sweeping with {config.replacement(value).strip()} (value={value})")
        try:
            self._run_steps(value, steps(value), outcome)
        except (ProcessSpawnError, StepExecutionError) as exc:
            self._record(outcome, SweepFailure(value=value, step=exc.step, error=exc))

    def _run_steps(
        self, value: Optional[int], steps: Sequence[Step], outcome: SweepOutcome
    ) -> None:
        for idx, step in enumerate(steps, start=1):
            self.signals.check(value=value, step=idx)
            self._progress(f"value={'setup' if value is None else value} step={idx}: {step.label()}")
            try:
                result = self._execute(value, idx, step)
            except SweepInterruptedError as exc:
                exc.value = value
                exc.step = idx
                raise
            outcome.results.append(result)
            self._report(result)
            if not result.ok:
                raise StepExecutionError(value, idx, result.exit_code)

    def _execute(self, value: Optional[int], idx: int, step: Step) -> StepResult:
        try:
            process = self.spawner.spawn(step)
        except ProcessSpawnError as exc:
            exc.value = value
            exc.step = idx
            raise
        return StepResult(
            value=value,
            step=idx,
            command=list(step.command),
            exit_code=process.exit_code,
            elapsed_s=process.elapsed_s,
            max_rss_kb=process.max_rss_kb,
            stdout=process.stdout,
            stderr=process.stderr,
            description=step.description,
            cpu_s=process.cpu_s,
        )

    def _record(self, outcome: SweepOutcome, failure: SweepFailure) -> None:
        if self.policy is ErrorPolicy.FAIL_FAST:
            raise failure.error
        logger.error(
            "Sweep value failed, continuing",
            extra={"value": failure.value, "step": failure.step, "error": str(failure.error)},
        )
        outcome.failures.append(failure)

    def _progress(self, message: str) -> None:
        if self.on_progress:
            logger.debug(message)
            self.on_progress(message)
        else:
            logger.info(message)

    def _report(self, result: StepResult) -> None:
        if self.on_result:
            logger.debug(format_result_line(result))
            self.on_result(result)
        else:
            logger.info(format_result_line(result))

    def _dry_run(self, config: SweepConfig, steps: StepFactory, setup: Sequence[Step]) -> None:
        for idx, step in enumerate(setup, start=1):
            self._progress(f"[dry-run] value=setup step={idx}: {' '.join(step.command)}")
        for value in config.values:
            self._progress(
                f"[dry-run] patch {config.target} -> {config.replacement(value).strip()}"
            )
            for idx, step in enumerate(steps(value), start=1):
                self._progress(f"[dry-run] value={value} step={idx}: {' '.join(step.command)}")
