from __future__ import annotations

import shlex
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console

from sweepbench.config.sweep import ErrorPolicy, StepSpec, SweepConfig, SweepPlan, load_sweep_plan
from sweepbench.errors import SweepError
from sweepbench.runner.process import StepResult
from sweepbench.runner.report import format_result_line, write_report
from sweepbench.runner.sweep import SweepOutcome, SweepRunner, steps_from_specs
from sweepbench.sweeps.parameters import parse_env_overrides, parse_sweep_values
from sweepbench.sweeps.patch import patch_config_line

console = Console()
err_console = Console(stderr=True)
app = typer.Typer(help="Benchmark sweep runner: patch a constant, run commands, record time and memory")


@app.callback()
def main() -> None:
    """Run benchmark sweeps over a patched config constant."""


def _echo(message: str, style: Optional[str] = None) -> None:
    console.print(message, style=style, markup=False, highlight=False, soft_wrap=True)


def _fail(message: str, code: int) -> typer.Exit:
    err_console.print(message, style="red", markup=False, highlight=False, soft_wrap=True)
    return typer.Exit(code=code)


def _print_result(result: StepResult) -> None:
    _echo(format_result_line(result), style="green" if result.ok else "red")


def _build_plan(
    plan_path: Optional[Path],
    sweep_values: Optional[str],
    config_file: Optional[Path],
    pattern: Optional[str],
    template: Optional[str],
    command: List[str],
    env: List[str],
    cwd: Optional[Path],
    description: Optional[str],
    setup: List[str],
    continue_on_error: bool,
    restore: bool,
) -> SweepPlan:
    values = parse_sweep_values(sweep_values) if sweep_values is not None else None
    common_env = parse_env_overrides(env)
    extra_steps = (
        [StepSpec(command=list(command), description=description, cwd=cwd)] if command else []
    )
    setup_steps = [StepSpec(command=shlex.split(item), cwd=cwd) for item in setup]

    if plan_path is not None:
        plan = load_sweep_plan(
            plan_path,
            overrides={
                "values": values,
                "target": str(config_file) if config_file else None,
                "pattern": pattern,
                "template": template,
            },
        )
        plan.steps.extend(extra_steps)
        plan.setup.extend(setup_steps)
        plan.env.update(common_env)
        if continue_on_error:
            plan.policy = ErrorPolicy.CONTINUE
        plan.restore = plan.restore or restore
    else:
        missing = [
            name
            for name, given in (
                ("--sweep-values", values),
                ("--config-file", config_file),
                ("--pattern", pattern),
                ("--template", template),
            )
            if given is None
        ]
        if missing:
            raise ValueError(f"Missing required options without --plan: {', '.join(missing)}")
        plan = SweepPlan(
            config=SweepConfig(
                values=values, target=config_file, pattern=pattern, template=template
            ),
            steps=extra_steps,
            setup=setup_steps,
            env=common_env,
            policy=ErrorPolicy.CONTINUE if continue_on_error else ErrorPolicy.FAIL_FAST,
            restore=restore,
        )

    if not plan.steps:
        raise ValueError("No command given: pass one after `--` or list steps in the plan")
    return plan


@app.command("run")
def run_sweep(
    command: Optional[List[str]] = typer.Argument(None, help="Command to run for every value, after `--`"),
    sweep_values: Optional[str] = typer.Option(None, "--sweep-values", help="Comma separated values, e.g. 2,4,8"),
    config_file: Optional[Path] = typer.Option(None, "--config-file", help="File holding the constant to patch"),
    pattern: Optional[str] = typer.Option(None, "--pattern", help="Regex matching exactly one line"),
    template: Optional[str] = typer.Option(None, "--template", help="Replacement line, {v} is the value"),
    env: List[str] = typer.Option([], "--env", "-e", help="KEY=VALUE passed to every command"),
    cwd: Optional[Path] = typer.Option(None, "--cwd", help="Working directory for commands"),
    description: Optional[str] = typer.Option(None, "--description", help="Label for the command"),
    setup: List[str] = typer.Option([], "--setup", help="Command run once before the sweep"),
    continue_on_error: bool = typer.Option(False, "--continue-on-error", help="Record failures and keep sweeping"),
    restore: bool = typer.Option(False, "--restore", help="Put the original line back afterwards"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Print what would run"),
    report: Optional[Path] = typer.Option(None, "--report", help="Write results as JSON"),
    plan_path: Optional[Path] = typer.Option(None, "--plan", exists=True, readable=True, help="YAML sweep plan"),
) -> None:
    try:
        plan = _build_plan(
            plan_path,
            sweep_values,
            config_file,
            pattern,
            template,
            command or [],
            env,
            cwd,
            description,
            setup,
            continue_on_error,
            restore,
        )
    except (ValueError, FileNotFoundError) as exc:
        raise typer.BadParameter(str(exc)) from exc

    runner = SweepRunner(
        policy=plan.policy,
        on_result=_print_result,
        on_progress=lambda message: _echo(message, style="cyan"),
    )
    factory = steps_from_specs(plan.steps, plan.env)
    try:
        outcome = runner.run(
            plan.config,
            factory,
            setup=steps_from_specs(plan.setup, plan.env)(None),
            restore=plan.restore,
            dry_run=dry_run,
        )
    except SweepError as exc:
        if report:
            write_report(report, SweepOutcome(results=exc.results, failures=exc.failures), plan.config)
        raise _fail(str(exc), exc.exit_code) from exc

    if report:
        write_report(report, outcome, plan.config)
        _echo(f"Report written to {report}")
    if not outcome.ok:
        for failure in outcome.failures:
            err_console.print(
                f"value={failure.value}: {failure.error}",
                style="red",
                markup=False,
                highlight=False,
                soft_wrap=True,
            )
        raise typer.Exit(code=outcome.failures[0].error.exit_code)
    _echo(f"Sweep finished: {len(outcome.results)} steps succeeded", style="green")


@app.command()
def patch(
    config_file: Path = typer.Option(..., "--config-file", exists=True, readable=True),
    pattern: str = typer.Option(..., "--pattern", help="Regex matching exactly one line"),
    value: str = typer.Option(..., "--value", help="Replacement line"),
) -> None:
    """Replace the single line matching PATTERN, without running anything."""

    try:
        previous = patch_config_line(config_file, pattern, value)
    except SweepError as exc:
        raise _fail(str(exc), exc.exit_code) from exc
    _echo(f"{config_file}: {previous!r} -> {value!r}")


def run() -> None:
    app()
