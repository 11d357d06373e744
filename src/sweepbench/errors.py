from __future__ import annotations

import signal
from pathlib import Path
from typing import Any, List, Optional, Sequence


class SweepError(RuntimeError):
    """Base class for everything the sweep runner surfaces to the operator."""

    exit_code = 1
    value: Optional[int] = None
    step: Optional[int] = None

    def __init__(self, message: str) -> None:
        super().__init__(message)
        # Filled in by the runner: step results and failures gathered so far,
        # the failure for this error included.
        self.results: List[Any] = []
        self.failures: List[Any] = []


class ConfigPatchError(SweepError):
    exit_code = 3

    def __init__(
        self,
        path: Path,
        pattern: str,
        matches: int,
        value: Optional[int] = None,
        reason: Optional[str] = None,
    ) -> None:
        self.path = path
        self.pattern = pattern
        self.matches = matches
        self.value = value
        if reason is None:
            if matches == 0:
                reason = "no line matches"
            else:
                reason = f"{matches} lines match, expected exactly one"
        super().__init__(f"Cannot patch {path} with pattern {pattern!r}: {reason}")


class ProcessSpawnError(SweepError):
    exit_code = 4

    def __init__(
        self,
        command: Sequence[str],
        reason: str,
        value: Optional[int] = None,
        step: Optional[int] = None,
    ) -> None:
        self.command = list(command)
        self.value = value
        self.step = step
        program = self.command[0] if self.command else "<empty>"
        super().__init__(f"Failed to start {program}: {reason}")


class StepExecutionError(SweepError):
    exit_code = 5

    def __init__(self, value: Optional[int], step: int, exit_code: int) -> None:
        self.value = value
        self.step = step
        self.step_exit_code = exit_code
        where = "setup" if value is None else f"value={value}"
        super().__init__(f"Step {step} failed ({where}) with exit code {exit_code}")


class SweepInterruptedError(SweepError):
    exit_code = 130

    def __init__(
        self, signum: int, value: Optional[int] = None, step: Optional[int] = None
    ) -> None:
        self.signum = signum
        self.value = value
        self.step = step
        try:
            name = signal.Signals(signum).name
        except ValueError:
            name = str(signum)
        super().__init__(f"Sweep interrupted by {name} (value={value}, step={step})")
