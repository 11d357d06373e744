"""Sweep execution: process spawning, the sweep loop and result reporting."""

from .process import (
    ProcessOutcome,
    ProcessSpawner,
    SignalForwarder,
    Step,
    StepResult,
    SubprocessSpawner,
)
from .report import format_result_line, write_report
from .sweep import SweepFailure, SweepOutcome, SweepRunner, steps_from_specs

__all__ = [
    "ProcessOutcome",
    "ProcessSpawner",
    "SignalForwarder",
    "Step",
    "StepResult",
    "SubprocessSpawner",
    "SweepFailure",
    "SweepOutcome",
    "SweepRunner",
    "format_result_line",
    "steps_from_specs",
    "write_report",
]
