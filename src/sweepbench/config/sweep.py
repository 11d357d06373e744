from __future__ import annotations

import re
import shlex
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml

VALUE_PLACEHOLDERS = ("{v}", "{value}")


class ErrorPolicy(str, Enum):
    FAIL_FAST = "fail_fast"
    CONTINUE = "continue"


def render(template: str, value: Optional[int]) -> str:
    """Substitute ``{v}``/``{value}`` in ``template``.

    Plain replacement rather than ``str.format`` so that patched source lines
    may contain literal braces.
    """

    if value is None:
        return template
    rendered = template
    for placeholder in VALUE_PLACEHOLDERS:
        rendered = rendered.replace(placeholder, str(value))
    return rendered


@dataclass
class SweepConfig:
    values: List[int]
    target: Path
    pattern: str
    template: str

    def __post_init__(self) -> None:
        if not self.values:
            raise ValueError("Sweep requires at least one value")
        self.values = [int(value) for value in self.values]
        self.target = Path(self.target)
        try:
            re.compile(self.pattern)
        except re.error as exc:
            raise ValueError(f"Invalid pattern {self.pattern!r}: {exc}") from exc

    def replacement(self, value: int) -> str:
        return render(self.template, value)


@dataclass
class StepSpec:
    command: List[str]
    description: Optional[str] = None
    cwd: Optional[Path] = None
    env: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.command:
            raise ValueError("Step command must not be empty")
        self.command = [str(arg) for arg in self.command]
        self.env = {str(key): str(val) for key, val in self.env.items()}


@dataclass
class SweepPlan:
    config: SweepConfig
    steps: List[StepSpec] = field(default_factory=list)
    setup: List[StepSpec] = field(default_factory=list)
    env: Dict[str, str] = field(default_factory=dict)
    policy: ErrorPolicy = ErrorPolicy.FAIL_FAST
    restore: bool = False


def _step_from_mapping(data: Any) -> StepSpec:
    if isinstance(data, str):
        return StepSpec(command=shlex.split(data))
    if not isinstance(data, Mapping):
        raise ValueError(f"Step must be a mapping or a command string, got {data!r}")
    command = data.get("command")
    if isinstance(command, str):
        command = shlex.split(command)
    cwd = data.get("cwd")
    return StepSpec(
        command=list(command or []),
        description=data.get("description"),
        cwd=Path(cwd) if cwd else None,
        env=dict(data.get("env") or {}),
    )


def load_sweep_plan(path: Path, overrides: Optional[Dict[str, Any]] = None) -> SweepPlan:
    """Read a YAML plan; keys in ``overrides`` that are not None win over the file."""

    if not path.exists():
        raise FileNotFoundError(f"Plan file not found: {path}")
    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValueError(f"Plan file must contain a mapping: {path}")
    overrides = {key: value for key, value in (overrides or {}).items() if value is not None}
    data.update(overrides)

    missing = [key for key in ("values", "target", "pattern", "template") if key not in data]
    if missing:
        raise ValueError(f"Plan is missing required keys: {', '.join(missing)}")

    # Targets written in the plan are relative to the plan file.
    target = Path(data["target"])
    if "target" not in overrides and not target.is_absolute():
        target = path.parent / target
    config = SweepConfig(
        values=list(data["values"]),
        target=target,
        pattern=str(data["pattern"]),
        template=str(data["template"]),
    )
    return SweepPlan(
        config=config,
        steps=[_step_from_mapping(item) for item in data.get("steps") or []],
        setup=[_step_from_mapping(item) for item in data.get("setup") or []],
        env={str(k): str(v) for k, v in (data.get("env") or {}).items()},
        policy=ErrorPolicy(data.get("policy", ErrorPolicy.FAIL_FAST.value)),
        restore=bool(data.get("restore", False)),
    )
