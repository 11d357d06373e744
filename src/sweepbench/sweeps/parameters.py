from __future__ import annotations

from typing import Dict, Iterable, List


def parse_sweep_values(definition: str) -> List[int]:
    """Parse ``"2,4,8"`` (or whitespace separated) into an ordered list of ints."""

    parts = [part for part in definition.replace(",", " ").split() if part]
    if not parts:
        raise ValueError("Sweep values must include at least one value")
    values: List[int] = []
    for part in parts:
        try:
            values.append(int(part))
        except ValueError as exc:
            raise ValueError(f"Sweep value is not an integer: {part!r}") from exc
    return values


def parse_env_overrides(items: Iterable[str]) -> Dict[str, str]:
    env: Dict[str, str] = {}
    for item in items:
        key, sep, value = item.partition("=")
        if not sep or not key:
            raise ValueError(f"Environment override must look like KEY=VALUE: {item!r}")
        env[key] = value
    return env
