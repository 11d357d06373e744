"""Sweep axis parsing and config patching."""

from .parameters import parse_env_overrides, parse_sweep_values
from .patch import find_matching_lines, patch_config_line

__all__ = [
    "find_matching_lines",
    "parse_env_overrides",
    "parse_sweep_values",
    "patch_config_line",
]
