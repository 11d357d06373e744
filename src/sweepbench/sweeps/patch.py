from __future__ import annotations

import re
from pathlib import Path
from typing import List, Optional

from sweepbench.errors import ConfigPatchError
from sweepbench.utils import get_logger

logger = get_logger(__name__)

# Only "\n" ends a line; form feeds and other separators stay inside it.
_LINE_BREAK = re.compile(r"(?<=\n)")


def split_lines(text: str) -> List[str]:
    lines = _LINE_BREAK.split(text)
    if lines and lines[-1] == "":
        lines.pop()
    return lines


def _split_ending(line: str) -> tuple[str, str]:
    if line.endswith("\r\n"):
        return line[:-2], "\r\n"
    if line.endswith("\n"):
        return line[:-1], "\n"
    return line, ""


def find_matching_lines(text: str, pattern: str) -> List[int]:
    regex = re.compile(pattern)
    return [
        idx
        for idx, line in enumerate(split_lines(text))
        if regex.search(_split_ending(line)[0])
    ]


def patch_config_line(
    path: Path, pattern: str, replacement: str, value: Optional[int] = None
) -> str:
    """Replace the single line of ``path`` matching ``pattern`` with ``replacement``.

    The match is tested per line with ``re.search``, so ``^``/``$`` anchor to the
    line. Raises ``ConfigPatchError`` unless exactly one line matches; the file is
    left untouched in that case. Returns the line that was replaced, without its
    line ending.
    """

    path = Path(path)
    try:
        text = path.read_bytes().decode("utf-8")
    except FileNotFoundError as exc:
        raise ConfigPatchError(path, pattern, 0, value=value, reason="file not found") from exc
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigPatchError(path, pattern, 0, value=value, reason=f"cannot read: {exc}") from exc

    try:
        matches = find_matching_lines(text, pattern)
    except re.error as exc:
        raise ConfigPatchError(path, pattern, 0, value=value, reason=f"invalid pattern: {exc}") from exc
    if len(matches) != 1:
        raise ConfigPatchError(path, pattern, len(matches), value=value)

    lines = split_lines(text)
    idx = matches[0]
    previous, ending = _split_ending(lines[idx])
    lines[idx] = replacement + ending
    try:
        path.write_bytes("".join(lines).encode("utf-8"))
    except OSError as exc:
        raise ConfigPatchError(path, pattern, 1, value=value, reason=f"cannot write: {exc}") from exc
    logger.debug(
        "Patched config line",
        extra={"path": str(path), "line": idx + 1, "previous": previous, "current": replacement},
    )
    return previous
