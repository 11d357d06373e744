from __future__ import annotations

import json
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, Optional

from sweepbench.config.sweep import SweepConfig
from sweepbench.runner.process import StepResult

if TYPE_CHECKING:
    from sweepbench.runner.sweep import SweepOutcome


def format_result_line(result: StepResult) -> str:
    value = "setup" if result.value is None else result.value
    maxmem = f"{result.max_rss_kb}KB" if result.max_rss_kb is not None else "n/a"
    return (
        f"value={value} step={result.step} exit={result.exit_code} "
        f"elapsed={result.elapsed_s:.1f}s maxmem={maxmem}"
    )


def result_record(result: StepResult, include_output: bool = False) -> Dict[str, Any]:
    record = asdict(result)
    record["ok"] = result.ok
    if not include_output:
        record.pop("stdout", None)
        record.pop("stderr", None)
    return record


def write_report(
    path: Path,
    outcome: "SweepOutcome",
    config: Optional[SweepConfig] = None,
    include_output: bool = False,
) -> Path:
    """Write the results and failures of a sweep as a JSON document."""

    payload: Dict[str, Any] = {
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "ok": outcome.ok,
        "results": [result_record(item, include_output) for item in outcome.results],
        "failures": [
            {
                "value": failure.value,
                "step": failure.step,
                "kind": type(failure.error).__name__,
                "message": str(failure.error),
            }
            for failure in outcome.failures
        ],
    }
    if config is not None:
        payload["config"] = {
            "values": config.values,
            "target": str(config.target),
            "pattern": config.pattern,
            "template": config.template,
        }

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2))
    return path
