from __future__ import annotations

import os
import signal
import sys
import threading
import time
from pathlib import Path

import pytest

from sweepbench.errors import ProcessSpawnError, SweepInterruptedError
from sweepbench.runner.process import Step, SubprocessSpawner


def _python(code: str) -> list[str]:
    return [sys.executable, "-c", code]


def test_spawner_captures_exit_code_and_output(tmp_path: Path) -> None:
    spawner = SubprocessSpawner()
    code = "import sys; print('sealed'); print('warn', file=sys.stderr); sys.exit(3)"

    outcome = spawner.spawn(Step(command=_python(code)))

    assert outcome.exit_code == 3
    assert outcome.stdout.strip() == "sealed"
    assert outcome.stderr.strip() == "warn"
    assert outcome.elapsed_s >= 0.0


@pytest.mark.skipif(not hasattr(os, "wait4"), reason="rusage per child needs os.wait4")
def test_spawner_reports_peak_memory() -> None:
    spawner = SubprocessSpawner()
    code = "blob = b'x' * (64 * 1024 * 1024)"

    outcome = spawner.spawn(Step(command=_python(code)))

    assert outcome.exit_code == 0
    assert outcome.max_rss_kb is not None
    assert outcome.max_rss_kb >= 32 * 1024


def test_spawner_passes_env_and_cwd(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv("SWEEPBENCH_PARENT", "inherited")
    spawner = SubprocessSpawner()
    code = (
        "import os; "
        "print(os.environ['SWEEPBENCH_PARENT'], os.environ['RUST_LOG'], os.getcwd())"
    )

    outcome = spawner.spawn(
        Step(command=_python(code), cwd=tmp_path, env={"RUST_LOG": "info"})
    )

    parent, rust_log, cwd = outcome.stdout.split()
    assert parent == "inherited"
    assert rust_log == "info"
    assert Path(cwd).resolve() == tmp_path.resolve()


def test_spawner_missing_executable(tmp_path: Path) -> None:
    spawner = SubprocessSpawner()
    with pytest.raises(ProcessSpawnError) as excinfo:
        spawner.spawn(Step(command=[str(tmp_path / "no-such-binary")]))
    assert excinfo.value.command == [str(tmp_path / "no-such-binary")]


def test_spawner_restores_signal_handlers() -> None:
    before = signal.getsignal(signal.SIGTERM)
    SubprocessSpawner().spawn(Step(command=_python("pass")))
    assert signal.getsignal(signal.SIGTERM) == before


@pytest.mark.skipif(not hasattr(os, "wait4"), reason="rusage per child needs os.wait4")
def test_spawner_reports_cpu_time() -> None:
    outcome = SubprocessSpawner().spawn(Step(command=_python("sum(range(2_000_000))")))

    assert outcome.cpu_s is not None
    assert outcome.cpu_s > 0.0


def test_spawner_forwards_sigterm_to_child() -> None:
    spawner = SubprocessSpawner()
    timer = threading.Timer(0.5, os.kill, args=(os.getpid(), signal.SIGTERM))
    timer.start()
    start = time.monotonic()
    try:
        with pytest.raises(SweepInterruptedError) as excinfo:
            spawner.spawn(Step(command=_python("import time; time.sleep(30)")))
    finally:
        timer.cancel()

    assert excinfo.value.signum == signal.SIGTERM
    assert excinfo.value.exit_code == 130
    assert time.monotonic() - start < 20
