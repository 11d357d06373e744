from __future__ import annotations

import os
import signal
import subprocess
import sys
import tempfile
import threading
import time
from contextlib import contextmanager, nullcontext
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Protocol, Tuple

from sweepbench.errors import ProcessSpawnError, SweepInterruptedError
from sweepbench.utils import get_logger

logger = get_logger(__name__)

FORWARDED_SIGNALS = (signal.SIGINT, signal.SIGTERM)


@dataclass
class Step:
    """One external command invocation within a sweep iteration."""

    command: List[str]
    cwd: Optional[Path] = None
    env: Dict[str, str] = field(default_factory=dict)
    description: Optional[str] = None

    def label(self) -> str:
        return self.description or " ".join(self.command)


@dataclass
class StepResult:
    value: Optional[int]
    step: int
    command: List[str]
    exit_code: int
    elapsed_s: float
    max_rss_kb: Optional[int] = None
    stdout: str = ""
    stderr: str = ""
    description: Optional[str] = None
    cpu_s: Optional[float] = None

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


@dataclass
class ProcessOutcome:
    exit_code: int
    elapsed_s: float
    max_rss_kb: Optional[int]
    stdout: str
    stderr: str
    cpu_s: Optional[float] = None


class ProcessSpawner(Protocol):
    def spawn(self, step: Step) -> ProcessOutcome:
        ...


def _maxrss_to_kb(maxrss: int) -> int:
    # Linux reports kilobytes, macOS reports bytes.
    if sys.platform == "darwin":
        return maxrss // 1024
    return maxrss


class SignalForwarder:
    """Turn SIGINT/SIGTERM into a flag and pass them on to the running child.

    Handlers are installed for the outermost ``installed()`` block only, so the
    runner can cover a whole sweep while the spawner covers each child.
    """

    def __init__(self, signals: Tuple[int, ...] = FORWARDED_SIGNALS) -> None:
        self.signals = signals
        self.received: Optional[int] = None
        self.child: Optional[subprocess.Popen] = None
        self._depth = 0
        self._previous: Dict[int, Any] = {}

    def _handle(self, signum: int, frame: object) -> None:
        self.received = signum
        child = self.child
        if child is not None and child.returncode is None:
            logger.warning("Forwarding signal to child", extra={"signum": signum, "pid": child.pid})
            child.send_signal(signum)

    @contextmanager
    def installed(self) -> Iterator[None]:
        if threading.current_thread() is not threading.main_thread():
            yield
            return
        if self._depth == 0:
            self.received = None
            self._previous = {signum: signal.signal(signum, self._handle) for signum in self.signals}
        self._depth += 1
        try:
            yield
        finally:
            self._depth -= 1
            if self._depth == 0:
                for signum, handler in self._previous.items():
                    signal.signal(signum, handler if handler is not None else signal.SIG_DFL)
                self._previous = {}

    def check(self, value: Optional[int] = None, step: Optional[int] = None) -> None:
        if self.received is not None:
            signum, self.received = self.received, None
            raise SweepInterruptedError(signum, value=value, step=step)


class SubprocessSpawner:
    """Run steps with ``subprocess``, measuring wall time, CPU time and peak RSS.

    Output is captured to temporary files so the child can be reaped with
    ``os.wait4``, which returns the resource usage of that child alone.
    """

    def __init__(
        self, forward_signals: bool = True, signals: Optional[SignalForwarder] = None
    ) -> None:
        self.forward_signals = forward_signals
        self.signals = signals or SignalForwarder()

    def spawn(self, step: Step) -> ProcessOutcome:
        env = os.environ.copy()
        env.update(step.env)
        cwd = str(step.cwd) if step.cwd else None

        with tempfile.TemporaryFile() as out, tempfile.TemporaryFile() as err:
            logger.debug("Spawning step", extra={"cmd": step.command, "cwd": cwd})
            with self.signals.installed() if self.forward_signals else nullcontext():
                self.signals.check()
                start = time.perf_counter()
                try:
                    proc = subprocess.Popen(
                        step.command, cwd=cwd, env=env, stdout=out, stderr=err
                    )
                except OSError as exc:
                    raise ProcessSpawnError(step.command, str(exc)) from exc
                self.signals.child = proc
                try:
                    exit_code, max_rss_kb, cpu_s = self._wait(proc)
                finally:
                    self.signals.child = None
                elapsed = time.perf_counter() - start

                out.seek(0)
                err.seek(0)
                stdout = out.read().decode("utf-8", errors="replace")
                stderr = err.read().decode("utf-8", errors="replace")
                self.signals.check()

        if stdout:
            logger.debug("Step stdout", extra={"cmd": step.command, "stdout": stdout})
        if stderr:
            logger.debug("Step stderr", extra={"cmd": step.command, "stderr": stderr})
        return ProcessOutcome(
            exit_code=exit_code,
            elapsed_s=elapsed,
            max_rss_kb=max_rss_kb,
            stdout=stdout,
            stderr=stderr,
            cpu_s=cpu_s,
        )

    def _wait(self, proc: subprocess.Popen) -> Tuple[int, Optional[int], Optional[float]]:
        if not hasattr(os, "wait4"):
            return proc.wait(), None, None
        _, status, usage = os.wait4(proc.pid, 0)
        exit_code = os.waitstatus_to_exitcode(status)
        # The child was reaped here, keep Popen from waiting on it again.
        proc.returncode = exit_code
        return exit_code, _maxrss_to_kb(usage.ru_maxrss), usage.ru_utime + usage.ru_stime
