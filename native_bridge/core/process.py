"""
Process — blocking spawn-and-wait for child tools (cargo, dune, strip).

All suspension points in the orchestrator are waits on a child's exit
code.  Every live child is registered so that a process-wide interrupt
can be forwarded to all of them at once.
"""
import logging
import os
import subprocess
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Protocol, Sequence

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    """Captured outcome of one child process."""
    command: List[str]
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    duration_ms: int = 0
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and not self.timed_out

    @property
    def command_line(self) -> str:
        return " ".join(self.command)

    def diagnostics(self, limit: int = 8000) -> str:
        """stderr then stdout, tail-truncated to *limit* characters."""
        text = "\n".join(part for part in (self.stderr, self.stdout) if part)
        if len(text) > limit:
            text = text[-limit:]
        return text


class CommandRunner(Protocol):
    def run(
        self,
        command: Sequence[str],
        *,
        cwd: Path,
        env: Optional[Mapping[str, str]] = None,
        timeout: Optional[int] = None,
    ) -> CommandResult:
        """Run *command* to completion and return its captured result."""


class ProcessRunner:
    """
    Real CommandRunner backed by subprocess.Popen.

    Children are tracked in a registry while they run; ``terminate_all``
    stops every one of them (used on KeyboardInterrupt).
    """

    def __init__(self, default_timeout: Optional[int] = None):
        self.default_timeout = default_timeout
        self._lock = threading.Lock()
        self._live: Dict[int, subprocess.Popen] = {}

    def run(
        self,
        command: Sequence[str],
        *,
        cwd: Path,
        env: Optional[Mapping[str, str]] = None,
        timeout: Optional[int] = None,
    ) -> CommandResult:
        cmd = [str(c) for c in command]
        child_env = dict(os.environ)
        if env:
            child_env.update(env)
        if timeout is None:
            timeout = self.default_timeout

        logger.debug("exec: %s (cwd=%s)", " ".join(cmd), cwd)
        t0 = time.monotonic()
        try:
            proc = subprocess.Popen(
                cmd,
                cwd=str(cwd),
                env=child_env,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
            )
        except OSError as e:
            # Missing tool or bad cwd: report like a failed child.
            return CommandResult(
                command=cmd,
                exit_code=127,
                stderr=str(e),
                duration_ms=int((time.monotonic() - t0) * 1000),
            )

        with self._lock:
            self._live[proc.pid] = proc
        try:
            try:
                stdout, stderr = proc.communicate(timeout=timeout)
                timed_out = False
            except subprocess.TimeoutExpired:
                proc.kill()
                stdout, stderr = proc.communicate()
                stderr = (stderr or "") + f"\nTIMEOUT after {timeout}s"
                timed_out = True
            except KeyboardInterrupt:
                proc.kill()
                proc.wait()
                raise
        finally:
            with self._lock:
                self._live.pop(proc.pid, None)

        return CommandResult(
            command=cmd,
            exit_code=proc.returncode if not timed_out else -1,
            stdout=stdout or "",
            stderr=stderr or "",
            duration_ms=int((time.monotonic() - t0) * 1000),
            timed_out=timed_out,
        )

    def live_count(self) -> int:
        with self._lock:
            return len(self._live)

    def terminate_all(self, grace: float = 5.0) -> int:
        """Terminate every running child; kill any still alive after *grace*."""
        with self._lock:
            procs = list(self._live.values())
        for proc in procs:
            if proc.poll() is None:
                logger.warning("Terminating child pid=%d: %s", proc.pid, " ".join(proc.args))
                proc.terminate()
        for proc in procs:
            try:
                proc.wait(timeout=grace)
            except subprocess.TimeoutExpired:
                proc.kill()
        return len(procs)


def run_quiet(cmd: List[str], timeout: int = 5) -> Optional[str]:
    """Run a short query command and return stripped stdout, or None on any failure."""
    try:
        r = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)
    except (OSError, subprocess.SubprocessError):
        return None
    if r.returncode != 0:
        return None
    return r.stdout.strip() or None
