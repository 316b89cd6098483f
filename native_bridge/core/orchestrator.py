"""
Orchestrator — run BuildTargets in dependency order.

Per-target state machine::

    PENDING ──► BUILDING ──► SUCCEEDED
       │            └──────► FAILED
       └───────────────────► FAILED   (a dependency failed; never built)

A target enters BUILDING only once every dependency is SUCCEEDED.  When a
target fails, all of its transitive dependents are marked FAILED on the
spot.  There is no retry.

Targets are grouped into waves; members of one wave do not depend on each
other and may build concurrently.  A wave is always joined before the
next one starts.
"""
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Protocol

from native_bridge.config import Settings
from native_bridge.core.compiler import compile_target
from native_bridge.core.process import ProcessRunner
from native_bridge.core.stages import run_stage
from native_bridge.errors import BridgeError, BuildInterrupted, ErrorCode
from native_bridge.io.schema import (
    ArtifactRecord,
    BuildResult,
    TargetStatus,
    Transition,
    now_iso,
)
from native_bridge.io.writer import write_logs
from native_bridge.policy.platform import PlatformProfile
from native_bridge.policy.targets import (
    BuildTarget,
    dependency_closure,
    dependents_of,
    index_targets,
    topological_waves,
)

logger = logging.getLogger(__name__)


class TargetBuilder(Protocol):
    def build(self, target: BuildTarget) -> List[ArtifactRecord]:
        """Compile and relocate one target.  Raises BridgeError on failure."""

    def interrupt(self) -> None:
        """Stop running children; no relocation may start afterwards."""


class CargoTargetBuilder:
    """Compile with cargo, then hand the outputs to the target's stage."""

    def __init__(
        self,
        platform: PlatformProfile,
        settings: Settings,
        runner: Optional[ProcessRunner] = None,
    ):
        self.platform = platform
        self.settings = settings
        self.runner = runner or ProcessRunner(default_timeout=settings.NATIVE_BRIDGE_TIMEOUT)
        self._cancelled = threading.Event()

    def build(self, target: BuildTarget) -> List[ArtifactRecord]:
        compiled = compile_target(target, self.platform, self.settings, self.runner)
        if self.settings.report_dir is not None:
            write_logs(
                self.settings.report_dir, target.name,
                compiled.result.stdout, compiled.result.stderr,
            )
        # The compiler has exited; relocation is safe unless we were interrupted.
        if self._cancelled.is_set():
            raise BuildInterrupted(context={"target": target.name})
        records = run_stage(
            target, compiled, self.platform, self.settings, self.runner,
            cancelled=self._cancelled,
        )
        if self._cancelled.is_set():
            raise BuildInterrupted(context={"target": target.name})
        return records

    def interrupt(self) -> None:
        self._cancelled.set()
        terminate = getattr(self.runner, "terminate_all", None)
        if terminate is not None:
            terminate()


@dataclass
class RunOutcome:
    """Everything the orchestrator learned during one run."""
    order: List[str]
    results: Dict[str, BuildResult]
    transitions: List[Transition] = field(default_factory=list)
    first_failure: Optional[BridgeError] = None
    failed_target: Optional[str] = None
    interrupted: bool = False

    @property
    def ok(self) -> bool:
        return all(r.status == TargetStatus.SUCCEEDED for r in self.results.values())

    def ordered_results(self) -> List[BuildResult]:
        return [self.results[n] for n in self.order]


class Orchestrator:
    """
    Builds a requested set of targets, plus their dependencies.

    Parameters
    ----------
    targets : iterable of BuildTarget
        The static graph; validated on construction.
    builder : TargetBuilder
        Does the actual work for one target.
    max_workers : int
        Upper bound on targets built at once within a wave.
    on_transition : callable, optional
        Called with every Transition as it happens.
    """

    def __init__(
        self,
        targets: Iterable[BuildTarget],
        builder: TargetBuilder,
        max_workers: int = 1,
        on_transition: Optional[Callable[[Transition], None]] = None,
    ):
        self.targets = index_targets(targets)
        self.builder = builder
        self.max_workers = max(1, max_workers)
        self.on_transition = on_transition
        self._lock = threading.Lock()
        self._cancelled = threading.Event()

    # -----------------------------------------------------------------
    # State bookkeeping
    # -----------------------------------------------------------------

    def _transition(self, outcome: RunOutcome, name: str, status: TargetStatus) -> None:
        with self._lock:
            result = outcome.results[name]
            if result.status.is_terminal:
                return
            result.status = status
            t = Transition(target=name, status=status)
            outcome.transitions.append(t)
        logger.info("[%s] %s", name, status.value)
        if self.on_transition is not None:
            self.on_transition(t)

    def _fail_dependents(self, outcome: RunOutcome, name: str) -> None:
        for dep in dependents_of(self.targets, name):
            if dep not in outcome.results:
                continue
            result = outcome.results[dep]
            if result.status != TargetStatus.PENDING:
                continue
            result.error_code = ErrorCode.DEPENDENCY_FAILED.value
            result.error_message = f"Dependency '{name}' failed; not built."
            self._transition(outcome, dep, TargetStatus.FAILED)

    def _interrupt(self) -> None:
        if self._cancelled.is_set():
            return
        logger.warning("Interrupted; terminating running children")
        self._cancelled.set()
        self.builder.interrupt()

    def _ready(self, outcome: RunOutcome, name: str) -> bool:
        result = outcome.results[name]
        if result.status != TargetStatus.PENDING or self._cancelled.is_set():
            return False
        return all(
            outcome.results[d].status == TargetStatus.SUCCEEDED
            for d in self.targets[name].depends_on
        )

    # -----------------------------------------------------------------
    # Build a single target
    # -----------------------------------------------------------------

    def _build_one(self, outcome: RunOutcome, name: str) -> None:
        target = self.targets[name]
        result = outcome.results[name]

        self._transition(outcome, name, TargetStatus.BUILDING)
        result.started_at = now_iso()
        t0 = time.monotonic()
        try:
            artifacts = self.builder.build(target)
        except BridgeError as e:
            if self._cancelled.is_set() and not isinstance(e, BuildInterrupted):
                e = BuildInterrupted(context={"target": name, "cause": e.message})
            result.duration_ms = int((time.monotonic() - t0) * 1000)
            result.finished_at = now_iso()
            result.error_code = e.code.value
            result.error_message = e.message
            result.diagnostics = getattr(e, "diagnostics", "") or str(e)
            result.command = e.context.get("command")
            logger.error("Target '%s' failed [%s]: %s", name, e.code.value, e.message)
            self._transition(outcome, name, TargetStatus.FAILED)
            self._fail_dependents(outcome, name)
            return

        result.duration_ms = int((time.monotonic() - t0) * 1000)
        result.finished_at = now_iso()
        result.artifacts = artifacts
        self._transition(outcome, name, TargetStatus.SUCCEEDED)

    def _run_wave(self, outcome: RunOutcome, wave: List[str]) -> None:
        ready = [n for n in wave if self._ready(outcome, n)]
        if not ready:
            return
        if self.max_workers == 1 or len(ready) == 1:
            for name in ready:
                if self._cancelled.is_set():
                    break
                self._build_one(outcome, name)
            return

        logger.debug("Building concurrently: %s", ", ".join(ready))
        pool = ThreadPoolExecutor(max_workers=min(self.max_workers, len(ready)))
        try:
            futures = [pool.submit(self._build_one, outcome, n) for n in ready]
            for f in futures:
                f.result()
        except KeyboardInterrupt:
            self._interrupt()
            raise
        finally:
            pool.shutdown(wait=True)

    # -----------------------------------------------------------------
    # Execute
    # -----------------------------------------------------------------

    def run(self, requested: Iterable[str]) -> RunOutcome:
        """
        Build *requested* and everything they depend on.

        Returns a RunOutcome; failures are recorded there, not raised.
        ConfigurationError (unknown target, cycle) is raised before
        anything starts.
        """
        closure = dependency_closure(self.targets, requested)
        waves = topological_waves(self.targets, closure)
        order = [n for wave in waves for n in wave]
        outcome = RunOutcome(
            order=order,
            results={n: BuildResult(target=n) for n in order},
        )
        self._cancelled.clear()

        logger.info("Build plan: %s", " → ".join("{" + ", ".join(w) + "}" for w in waves))
        try:
            for wave in waves:
                self._run_wave(outcome, wave)
        except KeyboardInterrupt:
            self._interrupt()
            outcome.interrupted = True
            for name in order:
                result = outcome.results[name]
                if not result.status.is_terminal:
                    result.error_code = ErrorCode.INTERRUPTED.value
                    result.error_message = "Build interrupted."
                    self._transition(outcome, name, TargetStatus.FAILED)

        for name in order:
            result = outcome.results[name]
            if result.status == TargetStatus.FAILED and result.error_code != ErrorCode.DEPENDENCY_FAILED.value:
                outcome.failed_target = name
                outcome.first_failure = BridgeError(
                    result.error_message or "Build failed.",
                    code=ErrorCode(result.error_code),
                    context={"target": name},
                )
                break
        return outcome
