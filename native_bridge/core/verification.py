"""
Verification — ordered test dispatch after a successful build.

Stages run strictly in order: the native suite first, optionally the
benchmark suite, then the downstream OCaml suite.  The downstream suite
assumes a freshly verified native core, so the first failing stage stops
the dispatch and every later stage is recorded as SKIPPED.
"""
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Mapping, Optional, Sequence

from native_bridge.config import Settings
from native_bridge.core.compiler import compile_env
from native_bridge.core.process import CommandRunner
from native_bridge.errors import TestFailed
from native_bridge.io.schema import StageStatus, VerificationStageResult
from native_bridge.io.writer import write_logs
from native_bridge.policy.platform import PlatformProfile

logger = logging.getLogger(__name__)

NATIVE = "native"
BENCHMARKS = "benchmarks"
DOWNSTREAM = "downstream"


@dataclass(frozen=True)
class TestStage:
    __test__ = False

    name: str
    command: Sequence[str]
    cwd: Path
    env: Optional[Mapping[str, str]] = None


@dataclass
class VerificationOutcome:
    stages: List[VerificationStageResult] = field(default_factory=list)
    failure: Optional[TestFailed] = None

    @property
    def ok(self) -> bool:
        return self.failure is None


def native_stage(settings: Settings, platform: PlatformProfile) -> TestStage:
    """cargo test against the same target dir and link flags as the build."""
    return TestStage(
        NATIVE,
        [settings.NATIVE_BRIDGE_CARGO, "test"],
        settings.workspace,
        env=compile_env(platform, settings),
    )


def benchmark_stage(settings: Settings) -> TestStage:
    return TestStage(
        BENCHMARKS,
        [settings.NATIVE_BRIDGE_MAKE, "-C", str(settings.bench_dir)],
        settings.workspace,
    )


def downstream_stage(settings: Settings) -> TestStage:
    return TestStage(
        DOWNSTREAM,
        [settings.NATIVE_BRIDGE_DUNE, "runtest", "--force", "--no-buffer"],
        settings.foreign_project,
    )


def default_stages(settings: Settings, platform: PlatformProfile) -> List[TestStage]:
    stages = [native_stage(settings, platform)]
    if settings.NATIVE_BRIDGE_RUN_BENCHMARKS:
        stages.append(benchmark_stage(settings))
    stages.append(downstream_stage(settings))
    return stages


def dispatch_tests(
    settings: Settings,
    platform: PlatformProfile,
    runner: CommandRunner,
    stages: Optional[List[TestStage]] = None,
) -> VerificationOutcome:
    """
    Run test stages in order, stopping at the first failure.

    Returns
    -------
    VerificationOutcome
        One result per stage (SKIPPED for those never run) and, on
        failure, the TestFailed naming the stage.
    """
    if stages is None:
        stages = default_stages(settings, platform)

    outcome = VerificationOutcome()
    for stage in stages:
        if outcome.failure is not None:
            outcome.stages.append(VerificationStageResult(
                stage=stage.name,
                command=" ".join(stage.command),
                status=StageStatus.SKIPPED,
            ))
            continue

        logger.info("Running %s test suite: %s", stage.name, " ".join(stage.command))
        result = runner.run(
            list(stage.command),
            cwd=stage.cwd,
            env=stage.env,
            timeout=settings.NATIVE_BRIDGE_TIMEOUT,
        )
        if settings.report_dir is not None:
            write_logs(settings.report_dir, f"test-{stage.name}", result.stdout, result.stderr)

        status = StageStatus.SUCCESS if result.ok else StageStatus.FAILED
        outcome.stages.append(VerificationStageResult(
            stage=stage.name,
            command=result.command_line,
            exit_code=result.exit_code,
            status=status,
            duration_ms=result.duration_ms,
            diagnostics=result.diagnostics() if not result.ok else "",
        ))

        if not result.ok:
            logger.error("%s test suite failed (exit %d)", stage.name, result.exit_code)
            outcome.failure = TestFailed(
                f"The {stage.name} test suite failed.",
                stage=stage.name,
                diagnostics=result.diagnostics(),
                context={"command": result.command_line, "returncode": str(result.exit_code)},
            )
        else:
            logger.info("%s test suite passed", stage.name)

    return outcome
