"""
Runner — top-level entry: named command → targets → receipt → exit code.

This module ties settings, the platform policy, the orchestrator and the
test dispatch together into a single ``run_command`` function that can be
called from the CLI or from tests with a substituted command runner.

Exit codes::

    0    everything succeeded
    1    a build target (or check / clean / doc) failed
    2    a test stage failed
    3    configuration error (unknown target, cycle, bad graph)
    130  interrupted
"""
import argparse
import logging
import platform as host
import sys
from pathlib import Path
from typing import Dict, Iterable, Optional

from native_bridge import __version__
from native_bridge.config import Settings
from native_bridge.core.compiler import check_workspace
from native_bridge.core.housekeeping import build_docs, clean
from native_bridge.core.orchestrator import CargoTargetBuilder, Orchestrator, TargetBuilder
from native_bridge.core.process import CommandRunner, ProcessRunner, run_quiet
from native_bridge.core.stages import check_destinations
from native_bridge.core.verification import dispatch_tests, native_stage
from native_bridge.errors import BridgeError, BuildInterrupted, ErrorCode, ReportFailed
from native_bridge.io.schema import PlatformInfo, RunReceipt, now_iso
from native_bridge.io.writer import write_receipt
from native_bridge.policy.platform import (
    ForeignRuntime,
    OsClass,
    PlatformProfile,
    classify_host,
    resolve_platform,
)
from native_bridge.policy.targets import COMMANDS, DEFAULT_TARGETS, BuildTarget

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_BUILD_FAILED = 1
EXIT_TEST_FAILED = 2
EXIT_CONFIGURATION = 3
EXIT_INTERRUPTED = 130

_EXIT_BY_CODE: Dict[ErrorCode, int] = {
    ErrorCode.TEST: EXIT_TEST_FAILED,
    ErrorCode.CONFIGURATION: EXIT_CONFIGURATION,
    ErrorCode.INTERRUPTED: EXIT_INTERRUPTED,
}


def exit_code_for(error: Optional[BridgeError]) -> int:
    if error is None:
        return EXIT_OK
    return _EXIT_BY_CODE.get(error.code, EXIT_BUILD_FAILED)


# =============================================================================
# Platform resolution (once per process)
# =============================================================================

def discover_runtime_libdir(settings: Settings) -> Path:
    """OCaml standard library directory: setting, then ocamlfind, then ocamlc."""
    if settings.NATIVE_BRIDGE_RUNTIME_LIBDIR:
        return Path(settings.NATIVE_BRIDGE_RUNTIME_LIBDIR)
    for cmd in (["ocamlfind", "ocamlc", "-where"], ["ocamlc", "-where"]):
        found = run_quiet(cmd)
        if found:
            return Path(found)
    return ForeignRuntime().stdlib_dir


def platform_for_host(settings: Settings, system: Optional[str] = None) -> PlatformProfile:
    """Resolve the PlatformProfile for this process."""
    if system is None:
        system = host.system()
    runtime = ForeignRuntime(library=settings.NATIVE_BRIDGE_RUNTIME_LIB)
    if classify_host(system) == OsClass.DARWIN:
        runtime = ForeignRuntime(
            library=settings.NATIVE_BRIDGE_RUNTIME_LIB,
            stdlib_dir=discover_runtime_libdir(settings),
        )
    return resolve_platform(system, runtime)


def platform_info(profile: PlatformProfile) -> PlatformInfo:
    return PlatformInfo(
        os_class=profile.os_class.value,
        dylib_extension=profile.dylib_extension,
        link_flags=list(profile.link_flags),
        runtime_search_path=(
            str(profile.runtime_search_path) if profile.runtime_search_path else None
        ),
    )


# =============================================================================
# Commands
# =============================================================================

def run_command(
    name: str,
    settings: Settings,
    platform: PlatformProfile,
    runner: Optional[CommandRunner] = None,
    builder: Optional[TargetBuilder] = None,
    targets: Iterable[BuildTarget] = DEFAULT_TARGETS,
) -> RunReceipt:
    """
    Execute one named command and return its receipt.

    The receipt's ``exit_code`` reflects the first fatal failure in
    dependency order.  When ``settings.report_dir`` is set the receipt is
    also written to ``<report_dir>/build_receipt.json``.
    """
    if name not in COMMANDS:
        raise BridgeError(
            f"Unknown command '{name}'.",
            code=ErrorCode.CONFIGURATION,
            hint=f"Known commands: {', '.join(COMMANDS)}",
        )
    command = COMMANDS[name]
    if runner is None:
        runner = ProcessRunner(default_timeout=settings.NATIVE_BRIDGE_TIMEOUT)

    receipt = RunReceipt(
        command=name,
        platform=platform_info(platform),
        requested=list(command.targets),
        extra_flags=settings.extra_flags,
    )
    failure: Optional[BridgeError] = None
    failed_stage: Optional[str] = None

    try:
        if name == "check":
            check_workspace(platform, settings, runner)
        elif name == "clean":
            outcome = clean(settings, runner)
            receipt.tolerated_failures = outcome.tolerated_failures
        elif name == "doc":
            build_docs(settings, runner)
        elif name == "test-native":
            verification = dispatch_tests(
                settings, platform, runner, [native_stage(settings, platform)],
            )
            receipt.verification = verification.stages
            failure = verification.failure
        else:
            profiled = [t.with_profile(command.profile) for t in targets]
            check_destinations(profiled, platform, settings)
            orchestrator = Orchestrator(
                profiled,
                builder or CargoTargetBuilder(platform, settings, runner),
                max_workers=settings.NATIVE_BRIDGE_MAX_WORKERS,
            )
            outcome = orchestrator.run(command.targets)
            receipt.builds = outcome.ordered_results()
            receipt.transitions = outcome.transitions
            if not outcome.ok:
                failure = outcome.first_failure
                failed_stage = outcome.failed_target
            elif command.verify:
                verification = dispatch_tests(settings, platform, runner)
                receipt.verification = verification.stages
                failure = verification.failure
        if failure is not None and isinstance(failure.context.get("stage"), str):
            failed_stage = failure.context["stage"]
    except KeyboardInterrupt:
        failure = BuildInterrupted()
    except BridgeError as e:
        failure = e

    _record_failure(receipt, failure, failed_stage or name)
    receipt.finished_at = now_iso()

    if settings.report_dir is not None:
        try:
            path = write_receipt(receipt, settings.report_dir)
            logger.info("Receipt saved: %s", path)
        except ReportFailed as e:
            logger.error("%s", e)
            if receipt.failure is None:
                _record_failure(receipt, e, "receipt")
    return receipt


def _record_failure(receipt: RunReceipt, failure: Optional[BridgeError], stage: str) -> None:
    if failure is not None:
        payload = failure.to_dict()
        payload["stage"] = stage
        receipt.failure = payload
    receipt.exit_code = exit_code_for(failure)
    receipt.status = receipt.compute_status()


# =============================================================================
# CLI
# =============================================================================

def _print_summary(receipt: RunReceipt) -> None:
    for b in receipt.builds:
        print(f"  {b.target:14s} {b.status.value:10s} {b.duration_ms:>7d} ms")
        for a in b.artifacts:
            print(f"      -> {a.path}")
    for v in receipt.verification:
        print(f"  test:{v.stage:9s} {v.status.value}")
    for t in receipt.tolerated_failures:
        print(f"  tolerated: {t['command']} (exit {t['returncode']})")

    if receipt.failure is None:
        print(f"{receipt.command}: OK")
    else:
        print(
            f"{receipt.command}: FAILED at {receipt.failure['stage']} "
            f"[{receipt.failure['code']}] {receipt.failure['message']}",
            file=sys.stderr,
        )


def main(argv: Optional[list] = None) -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="native-bridge",
        description="Build the solver with cargo and bridge it into the OCaml/dune build",
    )
    parser.add_argument("command", choices=list(COMMANDS), help="Named target to run")
    parser.add_argument("--workspace", type=Path, default=None, help="Cargo workspace root")
    parser.add_argument(
        "--report-dir", type=Path, default=None,
        help="Directory for build_receipt.json and captured logs",
    )
    parser.add_argument(
        "-j", "--jobs", type=int, default=None,
        help="Build independent targets concurrently (default 1)",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--verbose", "-v", action="store_true")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )

    overrides: Dict[str, object] = {}
    if args.workspace is not None:
        overrides["NATIVE_BRIDGE_WORKSPACE"] = str(args.workspace)
    if args.report_dir is not None:
        overrides["NATIVE_BRIDGE_REPORT_DIR"] = str(args.report_dir)
    if args.jobs is not None:
        overrides["NATIVE_BRIDGE_MAX_WORKERS"] = args.jobs
    settings = Settings().model_copy(update=overrides)

    try:
        platform = platform_for_host(settings)
        logger.info(
            "Platform: %s (dylib %s, link flags %s)",
            platform.os_class.value, platform.dylib_extension,
            " ".join(platform.link_flags) or "none",
        )
        receipt = run_command(args.command, settings, platform)
    except BridgeError as e:
        logger.error("%s", e)
        sys.exit(exit_code_for(e))

    _print_summary(receipt)
    sys.exit(receipt.exit_code)


if __name__ == "__main__":
    main()
