"""
Compiler — drive cargo for one BuildTarget.

Produces one primary artifact per target (``lib<crate>.a`` for libraries,
the binary for executables) under ``<target_dir>/<profile>/``.  On
Darwin-like hosts the dynamic library is requested as a secondary output
and the runtime link flags are injected through RUSTFLAGS.

A non-zero exit is a CompileFailed.  It is never retried.
"""
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from native_bridge.config import Settings
from native_bridge.core.process import CommandResult, CommandRunner
from native_bridge.errors import CompileFailed
from native_bridge.policy.platform import PlatformProfile
from native_bridge.policy.targets import BuildProfile, BuildTarget, TargetKind

logger = logging.getLogger(__name__)


@dataclass
class CompileOutput:
    """Where the compiler put (or was asked to put) a target's outputs."""
    target: str
    output_dir: Path
    primary: Path
    secondary: Optional[Path]
    result: Optional[CommandResult] = None


def output_dir(target: BuildTarget, settings: Settings) -> Path:
    """Compiler-determined output directory for a target's profile."""
    return settings.target_dir / target.profile.value


def library_filenames(crate_name: str, dylib_extension: str) -> Dict[str, str]:
    """Native file names cargo emits for a library crate."""
    return {
        "static": f"lib{crate_name}.a",
        "dylib": f"lib{crate_name}{dylib_extension}",
    }


def cargo_command(
    target: BuildTarget,
    settings: Settings,
    subcommand: str = "build",
) -> List[str]:
    """cargo argv: profile, package selector, target flags, then FLAGS verbatim."""
    cmd = [settings.NATIVE_BRIDGE_CARGO, subcommand]
    if target.profile == BuildProfile.RELEASE:
        cmd.append("--release")
    if target.package:
        cmd += ["-p", target.package]
    if target.kind == TargetKind.EXECUTABLE:
        cmd += ["--bin", target.crate_name]
    cmd += list(target.extra_flags)
    cmd += settings.extra_flags
    return cmd


def expected_outputs(
    target: BuildTarget,
    platform: PlatformProfile,
    settings: Settings,
) -> Tuple[Path, Optional[Path]]:
    """Primary and (Darwin only) secondary output a successful compile leaves behind."""
    out_dir = output_dir(target, settings)
    if target.kind == TargetKind.EXECUTABLE:
        return out_dir / target.crate_name, None
    names = library_filenames(target.crate_name, platform.dylib_extension)
    secondary = out_dir / names["dylib"] if platform.is_darwin else None
    return out_dir / names["static"], secondary


def compile_env(platform: PlatformProfile, settings: Settings) -> Dict[str, str]:
    """Child environment additions for a compiler run."""
    env = {"CARGO_TARGET_DIR": str(settings.target_dir)}
    rustflags = platform.rustflags()
    if rustflags:
        inherited = os.environ.get("RUSTFLAGS", "").split()
        env["RUSTFLAGS"] = " ".join(inherited + list(rustflags))
    return env


def compile_target(
    target: BuildTarget,
    platform: PlatformProfile,
    settings: Settings,
    runner: CommandRunner,
) -> CompileOutput:
    """
    Compile one target and return where its outputs are expected.

    Raises
    ------
    CompileFailed
        The compiler exited non-zero or timed out.  The captured
        diagnostics travel with the exception.
    """
    cmd = cargo_command(target, settings)
    out_dir = output_dir(target, settings)

    logger.info("Compiling %s (%s): %s", target.name, target.profile.value, " ".join(cmd))
    result = runner.run(
        cmd,
        cwd=settings.workspace,
        env=compile_env(platform, settings),
        timeout=settings.NATIVE_BRIDGE_TIMEOUT,
    )

    if not result.ok:
        reason = "timed out" if result.timed_out else f"exited with {result.exit_code}"
        raise CompileFailed(
            f"Compilation of '{target.name}' failed: compiler {reason}.",
            diagnostics=result.diagnostics(),
            hint="Fix the compiler error and re-run; failed builds are not retried.",
            context={
                "target": target.name,
                "command": result.command_line,
                "returncode": str(result.exit_code),
            },
        )

    primary, secondary = expected_outputs(target, platform, settings)

    logger.debug("Compiled %s in %d ms", target.name, result.duration_ms)
    return CompileOutput(
        target=target.name,
        output_dir=out_dir,
        primary=primary,
        secondary=secondary,
        result=result,
    )


def check_workspace(
    platform: PlatformProfile,
    settings: Settings,
    runner: CommandRunner,
) -> CommandResult:
    """``cargo check`` over the whole workspace, with FLAGS appended."""
    cmd = [settings.NATIVE_BRIDGE_CARGO, "check"] + settings.extra_flags
    logger.info("Checking workspace: %s", " ".join(cmd))
    result = runner.run(
        cmd,
        cwd=settings.workspace,
        env=compile_env(platform, settings),
        timeout=settings.NATIVE_BRIDGE_TIMEOUT,
    )
    if not result.ok:
        raise CompileFailed(
            "cargo check failed.",
            diagnostics=result.diagnostics(),
            context={"command": result.command_line, "returncode": str(result.exit_code)},
        )
    return result
