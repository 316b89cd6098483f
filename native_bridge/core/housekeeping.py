"""
Housekeeping — clean and doc commands spanning both build systems.

``cargo clean`` is authoritative and must succeed.  The secondary
``dune clean`` is attempted afterwards and its failure is tolerated: it
is logged at WARNING with its own message and diagnostics, and recorded
in the outcome so it shows up in the receipt instead of vanishing.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, List

from native_bridge.config import Settings
from native_bridge.core.process import CommandResult, CommandRunner
from native_bridge.errors import CommandFailed

logger = logging.getLogger(__name__)


@dataclass
class CleanOutcome:
    results: List[CommandResult] = field(default_factory=list)
    tolerated_failures: List[Dict[str, str]] = field(default_factory=list)


def clean(settings: Settings, runner: CommandRunner) -> CleanOutcome:
    """Remove cargo outputs, then best-effort dune outputs."""
    outcome = CleanOutcome()

    primary = runner.run(
        [settings.NATIVE_BRIDGE_CARGO, "clean"],
        cwd=settings.workspace,
        timeout=settings.NATIVE_BRIDGE_TIMEOUT,
    )
    outcome.results.append(primary)
    if not primary.ok:
        raise CommandFailed(
            "cargo clean failed.",
            context={"command": primary.command_line, "stderr": primary.diagnostics(2000)},
        )

    if not settings.foreign_project.is_dir():
        logger.info("No foreign project at %s; skipping dune clean", settings.foreign_project)
        return outcome

    secondary = runner.run(
        [settings.NATIVE_BRIDGE_DUNE, "clean"],
        cwd=settings.foreign_project,
        timeout=settings.NATIVE_BRIDGE_TIMEOUT,
    )
    outcome.results.append(secondary)
    if not secondary.ok:
        logger.warning(
            "Secondary clean (dune) failed with exit %d; tolerated, cargo outputs are clean. %s",
            secondary.exit_code,
            secondary.diagnostics(500),
        )
        outcome.tolerated_failures.append({
            "command": secondary.command_line,
            "returncode": str(secondary.exit_code),
            "diagnostics": secondary.diagnostics(2000),
        })
    return outcome


def build_docs(settings: Settings, runner: CommandRunner) -> CommandResult:
    """``dune build @doc`` for the OCaml bindings."""
    result = runner.run(
        [settings.NATIVE_BRIDGE_DUNE, "build", "@doc"],
        cwd=settings.foreign_project,
        timeout=settings.NATIVE_BRIDGE_TIMEOUT,
    )
    if not result.ok:
        raise CommandFailed(
            "Documentation build failed.",
            context={"command": result.command_line, "stderr": result.diagnostics(2000)},
        )
    return result
