"""
Stages — artifact transformations between the compiler and its consumers.

Each stage declares which artifact kinds it consumes and which it
produces.  Planning turns a CompileOutput into ArtifactSpecs; running a
stage relocates them.  The foreign-stub stage is what makes a cargo
library loadable by the OCaml runtime: ``lib<crate>.a`` for static
linking and ``dll<crate>.so`` for the bytecode loader, whatever native
dynamic-library extension the host uses.
"""
import os
import threading
from dataclasses import dataclass
from enum import Enum, unique
from pathlib import Path
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional

from native_bridge.config import Settings
from native_bridge.core.compiler import CompileOutput, expected_outputs, output_dir
from native_bridge.core.process import CommandRunner
from native_bridge.core.relocation import relocate_all
from native_bridge.errors import ConfigurationError
from native_bridge.io.schema import ArtifactRecord, ArtifactSpec, PostProcess
from native_bridge.policy.platform import PlatformProfile
from native_bridge.policy.targets import BuildTarget, TargetKind

# The OCaml loader looks for dll<name><ext_dll>; ext_dll is ".so" on every
# Unix, Darwin included.
FOREIGN_DLL_EXTENSION = ".so"

# Dynamic-library extensions cargo may emit, in fallback order.
DYLIB_FALLBACK = (".so", ".dylib")


@unique
class ArtifactKind(str, Enum):
    STATIC_LIB = "static-lib"
    DYLIB = "dylib"
    EXECUTABLE = "executable"
    IPASIR_LIB = "ipasir-lib"
    FOREIGN_STATIC = "foreign-static"
    FOREIGN_DLL = "foreign-dll"


PlanFn = Callable[[BuildTarget, CompileOutput, PlatformProfile, Path], List[ArtifactSpec]]


@dataclass(frozen=True)
class Stage:
    name: str
    inputs: FrozenSet[ArtifactKind]
    outputs: FrozenSet[ArtifactKind]
    plan: PlanFn


def provided_kinds(target: BuildTarget) -> FrozenSet[ArtifactKind]:
    """Artifact kinds the compiler can hand to a stage for this target."""
    if target.kind == TargetKind.EXECUTABLE:
        return frozenset({ArtifactKind.EXECUTABLE})
    return frozenset({ArtifactKind.STATIC_LIB, ArtifactKind.DYLIB})


def _spec(
    target: BuildTarget,
    kind: ArtifactKind,
    compiled: CompileOutput,
    outputs: List[Path],
    dest: Path,
    post: PostProcess = PostProcess.NONE,
) -> ArtifactSpec:
    return ArtifactSpec(
        target=target.name,
        kind=kind.value,
        source_dir=str(compiled.output_dir),
        outputs=[str(o) for o in outputs],
        relocation_path=str(dest),
        post_process=post,
    )


def _dylib_candidates(compiled: CompileOutput, crate: str) -> List[Path]:
    return [compiled.output_dir / f"lib{crate}{ext}" for ext in DYLIB_FALLBACK]


# ── Plans ────────────────────────────────────────────────────────────────────

def _plan_native_library(target, compiled, platform, dest_dir):
    specs = [
        _spec(target, ArtifactKind.STATIC_LIB, compiled, [compiled.primary],
              dest_dir / compiled.primary.name),
    ]
    if compiled.secondary is not None:
        specs.append(
            _spec(target, ArtifactKind.DYLIB, compiled, [compiled.secondary],
                  dest_dir / compiled.secondary.name)
        )
    return specs


def _plan_ipasir(target, compiled, platform, dest_dir):
    solver = target.crate_name
    if solver.endswith("_ipasir"):
        solver = solver[: -len("_ipasir")]
    return [
        _spec(target, ArtifactKind.IPASIR_LIB, compiled, [compiled.primary],
              dest_dir / f"libipasir{solver}.a"),
    ]


def _plan_foreign_stub(target, compiled, platform, dest_dir):
    crate = target.crate_name
    return [
        _spec(target, ArtifactKind.FOREIGN_STATIC, compiled, [compiled.primary],
              dest_dir / f"lib{crate}.a"),
        _spec(target, ArtifactKind.FOREIGN_DLL, compiled,
              _dylib_candidates(compiled, crate),
              dest_dir / f"dll{crate}{FOREIGN_DLL_EXTENSION}",
              post=PostProcess.RENAME_EXTENSION),
    ]


def _plan_executable(target, compiled, platform, dest_dir):
    post = PostProcess.STRIP_SYMBOLS if target.strip else PostProcess.NONE
    return [
        _spec(target, ArtifactKind.EXECUTABLE, compiled, [compiled.primary],
              dest_dir / compiled.primary.name, post=post),
    ]


STAGES: Dict[str, Stage] = {
    s.name: s
    for s in (
        Stage(
            "native-library",
            inputs=frozenset({ArtifactKind.STATIC_LIB}),
            outputs=frozenset({ArtifactKind.STATIC_LIB, ArtifactKind.DYLIB}),
            plan=_plan_native_library,
        ),
        Stage(
            "ipasir-plugin",
            inputs=frozenset({ArtifactKind.STATIC_LIB}),
            outputs=frozenset({ArtifactKind.IPASIR_LIB}),
            plan=_plan_ipasir,
        ),
        Stage(
            "foreign-stub",
            inputs=frozenset({ArtifactKind.STATIC_LIB, ArtifactKind.DYLIB}),
            outputs=frozenset({ArtifactKind.FOREIGN_STATIC, ArtifactKind.FOREIGN_DLL}),
            plan=_plan_foreign_stub,
        ),
        Stage(
            "executable",
            inputs=frozenset({ArtifactKind.EXECUTABLE}),
            outputs=frozenset({ArtifactKind.EXECUTABLE}),
            plan=_plan_executable,
        ),
    )
}


def get_stage(target: BuildTarget) -> Stage:
    """Look up a target's stage and check the compiler can feed it."""
    stage = STAGES.get(target.stage)
    if stage is None:
        raise ConfigurationError(
            f"Target '{target.name}' names unknown artifact stage '{target.stage}'.",
            hint=f"Known stages: {', '.join(sorted(STAGES))}",
            context={"target": target.name},
        )
    missing = stage.inputs - provided_kinds(target)
    if missing:
        raise ConfigurationError(
            f"Stage '{stage.name}' cannot consume the outputs of '{target.name}'.",
            context={
                "target": target.name,
                "missing": ", ".join(sorted(k.value for k in missing)),
            },
        )
    return stage


def relocation_dir(target: BuildTarget, settings: Settings) -> Path:
    """Absolute consumer directory for a target."""
    rel = target.relocation.format(foreign_project=settings.NATIVE_BRIDGE_FOREIGN_PROJECT)
    return settings.workspace / rel


def plan_artifacts(
    target: BuildTarget,
    compiled: CompileOutput,
    platform: PlatformProfile,
    settings: Settings,
) -> List[ArtifactSpec]:
    """ArtifactSpecs for one compiled target."""
    stage = get_stage(target)
    specs = stage.plan(target, compiled, platform, relocation_dir(target, settings))
    for s in specs:
        if ArtifactKind(s.kind) not in stage.outputs:
            raise ConfigurationError(
                f"Stage '{stage.name}' planned an undeclared '{s.kind}' artifact.",
                context={"target": target.name},
            )
    return specs


def planned_destinations(
    target: BuildTarget,
    platform: PlatformProfile,
    settings: Settings,
) -> List[Path]:
    """Consumer paths a target will write, known before anything compiles."""
    primary, secondary = expected_outputs(target, platform, settings)
    compiled = CompileOutput(
        target=target.name,
        output_dir=output_dir(target, settings),
        primary=primary,
        secondary=secondary,
    )
    return [Path(s.relocation_path) for s in plan_artifacts(target, compiled, platform, settings)]


def check_destinations(
    targets: Iterable[BuildTarget],
    platform: PlatformProfile,
    settings: Settings,
) -> None:
    """Reject two targets that would relocate onto the same consumer path."""
    owners: Dict[Path, str] = {}
    for target in targets:
        for dest in planned_destinations(target, platform, settings):
            key = Path(os.path.normpath(dest))
            owner = owners.get(key)
            if owner is not None and owner != target.name:
                raise ConfigurationError(
                    f"Targets '{owner}' and '{target.name}' relocate into the same path.",
                    context={"path": str(key), "targets": f"{owner}, {target.name}"},
                )
            owners[key] = target.name


def run_stage(
    target: BuildTarget,
    compiled: CompileOutput,
    platform: PlatformProfile,
    settings: Settings,
    runner: Optional[CommandRunner] = None,
    cancelled: Optional[threading.Event] = None,
) -> List[ArtifactRecord]:
    """Plan and relocate every artifact of a compiled target."""
    specs = plan_artifacts(target, compiled, platform, settings)
    return relocate_all(
        specs, runner=runner, strip_tool=settings.NATIVE_BRIDGE_STRIP, cancelled=cancelled,
    )
