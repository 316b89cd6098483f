"""
Targets — the static build graph and the named CLI targets.

Definitions are loaded once when the orchestrator starts.  The graph is
validated up front: unknown dependencies and cycles are configuration
errors, raised before anything builds.  Destination collisions depend on
the platform and settings and are checked in ``core.stages``.
"""
from dataclasses import dataclass, replace
from enum import Enum, unique
from typing import Dict, Iterable, List, Optional, Tuple

from native_bridge.errors import ConfigurationError


@unique
class BuildProfile(str, Enum):
    DEBUG = "debug"
    RELEASE = "release"


@unique
class TargetKind(str, Enum):
    LIBRARY = "library"
    EXECUTABLE = "executable"


@dataclass(frozen=True)
class BuildTarget:
    """One independently buildable unit of the graph."""

    name: str
    crate_name: str                           # logical library / binary name
    kind: TargetKind = TargetKind.LIBRARY
    depends_on: Tuple[str, ...] = ()
    profile: BuildProfile = BuildProfile.RELEASE
    extra_flags: Tuple[str, ...] = ()
    package: Optional[str] = None             # cargo -p selector
    stage: str = "native-library"             # artifact stage, see core/stages.py
    relocation: str = "lib"                   # consumer dir, relative to workspace
    strip: bool = False

    def with_profile(self, profile: BuildProfile) -> "BuildTarget":
        return replace(self, profile=profile)


# ── Known targets ────────────────────────────────────────────────────────────

SOLVER_CORE = "solver-core"
IPASIR = "ipasir"
FOREIGN_STUB = "foreign-stub"
SOLVER_BIN = "solver-bin"

DEFAULT_TARGETS: Tuple[BuildTarget, ...] = (
    BuildTarget(
        name=SOLVER_CORE,
        crate_name="ratsat",
        package="ratsat",
        stage="native-library",
        relocation="lib",
    ),
    BuildTarget(
        name=IPASIR,
        crate_name="ratsat_ipasir",
        package="ratsat-ipasir",
        depends_on=(SOLVER_CORE,),
        stage="ipasir-plugin",
        relocation="lib/ipasir",
    ),
    BuildTarget(
        name=FOREIGN_STUB,
        crate_name="batsat_ocaml",
        package="batsat-ocaml",
        depends_on=(SOLVER_CORE,),
        stage="foreign-stub",
        relocation="{foreign_project}/src",
    ),
    BuildTarget(
        name=SOLVER_BIN,
        crate_name="ratsat",
        kind=TargetKind.EXECUTABLE,
        package="ratsat-bin",
        depends_on=(IPASIR, FOREIGN_STUB),
        stage="executable",
        relocation="bin",
        strip=True,
    ),
)


@dataclass(frozen=True)
class NamedCommand:
    """A CLI command: which targets it builds and what runs afterwards."""

    name: str
    targets: Tuple[str, ...] = ()
    profile: BuildProfile = BuildProfile.RELEASE
    verify: bool = False
    description: str = ""


COMMANDS: Dict[str, NamedCommand] = {
    c.name: c
    for c in (
        NamedCommand("build", (SOLVER_BIN,), description="Full build chain (release)"),
        NamedCommand(
            "build-debug", (SOLVER_BIN,), profile=BuildProfile.DEBUG,
            description="Full build chain (debug)",
        ),
        NamedCommand("build-ipasir", (IPASIR,), description="Solver core + IPASIR shim"),
        NamedCommand(
            "build-foreign-stub", (FOREIGN_STUB,),
            description="Solver core + OCaml stub library",
        ),
        NamedCommand("check", description="Type-check the cargo workspace"),
        NamedCommand("clean", description="Clean cargo and dune outputs"),
        NamedCommand(
            "test", (SOLVER_BIN,), verify=True,
            description="Full build, then native and downstream test suites",
        ),
        NamedCommand("test-native", description="Native test suite only"),
        NamedCommand("doc", description="Build the OCaml binding documentation"),
    )
}


def index_targets(targets: Iterable[BuildTarget]) -> Dict[str, BuildTarget]:
    """Index targets by name and validate the graph."""
    by_name: Dict[str, BuildTarget] = {}
    for t in targets:
        if t.name in by_name:
            raise ConfigurationError(
                f"Duplicate build target '{t.name}'.",
                context={"target": t.name},
            )
        by_name[t.name] = t

    for t in by_name.values():
        for dep in t.depends_on:
            if dep not in by_name:
                raise ConfigurationError(
                    f"Target '{t.name}' depends on unknown target '{dep}'.",
                    context={"target": t.name, "dependency": dep},
                )
        if t.strip and t.kind != TargetKind.EXECUTABLE:
            raise ConfigurationError(
                f"Target '{t.name}' requests symbol stripping but is a library.",
                hint="Only user-facing executables may be stripped; "
                     "the foreign loader needs library symbols.",
                context={"target": t.name},
            )

    topological_waves(by_name)  # raises on cycles
    return by_name


def dependency_closure(by_name: Dict[str, BuildTarget], requested: Iterable[str]) -> List[str]:
    """Requested targets plus everything they transitively depend on."""
    closure: List[str] = []
    stack = list(requested)
    while stack:
        name = stack.pop()
        if name in closure:
            continue
        if name not in by_name:
            raise ConfigurationError(
                f"Unknown build target '{name}'.",
                hint=f"Known targets: {', '.join(sorted(by_name))}",
                context={"target": name},
            )
        closure.append(name)
        stack.extend(by_name[name].depends_on)
    return [n for n in by_name if n in closure]


def dependents_of(by_name: Dict[str, BuildTarget], name: str) -> List[str]:
    """Every target that transitively depends on *name*, in declaration order."""
    found: set = set()
    frontier = [name]
    while frontier:
        current = frontier.pop()
        for t in by_name.values():
            if current in t.depends_on and t.name not in found:
                found.add(t.name)
                frontier.append(t.name)
    return [n for n in by_name if n in found]


def topological_waves(
    by_name: Dict[str, BuildTarget],
    subset: Optional[Iterable[str]] = None,
) -> List[List[str]]:
    """
    Group targets into waves (Kahn's algorithm).

    Every target in wave N depends only on targets in waves < N, so the
    members of one wave are independent of each other.  Within a wave the
    declaration order is kept.
    """
    names = list(subset) if subset is not None else list(by_name)
    remaining = {n: {d for d in by_name[n].depends_on if d in names} for n in names}
    waves: List[List[str]] = []
    while remaining:
        ready = [n for n in names if n in remaining and not remaining[n]]
        if not ready:
            raise ConfigurationError(
                "Build target graph contains a cycle.",
                context={"targets": ", ".join(sorted(remaining))},
            )
        waves.append(ready)
        for n in ready:
            del remaining[n]
        for deps in remaining.values():
            deps.difference_update(ready)
    return waves
