"""
Platform — host classification and the linker policy table.

The policy is data: each OS class maps to a row saying which extra link
flags are needed and whether the foreign runtime's library directory must
be put on the search path.  Supporting a new platform family is a table
change, not a new branch in the build steps.

``resolve_platform`` is pure and total.  The resulting PlatformProfile is
frozen and is passed explicitly to every component that needs it.
"""
from dataclasses import dataclass
from enum import Enum, unique
from pathlib import Path
from typing import Callable, Dict, Optional, Tuple


@unique
class OsClass(str, Enum):
    DARWIN = "darwin"
    OTHER = "other"


@dataclass(frozen=True)
class ForeignRuntime:
    """The runtime whose module loader binds the stub library."""

    name: str = "ocaml"
    library: str = "camlrun_shared"
    stdlib_dir: Path = Path("/usr/local/lib/ocaml")


@dataclass(frozen=True)
class PlatformProfile:
    """Resolved once per invocation; never mutated."""

    os_class: OsClass
    dylib_extension: str
    link_flags: Tuple[str, ...] = ()
    runtime_search_path: Optional[Path] = None

    @property
    def is_darwin(self) -> bool:
        return self.os_class == OsClass.DARWIN

    def rustflags(self) -> Tuple[str, ...]:
        """Link flags and search path rendered as rustc ``-C link-arg`` pairs."""
        args = []
        if self.runtime_search_path is not None:
            args += ["-C", f"link-arg=-L{self.runtime_search_path}"]
            args += ["-C", f"link-arg=-Wl,-rpath,{self.runtime_search_path}"]
        for flag in self.link_flags:
            args += ["-C", f"link-arg={flag}"]
        return tuple(args)


@dataclass(frozen=True)
class _PolicyRow:
    dylib_extension: str
    link_flags: Callable[[ForeignRuntime], Tuple[str, ...]]
    inject_search_path: bool


# ── Policy table ─────────────────────────────────────────────────────────────

POLICY: Dict[OsClass, _PolicyRow] = {
    # Darwin's dyld needs the embedding runtime referenced explicitly at link time.
    OsClass.DARWIN: _PolicyRow(
        dylib_extension=".dylib",
        link_flags=lambda rt: (f"-l{rt.library}",),
        inject_search_path=True,
    ),
    OsClass.OTHER: _PolicyRow(
        dylib_extension=".so",
        link_flags=lambda rt: (),
        inject_search_path=False,
    ),
}

# platform.system() values that behave like Darwin for dynamic linking
DARWIN_LIKE_SYSTEMS = frozenset({"darwin", "ios", "ipados", "tvos", "watchos"})


def classify_host(system: Optional[str]) -> OsClass:
    """Map a ``platform.system()`` value to an OS class.  Unknown → OTHER."""
    if system and system.strip().lower() in DARWIN_LIKE_SYSTEMS:
        return OsClass.DARWIN
    return OsClass.OTHER


def resolve_platform(
    system: Optional[str],
    runtime: Optional[ForeignRuntime] = None,
) -> PlatformProfile:
    """
    Resolve the PlatformProfile for a host.

    Parameters
    ----------
    system : str or None
        Host OS name as reported by ``platform.system()``.
    runtime : ForeignRuntime, optional
        Runtime to link against on Darwin-like hosts.  Defaults to
        ``ForeignRuntime()``.
    """
    if runtime is None:
        runtime = ForeignRuntime()

    os_class = classify_host(system)
    row = POLICY[os_class]
    return PlatformProfile(
        os_class=os_class,
        dylib_extension=row.dylib_extension,
        link_flags=row.link_flags(runtime),
        runtime_search_path=runtime.stdlib_dir if row.inject_search_path else None,
    )
