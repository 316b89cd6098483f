"""
Relocation — copy compiler outputs into the layout the consumer expects.

The downstream build system does no discovery: it assumes each artifact
sits at one exact path.  Relocation therefore either produces that file
or fails loudly.  It never falls through silently.

Copies go through a temporary file in the destination directory followed
by an atomic replace, so re-running against the same compiler output
leaves the same bytes at the same path.
"""
import hashlib
import logging
import os
import shutil
import threading
from pathlib import Path
from typing import List, Optional

from native_bridge.core.inspect import read_elf_meta
from native_bridge.core.process import CommandRunner
from native_bridge.errors import ArtifactNotFound, BuildInterrupted, RelocationFailed
from native_bridge.io.schema import ArtifactRecord, ArtifactSpec, ElfMeta, PostProcess

logger = logging.getLogger(__name__)


def hash_file(path: Path) -> str:
    """SHA-256 of a file."""
    h = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(8192), b""):
            h.update(chunk)
    return h.hexdigest()


def resolve_source(spec: ArtifactSpec) -> Path:
    """
    First compiler output of *spec* that exists on disk.

    Candidates are tried in order, so a primary name that is missing on
    this platform falls back to the next one (e.g. ``.so`` → ``.dylib``).
    """
    for candidate in spec.outputs:
        path = Path(candidate)
        if path.is_file():
            return path
    raise ArtifactNotFound(
        f"No compiler output found for '{spec.target}' ({spec.kind}).",
        hint="The compiler reported success but produced none of the expected "
             "files; check the platform linker policy and the crate types.",
        context={
            "target": spec.target,
            "source_dir": spec.source_dir,
            "expected": ", ".join(Path(o).name for o in spec.outputs),
        },
    )


def _strip(path: Path, spec: ArtifactSpec, runner: CommandRunner, strip_tool: str) -> None:
    result = runner.run([strip_tool, str(path)], cwd=path.parent, timeout=60)
    if not result.ok:
        raise RelocationFailed(
            f"Stripping symbols for '{spec.target}' failed.",
            context={
                "target": spec.target,
                "command": result.command_line,
                "stderr": result.diagnostics(2000),
            },
        )


def _check_elf(elf: Optional[ElfMeta], spec: ArtifactSpec, dest: Path) -> None:
    """Reject ELF outputs the consumer could not use.  Non-ELF passes."""
    if elf is None:
        return
    if spec.post_process == PostProcess.STRIP_SYMBOLS and elf.has_symtab:
        raise RelocationFailed(
            f"'{dest.name}' still carries a symbol table after stripping.",
            context={"target": spec.target, "path": str(dest)},
        )
    if spec.post_process == PostProcess.RENAME_EXTENSION and not elf.has_dynsym:
        raise RelocationFailed(
            f"'{dest.name}' exports no dynamic symbols; the loader cannot bind it.",
            context={"target": spec.target, "path": str(dest)},
        )


def relocate(
    spec: ArtifactSpec,
    runner: Optional[CommandRunner] = None,
    strip_tool: str = "strip",
) -> ArtifactRecord:
    """
    Copy (and optionally strip) one artifact into its relocation path.

    Raises
    ------
    ArtifactNotFound
        None of ``spec.outputs`` exists.
    RelocationFailed
        The copy, the strip or the final rename failed.
    """
    source = resolve_source(spec)
    dest = Path(spec.relocation_path)
    tmp = dest.with_name(f".{dest.name}.partial")

    stripped = spec.post_process == PostProcess.STRIP_SYMBOLS
    if stripped and runner is None:
        raise RelocationFailed(
            f"Artifact '{dest.name}' needs stripping but no command runner was given.",
            context={"target": spec.target},
        )

    try:
        dest.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(source, tmp)
        shutil.copymode(source, tmp)
        if stripped:
            _strip(tmp, spec, runner, strip_tool)
        elf = read_elf_meta(tmp)
        _check_elf(elf, spec, dest)
        os.replace(tmp, dest)
        sha256 = hash_file(dest)
        size_bytes = dest.stat().st_size
    except OSError as e:
        raise RelocationFailed(
            f"Could not relocate '{source.name}' to '{dest}'.",
            context={"target": spec.target, "source": str(source), "error": str(e)},
        ) from e
    finally:
        if tmp.exists():
            tmp.unlink()

    logger.info("Relocated %s -> %s%s", source, dest, " (stripped)" if stripped else "")
    return ArtifactRecord(
        kind=spec.kind,
        path=str(dest),
        source=str(source),
        sha256=sha256,
        size_bytes=size_bytes,
        stripped=stripped,
        elf=elf,
    )


def relocate_all(
    specs: List[ArtifactSpec],
    runner: Optional[CommandRunner] = None,
    strip_tool: str = "strip",
    cancelled: Optional[threading.Event] = None,
) -> List[ArtifactRecord]:
    """
    Relocate every spec in order; the first failure propagates.

    *cancelled* is checked before each artifact, so an interrupt stops the
    remaining copies.
    """
    records = []
    for spec in specs:
        if cancelled is not None and cancelled.is_set():
            raise BuildInterrupted(context={"target": spec.target, "pending": spec.relocation_path})
        records.append(relocate(spec, runner=runner, strip_tool=strip_tool))
    return records
