"""
Inspect — minimal ELF facts about relocated artifacts.

Only presence checks: is it ELF, does it still carry a symbol table, does
it export dynamic symbols.  Non-ELF files (Mach-O on Darwin, test fakes)
yield None and are not judged.
"""
import logging
from pathlib import Path
from typing import List, Optional

from elftools.common.exceptions import ELFError
from elftools.elf.elffile import ELFFile

from native_bridge.io.schema import ElfMeta

logger = logging.getLogger(__name__)

ELF_MAGIC = b"\x7fELF"


def is_elf(path: Path) -> bool:
    with open(path, "rb") as f:
        return f.read(4) == ELF_MAGIC


def read_elf_meta(path: Path) -> Optional[ElfMeta]:
    """ELF metadata for *path*, or None when the file is not ELF."""
    if not is_elf(path):
        return None
    try:
        with open(path, "rb") as f:
            elf = ELFFile(f)
            names: List[str] = [s.name for s in elf.iter_sections()]
            return ElfMeta(
                elf_type=str(elf.header["e_type"]),
                machine=str(elf.header["e_machine"]),
                has_symtab=".symtab" in names,
                has_dynsym=".dynsym" in names,
                debug_sections=sorted(n for n in names if n.startswith(".debug_")),
            )
    except ELFError as e:
        logger.warning("ELF parse failed for %s: %s", path, e)
        return None
