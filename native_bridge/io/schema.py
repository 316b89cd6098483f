"""
Schema — Pydantic models for per-invocation build records.

One receipt per invocation: build_receipt.json.  Nothing here outlives
the process except that file, which is overwritten on every run.

Runtime contract fields (present in every receipt):
  package_name, package_version, schema_version.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from native_bridge import PACKAGE_NAME, SCHEMA_VERSION, __version__


def now_iso() -> str:
    """Current UTC time as ISO 8601 string."""
    return datetime.now(timezone.utc).isoformat()


# =============================================================================
# Enums
# =============================================================================

class TargetStatus(str, Enum):
    """Lifecycle state of one BuildTarget within a run."""
    PENDING = "PENDING"
    BUILDING = "BUILDING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (TargetStatus.SUCCEEDED, TargetStatus.FAILED)


class PostProcess(str, Enum):
    """Work applied to an artifact on its way to the consumer."""
    NONE = "none"
    STRIP_SYMBOLS = "strip-symbols"
    RENAME_EXTENSION = "rename-extension"


class StageStatus(str, Enum):
    """Status of a verification stage."""
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"


# =============================================================================
# Artifacts
# =============================================================================

class ArtifactSpec(BaseModel):
    """
    Where one compiler output comes from and where the consumer wants it.

    ``outputs`` lists the canonical compiler output paths in preference
    order; the first one that exists is relocated.
    """
    target: str
    kind: str
    source_dir: str
    outputs: List[str]
    relocation_path: str
    post_process: PostProcess = PostProcess.NONE


class ElfMeta(BaseModel):
    """Minimal ELF facts, presence checks only."""
    elf_type: str = ""  # ET_EXEC, ET_DYN, ET_REL
    machine: str = ""  # EM_X86_64, EM_AARCH64, ...
    has_symtab: bool = False
    has_dynsym: bool = False
    debug_sections: List[str] = []


class ArtifactRecord(BaseModel):
    """A relocated artifact as the consumer will see it."""
    kind: str
    path: str
    source: str
    sha256: str
    size_bytes: int
    stripped: bool = False
    elf: Optional[ElfMeta] = None  # None for non-ELF outputs


# =============================================================================
# Build results
# =============================================================================

class Transition(BaseModel):
    """One state change of one target."""
    target: str
    status: TargetStatus
    at: str = Field(default_factory=now_iso)


class BuildResult(BaseModel):
    """Outcome of one BuildTarget."""
    target: str
    status: TargetStatus = TargetStatus.PENDING
    command: Optional[str] = None
    diagnostics: str = ""
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    duration_ms: int = 0
    started_at: Optional[str] = None
    finished_at: Optional[str] = None
    artifacts: List[ArtifactRecord] = []


# =============================================================================
# Verification
# =============================================================================

class VerificationStageResult(BaseModel):
    """Result of one ordered test stage (native, benchmarks, downstream)."""
    stage: str
    command: str = ""
    exit_code: Optional[int] = None
    status: StageStatus = StageStatus.SKIPPED
    duration_ms: int = 0
    diagnostics: str = ""


# =============================================================================
# Top-level receipt
# =============================================================================

class PlatformInfo(BaseModel):
    """Serialized view of the PlatformProfile used for the run."""
    os_class: str
    dylib_extension: str
    link_flags: List[str] = []
    runtime_search_path: Optional[str] = None


class RunReceipt(BaseModel):
    """Single authoritative record of one orchestrator invocation."""

    package_name: str = PACKAGE_NAME
    package_version: str = __version__
    schema_version: str = SCHEMA_VERSION

    command: str
    platform: PlatformInfo
    requested: List[str] = []
    extra_flags: List[str] = []

    builds: List[BuildResult] = []
    transitions: List[Transition] = []
    verification: List[VerificationStageResult] = []
    tolerated_failures: List[Dict[str, str]] = []

    status: str = "RUNNING"  # RUNNING, SUCCESS, FAILED, INTERRUPTED
    exit_code: Optional[int] = None
    failure: Optional[Dict[str, object]] = None

    created_at: str = Field(default_factory=now_iso)
    finished_at: Optional[str] = None

    def compute_status(self) -> str:
        """Derive run status from build and verification results."""
        if self.failure is not None and self.failure.get("code") == "E_INTERRUPTED":
            return "INTERRUPTED"
        if any(b.status != TargetStatus.SUCCEEDED for b in self.builds):
            return "FAILED"
        if any(v.status == StageStatus.FAILED for v in self.verification):
            return "FAILED"
        if self.failure is not None:
            return "FAILED"
        return "SUCCESS"
