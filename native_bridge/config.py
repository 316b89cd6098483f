"""
Build configuration, sourced from the environment (and an optional .env).
"""
import shlex
from pathlib import Path
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Orchestrator settings"""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    # Extra compiler flags, appended verbatim to every cargo invocation
    FLAGS: str = ""

    # Layout
    NATIVE_BRIDGE_WORKSPACE: str = "."
    NATIVE_BRIDGE_TARGET_DIR: Optional[str] = None  # defaults to <workspace>/target
    NATIVE_BRIDGE_FOREIGN_PROJECT: str = "src/batsat-ocaml"
    NATIVE_BRIDGE_BENCH_DIR: str = "benchs"
    NATIVE_BRIDGE_REPORT_DIR: Optional[str] = None

    # Tools
    NATIVE_BRIDGE_CARGO: str = "cargo"
    NATIVE_BRIDGE_DUNE: str = "dune"
    NATIVE_BRIDGE_STRIP: str = "strip"
    NATIVE_BRIDGE_MAKE: str = "make"

    # Foreign runtime (OCaml) embedding
    NATIVE_BRIDGE_RUNTIME_LIB: str = "camlrun_shared"
    NATIVE_BRIDGE_RUNTIME_LIBDIR: Optional[str] = None  # discovered when unset

    # Execution
    NATIVE_BRIDGE_TIMEOUT: int = 1800  # seconds, per child process
    NATIVE_BRIDGE_MAX_WORKERS: int = 1
    NATIVE_BRIDGE_RUN_BENCHMARKS: bool = False

    @property
    def extra_flags(self) -> List[str]:
        """FLAGS split into argv tokens; empty when unset."""
        return shlex.split(self.FLAGS)

    @property
    def workspace(self) -> Path:
        return Path(self.NATIVE_BRIDGE_WORKSPACE).resolve()

    @property
    def target_dir(self) -> Path:
        if self.NATIVE_BRIDGE_TARGET_DIR:
            return Path(self.NATIVE_BRIDGE_TARGET_DIR).resolve()
        return self.workspace / "target"

    @property
    def foreign_project(self) -> Path:
        return self.workspace / self.NATIVE_BRIDGE_FOREIGN_PROJECT

    @property
    def bench_dir(self) -> Path:
        return self.workspace / self.NATIVE_BRIDGE_BENCH_DIR

    @property
    def report_dir(self) -> Optional[Path]:
        if self.NATIVE_BRIDGE_REPORT_DIR is None:
            return None
        return Path(self.NATIVE_BRIDGE_REPORT_DIR).resolve()
