"""
Shared pytest fixtures for native_bridge tests.

Provides a fake command runner that stands in for cargo, strip, dune and
make.  The fake cargo writes placeholder artifacts where the real one
would (``$CARGO_TARGET_DIR/<profile>/``), so the full compile → relocate
path runs without a Rust or OCaml toolchain.
"""
import threading
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence

import pytest

from native_bridge.config import Settings
from native_bridge.core.process import CommandResult
from native_bridge.policy.platform import ForeignRuntime, resolve_platform
from native_bridge.policy.targets import DEFAULT_TARGETS, TargetKind

SYMBOL_MARKER = b"+symbols"


class FakeRunner:
    """
    CommandRunner double.

    Attributes
    ----------
    calls : list of (argv, cwd, env)
        Every command, in the order it was run.
    fail_packages : dict
        cargo ``-p`` package → exit code to return instead of building.
    fail_commands : dict
        argv[0:2] joined by a space (e.g. ``"cargo test"``) → exit code.
    dylib_extensions : tuple
        Dynamic-library extensions the fake cargo emits for libraries.
    """

    def __init__(self, dylib_extensions=(".so",)):
        self.calls: List[tuple] = []
        self.fail_packages: Dict[str, int] = {}
        self.fail_commands: Dict[str, int] = {}
        self.dylib_extensions = tuple(dylib_extensions)
        self.emit_artifacts = True
        self.packages = {
            t.package: (t.crate_name, t.kind) for t in DEFAULT_TARGETS if t.package
        }
        self._lock = threading.Lock()

    # -- helpers ---------------------------------------------------------------

    def argv_of(self, tool: str) -> List[List[str]]:
        return [c[0] for c in self.calls if c[0][0] == tool]

    def commands(self) -> List[str]:
        return [" ".join(c[0]) for c in self.calls]

    def ran(self, prefix: str) -> bool:
        return any(cmd.startswith(prefix) for cmd in self.commands())

    # -- CommandRunner ---------------------------------------------------------

    def run(
        self,
        command: Sequence[str],
        *,
        cwd: Path,
        env: Optional[Mapping[str, str]] = None,
        timeout: Optional[int] = None,
    ) -> CommandResult:
        argv = [str(c) for c in command]
        with self._lock:
            self.calls.append((argv, Path(cwd), dict(env or {})))

        key = " ".join(argv[:2])
        if key in self.fail_commands:
            code = self.fail_commands[key]
            return CommandResult(command=argv, exit_code=code, stderr=f"{key}: failed")

        if argv[0] == "strip":
            path = Path(argv[-1])
            path.write_bytes(path.read_bytes().replace(SYMBOL_MARKER, b""))
            return CommandResult(command=argv, exit_code=0)

        if argv[:2] == ["cargo", "build"]:
            return self._cargo_build(argv, env or {})

        return CommandResult(command=argv, exit_code=0, stdout="ok\n")

    def _cargo_build(self, argv: List[str], env: Mapping[str, str]) -> CommandResult:
        package = argv[argv.index("-p") + 1] if "-p" in argv else None
        if package in self.fail_packages:
            return CommandResult(
                command=argv,
                exit_code=self.fail_packages[package],
                stderr=f"error[E0425]: cannot find value in {package}",
            )
        if not self.emit_artifacts or package is None:
            return CommandResult(command=argv, exit_code=0)

        profile = "release" if "--release" in argv else "debug"
        out_dir = Path(env["CARGO_TARGET_DIR"]) / profile
        out_dir.mkdir(parents=True, exist_ok=True)
        crate, kind = self.packages[package]
        if kind == TargetKind.EXECUTABLE:
            (out_dir / crate).write_bytes(b"exe:" + crate.encode() + SYMBOL_MARKER)
        else:
            (out_dir / f"lib{crate}.a").write_bytes(b"!<arch>\n" + crate.encode())
            for ext in self.dylib_extensions:
                (out_dir / f"lib{crate}{ext}").write_bytes(b"dylib:" + crate.encode() + ext.encode())
        return CommandResult(command=argv, exit_code=0, stderr="   Finished\n")


@pytest.fixture
def workspace(tmp_path) -> Path:
    ws = tmp_path / "ws"
    (ws / "src" / "batsat-ocaml").mkdir(parents=True)
    return ws


@pytest.fixture
def settings(workspace) -> Settings:
    return Settings(
        FLAGS="",
        NATIVE_BRIDGE_WORKSPACE=str(workspace),
        NATIVE_BRIDGE_TARGET_DIR=None,
        NATIVE_BRIDGE_REPORT_DIR=None,
        NATIVE_BRIDGE_MAX_WORKERS=1,
        NATIVE_BRIDGE_RUN_BENCHMARKS=False,
    )


@pytest.fixture
def linux():
    return resolve_platform("Linux")


@pytest.fixture
def darwin():
    return resolve_platform(
        "Darwin",
        ForeignRuntime(library="camlrun_shared", stdlib_dir=Path("/opt/ocaml/lib/ocaml")),
    )


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()
