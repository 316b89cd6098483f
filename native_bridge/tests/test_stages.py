"""
test_stages — artifact planning per stage and end-to-end relocation.

Tests verify invariant properties:
  - The foreign stub always lands as lib<crate>.a and dll<crate>.so.
  - The IPASIR shim is renamed to libipasir<solver>.a.
  - Stage wiring errors are configuration errors.
  - No two targets relocate onto the same consumer path.
"""
from pathlib import Path

import pytest

from native_bridge.core.compiler import compile_target
from native_bridge.core.stages import (
    STAGES,
    ArtifactKind,
    check_destinations,
    get_stage,
    plan_artifacts,
    planned_destinations,
    relocation_dir,
    run_stage,
)
from native_bridge.errors import ArtifactNotFound, ConfigurationError
from native_bridge.io.schema import PostProcess
from native_bridge.policy.targets import DEFAULT_TARGETS, BuildTarget, TargetKind

from conftest import SYMBOL_MARKER, FakeRunner

CORE, IPASIR, STUB, BIN = DEFAULT_TARGETS


def _names(specs):
    return [Path(s.relocation_path).name for s in specs]


class TestPlans:
    """Artifact names and destinations per stage."""

    def test_foreign_stub_names(self, settings, linux, fake_runner):
        """The stub lands as lib<crate>.a and dll<crate>.so."""
        compiled = compile_target(STUB, linux, settings, fake_runner)
        specs = plan_artifacts(STUB, compiled, linux, settings)
        assert _names(specs) == ["libbatsat_ocaml.a", "dllbatsat_ocaml.so"]
        assert specs[1].post_process == PostProcess.RENAME_EXTENSION
        assert [Path(o).name for o in specs[1].outputs] == [
            "libbatsat_ocaml.so", "libbatsat_ocaml.dylib",
        ]

    def test_foreign_stub_on_darwin_still_so(self, settings, darwin, fake_runner):
        """The loader DLL keeps .so on Darwin."""
        compiled = compile_target(STUB, darwin, settings, fake_runner)
        specs = plan_artifacts(STUB, compiled, darwin, settings)
        assert _names(specs)[1] == "dllbatsat_ocaml.so"

    def test_foreign_stub_goes_to_foreign_project(self, settings, linux, fake_runner):
        """Stub artifacts land in the OCaml project's src dir."""
        compiled = compile_target(STUB, linux, settings, fake_runner)
        for s in plan_artifacts(STUB, compiled, linux, settings):
            assert Path(s.relocation_path).parent == settings.workspace / "src" / "batsat-ocaml" / "src"

    def test_ipasir_rename(self, settings, linux, fake_runner):
        """The IPASIR shim is renamed to libipasir<solver>.a."""
        compiled = compile_target(IPASIR, linux, settings, fake_runner)
        (spec,) = plan_artifacts(IPASIR, compiled, linux, settings)
        assert Path(spec.relocation_path) == settings.workspace / "lib" / "ipasir" / "libipasirratsat.a"
        assert spec.kind == ArtifactKind.IPASIR_LIB.value

    def test_native_library_static_only_off_darwin(self, settings, linux, fake_runner):
        """Off Darwin only the static core library is relocated."""
        compiled = compile_target(CORE, linux, settings, fake_runner)
        assert _names(plan_artifacts(CORE, compiled, linux, settings)) == ["libratsat.a"]

    def test_native_library_adds_dylib_on_darwin(self, settings, darwin, fake_runner):
        """On Darwin the core dylib is relocated too."""
        compiled = compile_target(CORE, darwin, settings, fake_runner)
        assert _names(plan_artifacts(CORE, compiled, darwin, settings)) == [
            "libratsat.a", "libratsat.dylib",
        ]

    def test_executable_strip_follows_target(self, settings, linux, fake_runner):
        """Only targets marked strip produce a strip post-process."""
        compiled = compile_target(BIN, linux, settings, fake_runner)
        (spec,) = plan_artifacts(BIN, compiled, linux, settings)
        assert spec.post_process == PostProcess.STRIP_SYMBOLS

        unstripped = BuildTarget(
            name="tool", crate_name="ratsat", kind=TargetKind.EXECUTABLE,
            package="ratsat-bin", stage="executable", relocation="bin",
        )
        compiled = compile_target(unstripped, linux, settings, fake_runner)
        (spec,) = plan_artifacts(unstripped, compiled, linux, settings)
        assert spec.post_process == PostProcess.NONE


class TestStageLookup:
    """Stage registry lookups and wiring checks."""

    def test_every_default_target_has_a_stage(self):
        """Every default target resolves to its named stage."""
        for t in DEFAULT_TARGETS:
            assert get_stage(t).name == t.stage

    def test_unknown_stage(self):
        """An unknown stage name is a configuration error."""
        bad = BuildTarget(name="x", crate_name="x", stage="no-such-stage")
        with pytest.raises(ConfigurationError, match="unknown artifact stage"):
            get_stage(bad)

    def test_executable_cannot_feed_library_stage(self):
        """A stage's inputs must be kinds the target produces."""
        bad = BuildTarget(
            name="x", crate_name="x", kind=TargetKind.EXECUTABLE, stage="foreign-stub",
        )
        with pytest.raises(ConfigurationError) as exc_info:
            get_stage(bad)
        assert "static-lib" in exc_info.value.context["missing"]

    def test_registry_keys_match_names(self):
        """Registry keys equal stage names."""
        for name, stage in STAGES.items():
            assert stage.name == name

    def test_relocation_dir_formats_foreign_project(self, settings):
        """Relocation templates expand the foreign project path."""
        settings = settings.model_copy(update={"NATIVE_BRIDGE_FOREIGN_PROJECT": "bindings/ml"})
        assert relocation_dir(STUB, settings) == settings.workspace / "bindings" / "ml" / "src"


class TestRunStage:
    """Planning plus relocation for one compiled target."""

    def test_foreign_stub_from_dylib_only(self, settings, darwin):
        """A dylib-only build still yields dll<crate>.so."""
        runner = FakeRunner(dylib_extensions=(".dylib",))
        compiled = compile_target(STUB, darwin, settings, runner)
        records = run_stage(STUB, compiled, darwin, settings, runner)

        dest = settings.workspace / "src" / "batsat-ocaml" / "src"
        assert [Path(r.path) for r in records] == [
            dest / "libbatsat_ocaml.a", dest / "dllbatsat_ocaml.so",
        ]
        assert (dest / "dllbatsat_ocaml.so").read_bytes() == b"dylib:batsat_ocaml.dylib"

    def test_missing_dylib_is_not_found(self, settings, linux):
        """A stub with no dynamic library is ArtifactNotFound."""
        runner = FakeRunner(dylib_extensions=())
        compiled = compile_target(STUB, linux, settings, runner)
        with pytest.raises(ArtifactNotFound):
            run_stage(STUB, compiled, linux, settings, runner)

    def test_executable_stripped_in_place(self, settings, linux, fake_runner):
        """The relocated binary is stripped; the compiler output is not."""
        compiled = compile_target(BIN, linux, settings, fake_runner)
        (record,) = run_stage(BIN, compiled, linux, settings, fake_runner)

        assert record.stripped
        relocated = Path(record.path)
        assert relocated == settings.workspace / "bin" / "ratsat"
        assert SYMBOL_MARKER not in relocated.read_bytes()
        assert SYMBOL_MARKER in compiled.primary.read_bytes()


class TestDestinations:
    """Consumer paths planned before anything compiles."""

    def test_default_graph_has_no_collisions(self, settings, linux, darwin):
        """The default targets never share a destination on any platform."""
        check_destinations(DEFAULT_TARGETS, linux, settings)
        check_destinations(DEFAULT_TARGETS, darwin, settings)

    def test_planned_matches_relocated(self, settings, darwin):
        """Planned destinations are exactly where relocation writes."""
        runner = FakeRunner(dylib_extensions=(".dylib",))
        for target in DEFAULT_TARGETS:
            compiled = compile_target(target, darwin, settings, runner)
            records = run_stage(target, compiled, darwin, settings, runner)
            assert planned_destinations(target, darwin, settings) == [Path(r.path) for r in records]

    def test_literal_and_templated_dirs_collide(self, settings, linux):
        """A literal path and a templated one naming the same dir collide."""
        literal = BuildTarget(
            name="stub-a", crate_name="batsat_ocaml", stage="foreign-stub",
            relocation="src/batsat-ocaml/src",
        )
        templated = BuildTarget(
            name="stub-b", crate_name="batsat_ocaml", stage="foreign-stub",
            relocation="{foreign_project}/src",
        )
        with pytest.raises(ConfigurationError, match="same path") as exc_info:
            check_destinations([literal, templated], linux, settings)
        stub_dir = settings.workspace / "src" / "batsat-ocaml" / "src"
        assert exc_info.value.context["path"] == str(stub_dir / "libbatsat_ocaml.a")
        assert exc_info.value.context["targets"] == "stub-a, stub-b"

    def test_renamed_output_collides(self, settings, linux):
        """The IPASIR rename is taken into account when comparing paths."""
        shim = BuildTarget(
            name="shim", crate_name="ratsat_ipasir", stage="ipasir-plugin", relocation="lib",
        )
        plain = BuildTarget(name="plain", crate_name="ipasirratsat", relocation="lib")
        with pytest.raises(ConfigurationError) as exc_info:
            check_destinations([shim, plain], linux, settings)
        assert exc_info.value.context["path"] == str(settings.workspace / "lib" / "libipasirratsat.a")

    def test_same_dir_different_files_allowed(self, settings, linux):
        """Targets may share a directory when their file names differ."""
        check_destinations(
            [
                BuildTarget(name="a", crate_name="alpha", relocation="lib"),
                BuildTarget(name="b", crate_name="beta", relocation="lib"),
            ],
            linux,
            settings,
        )

    def test_darwin_dylib_collision(self, settings, linux, darwin):
        """A destination that exists only on Darwin collides only there."""
        lib = BuildTarget(name="lib", crate_name="solver", relocation="out")
        renamed = BuildTarget(
            name="renamed", crate_name="libsolver.dylib", kind=TargetKind.EXECUTABLE,
            stage="executable", relocation="out",
        )
        check_destinations([lib, renamed], linux, settings)
        with pytest.raises(ConfigurationError):
            check_destinations([lib, renamed], darwin, settings)
