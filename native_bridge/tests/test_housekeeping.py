"""
test_housekeeping — clean and doc commands.
"""
import logging
import shutil

import pytest

from native_bridge.core.housekeeping import build_docs, clean
from native_bridge.errors import CommandFailed, ErrorCode


class TestClean:

    def test_cargo_then_dune(self, settings, fake_runner):
        """clean runs cargo clean then dune clean."""
        outcome = clean(settings, fake_runner)
        assert fake_runner.commands() == ["cargo clean", "dune clean"]
        assert outcome.tolerated_failures == []

    def test_dune_failure_tolerated_and_logged(self, settings, fake_runner, caplog):
        """A dune clean failure is recorded and logged once at WARNING."""
        fake_runner.fail_commands["dune clean"] = 1
        with caplog.at_level(logging.WARNING, logger="native_bridge.core.housekeeping"):
            outcome = clean(settings, fake_runner)

        assert outcome.tolerated_failures == [{
            "command": "dune clean",
            "returncode": "1",
            "diagnostics": "dune clean: failed",
        }]
        warnings = [r for r in caplog.records if r.levelno == logging.WARNING]
        assert len(warnings) == 1
        assert "Secondary clean (dune) failed" in warnings[0].getMessage()

    def test_cargo_failure_is_fatal(self, settings, fake_runner):
        """A cargo clean failure is fatal and skips dune."""
        fake_runner.fail_commands["cargo clean"] = 101
        with pytest.raises(CommandFailed) as exc_info:
            clean(settings, fake_runner)
        assert exc_info.value.code == ErrorCode.COMMAND
        assert not fake_runner.ran("dune")

    def test_missing_foreign_project_skips_dune(self, settings, fake_runner):
        """Without the OCaml project only cargo clean runs."""
        shutil.rmtree(settings.foreign_project)
        clean(settings, fake_runner)
        assert fake_runner.commands() == ["cargo clean"]


class TestDocs:

    def test_doc_alias(self, settings, fake_runner):
        """doc builds the @doc alias in the OCaml project."""
        build_docs(settings, fake_runner)
        (argv, cwd, _), = fake_runner.calls
        assert argv == ["dune", "build", "@doc"]
        assert cwd == settings.foreign_project

    def test_doc_failure(self, settings, fake_runner):
        """A failed doc build is CommandFailed."""
        fake_runner.fail_commands["dune build"] = 1
        with pytest.raises(CommandFailed):
            build_docs(settings, fake_runner)
