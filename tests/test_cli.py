"""
Tests for the specctl CLI.
"""

import json

import pytest
import yaml

from specwatch import __version__
from specwatch.change_monitor.changelog import ChangelogWriter
from specwatch.change_monitor.health import HealthStatus, HealthStore
from specwatch.cli.specctl import create_parser, main
from specwatch.core.config import reload_config
from specwatch.core.models import ChangeKind, Severity

from helpers import classified_record, users_api


@pytest.fixture
def cli_env(monkeypatch, tmp_path, db_path):
    monkeypatch.setenv("STORE_DATABASE_PATH", db_path)
    monkeypatch.setenv("SCHEDULER_REGISTRY_PATH", str(tmp_path / "targets.yml"))
    reload_config()
    yield db_path
    monkeypatch.undo()
    reload_config()


def write_docs(tmp_path, old, new):
    old_path = tmp_path / "old.json"
    new_path = tmp_path / "new.yaml"
    old_path.write_text(json.dumps(old))
    new_path.write_text(yaml.safe_dump(new))
    return str(old_path), str(new_path)


class TestDiffCommand:
    """Test local document diffing."""

    def test_no_changes(self, tmp_path, capsys):
        old, new = write_docs(tmp_path, users_api(), users_api())

        assert main(["diff", old, new]) == 0
        assert "No changes" in capsys.readouterr().out

    def test_breaking_change(self, tmp_path, capsys):
        current = users_api()
        del current["paths"]["/users"]["post"]
        old, new = write_docs(tmp_path, users_api(), current)

        assert main(["diff", old, new]) == 0
        assert main(["diff", old, new, "--fail-on-breaking"]) == 1

        out = capsys.readouterr().out
        assert "severity: critical, breaking: True" in out
        assert "paths./users.post" in out

    def test_non_breaking_change_passes(self, tmp_path):
        current = users_api()
        current["info"]["description"] = "All about users"
        old, new = write_docs(tmp_path, users_api(), current)

        assert main(["diff", old, new, "--fail-on-breaking"]) == 0

    def test_missing_file(self, tmp_path, capsys):
        old, _ = write_docs(tmp_path, users_api(), users_api())

        assert main(["diff", old, str(tmp_path / "missing.json")]) == 2
        assert "Cannot load" in capsys.readouterr().err

    def test_invalid_document(self, tmp_path):
        bad = tmp_path / "bad.json"
        bad.write_text(json.dumps({"not": "an api"}))
        old, _ = write_docs(tmp_path, users_api(), users_api())

        assert main(["diff", old, str(bad)]) == 2


class TestOperationalCommands:
    """Test commands that read the database."""

    def test_version(self, capsys):
        assert main(["version"]) == 0
        assert f"specctl version {__version__}" in capsys.readouterr().out

    def test_no_command_prints_help(self, capsys):
        assert main([]) == 0
        assert "specwatch operational CLI" in capsys.readouterr().out

    def test_check_unknown_target(self, cli_env, capsys):
        assert main(["check", "nope"]) == 2
        assert "Unknown target" in capsys.readouterr().err

    def test_changelog(self, cli_env, capsys):
        changelog = ChangelogWriter(cli_env)
        changelog.write("users", "s1", "s2", [classified_record("info.version")])
        changelog.write(
            "users",
            "s2",
            "s3",
            [classified_record("paths./users.post", ChangeKind.REMOVED, Severity.CRITICAL, True)],
        )

        assert main(["changelog", "users", "--breaking"]) == 0

        out = capsys.readouterr().out
        assert "Changelog for users (1 entries)" in out
        assert "CRITICAL BREAKING  1 removal" in out

    def test_changelog_empty(self, cli_env, capsys):
        assert main(["changelog", "users"]) == 0
        assert "No changelog entries for users" in capsys.readouterr().out

    def test_health(self, cli_env, capsys):
        HealthStore(cli_env).record_failure("users", HealthStatus.UNREACHABLE, "connection refused")

        assert main(["health"]) == 0

        out = capsys.readouterr().out
        assert "[UNREACHABLE]" in out
        assert "1 failures: connection refused" in out

    def test_recover(self, cli_env, capsys):
        ChangelogWriter(cli_env).write("users", "s1", "s2", [classified_record("info.version")])

        assert main(["recover"]) == 0
        assert "Dispatched 1 pending changelog entries" in capsys.readouterr().out
        assert ChangelogWriter(cli_env).pending_dispatch() == []

    def test_parser(self):
        args = create_parser().parse_args(["changelog", "users", "--limit", "5", "--severity", "high"])
        assert (args.target_id, args.limit, args.severity) == ("users", 5, "high")
