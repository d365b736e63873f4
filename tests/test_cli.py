"""Tests for CLI commands.

These tests verify that all CLI commands are registered and run end to end
against a temporary database.
"""

import json

import pytest

from inbox_reconciler.runner.main import create_cli, main

RECORDS_YAML = """
teams:
  - {id: team-1, base_currency: EUR}
transactions:
  - {id: txn-1, team_id: team-1, name: COFFEE SHOP, amount: -23.45, currency: EUR,
     date: 2024-01-15, embedding: [1.0, 0.0, 0.0, 0.0]}
documents:
  - {id: doc-1, team_id: team-1, display_name: Coffee Shop, amount: 23.45, currency: EUR,
     date: 2024-01-15, document_type: expense,
     embedding: [1.0, 0.0, 0.0, 0.0]}
"""


class TestCLICommandRegistry:
    """Tests for CLI command registration."""

    def test_all_commands_registered(self):
        parser = create_cli()

        subparsers_action = None
        for action in parser._actions:
            if action.dest == "command":
                subparsers_action = action
                break

        assert subparsers_action is not None
        commands = set(subparsers_action.choices.keys())
        assert commands == {
            "init-config",
            "load",
            "match-document",
            "match-transaction",
            "suggest",
            "calibration",
            "confirm",
            "decline",
            "unmatch",
            "expire",
            "reconcile",
            "status",
        }

    def test_reconcile_options(self):
        parser = create_cli()
        args = parser.parse_args(["reconcile", "--team", "t", "--dry-run", "--limit", "5"])
        assert args.dry_run is True
        assert args.limit == 5

    def test_suggest_requires_one_source(self):
        parser = create_cli()
        with pytest.raises(SystemExit):
            parser.parse_args(["suggest", "--team", "t"])

    def test_global_options(self):
        args = create_cli().parse_args(["-c", "x.yaml", "-v", "status", "--team", "t"])
        assert str(args.config) == "x.yaml"
        assert args.verbose is True


class TestCLICommands:
    """End-to-end command runs."""

    @pytest.fixture
    def config_path(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(f"state_db_path: {tmp_path / 'state.db'}\n")
        records = tmp_path / "records.yaml"
        records.write_text(RECORDS_YAML)
        assert main(["-c", str(path), "load", str(records)]) == 0
        return path

    def run(self, capsys, config_path, *args) -> tuple[int, str]:
        capsys.readouterr()
        code = main(["-c", str(config_path), *args])
        return code, capsys.readouterr().out

    def test_no_command(self):
        assert main([]) == 1

    def test_init_config(self, tmp_path):
        path = tmp_path / "config.yaml"
        assert main(["-c", str(path), "init-config"]) == 0
        assert path.exists()
        assert main(["-c", str(path), "init-config"]) == 1
        assert main(["-c", str(path), "init-config", "--force"]) == 0

    def test_invalid_config(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("suggestions:\n  expire_after_days: 0\n")
        assert main(["-c", str(path), "status", "--team", "t"]) == 1

    def test_load_missing_file(self, tmp_path, config_path):
        assert main(["-c", str(config_path), "load", str(tmp_path / "nope.yaml")]) == 1

    def test_match_document(self, capsys, config_path):
        code, out = self.run(
            capsys, config_path, "match-document", "--team", "team-1", "--document-id", "doc-1"
        )

        assert code == 0
        result = json.loads(out)
        assert result["transactionId"] == "txn-1"
        assert result["matchType"] == "high_confidence"

    def test_match_transaction(self, capsys, config_path):
        code, out = self.run(
            capsys, config_path, "match-transaction", "--team", "team-1", "--transaction-id", "txn-1"
        )
        assert code == 0
        assert json.loads(out)["documentId"] == "doc-1"

    def test_match_unknown_document(self, capsys, config_path):
        code, out = self.run(
            capsys, config_path, "match-document", "--team", "team-1", "--document-id", "nope"
        )
        assert code == 0
        assert json.loads(out) is None

    def test_suggest_then_confirm(self, capsys, config_path):
        code, out = self.run(
            capsys, config_path, "suggest", "--team", "team-1", "--document-id", "doc-1"
        )
        assert code == 0
        suggestion = json.loads(out)
        assert suggestion["status"] == "pending"

        code, out = self.run(
            capsys,
            config_path,
            "confirm",
            "--team",
            "team-1",
            "--suggestion-id",
            str(suggestion["id"]),
            "--user",
            "alice",
        )
        assert code == 0
        assert json.loads(out)["status"] == "confirmed"

        code, _ = self.run(
            capsys,
            config_path,
            "decline",
            "--team",
            "team-1",
            "--suggestion-id",
            str(suggestion["id"]),
        )
        assert code == 1

    def test_calibration(self, capsys, config_path):
        code, out = self.run(capsys, config_path, "calibration", "--team", "team-1")
        assert code == 0
        assert json.loads(out)["calibratedSuggestedThreshold"] == 0.6

    def test_expire(self, capsys, config_path):
        code, out = self.run(capsys, config_path, "expire", "--team", "team-1", "--days", "1")
        assert code == 0
        assert json.loads(out) == {"expired": 0}

    def test_reconcile_and_status(self, capsys, config_path):
        code, out = self.run(capsys, config_path, "reconcile", "--team", "team-1")
        assert code == 0
        assert "Reconciliation completed successfully" in out

        code, out = self.run(capsys, config_path, "status", "--team", "team-1")
        assert code == 0
        assert "Documents total:        1" in out

    def test_reconcile_dry_run(self, capsys, config_path):
        code, out = self.run(capsys, config_path, "reconcile", "--team", "team-1", "--dry-run")
        assert code == 0
        assert "DRY RUN" in out
