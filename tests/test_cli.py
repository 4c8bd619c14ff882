"""Tests for the command-line interface."""

import json

import pytest
import yaml

from bizops_automation import __version__
from bizops_automation import cli as cli_module
from bizops_automation.cli import build_parser, main
from bizops_automation.core import SQLiteTabularStore


@pytest.fixture(autouse=True)
def quiet_logging(monkeypatch):
    """Keep commands from reconfiguring the root logger during tests."""
    monkeypatch.setattr(cli_module, "setup_logging", lambda config=None: None)


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "bizops.db")


class TestCliParsing:
    """Tests for the argument parsing logic."""

    def test_no_args_prints_help(self, capsys):
        """Test that running with no arguments prints help."""
        assert main([]) == 0
        assert "usage: bizops-automation" in capsys.readouterr().out

    def test_version_flag(self, capsys):
        """Test the -v / --version flag."""
        with pytest.raises(SystemExit) as e:
            main(["--version"])
        assert e.value.code == 0
        assert __version__ in capsys.readouterr().out

    def test_common_options(self):
        """Test the shared options are accepted by every engine command."""
        args = build_parser().parse_args(["sweep", "overdue", "--db", "x.db", "-d"])

        assert args.command == "sweep"
        assert args.which == "overdue"
        assert args.db == "x.db"
        assert args.debug is True

    def test_sweep_defaults_to_all(self):
        """Test the sweep command runs every sweep by default."""
        assert build_parser().parse_args(["sweep"]).which == "all"

    def test_invalid_sweep_name(self):
        """Test an unknown sweep name is rejected by argparse."""
        with pytest.raises(SystemExit):
            build_parser().parse_args(["sweep", "weekly"])


class TestInitConfig:
    """Tests for the init-config command."""

    def test_writes_yaml(self, tmp_path):
        """Test a default config file is written."""
        output = tmp_path / "conf" / "bizops.yaml"

        assert main(["init-config", "-o", str(output)]) == 0

        data = yaml.safe_load(output.read_text(encoding="utf-8"))
        assert data["store"] == {"backend": "sqlite", "path": "bizops.db"}
        assert data["seed_defaults"] is True
        assert data["sweep"]["lookahead_days"] == 3

    def test_refuses_to_overwrite(self, tmp_path, capsys):
        """Test an existing file is kept unless --force is given."""
        output = tmp_path / "bizops.yaml"
        output.write_text("keep: me\n", encoding="utf-8")

        assert main(["init-config", "-o", str(output)]) == 1
        assert "already exists" in capsys.readouterr().out
        assert output.read_text(encoding="utf-8") == "keep: me\n"

        assert main(["init-config", "-o", str(output), "--force"]) == 0
        assert "keep" not in yaml.safe_load(output.read_text(encoding="utf-8"))


class TestRulesCommand:
    """Tests for the rules command."""

    def test_empty_listing(self, db_path, capsys):
        """Test an empty store reports no rules."""
        assert main(["rules", "--db", db_path]) == 0
        assert "No automation rules configured" in capsys.readouterr().out

    def test_add_and_disable(self, tmp_path, db_path, capsys):
        """Test rules are created from YAML and can be deactivated."""
        rules_file = tmp_path / "rules.yaml"
        rules_file.write_text(
            yaml.safe_dump(
                [
                    {
                        "id": "late-fee",
                        "name": "Late fee",
                        "trigger": {"type": "invoice_overdue"},
                        "actions": [{"type": "apply_late_fee", "parameters": {"fee_percentage": 2}}],
                    }
                ]
            ),
            encoding="utf-8",
        )

        assert main(["rules", "--db", db_path, "--add", str(rules_file)]) == 0
        assert "Created rule Late fee" in capsys.readouterr().out

        assert main(["rules", "--db", db_path, "--disable", "late-fee"]) == 0
        assert "Rule deactivated" in capsys.readouterr().out

        store = SQLiteTabularStore(db_path)
        (row,) = store.read_all("automation_rules")
        assert row["active"] is False
        store.close()

    def test_disable_unknown_rule(self, db_path, capsys):
        """Test disabling a missing rule fails."""
        assert main(["rules", "--db", db_path, "--disable", "ghost"]) == 1
        assert "Rule not found" in capsys.readouterr().out

    def test_invalid_rule_file(self, tmp_path, db_path, capsys):
        """Test an invalid rule definition is reported as an error."""
        rules_file = tmp_path / "rules.yaml"
        rules_file.write_text(
            yaml.safe_dump(
                {"name": "Bad", "trigger": {"type": "nope"}, "actions": []}
            ),
            encoding="utf-8",
        )

        assert main(["rules", "--db", db_path, "--add", str(rules_file)]) == 1
        assert "Error:" in capsys.readouterr().out

    def test_missing_config_file(self, tmp_path, capsys):
        """Test a missing config file is reported as an error."""
        assert main(["rules", "-c", str(tmp_path / "nope.yaml")]) == 1
        assert "Configuration file not found" in capsys.readouterr().out


class TestSweepAndAnalytics:
    """Tests for the sweep and analytics commands."""

    def test_sweep_marks_overdue(self, db_path, capsys):
        """Test the overdue sweep updates the store."""
        store = SQLiteTabularStore(db_path)
        store.create(
            "invoices",
            {
                "id": "i1",
                "invoice_number": "INV-1",
                "client_id": "c1",
                "total_amount": 100.0,
                "status": "sent",
                "due_date": "2020-01-01",
            },
        )
        store.close()

        assert main(["sweep", "overdue", "--db", db_path]) == 0
        assert "marked_overdue=1" in capsys.readouterr().out

        store = SQLiteTabularStore(db_path)
        assert store.query("invoices", {"id": "i1"})[0]["status"] == "overdue"
        store.close()

    def test_all_sweeps(self, db_path, capsys):
        """Test every sweep runs on an empty store."""
        assert main(["sweep", "--db", db_path]) == 0
        out = capsys.readouterr().out
        for name in ("overdue", "deadlines", "cleanup"):
            assert name in out

    def test_analytics_json(self, db_path, capsys):
        """Test analytics can be printed as JSON."""
        assert main(["analytics", "--db", db_path, "--json", "--days", "7"]) == 0

        data = json.loads(capsys.readouterr().out)
        assert data["total_executions"] == 0
        assert data["most_triggered_rules"] == []

    def test_analytics_panel(self, db_path, capsys):
        """Test the default analytics output."""
        assert main(["analytics", "--db", db_path]) == 0
        assert "Last 30 days" in capsys.readouterr().out
