import pytest
from datetime import datetime, timezone
from pathlib import Path

import cli
from automation.audit import AuditLog
from automation.models import ExecutionOutcome, ExecutionRecord
from config import DatabaseConfig
from database import DatabaseManager


RULES_DIR = Path(__file__).resolve().parent.parent / "rules"


@pytest.fixture(autouse=True)
def cli_env(tmp_path, monkeypatch):
    monkeypatch.setenv("DESKPILOT_DB_PATH", str(tmp_path / "cli.db"))
    monkeypatch.setenv("RULES_PATH", str(RULES_DIR))
    monkeypatch.setenv("NOTIFICATIONS_ENABLED", "false")


def test_import_then_list(capsys):
    cli.main(["rules", "import"])
    cli.main(["rules", "list"])

    out = capsys.readouterr().out
    assert "Imported 3 rule(s)" in out
    assert "Rules (creation order)" in out


def test_disable_and_status(capsys):
    cli.main(["rules", "import"])
    cli.main(["rules", "disable", "assign-unowned"])
    cli.main(["status"])

    out = capsys.readouterr().out
    assert "Rule assign-unowned is now inactive" in out
    assert "1 active / 3 total" in out


def test_run_on_empty_ticket_table(capsys):
    cli.main(["run"])
    assert "Tickets evaluated: 0" in capsys.readouterr().out


def test_unknown_rule_exits_with_error(capsys):
    with pytest.raises(SystemExit) as exc:
        cli.main(["rules", "enable", "missing"])
    assert exc.value.code == 1
    assert "missing" in capsys.readouterr().out


def test_no_command_prints_help(capsys):
    cli.main([])
    assert "usage" in capsys.readouterr().out.lower()


def test_status_reads_history_from_storage(tmp_path, capsys):
    manager = DatabaseManager(DatabaseConfig(path=str(tmp_path / "cli.db")))
    AuditLog(manager).record(ExecutionRecord(
        rule_id="escalate-stale-urgent",
        rule_version=1,
        ticket_id="7",
        matched_at=datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc),
        outcome=ExecutionOutcome.FAILED,
        error="ticket database is locked"
    ))
    manager.close()

    cli.main(["status"])

    out = capsys.readouterr().out
    assert "Last execution: 2024-06-01T12:00:00+00:00 (failed" in out
    assert "'failed': 1" in out
    # A fresh process has no scheduler failures of its own to report
    assert "degraded" not in out


def test_status_without_history(capsys):
    cli.main(["status"])
    assert "Last execution: never" in capsys.readouterr().out
