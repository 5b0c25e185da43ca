import pytest
from pathlib import Path
from unittest.mock import MagicMock

from conftest import make_ticket
from automation.models import ExecutionOutcome
from automation.repository import InMemoryTicketStore
from exceptions import ComponentInitializationError, RuleNotFoundError, RuleValidationError
from main import DeskPilotSystem


ESCALATE = {
    "name": "Escalate stale urgent tickets",
    "trigger_conditions": [
        {"field": "priority", "operator": "equals", "value": "Urgent"},
        {"field": "time_since_update_hours", "operator": "greater_than", "value": 24},
    ],
    "actions": [
        {"type": "update_status", "target_value": "Escalated"},
        {"type": "send_notification", "target_value": "Support Team"},
    ],
}


@pytest.fixture
def tickets(clock):
    return InMemoryTicketStore([make_ticket("1"), make_ticket("2", hours_since_update=2)], clock=clock)


@pytest.fixture
def dispatcher():
    return MagicMock()


@pytest.fixture
def system(test_config, tickets, dispatcher, clock):
    with DeskPilotSystem(config=test_config, ticket_store=tickets, dispatcher=dispatcher, clock=clock) as system:
        yield system


@pytest.mark.anyio
async def test_create_rule_evaluates_immediately(system, tickets, dispatcher):
    rule = await system.create_rule(rule_id="escalate", **ESCALATE)

    assert rule.version == 1
    assert tickets.get_ticket("1").status == "Escalated"
    assert tickets.get_ticket("2").status == "Open (Being Processed)"
    target, message = dispatcher.send.call_args[0]
    assert target == "Support Team"
    assert "Escalate stale urgent tickets" in message
    assert "status=Escalated" in message
    assert system.scheduler.last_report.trigger == "rule_created"


@pytest.mark.anyio
async def test_create_rule_can_skip_evaluation(system, tickets):
    await system.create_rule(rule_id="escalate", evaluate_now=False, **ESCALATE)

    assert tickets.get_ticket("1").status == "Open (Being Processed)"
    assert system.scheduler.last_report is None

    report = await system.run_now()
    assert report.trigger == "manual"
    assert report.applied_count == 1


@pytest.mark.anyio
async def test_invalid_rule_is_rejected(system):
    with pytest.raises(RuleValidationError):
        await system.create_rule(
            name="Bad target",
            trigger_conditions=[{"field": "status", "operator": "equals", "value": "On Tech"}],
            actions=[{"type": "reassign", "target_value": "Nobody"}]
        )
    assert system.rule_repository.list_rules() == []


@pytest.mark.anyio
async def test_test_rule_is_a_dry_run(system, tickets):
    await system.create_rule(rule_id="escalate", evaluate_now=False, is_active=False, **ESCALATE)

    assert system.test_rule("escalate") == ["1"]
    assert tickets.get_ticket("1").status == "Open (Being Processed)"
    assert system.audit_log.query() == []


def test_test_rule_unknown_id(system):
    with pytest.raises(RuleNotFoundError):
        system.test_rule("missing")


@pytest.mark.anyio
async def test_export_then_import_keeps_ordering(system, test_config, tickets, clock, tmp_path):
    await system.create_rule(rule_id="escalate", evaluate_now=False, **ESCALATE)
    out = tmp_path / "exported"

    paths = system.export_rules(str(out))

    assert [Path(p).name for p in paths] == ["escalate.yaml"]
    test_config.database.path = str(tmp_path / "other.db")
    with DeskPilotSystem(config=test_config, ticket_store=tickets, dispatcher=MagicMock(), clock=clock) as other:
        [imported] = other.import_rules(str(out))
        assert imported.id == "escalate"
        assert imported.created_at == system.rule_repository.get("escalate").created_at


def test_import_from_missing_directory(system):
    assert system.import_rules() == []


def test_import_shipped_rules(system):
    rules_dir = Path(__file__).resolve().parent.parent / "rules"

    imported = system.import_rules(str(rules_dir))

    assert {r.id for r in imported} == {
        "escalate-stale-high",
        "assign-unowned",
        "waiting-on-customer-reminder",
    }


@pytest.mark.anyio
async def test_status_reports_cycles_and_outcomes(system):
    await system.create_rule(rule_id="escalate", **ESCALATE)

    status = system.get_status()

    assert status["rules_total"] == 1
    assert status["rules_active"] == 1
    assert status["health"]["consecutive_failures"] == 0
    assert status["last_cycle"]["outcomes"][ExecutionOutcome.APPLIED.value] == 1
    assert status["outcome_totals"][ExecutionOutcome.APPLIED.value] == 1


def test_unusable_database_fails_initialization(test_config, tmp_path):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("")
    test_config.database.path = str(blocker / "deskpilot.db")
    with pytest.raises(ComponentInitializationError):
        DeskPilotSystem(config=test_config, ticket_store=InMemoryTicketStore(), dispatcher=MagicMock())
