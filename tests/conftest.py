import pytest
from datetime import datetime, timedelta, timezone

from config import DatabaseConfig, DeskPilotConfig, DomainConfig
from database import DatabaseManager
from automation.audit import AuditLog
from automation.models import Rule, RuleAction, RuleCondition, Ticket, TicketDomain
from automation.repository import InMemoryTicketStore, SQLiteRuleRepository

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def domain():
    return TicketDomain.from_config(DomainConfig())


@pytest.fixture
def db_manager(tmp_path):
    manager = DatabaseManager(DatabaseConfig(path=str(tmp_path / "deskpilot.db")))
    yield manager
    manager.close()


@pytest.fixture
def rule_repo(db_manager, domain):
    return SQLiteRuleRepository(db_manager, domain)


@pytest.fixture
def audit_log(db_manager):
    return AuditLog(db_manager)


@pytest.fixture
def test_config(tmp_path):
    config = DeskPilotConfig()
    config.database.path = str(tmp_path / "system.db")
    config.engine.rules_path = str(tmp_path / "rules")
    config.notification.enabled = False
    return config


def make_ticket(ticket_id="1", hours_since_update=30, age_days=2, **fields):
    """Ticket snapshot relative to NOW."""
    values = {
        "subject": f"Ticket {ticket_id}",
        "status": "Open (Being Processed)",
        "priority": "Urgent",
        "assignee": "Admin User",
        "company": "Acme",
        "type": "Technical",
    }
    values.update(fields)
    return Ticket(
        id=ticket_id,
        created_at=NOW - timedelta(days=age_days),
        updated_at=NOW - timedelta(hours=hours_since_update),
        **values
    )


def make_rule(rule_id, conditions, actions, minutes=0, **fields):
    """
    Rule from (field, operator, value) and (type, target) tuples.

    ``minutes`` offsets created_at so tests control creation order.
    """
    return Rule(
        id=rule_id,
        name=fields.pop("name", rule_id.replace("-", " ").title()),
        description=fields.pop("description", "test rule"),
        trigger_conditions=[RuleCondition(field=f, operator=o, value=v) for f, o, v in conditions],
        actions=[RuleAction(type=t, target_value=target) for t, target in actions],
        created_at=fields.pop("created_at", datetime(2024, 1, 1, tzinfo=timezone.utc) + timedelta(minutes=minutes)),
        **fields
    )


ESCALATE_STALE_URGENT = (
    [("priority", "equals", "Urgent"), ("time_since_update_hours", "greater_than", 24)],
    [("update_status", "Escalated")],
)


@pytest.fixture
def escalation_rule():
    conditions, actions = ESCALATE_STALE_URGENT
    return make_rule("escalate-stale-urgent", conditions, actions)


@pytest.fixture
def ticket_store(clock):
    return InMemoryTicketStore(clock=clock)
