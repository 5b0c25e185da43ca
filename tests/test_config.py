import json
import pytest

from config import ConfigManager, DeskPilotConfig, load_config
from exceptions import ConfigurationError


ENV_VARS = [
    "DESKPILOT_ENVIRONMENT", "DESKPILOT_LOG_LEVEL", "DESKPILOT_DB_PATH", "ENGINE_ENABLED",
    "CYCLE_INTERVAL_SECONDS", "MAX_TICKETS_PER_CYCLE", "WORKER_POOL_SIZE",
    "CYCLE_DEADLINE_SECONDS", "MAX_BACKOFF_SECONDS", "RULES_PATH",
    "TICKET_STATUSES", "TICKET_PRIORITIES", "TICKET_AGENTS", "CLOSED_STATUSES",
    "NOTIFICATIONS_ENABLED", "NOTIFICATION_CHANNELS", "SLACK_WEBHOOK_URL",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_defaults_are_valid():
    config = load_config()
    assert config.engine.cycle_interval_seconds == 300.0
    assert config.engine.worker_pool_size == 4
    assert config.domain.priorities == ["Low", "Medium", "High", "Urgent"]
    assert config.notification.channels == ["console"]


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("CYCLE_INTERVAL_SECONDS", "30")
    monkeypatch.setenv("WORKER_POOL_SIZE", "8")
    monkeypatch.setenv("ENGINE_ENABLED", "false")
    monkeypatch.setenv("TICKET_AGENTS", "Unassigned, Tier 1 ,Tier 2")
    monkeypatch.setenv("DESKPILOT_LOG_LEVEL", "debug")

    config = load_config()

    assert config.engine.cycle_interval_seconds == 30.0
    assert config.engine.worker_pool_size == 8
    assert config.engine.enabled is False
    assert config.domain.agents == ["Unassigned", "Tier 1", "Tier 2"]
    assert config.system.log_level == "DEBUG"


def test_slack_webhook_enables_slack_channel(monkeypatch):
    monkeypatch.setenv("SLACK_WEBHOOK_URL", "https://hooks.slack.test/T000")
    config = load_config()
    assert config.notification.channels == ["console", "slack"]
    assert config.to_dict()["notification"]["has_slack_webhook"] is True
    assert "hooks.slack.test" not in json.dumps(config.to_dict())


def test_invalid_number_in_environment(monkeypatch):
    monkeypatch.setenv("MAX_TICKETS_PER_CYCLE", "lots")
    with pytest.raises(ConfigurationError, match="MAX_TICKETS_PER_CYCLE"):
        load_config()


@pytest.mark.parametrize("attr,value", [
    ("cycle_interval_seconds", 0),
    ("max_tickets_per_cycle", 0),
    ("worker_pool_size", 0),
    ("cycle_deadline_seconds", -1),
])
def test_validate_rejects_non_positive_engine_settings(attr, value):
    config = DeskPilotConfig()
    setattr(config.engine, attr, value)
    with pytest.raises(ConfigurationError):
        config.validate()


def test_closed_statuses_must_be_known():
    config = DeskPilotConfig()
    config.domain.closed_statuses = ["Archived"]
    with pytest.raises(ConfigurationError, match="Archived"):
        config.validate()


def test_slack_without_webhook_is_rejected():
    config = DeskPilotConfig()
    config.notification.channels = ["slack"]
    with pytest.raises(ConfigurationError, match="SLACK_WEBHOOK_URL"):
        config.validate()


def test_file_values_are_overridden_by_environment(tmp_path, monkeypatch):
    path = tmp_path / "deskpilot.json"
    path.write_text(json.dumps({
        "engine": {"cycle_interval_seconds": 90, "max_tickets_per_cycle": 50},
        "domain": {"agents": ["Unassigned", "Night Shift"]},
    }))
    monkeypatch.setenv("CYCLE_INTERVAL_SECONDS", "15")

    config = ConfigManager(str(path)).load()

    assert config.engine.cycle_interval_seconds == 15.0
    assert config.engine.max_tickets_per_cycle == 50
    assert config.domain.agents == ["Unassigned", "Night Shift"]


def test_missing_or_broken_config_file(tmp_path):
    with pytest.raises(ConfigurationError, match="not found"):
        load_config(str(tmp_path / "missing.json"))

    broken = tmp_path / "broken.json"
    broken.write_text("{not json")
    with pytest.raises(ConfigurationError, match="Invalid JSON"):
        load_config(str(broken))


def test_config_property_requires_load():
    with pytest.raises(ConfigurationError):
        ConfigManager().config


@pytest.mark.parametrize("template", ["#{ticket_id:d}", "{unknown}", "{0}", "{status.missing}"])
def test_unusable_message_template_is_rejected(template):
    config = DeskPilotConfig()
    config.notification.message_template = template
    with pytest.raises(ConfigurationError, match="message template"):
        config.validate()


def test_message_template_from_file_is_validated(tmp_path):
    path = tmp_path / "deskpilot.json"
    path.write_text(json.dumps({"notification": {"message_template": "{rule_name} on #{ticket_id} ({priority})"}}))
    assert ConfigManager(str(path)).load().notification.message_template == "{rule_name} on #{ticket_id} ({priority})"

    path.write_text(json.dumps({"notification": {"message_template": "#{ticket_id:d}"}}))
    with pytest.raises(ConfigurationError, match="message template"):
        ConfigManager(str(path)).load()
