"""
Configuration Management System for DeskPilot
Handles environment-based configuration for the ticket automation engine.
"""
import os
import json
from typing import Optional, Dict, Any, List
from pathlib import Path
from dataclasses import dataclass, field
from dotenv import load_dotenv

# Load .env file
load_dotenv()

from exceptions import ConfigurationError

DEFAULT_STATUSES = [
    "Open (Being Processed)",
    "On Tech",
    "On Product",
    "Pending (Awaiting your Reply)",
    "Waiting on Customer",
    "Escalated",
    "Resolved",
    "Closed",
]
DEFAULT_PRIORITIES = ["Low", "Medium", "High", "Urgent"]
DEFAULT_AGENTS = ["Unassigned", "Admin User", "Support Team"]
DEFAULT_CLOSED_STATUSES = ["Resolved", "Closed"]


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("true", "1", "yes", "on")


def _parse_list(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


@dataclass
class DatabaseConfig:
    """Database configuration settings."""
    path: str = "deskpilot.db"
    connection_timeout: int = 30
    max_connections: int = 5


@dataclass
class SystemConfig:
    """System-wide configuration settings."""
    environment: str = "development"
    log_level: str = "INFO"
    version: str = "1.0.0"


@dataclass
class EngineConfig:
    """Automation engine scheduling settings."""
    enabled: bool = True
    cycle_interval_seconds: float = 300.0
    max_tickets_per_cycle: int = 5000
    worker_pool_size: int = 4
    cycle_deadline_seconds: float = 120.0
    max_backoff_seconds: float = 1800.0
    rules_path: str = "rules"
    evaluate_on_rule_create: bool = True


@dataclass
class DomainConfig:
    """Live value domains used to validate rule targets."""
    statuses: List[str] = field(default_factory=lambda: list(DEFAULT_STATUSES))
    priorities: List[str] = field(default_factory=lambda: list(DEFAULT_PRIORITIES))
    agents: List[str] = field(default_factory=lambda: list(DEFAULT_AGENTS))
    closed_statuses: List[str] = field(default_factory=lambda: list(DEFAULT_CLOSED_STATUSES))


# Placeholders available to notification message templates
MESSAGE_TEMPLATE_SAMPLE: Dict[str, str] = {
    "rule_id": "rule-id",
    "rule_name": "Rule name",
    "ticket_id": "1",
    "subject": "Subject",
    "status": "Open",
    "priority": "High",
    "assignee": "Unassigned",
    "company": "Company",
    "type": "Question"
}


@dataclass
class NotificationConfig:
    """Notification dispatch configuration."""
    enabled: bool = True
    channels: List[str] = field(default_factory=lambda: ["console"])
    slack_webhook_url: Optional[str] = None
    max_workers: int = 2
    message_template: str = "Rule '{rule_name}' fired for ticket #{ticket_id} ({subject}): status={status}, priority={priority}, assignee={assignee}"


@dataclass
class DeskPilotConfig:
    """Complete configuration for DeskPilot."""
    system: SystemConfig = field(default_factory=SystemConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    engine: EngineConfig = field(default_factory=EngineConfig)
    domain: DomainConfig = field(default_factory=DomainConfig)
    notification: NotificationConfig = field(default_factory=NotificationConfig)

    def validate(self) -> None:
        """
        Validate configuration settings.

        Raises:
            ConfigurationError: If configuration is invalid
        """
        if self.engine.cycle_interval_seconds <= 0:
            raise ConfigurationError(
                f"Cycle interval must be positive, got {self.engine.cycle_interval_seconds}",
                component="ConfigManager"
            )

        if self.engine.max_tickets_per_cycle < 1:
            raise ConfigurationError(
                f"Max tickets per cycle must be at least 1, got {self.engine.max_tickets_per_cycle}",
                component="ConfigManager"
            )

        if self.engine.worker_pool_size < 1:
            raise ConfigurationError(
                f"Worker pool size must be at least 1, got {self.engine.worker_pool_size}",
                component="ConfigManager"
            )

        if self.engine.cycle_deadline_seconds <= 0:
            raise ConfigurationError(
                f"Cycle deadline must be positive, got {self.engine.cycle_deadline_seconds}",
                component="ConfigManager"
            )

        if self.engine.max_backoff_seconds <= 0:
            raise ConfigurationError(
                f"Max backoff must be positive, got {self.engine.max_backoff_seconds}",
                component="ConfigManager"
            )

        for name in ("statuses", "priorities", "agents"):
            if not getattr(self.domain, name):
                raise ConfigurationError(
                    f"Domain '{name}' must not be empty",
                    component="ConfigManager"
                )

        unknown_closed = set(self.domain.closed_statuses) - set(self.domain.statuses)
        if unknown_closed:
            raise ConfigurationError(
                f"Closed statuses not in status domain: {sorted(unknown_closed)}",
                component="ConfigManager"
            )

        if "slack" in self.notification.channels and not self.notification.slack_webhook_url:
            raise ConfigurationError(
                "Slack channel enabled but SLACK_WEBHOOK_URL is not set",
                component="ConfigManager"
            )

        try:
            self.notification.message_template.format(**MESSAGE_TEMPLATE_SAMPLE)
        except (KeyError, IndexError, ValueError, AttributeError) as e:
            raise ConfigurationError(
                f"Invalid notification message template: {e!r}",
                component="ConfigManager",
                context={"template": self.notification.message_template}
            ) from e

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary (excluding sensitive data)."""
        return {
            "system": {
                "environment": self.system.environment,
                "log_level": self.system.log_level,
                "version": self.system.version
            },
            "database": {
                "path": self.database.path,
                "max_connections": self.database.max_connections
            },
            "engine": {
                "cycle_interval_seconds": self.engine.cycle_interval_seconds,
                "max_tickets_per_cycle": self.engine.max_tickets_per_cycle,
                "worker_pool_size": self.engine.worker_pool_size,
                "cycle_deadline_seconds": self.engine.cycle_deadline_seconds
            },
            "notification": {
                "enabled": self.notification.enabled,
                "channels": list(self.notification.channels),
                "has_slack_webhook": bool(self.notification.slack_webhook_url)
            }
        }


class ConfigManager:
    """
    Manages configuration loading from environment variables and files.
    Implements fail-fast principle for invalid configurations.
    """

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize configuration manager.

        Args:
            config_path: Optional path to JSON config file
        """
        self.config_path = config_path
        self._config: Optional[DeskPilotConfig] = None

    def load(self) -> DeskPilotConfig:
        """
        Load configuration from environment and optional file.
        Priority: Environment Variables > Config File > Defaults

        Returns:
            DeskPilotConfig: Validated configuration

        Raises:
            ConfigurationError: If configuration is invalid
        """
        config = DeskPilotConfig()

        if self.config_path:
            config = self._load_from_file(self.config_path)

        config = self._load_from_environment(config)

        config.validate()

        self._config = config
        return config

    def _load_from_file(self, file_path: str) -> DeskPilotConfig:
        """
        Load configuration from JSON file.

        Raises:
            ConfigurationError: If file cannot be loaded
        """
        path = Path(file_path)
        if not path.exists():
            raise ConfigurationError(
                f"Configuration file not found: {file_path}",
                component="ConfigManager"
            )

        try:
            with open(path, 'r') as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigurationError(
                f"Invalid JSON in configuration file: {e}",
                component="ConfigManager"
            )

        config = DeskPilotConfig()
        try:
            if 'system' in data:
                sys_data = data['system']
                config.system.environment = sys_data.get('environment', config.system.environment)
                config.system.log_level = sys_data.get('log_level', config.system.log_level).upper()

            if 'database' in data:
                db_data = data['database']
                config.database.path = db_data.get('path', config.database.path)
                config.database.max_connections = int(db_data.get('max_connections', config.database.max_connections))

            if 'engine' in data:
                eng = data['engine']
                config.engine.enabled = bool(eng.get('enabled', config.engine.enabled))
                config.engine.cycle_interval_seconds = float(eng.get('cycle_interval_seconds', config.engine.cycle_interval_seconds))
                config.engine.max_tickets_per_cycle = int(eng.get('max_tickets_per_cycle', config.engine.max_tickets_per_cycle))
                config.engine.worker_pool_size = int(eng.get('worker_pool_size', config.engine.worker_pool_size))
                config.engine.cycle_deadline_seconds = float(eng.get('cycle_deadline_seconds', config.engine.cycle_deadline_seconds))
                config.engine.max_backoff_seconds = float(eng.get('max_backoff_seconds', config.engine.max_backoff_seconds))
                config.engine.rules_path = eng.get('rules_path', config.engine.rules_path)

            if 'domain' in data:
                dom = data['domain']
                config.domain.statuses = list(dom.get('statuses', config.domain.statuses))
                config.domain.priorities = list(dom.get('priorities', config.domain.priorities))
                config.domain.agents = list(dom.get('agents', config.domain.agents))
                config.domain.closed_statuses = list(dom.get('closed_statuses', config.domain.closed_statuses))

            if 'notification' in data:
                notif = data['notification']
                config.notification.enabled = bool(notif.get('enabled', config.notification.enabled))
                config.notification.channels = list(notif.get('channels', config.notification.channels))
                config.notification.slack_webhook_url = notif.get('slack_webhook_url')
                config.notification.message_template = str(notif.get('message_template', config.notification.message_template))
        except (TypeError, ValueError) as e:
            raise ConfigurationError(
                f"Error loading configuration file: {e}",
                component="ConfigManager"
            )

        return config

    def _load_from_environment(self, config: DeskPilotConfig) -> DeskPilotConfig:
        """
        Override configuration with environment variables.

        Raises:
            ConfigurationError: If a numeric variable cannot be parsed
        """
        config.system.environment = os.getenv('DESKPILOT_ENVIRONMENT', config.system.environment)

        log_level = os.getenv('DESKPILOT_LOG_LEVEL')
        if log_level:
            config.system.log_level = log_level.upper()

        db_path = os.getenv('DESKPILOT_DB_PATH')
        if db_path:
            config.database.path = db_path

        # Engine scheduling
        engine_enabled = os.getenv('ENGINE_ENABLED')
        if engine_enabled:
            config.engine.enabled = _parse_bool(engine_enabled)

        numeric_settings = [
            ('CYCLE_INTERVAL_SECONDS', 'cycle_interval_seconds', float),
            ('MAX_TICKETS_PER_CYCLE', 'max_tickets_per_cycle', int),
            ('WORKER_POOL_SIZE', 'worker_pool_size', int),
            ('CYCLE_DEADLINE_SECONDS', 'cycle_deadline_seconds', float),
            ('MAX_BACKOFF_SECONDS', 'max_backoff_seconds', float),
        ]
        for env_name, attr, cast in numeric_settings:
            raw = os.getenv(env_name)
            if raw:
                try:
                    setattr(config.engine, attr, cast(raw))
                except ValueError:
                    raise ConfigurationError(
                        f"Invalid {env_name}: {raw}",
                        component="ConfigManager"
                    )

        rules_path = os.getenv('RULES_PATH')
        if rules_path:
            config.engine.rules_path = rules_path

        # Live domains
        statuses = os.getenv('TICKET_STATUSES')
        if statuses:
            config.domain.statuses = _parse_list(statuses)

        priorities = os.getenv('TICKET_PRIORITIES')
        if priorities:
            config.domain.priorities = _parse_list(priorities)

        agents = os.getenv('TICKET_AGENTS')
        if agents:
            config.domain.agents = _parse_list(agents)

        closed = os.getenv('CLOSED_STATUSES')
        if closed:
            config.domain.closed_statuses = _parse_list(closed)

        # Notification settings
        notifications_enabled = os.getenv('NOTIFICATIONS_ENABLED')
        if notifications_enabled:
            config.notification.enabled = _parse_bool(notifications_enabled)

        channels = os.getenv('NOTIFICATION_CHANNELS')
        if channels:
            config.notification.channels = _parse_list(channels)

        slack_webhook = os.getenv('SLACK_WEBHOOK_URL')
        if slack_webhook:
            config.notification.slack_webhook_url = slack_webhook
            if 'slack' not in config.notification.channels:
                config.notification.channels.append('slack')

        return config

    @property
    def config(self) -> DeskPilotConfig:
        """
        Get current configuration.

        Raises:
            ConfigurationError: If configuration not loaded
        """
        if self._config is None:
            raise ConfigurationError(
                "Configuration not loaded. Call load() first.",
                component="ConfigManager"
            )
        return self._config


def load_config(config_path: Optional[str] = None) -> DeskPilotConfig:
    """
    Load and validate configuration.

    Args:
        config_path: Optional path to configuration file

    Returns:
        DeskPilotConfig: Validated configuration

    Raises:
        ConfigurationError: If configuration is invalid
    """
    return ConfigManager(config_path).load()
