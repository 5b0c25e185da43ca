"""
Main Orchestrator: DeskPilot Automation Engine
Wires configuration, storage, the rule engine and notifications together.
"""
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence

from config import load_config, DeskPilotConfig
from database import DatabaseManager
from metrics import EngineMetrics
from notifier import Notifier
from automation.actions import NotificationDispatcher, RuleActionExecutor
from automation.audit import AuditLog
from automation.evaluator import ConditionEvaluator, RuleMatcher
from automation.models import CycleReport, Rule, TicketDomain, utc_now
from automation.parser import RuleParser
from automation.repository import SQLiteRuleRepository, SQLiteTicketStore, TicketStore
from automation.resolver import ConflictResolver
from automation.scheduler import Scheduler
from exceptions import ComponentInitializationError, DeskPilotError

# Do NOT configure logging here. cli.py installs the RichHandler.
logger = logging.getLogger("DeskPilotOrchestrator")


class DeskPilotSystem:
    """
    Main orchestrator for the DeskPilot automation engine.
    Owns every component and their lifecycle.
    """

    def __init__(
        self,
        config: Optional[DeskPilotConfig] = None,
        ticket_store: Optional[TicketStore] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
        clock: Callable[[], datetime] = utc_now
    ):
        self._owned_notifier: Optional[Notifier] = None
        try:
            self.config = config or load_config()
            logger.info(f"DeskPilot initializing: environment={self.config.system.environment}")

            self.db_manager = DatabaseManager(self.config.database)
            logger.info(f"Database initialized: {self.config.database.path}")

            self.domain = TicketDomain.from_config(self.config.domain)
            self.parser = RuleParser(self.domain)
            self.rule_repository = SQLiteRuleRepository(self.db_manager, self.domain, self.parser)
            self.ticket_store = ticket_store or SQLiteTicketStore(
                self.db_manager,
                closed_statuses=self.config.domain.closed_statuses,
                clock=clock
            )
            self.audit_log = AuditLog(self.db_manager)

            if dispatcher is None:
                self._owned_notifier = Notifier(self.config)
                dispatcher = self._owned_notifier
            self.dispatcher = dispatcher

            self.matcher = RuleMatcher(ConditionEvaluator(self.domain.priority_scale()))
            self.executor = RuleActionExecutor(
                self.ticket_store,
                dispatcher=self.dispatcher,
                message_template=self.config.notification.message_template
            )
            self.metrics = EngineMetrics()
            self.scheduler = Scheduler(
                rule_repository=self.rule_repository,
                ticket_store=self.ticket_store,
                audit_log=self.audit_log,
                config=self.config.engine,
                executor=self.executor,
                matcher=self.matcher,
                resolver=ConflictResolver(),
                metrics=self.metrics,
                clock=clock
            )
            self.clock = clock

            logger.info("All components initialized successfully")

        except DeskPilotError as e:
            raise ComponentInitializationError(
                f"Failed to initialize DeskPilot: {e.message}",
                component="DeskPilotSystem"
            ) from e

    # ------------------------------------------------------------------
    # Cycles
    # ------------------------------------------------------------------

    async def run_now(self) -> CycleReport:
        """Run one evaluation cycle immediately."""
        return await self.scheduler.run_now()

    async def serve(self) -> None:
        """Run the periodic evaluation loop until stop() is called."""
        await self.scheduler.start()

    def stop(self) -> None:
        self.scheduler.stop()

    # ------------------------------------------------------------------
    # Rules
    # ------------------------------------------------------------------

    async def create_rule(
        self,
        name: str,
        trigger_conditions: Sequence[Any],
        actions: Sequence[Any],
        description: str = "",
        rule_id: Optional[str] = None,
        is_active: bool = True,
        evaluate_now: Optional[bool] = None
    ) -> Rule:
        """
        Create a rule and, by default, evaluate it against live tickets right away.

        Args:
            evaluate_now: Run a cycle after creation; defaults to
                engine.evaluate_on_rule_create

        Raises:
            RuleValidationError: If the definition is invalid
        """
        rule = self.rule_repository.create(
            name=name,
            trigger_conditions=trigger_conditions,
            actions=actions,
            description=description,
            rule_id=rule_id,
            is_active=is_active,
            created_at=self.clock()
        )

        if evaluate_now is None:
            evaluate_now = self.config.engine.evaluate_on_rule_create
        if evaluate_now and rule.is_active:
            report = await self.scheduler.run_cycle(trigger="rule_created")
            logger.info(f"Rule {rule.id} evaluated on creation: applied={report.applied_count}")

        return rule

    def test_rule(self, rule_id: str) -> List[str]:
        """
        Dry-run a rule against the active tickets without executing anything.

        Disabled rules are evaluated as if they were active.

        Returns:
            IDs of the tickets the rule would fire for

        Raises:
            RuleNotFoundError: If the rule does not exist
        """
        rule = self.rule_repository.require(rule_id)
        candidate = rule.model_copy(update={"is_active": True})
        now = self.clock()
        tickets = self.ticket_store.list_active_tickets(limit=self.config.engine.max_tickets_per_cycle)
        return [t.id for t in tickets if self.matcher.match(candidate, t, now)]

    def import_rules(self, directory: Optional[str] = None, replace: bool = False) -> List[Rule]:
        """Import YAML rule files (defaults to engine.rules_path)."""
        directory = directory or self.config.engine.rules_path
        if not Path(directory).exists():
            logger.warning(f"Rules directory not found: {directory}")
            return []
        return self.rule_repository.import_directory(directory, replace=replace)

    def export_rules(self, directory: Optional[str] = None) -> List[str]:
        """
        Write every rule to <directory>/<rule_id>.yaml.

        Returns:
            Paths written
        """
        directory = directory or self.config.engine.rules_path
        Path(directory).mkdir(parents=True, exist_ok=True)
        paths = []
        for rule in self.rule_repository.list_rules():
            path = str(Path(directory) / f"{rule.id}.yaml")
            self.parser.save_rule_to_file(rule, path)
            paths.append(path)
        logger.info(f"Exported {len(paths)} rule(s) to {directory}")
        return paths

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def get_status(self) -> Dict[str, Any]:
        rules = self.rule_repository.list_rules()
        last = self.scheduler.last_report
        return {
            "health": self.scheduler.health(),
            "rules_total": len(rules),
            "rules_active": sum(1 for r in rules if r.is_active),
            "last_cycle": last.to_dict() if last else None,
            "outcome_totals": self.audit_log.count_by_outcome(),
            "metrics": self.metrics.get_summary()
        }

    def shutdown(self) -> None:
        logger.info("Shutting down DeskPilot...")
        self.scheduler.stop()
        if self._owned_notifier is not None:
            self._owned_notifier.close()
        self.db_manager.close()
        logger.info("Database connections closed")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.shutdown()


if __name__ == "__main__":
    print("Please use the CLI tool (deskpilot) to run the automation engine.")
