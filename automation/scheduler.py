"""
Automation Scheduler

Runs evaluation cycles on a fixed cadence and on demand.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from automation.actions import RuleActionExecutor
from automation.audit import AuditLog
from automation.evaluator import RuleMatcher
from automation.models import (
    CycleReport,
    CycleState,
    ExecutionOutcome,
    ExecutionRecord,
    ResolutionPlan,
    Rule,
    Ticket,
    utc_now
)
from automation.repository import SQLiteRuleRepository, TicketStore
from automation.resolver import ConflictResolver
from config import EngineConfig
from exceptions import AuditLogError, DatabaseError, ExecutionFailure, RepositoryUnavailableError
from metrics import EngineMetrics, Timer
from resilience import compute_backoff_delay


logger = logging.getLogger("DeskPilotScheduler")

RETRY_BASE_DELAY = 5.0

# (ticket, firing rules, holding rules)
_Match = Tuple[Ticket, List[Rule], List[Rule]]


@dataclass
class UnitResult:
    """Outcome of one ticket's execute-and-record unit."""
    ticket_id: str
    records: List[ExecutionRecord] = field(default_factory=list)
    audit_failures: int = 0
    failed: bool = False


@dataclass
class WorkUnit:
    """One matched ticket waiting for execution."""
    ticket: Ticket
    matched_rules: List[Rule]
    holding_rules: List[Rule] = field(default_factory=list)
    plan: Optional[ResolutionPlan] = None
    error: Optional[str] = None


class Scheduler:
    """
    Evaluation cycle driver.

    A cycle walks IDLE -> FETCHING -> MATCHING -> RESOLVING -> EXECUTING ->
    RECORDING -> IDLE. Cycles never overlap: the periodic loop and manual
    triggers share one lock, so a manual trigger during a running cycle
    waits for it and then runs a fresh one.
    """

    def __init__(
        self,
        rule_repository: SQLiteRuleRepository,
        ticket_store: TicketStore,
        audit_log: AuditLog,
        config: Optional[EngineConfig] = None,
        executor: Optional[RuleActionExecutor] = None,
        matcher: Optional[RuleMatcher] = None,
        resolver: Optional[ConflictResolver] = None,
        metrics: Optional[EngineMetrics] = None,
        clock: Callable[[], datetime] = utc_now
    ):
        """
        Initialize the scheduler.

        Args:
            rule_repository: Source of active rules
            ticket_store: Source of active tickets and mutation target
            audit_log: Destination for execution records
            config: Engine cadence, caps and pool size
            executor: Action executor (defaults to one without notifications)
            matcher: Rule matcher
            resolver: Conflict resolver
            metrics: Metrics sink
            clock: Source of the cycle's evaluation instant
        """
        self.rule_repository = rule_repository
        self.ticket_store = ticket_store
        self.audit_log = audit_log
        self.config = config or EngineConfig()
        self.executor = executor or RuleActionExecutor(ticket_store)
        self.matcher = matcher or RuleMatcher()
        self.resolver = resolver or ConflictResolver()
        self.metrics = metrics or EngineMetrics()
        self.clock = clock

        self.state = CycleState.IDLE
        self.consecutive_failures = 0
        self.last_error: Optional[str] = None
        self.last_success_at: Optional[datetime] = None
        self.last_report: Optional[CycleReport] = None

        self._cycle_lock = asyncio.Lock()
        self._stop_event = asyncio.Event()
        self._running = False

    # ------------------------------------------------------------------
    # Triggers
    # ------------------------------------------------------------------

    async def run_cycle(self, trigger: str = "schedule") -> CycleReport:
        """
        Run one evaluation cycle, waiting for any cycle already in flight.

        Returns:
            CycleReport for this cycle
        """
        async with self._cycle_lock:
            return await self._execute_cycle(trigger)

    async def run_now(self) -> CycleReport:
        """Manual "run now" trigger."""
        return await self.run_cycle(trigger="manual")

    async def start(self) -> None:
        """
        Run cycles until stop() is called.

        After an aborted cycle the next attempt is delayed with exponential
        backoff instead of the regular interval.
        """
        if not self.config.enabled:
            logger.warning("Automation engine disabled by configuration; not starting")
            return

        self._stop_event.clear()
        self._running = True
        logger.info(
            f"Scheduler started: interval={self.config.cycle_interval_seconds}s, "
            f"workers={self.config.worker_pool_size}"
        )

        try:
            while not self._stop_event.is_set():
                try:
                    await self.run_cycle()
                except Exception as e:
                    logger.exception(f"Cycle crashed: {e}")
                    self.consecutive_failures += 1
                    self.last_error = f"Cycle crashed: {e}"
                    self.metrics.record_error("scheduler", "cycle_crashed")
                if self._stop_event.is_set():
                    break

                delay = self.next_delay()
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
                except asyncio.TimeoutError:
                    # Interval elapsed
                    continue
        finally:
            self._running = False
            logger.info("Scheduler stopped")

    def stop(self) -> None:
        """
        Request a cooperative stop.

        Ticket units already running finish; units not yet started in the
        current cycle are deferred.
        """
        logger.info("Scheduler stop requested")
        self._stop_event.set()

    @property
    def is_running(self) -> bool:
        return self._running

    def next_delay(self) -> float:
        """Seconds until the next scheduled cycle."""
        if self.consecutive_failures == 0:
            return self.config.cycle_interval_seconds
        return compute_backoff_delay(
            self.consecutive_failures,
            base_delay=min(RETRY_BASE_DELAY, self.config.cycle_interval_seconds),
            max_delay=self.config.max_backoff_seconds
        )

    def health(self) -> Dict[str, object]:
        """Health snapshot for status displays."""
        return {
            "state": self.state.value,
            "running": self._running,
            "consecutive_failures": self.consecutive_failures,
            "last_error": self.last_error,
            "last_success_at": self.last_success_at.isoformat() if self.last_success_at else None,
            "next_delay_seconds": self.next_delay()
        }

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------

    def _set_state(self, state: CycleState, cycle_id: str) -> None:
        self.state = state
        logger.debug(f"[CYCLE {cycle_id[:8]}] state={state.value}")

    async def _execute_cycle(self, trigger: str) -> CycleReport:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.config.cycle_deadline_seconds

        report = CycleReport(cycle_id=uuid.uuid4().hex, trigger=trigger, started_at=self.clock())
        tag = report.cycle_id[:8]
        logger.info(f"--- STARTING CYCLE {tag} ({trigger}) ---")

        try:
            self._set_state(CycleState.FETCHING, report.cycle_id)
            try:
                rules, tickets = await asyncio.to_thread(self._fetch, report)
            except RepositoryUnavailableError as e:
                logger.error(f"[CYCLE {tag}] Fetch failed, aborting cycle: {e.message}")
                report.aborted = True
                report.error = e.message
                self.consecutive_failures += 1
                self.last_error = e.message
                self.metrics.record_error("scheduler", "repository_unavailable")
                return report

            self._set_state(CycleState.MATCHING, report.cycle_id)
            matches, failed_units = await asyncio.to_thread(
                self._match_tickets, rules, tickets, report.started_at
            )
            report.tickets_matched = len(matches)
            report.tickets_evaluated = len(tickets) - len(failed_units)

            self._set_state(CycleState.RESOLVING, report.cycle_id)
            units = failed_units + self._resolve(matches)

            self._set_state(CycleState.EXECUTING, report.cycle_id)
            results = await self._run_units(units, report, deadline)

            self._set_state(CycleState.RECORDING, report.cycle_id)
            self._collect(results, report)
            await asyncio.to_thread(self._mark_executed, report)

            self.consecutive_failures = 0
            self.last_error = None
            self.last_success_at = self.clock()
            return report
        finally:
            report.finished_at = self.clock()
            self.last_report = report
            self.metrics.record_cycle(report)
            self.state = CycleState.IDLE
            logger.info(
                f"--- CYCLE {tag} COMPLETE: applied={report.applied_count} "
                f"skipped={report.outcomes.get(ExecutionOutcome.SKIPPED_DUPLICATE.value, 0)} "
                f"failed={report.outcomes.get(ExecutionOutcome.FAILED.value, 0)} "
                f"deferred={report.tickets_deferred} aborted={report.aborted} "
                f"({report.duration_ms:.0f}ms) ---"
            )

    def _fetch(self, report: CycleReport) -> Tuple[Tuple[Rule, ...], List[Ticket]]:
        """
        Snapshot the active rules and tickets for one cycle.

        Raises:
            RepositoryUnavailableError: If either source cannot be read
        """
        try:
            with Timer(self.metrics.collector, "fetch_duration_ms"):
                rules = tuple(self.rule_repository.list_active_rules())
                tickets = self.ticket_store.list_active_tickets()
        except RepositoryUnavailableError:
            raise
        except Exception as e:
            # Any failure of an external source aborts the cycle
            raise RepositoryUnavailableError(
                f"Failed to fetch cycle inputs: {e}",
                component="Scheduler",
                context={"cycle_id": report.cycle_id}
            ) from e

        cap = self.config.max_tickets_per_cycle
        if len(tickets) > cap:
            report.tickets_deferred += len(tickets) - cap
            logger.info(f"[CYCLE {report.cycle_id[:8]}] {len(tickets) - cap} ticket(s) over the cap, deferred")
            tickets = tickets[:cap]

        report.rules_evaluated = len(rules)
        report.tickets_fetched = len(tickets)
        return rules, tickets

    def _match_tickets(
        self,
        rules: Sequence[Rule],
        tickets: Sequence[Ticket],
        now: datetime
    ) -> Tuple[List[_Match], List[WorkUnit]]:
        matches: List[_Match] = []
        failures: List[WorkUnit] = []
        for ticket in tickets:
            try:
                matched, holding = self.matcher.partition_ticket(rules, ticket, now)
            except Exception as e:
                logger.error(f"Matching failed for ticket {ticket.id}: {e}")
                # Every active rule is recorded as failed for this ticket
                failures.append(WorkUnit(ticket, list(rules), error=f"Matching failed: {e}"))
                continue
            if matched:
                matches.append((ticket, matched, holding))
        return matches, failures

    def _resolve(self, matches: List[_Match]) -> List[WorkUnit]:
        units = []
        for ticket, matched, holding in matches:
            try:
                plan = self.resolver.resolve(ticket, matched, holding)
                units.append(WorkUnit(ticket, matched, holding, plan=plan))
            except Exception as e:
                logger.error(f"Conflict resolution failed for ticket {ticket.id}: {e}")
                units.append(WorkUnit(ticket, matched, holding, error=f"Conflict resolution failed: {e}"))
        return units

    async def _run_units(
        self,
        units: List[WorkUnit],
        report: CycleReport,
        deadline: float
    ) -> List[UnitResult]:
        queue: asyncio.Queue = asyncio.Queue()
        for unit in units:
            queue.put_nowait(unit)

        results: List[UnitResult] = []
        worker_count = max(1, min(self.config.worker_pool_size, len(units)))
        workers = [
            asyncio.create_task(self._worker(queue, report, deadline, results))
            for _ in range(worker_count)
        ]
        await asyncio.gather(*workers)
        return results

    async def _worker(
        self,
        queue: asyncio.Queue,
        report: CycleReport,
        deadline: float,
        results: List[UnitResult]
    ) -> None:
        loop = asyncio.get_running_loop()
        while True:
            try:
                unit = queue.get_nowait()
            except asyncio.QueueEmpty:
                return

            if self._stop_event.is_set():
                report.cancelled = True
                report.tickets_deferred += 1
                continue
            if loop.time() >= deadline:
                report.tickets_deferred += 1
                continue

            results.append(
                await asyncio.to_thread(self._execute_unit, unit, report.started_at, report.cycle_id)
            )

    def _execute_unit(self, unit: WorkUnit, matched_at: datetime, cycle_id: str) -> UnitResult:
        """Apply one ticket's plan and write its audit records."""
        ticket = unit.ticket
        result = UnitResult(ticket_id=ticket.id)
        error = unit.error

        if unit.plan is not None:
            try:
                result.records = self.executor.apply(ticket.id, unit.plan, matched_at=matched_at, cycle_id=cycle_id)
            except Exception as e:
                error = f"Ticket unit failed: {e}"

        if error is not None:
            failure = ExecutionFailure(
                error,
                component="Scheduler",
                context={"ticket_id": ticket.id, "cycle_id": cycle_id}
            )
            logger.error(f"[CYCLE {cycle_id[:8]}] ticket {ticket.id}: {failure.message}")
            result.records = [
                ExecutionRecord(
                    cycle_id=cycle_id,
                    rule_id=rule.id,
                    rule_version=rule.version,
                    ticket_id=ticket.id,
                    matched_at=matched_at,
                    actions_applied=list(rule.actions),
                    outcome=ExecutionOutcome.FAILED,
                    error=failure.message
                )
                for rule in unit.matched_rules
            ]

        result.failed = any(r.outcome == ExecutionOutcome.FAILED for r in result.records)

        for record in result.records:
            try:
                self.audit_log.record(record)
            except AuditLogError as e:
                result.audit_failures += 1
                logger.error(f"[CYCLE {cycle_id[:8]}] Audit write failed: {e.message}")

        return result

    @staticmethod
    def _collect(results: List[UnitResult], report: CycleReport) -> None:
        executed: Dict[str, None] = {}
        for result in results:
            if result.failed:
                report.tickets_failed += 1
            report.audit_failures += result.audit_failures
            for record in result.records:
                report.count(record)
                if record.outcome == ExecutionOutcome.APPLIED:
                    executed[record.rule_id] = None
        report.executed_rule_ids = sorted(executed)

    def _mark_executed(self, report: CycleReport) -> None:
        if not report.executed_rule_ids:
            return
        try:
            self.rule_repository.mark_executed(report.executed_rule_ids, report.started_at)
        except DatabaseError as e:
            logger.error(f"[CYCLE {report.cycle_id[:8]}] Failed to update last_executed_at: {e.message}")
            self.metrics.record_error("scheduler", "mark_executed")
