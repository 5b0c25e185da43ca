"""
Rule Action Executor

Applies resolved actions to a ticket and dispatches notifications.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, Tuple

from automation.models import (
    ExecutionOutcome,
    ExecutionRecord,
    PlannedAction,
    ResolutionPlan,
    Rule,
    RuleAction,
    Ticket
)
from automation.repository.ticket_store import TicketStore
from exceptions import (
    ExecutionFailure,
    NotificationDispatchFailure,
    StaleTicketError,
    TicketNotFoundError
)


logger = logging.getLogger("DeskPilotExecutor")

DEFAULT_MESSAGE_TEMPLATE = "Rule '{rule_name}' fired for ticket #{ticket_id}"


class NotificationDispatcher(Protocol):
    """Fire-and-forget notification transport."""

    def send(self, target: str, message: str) -> Any:
        ...


# (rule, action, outcome, superseded_by, error)
_Entry = Tuple[Rule, RuleAction, ExecutionOutcome, Optional[str], Optional[str]]


class RuleActionExecutor:
    """
    Apply one ticket's resolution plan.

    All kept mutations for a ticket are written in a single optimistic
    store call, so they commit together or not at all. Before writing, the
    ticket is re-read; actions whose target already matches the live value
    are recorded as skipped_duplicate instead of being reapplied.
    """

    def __init__(
        self,
        ticket_store: TicketStore,
        dispatcher: Optional[NotificationDispatcher] = None,
        message_template: str = DEFAULT_MESSAGE_TEMPLATE
    ):
        """
        Initialize action executor.

        Args:
            ticket_store: Store the mutations are written to
            dispatcher: Optional notification dispatcher
            message_template: Template for notification messages
        """
        self.ticket_store = ticket_store
        self.dispatcher = dispatcher
        self.message_template = message_template

    def apply(
        self,
        ticket_id: str,
        plan: ResolutionPlan,
        matched_at: datetime,
        cycle_id: Optional[str] = None
    ) -> List[ExecutionRecord]:
        """
        Execute a resolution plan for one ticket.

        Args:
            ticket_id: Ticket the plan targets
            plan: Output of the conflict resolver
            matched_at: Instant the rules were matched
            cycle_id: Cycle the execution belongs to

        Returns:
            Execution records, one per rule and outcome
        """
        entries: List[_Entry] = []
        live: Optional[Ticket] = None

        if plan.mutations:
            try:
                live = self._reread(ticket_id)
                entries.extend(self._apply_mutations(live, plan.mutations))
            except (TicketNotFoundError, ExecutionFailure) as e:
                logger.error(f"Ticket {ticket_id}: {e.message}")
                entries.extend(
                    (p.rule, p.action, ExecutionOutcome.FAILED, None, e.message)
                    for p in plan.mutations
                )

        for superseded in plan.superseded:
            entries.append((
                superseded.rule,
                superseded.action,
                ExecutionOutcome.SKIPPED_DUPLICATE,
                superseded.superseded_by,
                None
            ))

        if plan.notifications:
            snapshot = self._notification_snapshot(ticket_id, live, entries)
            for planned in plan.notifications:
                self._dispatch(planned, ticket_id, snapshot)
                entries.append((planned.rule, planned.action, ExecutionOutcome.APPLIED, None, None))

        return self._build_records(ticket_id, entries, matched_at, cycle_id)

    def _notification_snapshot(
        self,
        ticket_id: str,
        live: Optional[Ticket],
        entries: List[_Entry]
    ) -> Optional[Ticket]:
        """Ticket values as they stand after this plan's mutations."""
        if live is None:
            try:
                return self.ticket_store.get_ticket(ticket_id)
            except Exception as e:
                logger.warning(f"Ticket {ticket_id}: could not read values for notification message: {e}")
                return None

        applied = {
            action.attribute: action.target_value
            for _, action, outcome, _, _ in entries
            if outcome == ExecutionOutcome.APPLIED and action.is_mutation
        }
        return live.model_copy(update=applied) if applied else live

    def _reread(self, ticket_id: str) -> Ticket:
        try:
            live = self.ticket_store.get_ticket(ticket_id)
        except Exception as e:
            raise ExecutionFailure(
                f"Failed to re-read ticket: {e}",
                component="RuleActionExecutor",
                context={"ticket_id": ticket_id}
            ) from e

        if live is None:
            raise TicketNotFoundError(
                "Ticket no longer exists",
                component="RuleActionExecutor",
                context={"ticket_id": ticket_id}
            )
        return live

    def _apply_mutations(self, live: Ticket, mutations: List[PlannedAction]) -> List[_Entry]:
        entries: List[_Entry] = []
        pending: List[PlannedAction] = []

        for planned in mutations:
            if live.attribute(planned.action.attribute) == planned.action.target_value:
                entries.append((planned.rule, planned.action, ExecutionOutcome.SKIPPED_DUPLICATE, None, None))
            else:
                pending.append(planned)

        if not pending:
            return entries

        try:
            self._commit(live, pending)
        except StaleTicketError as e:
            logger.info(f"Ticket {live.id} changed before write, skipping: {e.message}")
            entries.extend(
                (p.rule, p.action, ExecutionOutcome.SKIPPED_DUPLICATE, None, None) for p in pending
            )
            return entries

        for planned in pending:
            logger.info(
                f"Rule {planned.rule.id} set {planned.action.attribute}="
                f"'{planned.action.target_value}' on ticket {live.id}"
            )
            entries.append((planned.rule, planned.action, ExecutionOutcome.APPLIED, None, None))
        return entries

    def _commit(self, live: Ticket, pending: List[PlannedAction]) -> None:
        """
        Write pending mutations in one optimistic store call.

        Raises:
            StaleTicketError: If the ticket changed since it was re-read
            ExecutionFailure: If the store write failed
        """
        field_updates = {p.action.attribute: p.action.target_value for p in pending}

        try:
            written = self.ticket_store.apply_mutation(
                live.id,
                field_updates,
                expected_updated_at=live.updated_at
            )
        except Exception as e:
            raise ExecutionFailure(
                f"Ticket write failed: {e}",
                component="RuleActionExecutor",
                context={"ticket_id": live.id, "updates": field_updates}
            ) from e

        if not written:
            raise StaleTicketError(
                "Optimistic write rejected",
                component="RuleActionExecutor",
                context={"ticket_id": live.id, "expected_updated_at": live.updated_at.isoformat()}
            )

    def _dispatch(self, planned: PlannedAction, ticket_id: str, live: Optional[Ticket]) -> None:
        """Hand a notification to the dispatcher without waiting for delivery."""
        if self.dispatcher is None:
            logger.warning(
                f"Rule {planned.rule.id}: no notification dispatcher configured, "
                f"dropping message for {planned.action.target_value}"
            )
            return

        try:
            message = self._format_message(planned.rule, ticket_id, live)
            ack = self.dispatcher.send(planned.action.target_value, message)
        except Exception as e:
            failure = NotificationDispatchFailure(
                f"Dispatch to {planned.action.target_value} failed: {e}",
                component="RuleActionExecutor",
                context={"rule_id": planned.rule.id, "ticket_id": ticket_id}
            )
            logger.error(failure.message)
            return

        if hasattr(ack, "add_done_callback"):
            ack.add_done_callback(
                lambda fut: self._log_dispatch_result(fut, planned.rule.id, ticket_id)
            )

    @staticmethod
    def _log_dispatch_result(future: Any, rule_id: str, ticket_id: str) -> None:
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            logger.error(f"Notification for rule {rule_id} on ticket {ticket_id} failed: {error}")

    def _format_message(self, rule: Rule, ticket_id: str, live: Optional[Ticket]) -> str:
        """
        Format the message template with rule and ticket values.

        Supports placeholders like {rule_name}, {ticket_id}, {status}.
        """
        format_context: Dict[str, Any] = {
            "rule_id": rule.id,
            "rule_name": rule.name,
            "ticket_id": ticket_id
        }
        if live is not None:
            format_context.update({
                "subject": live.subject,
                "status": live.attribute("status"),
                "priority": live.attribute("priority"),
                "assignee": live.attribute("assignee"),
                "company": live.attribute("company"),
                "type": live.attribute("type")
            })

        try:
            return self.message_template.format(**format_context)
        except (KeyError, IndexError, ValueError, AttributeError) as e:
            logger.warning(f"Message template unusable for rule {rule.id}, using default: {e}")
            return DEFAULT_MESSAGE_TEMPLATE.format(**format_context)

    @staticmethod
    def _build_records(
        ticket_id: str,
        entries: List[_Entry],
        matched_at: datetime,
        cycle_id: Optional[str]
    ) -> List[ExecutionRecord]:
        """Group entries into one record per rule, outcome and superseding rule."""
        grouped: Dict[Tuple[str, ExecutionOutcome, Optional[str]], Dict[str, Any]] = {}

        for rule, action, outcome, superseded_by, error in entries:
            key = (rule.id, outcome, superseded_by)
            group = grouped.setdefault(key, {"rule": rule, "actions": [], "errors": []})
            group["actions"].append(action)
            if error and error not in group["errors"]:
                group["errors"].append(error)

        ordered = sorted(
            grouped.items(),
            key=lambda item: (item[1]["rule"].sort_key, list(ExecutionOutcome).index(item[0][1]))
        )

        return [
            ExecutionRecord(
                cycle_id=cycle_id,
                rule_id=group["rule"].id,
                rule_version=group["rule"].version,
                ticket_id=ticket_id,
                matched_at=matched_at,
                actions_applied=group["actions"],
                outcome=outcome,
                superseded_by=superseded_by,
                error="; ".join(group["errors"]) or None
            )
            for (_, outcome, superseded_by), group in ordered
        ]
