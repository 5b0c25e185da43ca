"""
Conflict Resolver

Turns the rules matched for one ticket into a single applicable action set.
"""

import logging
from typing import Dict, Iterable, List, Set

from automation.models import (
    Rule,
    Ticket,
    PlannedAction,
    SupersededAction,
    ResolutionPlan
)
from automation.evaluator.rule_matcher import order_by_creation


logger = logging.getLogger("DeskPilotResolver")


class ConflictResolver:
    """
    Resolve competing actions on the same ticket attribute.

    Actions are partitioned by attribute key (status, priority, assignee,
    notification). Notifications never conflict. For every other key the
    action of the earliest-created matching rule wins; the rest are
    superseded and point at the winning rule. Rules are re-sorted by
    (created_at, id), so the result does not depend on input order.

    Holding rules are rules whose conditions hold but whose values are
    already on the ticket. They take part in winner selection without
    producing actions of their own, so an earlier rule that already got
    its way keeps blocking later rules on the following cycles.
    """

    def resolve(
        self,
        ticket: Ticket,
        matched_rules: Iterable[Rule],
        holding_rules: Iterable[Rule] = ()
    ) -> ResolutionPlan:
        """
        Build the resolution plan for one ticket.

        Args:
            ticket: Ticket the rules matched
            matched_rules: Rules that matched the ticket
            holding_rules: Rules whose conditions hold but are no-ops

        Returns:
            ResolutionPlan with kept mutations, notifications and superseded actions
        """
        matched = order_by_creation(matched_rules)
        matched_ids = {rule.id for rule in matched}
        holding = [rule for rule in holding_rules if rule.id not in matched_ids]
        holding_ids: Set[str] = {rule.id for rule in holding}
        ordered = order_by_creation(matched + holding)

        winners: Dict[str, PlannedAction] = {}
        notifications: List[PlannedAction] = []
        superseded: List[SupersededAction] = []

        for rule in ordered:
            is_holding = rule.id in holding_ids
            for action in rule.actions:
                if not action.is_mutation:
                    if not is_holding:
                        notifications.append(PlannedAction(rule=rule, action=action))
                    continue

                current = winners.get(action.attribute)
                if current is None:
                    winners[action.attribute] = PlannedAction(rule=rule, action=action)
                    continue

                if not is_holding:
                    superseded.append(
                        SupersededAction(rule=rule, action=action, superseded_by=current.rule.id)
                    )

        if superseded:
            logger.debug(
                f"Ticket {ticket.id}: {len(superseded)} conflicting action(s) superseded"
            )

        return ResolutionPlan(
            ticket_id=ticket.id,
            matched_rules=matched,
            mutations=[p for p in winners.values() if p.rule.id not in holding_ids],
            notifications=notifications,
            superseded=superseded
        )
