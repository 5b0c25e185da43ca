"""
Rule Matcher

Combines a rule's conditions and filters out rules that would change nothing.
"""

import logging
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from automation.models import Rule, Ticket
from automation.evaluator.condition_evaluator import ConditionEvaluator


logger = logging.getLogger("DeskPilotMatcher")


def order_by_creation(rules: Iterable[Rule]) -> List[Rule]:
    """Sort rules by creation time, breaking ties by id."""
    return sorted(rules, key=lambda rule: rule.sort_key)


class RuleMatcher:
    """
    Match rules against tickets.
    """

    def __init__(self, evaluator: Optional[ConditionEvaluator] = None):
        self.evaluator = evaluator or ConditionEvaluator()

    def match(self, rule: Rule, ticket: Ticket, now: datetime) -> bool:
        """
        Check whether a rule applies to a ticket.

        A rule matches when it is active, every condition holds, and it is
        not a no-op for the ticket.

        Args:
            rule: Rule to check
            ticket: Ticket snapshot
            now: Evaluation instant

        Returns:
            True if the rule should fire for the ticket
        """
        if not self.conditions_hold(rule, ticket, now):
            return False

        if self.is_noop(rule, ticket):
            logger.debug(f"Rule {rule.id} is a no-op for ticket {ticket.id}")
            return False

        return True

    def conditions_hold(self, rule: Rule, ticket: Ticket, now: datetime) -> bool:
        """Whether the rule is active and all of its conditions are true."""
        if not rule.is_active:
            return False

        # Evaluate every condition so each evaluation error gets logged
        results = [self.evaluator.check(cond, ticket, now) for cond in rule.trigger_conditions]
        return all(results)

    @staticmethod
    def is_noop(rule: Rule, ticket: Ticket) -> bool:
        """
        Whether firing the rule would leave the ticket unchanged.

        True when the rule has state-changing actions and all of them already
        match the ticket. Its notifications are then not sent again either.
        Rules that only notify are never no-ops.
        """
        mutations = rule.mutation_actions()
        if not mutations:
            return False

        return all(
            ticket.attribute(action.attribute) == action.target_value
            for action in mutations
        )

    def match_all(
        self,
        rules: Iterable[Rule],
        tickets: Iterable[Ticket],
        now: datetime
    ) -> Dict[str, List[Rule]]:
        """
        Match every rule against every ticket.

        Args:
            rules: Rules to check
            tickets: Ticket snapshots
            now: Evaluation instant

        Returns:
            Mapping of ticket id to its matched rules in creation order.
            Tickets without matches are omitted.
        """
        ordered = order_by_creation(rules)
        matches: Dict[str, List[Rule]] = {}

        for ticket in tickets:
            matched = self.match_ticket(ordered, ticket, now)
            if matched:
                matches[ticket.id] = matched

        return matches

    def match_ticket(self, rules: Iterable[Rule], ticket: Ticket, now: datetime) -> List[Rule]:
        """Rules matching one ticket, in creation order."""
        return [rule for rule in order_by_creation(rules) if self.match(rule, ticket, now)]

    def partition_ticket(
        self,
        rules: Iterable[Rule],
        ticket: Ticket,
        now: datetime
    ) -> Tuple[List[Rule], List[Rule]]:
        """
        Split the rules whose conditions hold for a ticket.

        Returns:
            (matched, holding): matched rules fire; holding rules are no-ops
            whose values are already in place. Holding rules still count
            as earlier claims on their attributes during conflict
            resolution, so a later rule cannot undo them.
        """
        matched: List[Rule] = []
        holding: List[Rule] = []
        for rule in order_by_creation(rules):
            if not self.conditions_hold(rule, ticket, now):
                continue
            if self.is_noop(rule, ticket):
                holding.append(rule)
            else:
                matched.append(rule)
        return matched, holding
