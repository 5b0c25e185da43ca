"""
Execution Models

Conflict-resolution plans, audit records and cycle reports.
"""

from enum import Enum
from typing import Any, Dict, List, Optional
from datetime import datetime
import uuid
from pydantic import BaseModel, ConfigDict, Field, field_validator

from automation.models.clock import ensure_utc, utc_now
from automation.models.rule import Rule, RuleAction


class ExecutionOutcome(str, Enum):
    """Outcome of one attempted rule application."""
    APPLIED = "applied"
    SKIPPED_DUPLICATE = "skipped_duplicate"
    FAILED = "failed"


class CycleState(str, Enum):
    """Phases of one evaluation cycle."""
    IDLE = "idle"
    FETCHING = "fetching"
    MATCHING = "matching"
    RESOLVING = "resolving"
    EXECUTING = "executing"
    RECORDING = "recording"


class PlannedAction(BaseModel):
    """An action kept by conflict resolution, with the rule that owns it."""
    model_config = ConfigDict(frozen=True)

    rule: Rule
    action: RuleAction


class SupersededAction(BaseModel):
    """An action dropped by conflict resolution."""
    model_config = ConfigDict(frozen=True)

    rule: Rule
    action: RuleAction
    superseded_by: str


class ResolutionPlan(BaseModel):
    """
    The single applicable action set for one ticket in one cycle.
    """
    ticket_id: str
    matched_rules: List[Rule] = Field(default_factory=list)
    mutations: List[PlannedAction] = Field(default_factory=list)
    notifications: List[PlannedAction] = Field(default_factory=list)
    superseded: List[SupersededAction] = Field(default_factory=list)

    def field_updates(self) -> Dict[str, str]:
        """Attribute -> target value for every kept mutation."""
        return {p.action.attribute: p.action.target_value for p in self.mutations}

    @property
    def is_empty(self) -> bool:
        return not (self.mutations or self.notifications or self.superseded)


class ExecutionRecord(BaseModel):
    """
    Immutable audit entry for one rule/ticket/outcome within a cycle.

    ``actions_applied`` lists the actions this record covers: the applied
    ones, the skipped ones, or the ones whose write failed.
    """
    model_config = ConfigDict(frozen=True)

    record_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    cycle_id: Optional[str] = None
    rule_id: str
    rule_version: int
    ticket_id: str
    matched_at: datetime
    actions_applied: List[RuleAction] = Field(default_factory=list)
    outcome: ExecutionOutcome
    superseded_by: Optional[str] = None
    error: Optional[str] = None

    @field_validator('matched_at')
    @classmethod
    def normalize_matched_at(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "record_id": self.record_id,
            "cycle_id": self.cycle_id,
            "rule_id": self.rule_id,
            "rule_version": self.rule_version,
            "ticket_id": self.ticket_id,
            "matched_at": self.matched_at.isoformat(),
            "actions_applied": [a.to_dict() for a in self.actions_applied],
            "outcome": self.outcome.value,
            "superseded_by": self.superseded_by,
            "error": self.error
        }


class CycleReport(BaseModel):
    """
    Summary of one evaluation cycle.
    """
    cycle_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    trigger: str = "schedule"
    started_at: datetime = Field(default_factory=utc_now)
    finished_at: Optional[datetime] = None
    rules_evaluated: int = 0
    tickets_fetched: int = 0
    tickets_evaluated: int = 0
    tickets_matched: int = 0
    tickets_deferred: int = 0
    tickets_failed: int = 0
    outcomes: Dict[str, int] = Field(
        default_factory=lambda: {outcome.value: 0 for outcome in ExecutionOutcome}
    )
    executed_rule_ids: List[str] = Field(default_factory=list)
    audit_failures: int = 0
    cancelled: bool = False
    aborted: bool = False
    error: Optional[str] = None

    @property
    def applied_count(self) -> int:
        return self.outcomes.get(ExecutionOutcome.APPLIED.value, 0)

    @property
    def duration_ms(self) -> float:
        if self.finished_at is None:
            return 0.0
        return (self.finished_at - self.started_at).total_seconds() * 1000

    def count(self, record: ExecutionRecord) -> None:
        self.outcomes[record.outcome.value] = self.outcomes.get(record.outcome.value, 0) + 1

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "cycle_id": self.cycle_id,
            "trigger": self.trigger,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "duration_ms": round(self.duration_ms, 2),
            "rules_evaluated": self.rules_evaluated,
            "tickets_fetched": self.tickets_fetched,
            "tickets_evaluated": self.tickets_evaluated,
            "tickets_matched": self.tickets_matched,
            "tickets_deferred": self.tickets_deferred,
            "tickets_failed": self.tickets_failed,
            "outcomes": dict(self.outcomes),
            "executed_rule_ids": list(self.executed_rule_ids),
            "audit_failures": self.audit_failures,
            "cancelled": self.cancelled,
            "aborted": self.aborted,
            "error": self.error
        }
