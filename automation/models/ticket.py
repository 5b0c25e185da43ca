"""
Ticket Models

Read-only ticket snapshots as seen by the automation engine, plus the
live value domains rule targets are validated against.
"""

from typing import Any, Dict, List, Mapping, Optional, Sequence
from types import MappingProxyType
from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field, field_validator

from automation.models.clock import ensure_utc


# Values a missing ticket attribute compares as
MISSING_VALUE_SENTINELS: Dict[str, str] = {
    "status": "Unknown",
    "priority": "Unknown",
    "assignee": "Unassigned",
    "company": "Unknown Company",
    "type": "Unknown Type",
}

MUTABLE_ATTRIBUTES = ("status", "priority", "assignee")


class Ticket(BaseModel):
    """
    Snapshot of one helpdesk ticket.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    subject: str = ""
    status: Optional[str] = None
    priority: Optional[str] = None
    assignee: Optional[str] = None
    company: Optional[str] = None
    type: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    @field_validator('id', mode='before')
    @classmethod
    def coerce_id(cls, v: Any) -> str:
        if v is None or not str(v).strip():
            raise ValueError("Ticket id must be non-empty")
        return str(v)

    @field_validator('status', 'priority', 'assignee', 'company', 'type', mode='before')
    @classmethod
    def blank_to_none(cls, v: Any) -> Optional[str]:
        if v is None:
            return None
        v = str(v).strip()
        return v or None

    @field_validator('created_at', 'updated_at')
    @classmethod
    def normalize_timestamps(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    def attribute(self, name: str) -> str:
        """
        Current value of a categorical or ordinal attribute.

        Missing values are reported as their domain sentinel (e.g. an
        unassigned ticket reports "Unassigned").
        """
        if name not in MISSING_VALUE_SENTINELS:
            raise KeyError(name)
        value = getattr(self, name)
        return value if value is not None else MISSING_VALUE_SENTINELS[name]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "subject": self.subject,
            "status": self.status,
            "priority": self.priority,
            "assignee": self.assignee,
            "company": self.company,
            "type": self.type,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat()
        }


class PriorityScale:
    """
    Read-only ordinal ranks for priorities (Low < Medium < High < Urgent).
    """

    def __init__(self, priorities: Sequence[str]):
        if not priorities:
            raise ValueError("Priority scale needs at least one level")
        self._ranks: Mapping[str, int] = MappingProxyType(
            {name: index for index, name in enumerate(priorities)}
        )

    def rank(self, priority: str) -> int:
        """
        Ordinal rank of a priority.

        Raises:
            KeyError: If the priority is not on the scale
        """
        return self._ranks[priority]

    def __contains__(self, priority: object) -> bool:
        return priority in self._ranks

    @property
    def levels(self) -> List[str]:
        return sorted(self._ranks, key=self._ranks.__getitem__)


class TicketDomain(BaseModel):
    """
    Live value domains of agents, priorities and statuses.
    """
    model_config = ConfigDict(frozen=True)

    statuses: List[str] = Field(default_factory=list)
    priorities: List[str] = Field(default_factory=list)
    agents: List[str] = Field(default_factory=list)
    closed_statuses: List[str] = Field(default_factory=list)

    @classmethod
    def from_config(cls, domain_config: Any) -> 'TicketDomain':
        """Build from a DomainConfig."""
        return cls(
            statuses=list(domain_config.statuses),
            priorities=list(domain_config.priorities),
            agents=list(domain_config.agents),
            closed_statuses=list(domain_config.closed_statuses),
        )

    def priority_scale(self) -> PriorityScale:
        return PriorityScale(self.priorities)

    def values_for(self, attribute: str) -> List[str]:
        """Allowed target values for a mutable ticket attribute."""
        if attribute == "status":
            return self.statuses
        if attribute == "priority":
            return self.priorities
        if attribute == "assignee":
            return self.agents
        raise KeyError(attribute)
