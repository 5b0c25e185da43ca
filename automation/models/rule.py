"""
Rule Models

Defines data models for ticket automation rules.
"""

from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator, model_validator
from datetime import datetime
import re

from automation.models.clock import ensure_utc


class ConditionField(str, Enum):
    """Ticket attributes a condition can test."""
    STATUS = "status"
    PRIORITY = "priority"
    ASSIGNEE = "assignee"
    COMPANY = "company"
    TYPE = "type"
    AGE_DAYS = "age_days"
    TIME_SINCE_UPDATE_HOURS = "time_since_update_hours"


class ConditionOperator(str, Enum):
    """Operators for condition evaluation."""
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"


class FieldKind(str, Enum):
    """How a field's values compare."""
    CATEGORICAL = "categorical"
    ORDINAL = "ordinal"
    NUMERIC = "numeric"


FIELD_KINDS: Dict[ConditionField, FieldKind] = {
    ConditionField.STATUS: FieldKind.CATEGORICAL,
    ConditionField.ASSIGNEE: FieldKind.CATEGORICAL,
    ConditionField.COMPANY: FieldKind.CATEGORICAL,
    ConditionField.TYPE: FieldKind.CATEGORICAL,
    ConditionField.PRIORITY: FieldKind.ORDINAL,
    ConditionField.AGE_DAYS: FieldKind.NUMERIC,
    ConditionField.TIME_SINCE_UPDATE_HOURS: FieldKind.NUMERIC,
}

ALLOWED_OPERATORS: Dict[FieldKind, frozenset] = {
    FieldKind.CATEGORICAL: frozenset({ConditionOperator.EQUALS, ConditionOperator.NOT_EQUALS}),
    FieldKind.ORDINAL: frozenset({
        ConditionOperator.EQUALS,
        ConditionOperator.GREATER_THAN,
        ConditionOperator.LESS_THAN,
    }),
    FieldKind.NUMERIC: frozenset({
        ConditionOperator.EQUALS,
        ConditionOperator.GREATER_THAN,
        ConditionOperator.LESS_THAN,
    }),
}


class ActionType(str, Enum):
    """Consequence actions a rule can take."""
    REASSIGN = "reassign"
    UPDATE_PRIORITY = "update_priority"
    UPDATE_STATUS = "update_status"
    SEND_NOTIFICATION = "send_notification"


# Ticket attribute each action writes; notifications write nothing
ACTION_ATTRIBUTES: Dict[ActionType, str] = {
    ActionType.REASSIGN: "assignee",
    ActionType.UPDATE_PRIORITY: "priority",
    ActionType.UPDATE_STATUS: "status",
    ActionType.SEND_NOTIFICATION: "notification",
}

NOTIFICATION_KEY = "notification"


def allowed_operators(field: ConditionField) -> frozenset:
    """Operators permitted for a condition field."""
    return ALLOWED_OPERATORS[FIELD_KINDS[field]]


class RuleCondition(BaseModel):
    """
    A single condition in a rule.

    Example:
        field: "time_since_update_hours"
        operator: "greater_than"
        value: 24
    """
    model_config = ConfigDict(frozen=True)

    field: ConditionField = Field(..., description="Ticket attribute to evaluate")
    operator: ConditionOperator = Field(..., description="Comparison operator")
    value: Any = Field(..., description="Value to compare against")

    @field_validator('value')
    @classmethod
    def validate_value(cls, v: Any, info: ValidationInfo) -> Any:
        """Check the value type against the field kind."""
        field = info.data.get('field')
        if field is None:
            return v

        if isinstance(v, bool) or v is None:
            raise ValueError(f"Invalid value for '{field.value}': {v!r}")

        if FIELD_KINDS[field] == FieldKind.NUMERIC:
            if isinstance(v, str):
                try:
                    v = int(v) if v.strip().isdigit() else float(v)
                except ValueError:
                    raise ValueError(f"'{field.value}' requires a number, got {v!r}")
            if not isinstance(v, (int, float)):
                raise ValueError(f"'{field.value}' requires a number, got {v!r}")
            if v < 0:
                raise ValueError(f"'{field.value}' must be non-negative, got {v}")
            return v

        if not isinstance(v, str) or not v.strip():
            raise ValueError(f"'{field.value}' requires a non-empty string, got {v!r}")
        return v.strip()

    @model_validator(mode='after')
    def validate_operator(self) -> 'RuleCondition':
        """Reject operators the field does not support."""
        if self.operator not in allowed_operators(self.field):
            raise ValueError(
                f"Operator '{self.operator.value}' is not allowed for field '{self.field.value}'"
            )
        return self

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "field": self.field.value,
            "operator": self.operator.value,
            "value": self.value
        }


class RuleAction(BaseModel):
    """
    Action to execute when rule triggers.
    """
    model_config = ConfigDict(frozen=True)

    type: ActionType = Field(..., description="Action type (e.g., 'reassign', 'update_status')")
    target_value: str = Field(..., description="New attribute value, or notification recipient")

    @field_validator('target_value', mode='before')
    @classmethod
    def validate_target_value(cls, v: Any) -> str:
        """Require a non-empty target."""
        if v is None or isinstance(v, bool) or not str(v).strip():
            raise ValueError("Action target_value must be non-empty")
        return str(v).strip()

    @property
    def attribute(self) -> str:
        """Attribute key this action writes (or 'notification')."""
        return ACTION_ATTRIBUTES[self.type]

    @property
    def is_mutation(self) -> bool:
        """Whether the action changes ticket state."""
        return self.type != ActionType.SEND_NOTIFICATION

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "type": self.type.value,
            "target_value": self.target_value
        }


class Rule(BaseModel):
    """
    Administrator-authored automation rule.

    Conditions are AND-combined; condition and action order is preserved
    through storage because the executor and tie-breaks rely on it.
    """
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Unique rule identifier")
    name: str = Field(..., description="Human-readable rule name")
    description: str = Field(default="", description="Rule description")

    trigger_conditions: List[RuleCondition] = Field(..., description="Conditions, all of which must hold")
    actions: List[RuleAction] = Field(..., description="Actions to execute when triggered")

    is_active: bool = Field(default=True, description="Whether rule is evaluated")
    version: int = Field(default=1, description="Incremented on every definition edit")

    created_at: datetime
    updated_at: Optional[datetime] = None
    last_executed_at: Optional[datetime] = None

    @field_validator('id')
    @classmethod
    def validate_id(cls, v: str) -> str:
        """Validate rule ID format."""
        if not re.match(r'^[a-z0-9_-]+$', v):
            raise ValueError("Rule ID must contain only lowercase letters, numbers, hyphens, and underscores")
        return v

    @field_validator('name')
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("Rule name must be non-empty")
        return v.strip()

    @field_validator('trigger_conditions')
    @classmethod
    def validate_conditions(cls, v: List[RuleCondition]) -> List[RuleCondition]:
        """Ensure at least one condition is defined."""
        if not v:
            raise ValueError("At least one condition must be defined")
        return v

    @field_validator('actions')
    @classmethod
    def validate_actions(cls, v: List[RuleAction]) -> List[RuleAction]:
        """Ensure at least one action is defined."""
        if not v:
            raise ValueError("At least one action must be defined")
        return v

    @field_validator('version')
    @classmethod
    def validate_version(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Version must be at least 1")
        return v

    @field_validator('created_at', 'updated_at', 'last_executed_at')
    @classmethod
    def normalize_timestamps(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v)

    @property
    def sort_key(self):
        """Creation order, with the id as a stable tie-break."""
        return (self.created_at, self.id)

    def mutation_actions(self) -> List[RuleAction]:
        return [a for a in self.actions if a.is_mutation]

    def notification_actions(self) -> List[RuleAction]:
        return [a for a in self.actions if not a.is_mutation]

    def definition_equals(self, other: 'Rule') -> bool:
        """Whether two rules share the same editable definition."""
        return (
            self.name == other.name
            and self.description == other.description
            and self.trigger_conditions == other.trigger_conditions
            and self.actions == other.actions
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "trigger_conditions": [c.to_dict() for c in self.trigger_conditions],
            "actions": [a.to_dict() for a in self.actions],
            "is_active": self.is_active,
            "version": self.version,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "last_executed_at": self.last_executed_at.isoformat() if self.last_executed_at else None
        }


class ValidationResult(BaseModel):
    """
    Result of validating a rule.
    """
    valid: bool
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
