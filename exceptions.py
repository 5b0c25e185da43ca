"""
Custom Exception Hierarchy for DeskPilot
Provides structured error handling with context preservation.
"""
from typing import Optional, Dict, Any


class DeskPilotError(Exception):
    """Base exception for all DeskPilot errors."""

    def __init__(
        self,
        message: str,
        component: Optional[str] = None,
        trace_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.component = component
        self.trace_id = trace_id
        self.context = context or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for structured logging."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "component": self.component,
            "trace_id": self.trace_id,
            "context": self.context
        }


# -------------------------------------------------------------------------
# CONFIGURATION ERRORS
# -------------------------------------------------------------------------

class ConfigurationError(DeskPilotError):
    """Raised when configuration is invalid or missing."""
    pass


# -------------------------------------------------------------------------
# RULE DEFINITION ERRORS
# -------------------------------------------------------------------------

class RuleValidationError(DeskPilotError):
    """Raised when a rule definition is malformed or targets unknown values."""
    pass


class RuleNotFoundError(DeskPilotError):
    """Raised when a rule id does not exist in the repository."""
    pass


# -------------------------------------------------------------------------
# EVALUATION ERRORS
# -------------------------------------------------------------------------

class ConditionEvaluationError(DeskPilotError):
    """
    Raised when a condition cannot be evaluated against a ticket.
    Always logged and treated as a false condition by the matcher.
    """
    pass


# -------------------------------------------------------------------------
# REPOSITORY ERRORS
# -------------------------------------------------------------------------

class RepositoryUnavailableError(DeskPilotError):
    """Raised when rules or tickets cannot be fetched. Aborts the whole cycle."""
    pass


class TicketNotFoundError(DeskPilotError):
    """Raised when a ticket disappeared from the store."""
    pass


# -------------------------------------------------------------------------
# EXECUTION ERRORS
# -------------------------------------------------------------------------

class StaleTicketError(DeskPilotError):
    """Raised when an optimistic ticket write lost the race."""
    pass


class ExecutionFailure(DeskPilotError):
    """Raised when writing a ticket mutation to the store fails."""
    pass


class NotificationDispatchFailure(DeskPilotError):
    """Raised when a notification cannot be handed to its channel."""
    pass


# -------------------------------------------------------------------------
# AUDIT ERRORS
# -------------------------------------------------------------------------

class AuditLogError(DeskPilotError):
    """Raised when an execution record cannot be stored or queried."""
    pass


# -------------------------------------------------------------------------
# DATABASE ERRORS
# -------------------------------------------------------------------------

class DatabaseError(DeskPilotError):
    """Base class for database-related errors."""
    pass


class ConnectionPoolExhaustedError(DatabaseError):
    """Raised when database connection pool is exhausted."""
    pass


class TransactionError(DatabaseError):
    """Raised when database transaction fails."""
    pass


class QueryExecutionError(DatabaseError):
    """Raised when database query execution fails."""
    pass


# -------------------------------------------------------------------------
# SYSTEM ERRORS
# -------------------------------------------------------------------------

class ComponentInitializationError(DeskPilotError):
    """Raised when component fails to initialize."""
    pass
