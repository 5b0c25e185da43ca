"""
Automation Repository Package

Exports the rule repository and ticket store adapters.
"""

from .rule_repository import SQLiteRuleRepository
from .ticket_store import TicketStore, InMemoryTicketStore, SQLiteTicketStore

__all__ = [
    "SQLiteRuleRepository",
    "TicketStore",
    "InMemoryTicketStore",
    "SQLiteTicketStore"
]
