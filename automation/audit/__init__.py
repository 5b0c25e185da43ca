"""
Automation Audit Package

Exports the append-only execution audit log.
"""

from .audit_log import AuditLog

__all__ = ["AuditLog"]
