"""
Automation Resolver Package

Exports the conflict resolver.
"""

from .conflict_resolver import ConflictResolver

__all__ = ["ConflictResolver"]
