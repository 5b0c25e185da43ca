"""
Automation Parser Package

Exports the YAML rule parser.
"""

from .rule_parser import RuleParser

__all__ = ["RuleParser"]
