"""
Rule Repository

SQLite-backed store of rule definitions.
"""

import json
import logging
import uuid
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence

from automation.models import Rule, RuleCondition, RuleAction, TicketDomain, ensure_utc, utc_now
from automation.parser import RuleParser
from database import DatabaseManager
from exceptions import DatabaseError, RepositoryUnavailableError, RuleNotFoundError, RuleValidationError


logger = logging.getLogger("DeskPilotRuleRepository")

_COLUMNS = (
    "id, name, description, trigger_conditions, actions, is_active, version, "
    "created_at, updated_at, last_executed_at"
)


def _iso(value: Optional[datetime]) -> Optional[str]:
    value = ensure_utc(value)
    return value.isoformat() if value else None


class SQLiteRuleRepository:
    """
    Read/write store of rule definitions.

    Condition and action lists are stored as JSON arrays so their order
    survives a round trip. Every definition edit bumps ``version``;
    toggling ``is_active`` and recording executions do not.
    """

    def __init__(
        self,
        db_manager: DatabaseManager,
        domain: Optional[TicketDomain] = None,
        parser: Optional[RuleParser] = None
    ):
        """
        Initialize the repository.

        Args:
            db_manager: Database manager instance
            domain: Live domain rule targets are validated against
            parser: Rule parser used for validation
        """
        self.db_manager = db_manager
        self.domain = domain
        self.parser = parser or RuleParser(domain)
        self.component_id = "RuleRepository"

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_rule(row) -> Rule:
        return Rule(
            id=row[0],
            name=row[1],
            description=row[2] or "",
            trigger_conditions=[RuleCondition(**c) for c in json.loads(row[3])],
            actions=[RuleAction(**a) for a in json.loads(row[4])],
            is_active=bool(row[5]),
            version=int(row[6]),
            created_at=datetime.fromisoformat(row[7]),
            updated_at=datetime.fromisoformat(row[8]),
            last_executed_at=datetime.fromisoformat(row[9]) if row[9] else None
        )

    @staticmethod
    def _rule_params(rule: Rule) -> tuple:
        return (
            rule.id,
            rule.name,
            rule.description,
            json.dumps([c.to_dict() for c in rule.trigger_conditions]),
            json.dumps([a.to_dict() for a in rule.actions]),
            1 if rule.is_active else 0,
            rule.version,
            _iso(rule.created_at),
            _iso(rule.updated_at or rule.created_at),
            _iso(rule.last_executed_at)
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def list_active_rules(self) -> List[Rule]:
        """
        All active rules in creation order.

        Raises:
            RepositoryUnavailableError: If the rules cannot be read
        """
        return self._query_rules(
            f"SELECT {_COLUMNS} FROM rules WHERE is_active = 1 ORDER BY created_at, id"
        )

    def list_rules(self, active_only: bool = False) -> List[Rule]:
        """All rules in creation order."""
        if active_only:
            return self.list_active_rules()
        return self._query_rules(f"SELECT {_COLUMNS} FROM rules ORDER BY created_at, id")

    def _query_rules(self, query: str, params: Sequence[Any] = ()) -> List[Rule]:
        try:
            with self.db_manager.connection() as conn:
                rows = conn.execute(query, tuple(params)).fetchall()
            return [self._row_to_rule(row) for row in rows]
        except (DatabaseError, ValueError) as e:
            raise RepositoryUnavailableError(
                f"Failed to load rules: {e}",
                component=self.component_id
            )

    def get(self, rule_id: str) -> Optional[Rule]:
        """
        Get a rule by ID.

        Returns:
            Rule or None if not found
        """
        rules = self._query_rules(f"SELECT {_COLUMNS} FROM rules WHERE id = ?", (rule_id,))
        return rules[0] if rules else None

    def require(self, rule_id: str) -> Rule:
        """
        Get a rule by ID or raise.

        Raises:
            RuleNotFoundError: If the rule does not exist
        """
        rule = self.get(rule_id)
        if rule is None:
            raise RuleNotFoundError(f"Rule not found: {rule_id}", component=self.component_id)
        return rule

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(
        self,
        name: str,
        trigger_conditions: Sequence[Any],
        actions: Sequence[Any],
        description: str = "",
        rule_id: Optional[str] = None,
        is_active: bool = True,
        created_at: Optional[datetime] = None
    ) -> Rule:
        """
        Create and store a new rule.

        Conditions and actions may be model instances or plain dicts.

        Raises:
            RuleValidationError: If the definition is invalid
        """
        now = created_at or utc_now()
        rule = self.parser.parse_dict({
            "id": rule_id or uuid.uuid4().hex,
            "name": name,
            "description": description,
            "trigger_conditions": [self._as_dict(c) for c in trigger_conditions],
            "actions": [self._as_dict(a) for a in actions],
            "is_active": is_active,
            "created_at": now,
            "updated_at": now
        })
        return self.add(rule)

    def add(self, rule: Rule) -> Rule:
        """
        Store an already-built rule (e.g. imported from YAML).

        Raises:
            RuleValidationError: If the rule is invalid or the id is taken
        """
        self.parser.ensure_valid(rule, self.domain)

        if self.get(rule.id) is not None:
            raise RuleValidationError(
                f"Rule already exists: {rule.id}",
                component=self.component_id,
                context={"rule_id": rule.id}
            )

        with self.db_manager.transaction() as conn:
            conn.execute(
                f"INSERT INTO rules ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                self._rule_params(rule)
            )

        logger.info(f"Added rule: {rule.id} ({rule.name})")
        return rule

    def update(
        self,
        rule_id: str,
        name: Optional[str] = None,
        trigger_conditions: Optional[Sequence[Any]] = None,
        actions: Optional[Sequence[Any]] = None,
        description: Optional[str] = None
    ) -> Rule:
        """
        Edit a rule definition. The version increments when anything changed.

        Raises:
            RuleNotFoundError: If the rule does not exist
            RuleValidationError: If the new definition is invalid
        """
        current = self.require(rule_id)

        candidate = self.parser.parse_dict({
            "id": current.id,
            "name": name if name is not None else current.name,
            "description": description if description is not None else current.description,
            "trigger_conditions": [
                self._as_dict(c) for c in (trigger_conditions if trigger_conditions is not None else current.trigger_conditions)
            ],
            "actions": [self._as_dict(a) for a in (actions if actions is not None else current.actions)],
            "is_active": current.is_active,
            "created_at": current.created_at,
            "last_executed_at": current.last_executed_at
        })

        if candidate.definition_equals(current):
            return current

        updated = candidate.model_copy(update={
            "version": current.version + 1,
            "updated_at": utc_now()
        })
        self.parser.ensure_valid(updated, self.domain)

        with self.db_manager.transaction() as conn:
            conn.execute(
                """UPDATE rules SET name = ?, description = ?, trigger_conditions = ?,
                       actions = ?, version = ?, updated_at = ?
                   WHERE id = ?""",
                (
                    updated.name,
                    updated.description,
                    json.dumps([c.to_dict() for c in updated.trigger_conditions]),
                    json.dumps([a.to_dict() for a in updated.actions]),
                    updated.version,
                    _iso(updated.updated_at),
                    updated.id
                )
            )

        logger.info(f"Updated rule: {rule_id} (version {updated.version})")
        return updated

    def set_active(self, rule_id: str, is_active: bool) -> Rule:
        """
        Enable or disable a rule without touching its version.

        Raises:
            RuleNotFoundError: If the rule does not exist
        """
        current = self.require(rule_id)
        if current.is_active == is_active:
            return current

        with self.db_manager.transaction() as conn:
            conn.execute(
                "UPDATE rules SET is_active = ? WHERE id = ?",
                (1 if is_active else 0, rule_id)
            )

        logger.info(f"Rule {rule_id} {'enabled' if is_active else 'disabled'}")
        return current.model_copy(update={"is_active": is_active})

    def delete(self, rule_id: str) -> bool:
        """
        Remove a rule. Its audit history is kept.

        Returns:
            True if a rule was deleted
        """
        with self.db_manager.transaction() as conn:
            cursor = conn.execute("DELETE FROM rules WHERE id = ?", (rule_id,))
            deleted = (cursor.rowcount or 0) > 0

        if deleted:
            logger.info(f"Removed rule: {rule_id}")
        return deleted

    def mark_executed(self, rule_ids: Iterable[str], executed_at: datetime) -> int:
        """
        Record that rules produced applied actions.

        Rules deleted since the cycle started are skipped silently.

        Returns:
            Number of rules updated
        """
        ids = list(dict.fromkeys(rule_ids))
        if not ids:
            return 0

        with self.db_manager.transaction() as conn:
            cursor = conn.executemany(
                "UPDATE rules SET last_executed_at = ? WHERE id = ?",
                [(_iso(executed_at), rule_id) for rule_id in ids]
            )
            return int(cursor.rowcount or 0)

    def import_directory(self, directory: str, replace: bool = False) -> List[Rule]:
        """
        Load YAML rule files from a directory.

        Args:
            directory: Directory containing rule files
            replace: Update rules whose id already exists instead of skipping them

        Returns:
            Rules that were added or updated
        """
        imported = []
        for rule in self.parser.parse_multiple_files(directory):
            try:
                if self.get(rule.id) is None:
                    imported.append(self.add(rule))
                elif replace:
                    imported.append(self.update(
                        rule.id,
                        name=rule.name,
                        trigger_conditions=rule.trigger_conditions,
                        actions=rule.actions,
                        description=rule.description
                    ))
                else:
                    logger.debug(f"Rule {rule.id} already present, skipping")
            except RuleValidationError as e:
                logger.warning(f"Skipping rule {rule.id}: {e.message}")

        logger.info(f"Imported {len(imported)} rule(s) from {directory}")
        return imported

    @staticmethod
    def _as_dict(item: Any) -> Dict[str, Any]:
        if isinstance(item, (RuleCondition, RuleAction)):
            return item.to_dict()
        return dict(item)
