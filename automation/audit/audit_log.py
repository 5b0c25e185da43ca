"""
Audit Log

Append-only record of every rule application attempt.
"""

import json
import logging
from datetime import datetime
from typing import Dict, List, Optional

from automation.models import ExecutionOutcome, ExecutionRecord, RuleAction
from database import DatabaseManager
from exceptions import AuditLogError, DatabaseError


logger = logging.getLogger("DeskPilotAuditLog")

_COLUMNS = (
    "record_id, cycle_id, rule_id, rule_version, ticket_id, matched_at, "
    "actions_applied, outcome, superseded_by, error"
)


class AuditLog:
    """
    Append-only store of ExecutionRecords.

    Records are never updated or deleted here; retention pruning happens
    outside the engine.
    """

    def __init__(self, db_manager: DatabaseManager):
        """
        Initialize the audit log with a database manager.

        Args:
            db_manager: Database manager instance
        """
        self.db_manager = db_manager
        self.component_id = "AUDIT_LOG_V1"

    def record(self, record: ExecutionRecord) -> None:
        """
        Append one execution record.

        Raises:
            AuditLogError: If the record cannot be stored
        """
        try:
            with self.db_manager.transaction() as conn:
                conn.execute(
                    f"INSERT INTO execution_records ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        record.record_id,
                        record.cycle_id,
                        record.rule_id,
                        record.rule_version,
                        record.ticket_id,
                        record.matched_at.isoformat(),
                        json.dumps([a.to_dict() for a in record.actions_applied]),
                        record.outcome.value,
                        record.superseded_by,
                        record.error
                    )
                )
        except DatabaseError as e:
            raise AuditLogError(
                f"Failed to store execution record: {e.message}",
                component=self.component_id,
                context={"record_id": record.record_id, "rule_id": record.rule_id, "ticket_id": record.ticket_id}
            )

        logger.debug(
            f"[AUDIT] rule={record.rule_id} v{record.rule_version} ticket={record.ticket_id} "
            f"outcome={record.outcome.value}"
        )

    @staticmethod
    def _row_to_record(row) -> ExecutionRecord:
        return ExecutionRecord(
            record_id=row[0],
            cycle_id=row[1],
            rule_id=row[2],
            rule_version=row[3],
            ticket_id=row[4],
            matched_at=datetime.fromisoformat(row[5]),
            actions_applied=[RuleAction(**a) for a in json.loads(row[6])],
            outcome=ExecutionOutcome(row[7]),
            superseded_by=row[8],
            error=row[9]
        )

    def query(
        self,
        rule_id: Optional[str] = None,
        ticket_id: Optional[str] = None,
        outcome: Optional[ExecutionOutcome] = None,
        cycle_id: Optional[str] = None,
        limit: int = 100
    ) -> List[ExecutionRecord]:
        """
        Retrieve records, newest first, with optional filtering.

        Raises:
            AuditLogError: If the query fails
        """
        query = f"SELECT {_COLUMNS} FROM execution_records"
        params = []
        where_clauses = []

        if rule_id:
            where_clauses.append("rule_id = ?")
            params.append(rule_id)

        if ticket_id:
            where_clauses.append("ticket_id = ?")
            params.append(ticket_id)

        if outcome:
            where_clauses.append("outcome = ?")
            params.append(ExecutionOutcome(outcome).value)

        if cycle_id:
            where_clauses.append("cycle_id = ?")
            params.append(cycle_id)

        if where_clauses:
            query += " WHERE " + " AND ".join(where_clauses)

        query += " ORDER BY seq DESC LIMIT ?"
        params.append(limit)

        try:
            with self.db_manager.connection() as conn:
                rows = conn.execute(query, tuple(params)).fetchall()
        except DatabaseError as e:
            raise AuditLogError(
                f"Failed to query execution records: {e.message}",
                component=self.component_id
            )

        return [self._row_to_record(row) for row in rows]

    def get_rule_history(self, rule_id: str, limit: int = 100) -> List[ExecutionRecord]:
        """Records for one rule, newest first."""
        return self.query(rule_id=rule_id, limit=limit)

    def get_ticket_history(self, ticket_id: str, limit: int = 100) -> List[ExecutionRecord]:
        """Records for one ticket, newest first."""
        return self.query(ticket_id=ticket_id, limit=limit)

    def count_by_outcome(self, rule_id: Optional[str] = None) -> Dict[str, int]:
        """
        Count records per outcome, optionally for one rule.
        """
        query = "SELECT outcome, COUNT(*) FROM execution_records"
        params = []
        if rule_id:
            query += " WHERE rule_id = ?"
            params.append(rule_id)
        query += " GROUP BY outcome"

        try:
            with self.db_manager.connection() as conn:
                rows = conn.execute(query, tuple(params)).fetchall()
        except DatabaseError as e:
            raise AuditLogError(
                f"Failed to count execution records: {e.message}",
                component=self.component_id
            )

        counts = {outcome.value: 0 for outcome in ExecutionOutcome}
        counts.update({row[0]: row[1] for row in rows})
        return counts
