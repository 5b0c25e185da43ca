"""
Ticket Store

The engine's narrow view of the helpdesk ticket store: list active tickets,
re-read one ticket, and apply an optimistic field update.
"""

import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional

from automation.models import Ticket, MUTABLE_ATTRIBUTES, ensure_utc, utc_now
from database import DatabaseManager
from exceptions import DatabaseError, RepositoryUnavailableError


logger = logging.getLogger("DeskPilotTicketStore")


def _check_updates(field_updates: Dict[str, str]) -> None:
    unknown = set(field_updates) - set(MUTABLE_ATTRIBUTES)
    if unknown:
        raise ValueError(f"Cannot mutate ticket attributes: {sorted(unknown)}")


class TicketStore(ABC):
    """
    Interface to the external ticket store.
    """

    @abstractmethod
    def list_active_tickets(self, limit: Optional[int] = None) -> List[Ticket]:
        """
        List tickets whose status is not closed, oldest first.

        Raises:
            RepositoryUnavailableError: If the store cannot be read
        """

    @abstractmethod
    def get_ticket(self, ticket_id: str) -> Optional[Ticket]:
        """Current state of one ticket, or None if it no longer exists."""

    @abstractmethod
    def apply_mutation(
        self,
        ticket_id: str,
        field_updates: Dict[str, str],
        expected_updated_at: Optional[datetime] = None
    ) -> bool:
        """
        Atomically write field updates to one ticket.

        Args:
            ticket_id: Ticket to update
            field_updates: Attribute -> new value (status, priority, assignee)
            expected_updated_at: Optimistic guard; the write only happens if
                the ticket's updated_at still equals this value

        Returns:
            False if the ticket is missing or the guard no longer holds
        """

    @abstractmethod
    def upsert_ticket(self, ticket: Ticket) -> None:
        """Insert or replace a ticket (used by the upstream sync)."""


class InMemoryTicketStore(TicketStore):
    """
    Thread-safe in-process ticket store.
    """

    def __init__(
        self,
        tickets: Iterable[Ticket] = (),
        closed_statuses: Iterable[str] = ("Resolved", "Closed"),
        clock: Callable[[], datetime] = utc_now
    ):
        self._tickets: Dict[str, Ticket] = {t.id: t for t in tickets}
        self.closed_statuses = set(closed_statuses)
        self.clock = clock
        self._lock = threading.Lock()

    def list_active_tickets(self, limit: Optional[int] = None) -> List[Ticket]:
        with self._lock:
            active = [t for t in self._tickets.values() if t.status not in self.closed_statuses]
        active.sort(key=lambda t: (t.created_at, t.id))
        return active[:limit] if limit is not None else active

    def get_ticket(self, ticket_id: str) -> Optional[Ticket]:
        with self._lock:
            return self._tickets.get(ticket_id)

    def apply_mutation(
        self,
        ticket_id: str,
        field_updates: Dict[str, str],
        expected_updated_at: Optional[datetime] = None
    ) -> bool:
        _check_updates(field_updates)
        with self._lock:
            current = self._tickets.get(ticket_id)
            if current is None:
                return False
            if expected_updated_at is not None and current.updated_at != ensure_utc(expected_updated_at):
                return False
            self._tickets[ticket_id] = current.model_copy(
                update={**field_updates, "updated_at": self.clock()}
            )
            return True

    def upsert_ticket(self, ticket: Ticket) -> None:
        with self._lock:
            self._tickets[ticket.id] = ticket

    def __len__(self) -> int:
        return len(self._tickets)


class SQLiteTicketStore(TicketStore):
    """
    Ticket store backed by the local `tickets` table.
    """

    _COLUMNS = "id, subject, status, priority, assignee, company, type, created_at, updated_at"

    def __init__(
        self,
        db_manager: DatabaseManager,
        closed_statuses: Iterable[str] = ("Resolved", "Closed"),
        clock: Callable[[], datetime] = utc_now
    ):
        self.db_manager = db_manager
        self.closed_statuses = list(closed_statuses)
        self.clock = clock
        self.component_id = "SQLiteTicketStore"

    @staticmethod
    def _row_to_ticket(row) -> Ticket:
        return Ticket(
            id=row[0],
            subject=row[1] or "",
            status=row[2],
            priority=row[3],
            assignee=row[4],
            company=row[5],
            type=row[6],
            created_at=datetime.fromisoformat(row[7]),
            updated_at=datetime.fromisoformat(row[8])
        )

    def list_active_tickets(self, limit: Optional[int] = None) -> List[Ticket]:
        query = f"SELECT {self._COLUMNS} FROM tickets"
        params: list = []
        if self.closed_statuses:
            placeholders = ",".join(["?"] * len(self.closed_statuses))
            query += f" WHERE status IS NULL OR status NOT IN ({placeholders})"
            params.extend(self.closed_statuses)
        query += " ORDER BY created_at, id"
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)

        try:
            with self.db_manager.connection() as conn:
                rows = conn.execute(query, tuple(params)).fetchall()
            return [self._row_to_ticket(row) for row in rows]
        except DatabaseError as e:
            raise RepositoryUnavailableError(
                f"Failed to list active tickets: {e.message}",
                component=self.component_id
            )
        except ValueError as e:
            raise RepositoryUnavailableError(
                f"Malformed ticket row: {e}",
                component=self.component_id
            )

    def get_ticket(self, ticket_id: str) -> Optional[Ticket]:
        with self.db_manager.connection() as conn:
            row = conn.execute(
                f"SELECT {self._COLUMNS} FROM tickets WHERE id = ?",
                (ticket_id,)
            ).fetchone()
        return self._row_to_ticket(row) if row else None

    def apply_mutation(
        self,
        ticket_id: str,
        field_updates: Dict[str, str],
        expected_updated_at: Optional[datetime] = None
    ) -> bool:
        _check_updates(field_updates)
        if not field_updates:
            return True

        # Column names come from MUTABLE_ATTRIBUTES only
        assignments = ", ".join(f"{name} = ?" for name in field_updates)
        params: list = list(field_updates.values())
        params.append(ensure_utc(self.clock()).isoformat())
        query = f"UPDATE tickets SET {assignments}, updated_at = ? WHERE id = ?"
        params.append(ticket_id)

        with self.db_manager.transaction() as conn:
            if expected_updated_at is not None:
                row = conn.execute("SELECT updated_at FROM tickets WHERE id = ?", (ticket_id,)).fetchone()
                if row is None:
                    return False
                # The sync may store any ISO form, so compare instants and
                # guard the write with the raw stored text
                try:
                    stored = ensure_utc(datetime.fromisoformat(row[0]))
                except (TypeError, ValueError):
                    logger.warning(f"Ticket {ticket_id} has unreadable updated_at {row[0]!r}")
                    return False
                if stored != ensure_utc(expected_updated_at):
                    return False
                query += " AND updated_at = ?"
                params.append(row[0])

            cursor = conn.execute(query, tuple(params))
            return (cursor.rowcount or 0) > 0

    def upsert_ticket(self, ticket: Ticket) -> None:
        with self.db_manager.transaction() as conn:
            conn.execute(
                f"""INSERT INTO tickets ({self._COLUMNS})
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                        subject=excluded.subject, status=excluded.status,
                        priority=excluded.priority, assignee=excluded.assignee,
                        company=excluded.company, type=excluded.type,
                        created_at=excluded.created_at, updated_at=excluded.updated_at""",
                (
                    ticket.id,
                    ticket.subject,
                    ticket.status,
                    ticket.priority,
                    ticket.assignee,
                    ticket.company,
                    ticket.type,
                    ticket.created_at.isoformat(),
                    ticket.updated_at.isoformat()
                )
            )
