"""
Database Connection Management with Connection Pooling and Transactions
Provides production-ready database access with proper resource management.
"""
import sqlite3
import logging
import threading
from contextlib import contextmanager
from typing import Optional, List, Tuple, Any
from queue import Queue, Empty
from pathlib import Path

from exceptions import (
    DatabaseError,
    ConnectionPoolExhaustedError,
    TransactionError,
    QueryExecutionError
)


logger = logging.getLogger("DeskPilotDatabase")

SCHEMA_VERSION = 1


class DatabaseConnection:
    """
    Wrapper for SQLite connection with transaction support.
    """

    def __init__(self, connection: sqlite3.Connection, pool: 'SQLitePool'):
        self.connection = connection
        self.pool = pool
        self.in_transaction = False

    def execute(self, query: str, params: Optional[Tuple] = None) -> sqlite3.Cursor:
        """
        Execute a query with parameters.

        Args:
            query: SQL query to execute
            params: Query parameters

        Returns:
            sqlite3.Cursor: Result cursor

        Raises:
            QueryExecutionError: If query execution fails
        """
        try:
            cursor = self.connection.cursor()
            if params:
                return cursor.execute(query, params)
            else:
                return cursor.execute(query)
        except sqlite3.Error as e:
            raise QueryExecutionError(
                f"Query execution failed: {e}",
                component="DatabaseConnection",
                context={"query": query[:100]}  # Truncate long queries
            )

    def executemany(self, query: str, params_list: List[Tuple]) -> sqlite3.Cursor:
        """
        Execute a query with multiple parameter sets.

        Raises:
            QueryExecutionError: If query execution fails
        """
        try:
            cursor = self.connection.cursor()
            return cursor.executemany(query, params_list)
        except sqlite3.Error as e:
            raise QueryExecutionError(
                f"Batch query execution failed: {e}",
                component="DatabaseConnection",
                context={"query": query[:100], "batch_size": len(params_list)}
            )

    def commit(self) -> None:
        """
        Commit current transaction.

        Raises:
            TransactionError: If commit fails
        """
        try:
            self.connection.commit()
            self.in_transaction = False
        except sqlite3.Error as e:
            raise TransactionError(
                f"Transaction commit failed: {e}",
                component="DatabaseConnection"
            )

    def rollback(self) -> None:
        """
        Rollback current transaction.

        Raises:
            TransactionError: If rollback fails
        """
        try:
            self.connection.rollback()
            self.in_transaction = False
        except sqlite3.Error as e:
            raise TransactionError(
                f"Transaction rollback failed: {e}",
                component="DatabaseConnection"
            )

    def close(self) -> None:
        """Return connection to pool."""
        if self.in_transaction:
            logger.warning("Closing connection with active transaction - rolling back")
            self.rollback()
        self.pool.return_connection(self.connection)


class SQLitePool:
    """
    Thread-safe connection pool for SQLite database.
    """

    def __init__(
        self,
        db_path: str,
        max_connections: int = 5,
        timeout: float = 30.0,
        check_same_thread: bool = False
    ):
        self.db_path = db_path
        # Every connection to ":memory:" opens its own database
        self.max_connections = 1 if db_path == ":memory:" else max_connections
        self.timeout = timeout
        self.check_same_thread = check_same_thread

        self._pool: Queue = Queue(maxsize=self.max_connections)
        self._all_connections: List[sqlite3.Connection] = []
        self._lock = threading.Lock()
        self._closed = False
        self._initialize_pool()

    def _initialize_pool(self) -> None:
        try:
            if self.db_path != ":memory:":
                Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
            for _ in range(self.max_connections):
                conn = self._create_connection()
                self._all_connections.append(conn)
                self._pool.put(conn)
            logger.info(f"Initialized SQLite connection pool with {self.max_connections} connections")
        except Exception as e:
            raise DatabaseError(f"Failed to initialize SQLite pool: {e}")

    def _create_connection(self) -> sqlite3.Connection:
        try:
            conn = sqlite3.connect(
                self.db_path,
                timeout=self.timeout,
                check_same_thread=self.check_same_thread
            )
            conn.execute("PRAGMA foreign_keys = ON")
            if self.db_path != ":memory:":
                conn.execute("PRAGMA journal_mode = WAL")
            return conn
        except sqlite3.Error as e:
            raise DatabaseError(f"Failed to create SQLite connection: {e}")

    def get_connection(self) -> DatabaseConnection:
        if self._closed:
            raise DatabaseError("Connection pool is closed")
        try:
            conn = self._pool.get(timeout=self.timeout)
            return DatabaseConnection(conn, self)
        except Empty:
            raise ConnectionPoolExhaustedError(f"Connection pool exhausted (max: {self.max_connections})")

    def return_connection(self, connection: sqlite3.Connection) -> None:
        if not self._closed:
            self._pool.put(connection)

    def close_all(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            for conn in self._all_connections:
                try:
                    conn.close()
                except Exception as e:
                    logger.error(f"Error closing connection: {e}")
            self._all_connections.clear()
            logger.info("SQLite connection pool closed")


class DatabaseManager:
    """
    High-level database manager with schema management.
    """

    def __init__(self, config: Any):
        """
        Initialize database manager.

        Args:
            config: Database configuration object (path, max_connections, connection_timeout)
        """
        self.config = config
        self.pool = SQLitePool(
            config.path,
            config.max_connections,
            timeout=float(config.connection_timeout)
        )
        self._ensure_schema()

    def _ensure_schema(self) -> None:
        """
        Ensure database schema exists.

        Raises:
            DatabaseError: If schema creation fails
        """
        try:
            with self.transaction() as conn:
                # Rule definitions; condition/action lists are stored as ordered JSON arrays
                conn.execute('''
                    CREATE TABLE IF NOT EXISTS rules (
                        id TEXT PRIMARY KEY,
                        name TEXT NOT NULL,
                        description TEXT DEFAULT '',
                        trigger_conditions TEXT NOT NULL,
                        actions TEXT NOT NULL,
                        is_active INTEGER NOT NULL DEFAULT 1,
                        version INTEGER NOT NULL DEFAULT 1,
                        created_at TEXT NOT NULL,
                        updated_at TEXT NOT NULL,
                        last_executed_at TEXT
                    )
                ''')

                conn.execute('''
                    CREATE INDEX IF NOT EXISTS idx_rules_created_at
                    ON rules(created_at)
                ''')

                # Local ticket mirror, filled by the upstream helpdesk sync
                conn.execute('''
                    CREATE TABLE IF NOT EXISTS tickets (
                        id TEXT PRIMARY KEY,
                        subject TEXT DEFAULT '',
                        status TEXT,
                        priority TEXT,
                        assignee TEXT,
                        company TEXT,
                        type TEXT,
                        created_at TEXT NOT NULL,
                        updated_at TEXT NOT NULL
                    )
                ''')

                conn.execute('''
                    CREATE INDEX IF NOT EXISTS idx_tickets_status
                    ON tickets(status)
                ''')

                # Append-only audit trail of rule applications
                conn.execute('''
                    CREATE TABLE IF NOT EXISTS execution_records (
                        seq INTEGER PRIMARY KEY AUTOINCREMENT,
                        record_id TEXT NOT NULL UNIQUE,
                        cycle_id TEXT,
                        rule_id TEXT NOT NULL,
                        rule_version INTEGER NOT NULL,
                        ticket_id TEXT NOT NULL,
                        matched_at TEXT NOT NULL,
                        actions_applied TEXT NOT NULL,
                        outcome TEXT NOT NULL,
                        superseded_by TEXT,
                        error TEXT,
                        recorded_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                    )
                ''')

                conn.execute('''
                    CREATE INDEX IF NOT EXISTS idx_execution_records_rule_id
                    ON execution_records(rule_id)
                ''')

                conn.execute('''
                    CREATE INDEX IF NOT EXISTS idx_execution_records_ticket_id
                    ON execution_records(ticket_id)
                ''')

                conn.execute('''
                    CREATE TABLE IF NOT EXISTS schema_version (
                        version INTEGER PRIMARY KEY,
                        applied_at DATETIME DEFAULT CURRENT_TIMESTAMP
                    )
                ''')

                cursor = conn.execute('SELECT version FROM schema_version ORDER BY version DESC LIMIT 1')
                if cursor.fetchone() is None:
                    conn.execute('INSERT INTO schema_version (version) VALUES (?)', (SCHEMA_VERSION,))

                conn.commit()

            logger.info("Database schema initialized successfully")

        except Exception as e:
            raise DatabaseError(
                f"Failed to initialize database schema: {e}",
                component="DatabaseManager"
            )

    def get_schema_version(self) -> int:
        """Return the applied schema version."""
        with self.connection() as conn:
            cursor = conn.execute('SELECT MAX(version) FROM schema_version')
            row = cursor.fetchone()
            return int(row[0]) if row and row[0] is not None else 0

    @contextmanager
    def transaction(self):
        """
        Context manager for database transactions.
        """
        conn = self.pool.get_connection()
        conn.in_transaction = True

        try:
            yield conn
            # Auto-commit if caller did not explicitly commit/rollback.
            if conn.in_transaction:
                conn.commit()
        except Exception as e:
            try:
                if conn.in_transaction:
                    conn.rollback()
            except Exception as rollback_error:
                logger.warning(f"Rollback failed: {rollback_error}")
            raise TransactionError(
                f"Transaction failed: {e}",
                component="DatabaseManager"
            )
        finally:
            conn.close()

    @contextmanager
    def connection(self):
        """
        Context manager for simple database operations.
        """
        conn = self.pool.get_connection()
        try:
            yield conn
        finally:
            conn.close()

    def close(self) -> None:
        """Close database manager and connection pool."""
        self.pool.close_all()

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()
