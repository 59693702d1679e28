"""Shared SQLite connection and transaction boundary.

Every store (agreements, escrow balances, disputes, journal) and the
simulated payment ledger sit on one connection so that a single public
operation commits or rolls back as one unit.
"""

import sqlite3
import threading
from contextlib import contextmanager


class Database:
    """One SQLite connection guarded by a single-writer lock."""

    def __init__(self, db_path: str = ":memory:"):
        # Autocommit mode: BEGIN/COMMIT are issued explicitly by transaction()
        self.conn = sqlite3.connect(db_path, check_same_thread=False, isolation_level=None)
        self.conn.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._depth = 0
        if db_path != ":memory:":
            self.conn.execute("PRAGMA journal_mode=WAL")

    @contextmanager
    def transaction(self):
        """Run the enclosed block atomically.

        Nested calls join the outermost transaction. Any exception rolls back
        everything written since the outermost BEGIN.
        """
        with self._lock:
            if self._depth:
                self._depth += 1
                try:
                    yield self.conn
                finally:
                    self._depth -= 1
                return

            self.conn.execute("BEGIN IMMEDIATE")
            self._depth = 1
            try:
                yield self.conn
            except BaseException:
                self.conn.execute("ROLLBACK")
                raise
            else:
                self.conn.execute("COMMIT")
            finally:
                self._depth = 0

    def execute(self, sql: str, params=()):
        with self._lock:
            return self.conn.execute(sql, params)

    def fetchone(self, sql: str, params=()):
        with self._lock:
            return self.conn.execute(sql, params).fetchone()

    def fetchall(self, sql: str, params=()):
        with self._lock:
            return self.conn.execute(sql, params).fetchall()

    def close(self):
        self.conn.close()
