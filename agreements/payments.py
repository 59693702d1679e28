"""Payment backends for the escrow platform.

The core only needs one primitive: move an amount from one account to
another, atomically, failing without effect if the source is short.
Amounts are integers in the smallest unit of the settlement currency.
"""

import hashlib
import logging
from abc import ABC, abstractmethod

from protocol import ESCROW_ACCOUNT_PREFIX
from agreements.db import Database

logger = logging.getLogger(__name__)


class TransferError(Exception):
    """Raised by a backend when it declines a transfer."""


class PaymentBackend(ABC):
    """Abstract payment backend. Injected into the escrow ledger."""

    def escrow_account(self, agreement_id: int) -> str:
        """Account that holds escrowed funds for an agreement."""
        return f"{ESCROW_ACCOUNT_PREFIX}{agreement_id}"

    @abstractmethod
    def transfer(self, amount: int, source: str, dest: str, agreement_id: int | None = None) -> str:
        """Move `amount` from `source` to `dest`.

        Returns a transfer reference. Raises TransferError and leaves every
        balance untouched if the transfer cannot be made.
        """
        ...

    @abstractmethod
    def balance_of(self, account: str) -> int:
        ...


class SimBackend(PaymentBackend):
    """Simulated payment backend for development and tests.

    Tracks balances in the shared SQLite database so its transfers commit or
    roll back together with the agreement operation that made them. Enforces:
    - No negative amounts
    - Zero-amount transfers are a no-op (nothing recorded)
    - Insufficient balance errors
    - Full transaction log with deterministic hashes

    Usage:
        sim = SimBackend(db)
        sim.fund("alice", 1000)           # credit an external account
        sim.transfer(600, "alice", sim.escrow_account(1), agreement_id=1)
    """

    def __init__(self, db: Database):
        self.db = db
        self._init_db()

    def _init_db(self):
        self.db.execute("""
            CREATE TABLE IF NOT EXISTS sim_accounts (
                address TEXT PRIMARY KEY,
                balance TEXT NOT NULL DEFAULT '0'
            )
        """)
        self.db.execute("""
            CREATE TABLE IF NOT EXISTS sim_transactions (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                hash TEXT NOT NULL UNIQUE,
                from_account TEXT NOT NULL,
                to_account TEXT NOT NULL,
                amount TEXT NOT NULL,
                agreement_id INTEGER,
                tx_type TEXT NOT NULL
            )
        """)

    def _get_balance(self, address: str) -> int:
        row = self.db.fetchone("SELECT balance FROM sim_accounts WHERE address = ?", (address,))
        return int(row["balance"]) if row else 0

    def _set_balance(self, address: str, amount: int):
        self.db.execute(
            "INSERT INTO sim_accounts (address, balance) VALUES (?, ?) "
            "ON CONFLICT(address) DO UPDATE SET balance = excluded.balance",
            (address, str(amount)),
        )

    def _record_tx(self, from_acc: str, to_acc: str, amount: int,
                   agreement_id: int | None, tx_type: str) -> str:
        row = self.db.fetchone("SELECT COALESCE(MAX(id), 0) + 1 AS next_id FROM sim_transactions")
        tx_hash = hashlib.blake2b(
            f"{row['next_id']}:{from_acc}:{to_acc}:{amount}".encode(),
            digest_size=32,
        ).hexdigest().upper()
        self.db.execute(
            "INSERT INTO sim_transactions (hash, from_account, to_account, amount, agreement_id, tx_type) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (tx_hash, from_acc, to_acc, str(amount), agreement_id, tx_type),
        )
        return tx_hash

    # --- PaymentBackend interface ---

    def transfer(self, amount: int, source: str, dest: str, agreement_id: int | None = None) -> str:
        if amount < 0:
            raise TransferError(f"Negative transfer amount: {amount}")
        if amount == 0:
            return "noop_zero_amount"

        with self.db.transaction():
            balance = self._get_balance(source)
            if balance < amount:
                logger.warning(
                    "transfer declined: %s has %d, needs %d (agreement %s)",
                    source, balance, amount, agreement_id,
                )
                raise TransferError(
                    f"Insufficient balance: {source} has {balance}, needs {amount}"
                )
            self._set_balance(source, balance - amount)
            self._set_balance(dest, self._get_balance(dest) + amount)
            return self._record_tx(source, dest, amount, agreement_id, "transfer")

    def balance_of(self, account: str) -> int:
        return self._get_balance(account)

    # --- SimBackend-only methods (for test setup) ---

    def fund(self, address: str, amount: int):
        """Credit an account with funds (simulates an external deposit)."""
        if amount <= 0:
            raise ValueError("Fund amount must be positive")
        with self.db.transaction():
            self._set_balance(address, self._get_balance(address) + amount)
            self._record_tx("faucet", address, amount, None, "fund")

    def transfers(self, agreement_id: int | None = None) -> list[dict]:
        """Transaction log, optionally filtered by agreement."""
        if agreement_id is not None:
            rows = self.db.fetchall(
                "SELECT * FROM sim_transactions WHERE agreement_id = ? ORDER BY id",
                (agreement_id,),
            )
        else:
            rows = self.db.fetchall("SELECT * FROM sim_transactions ORDER BY id")
        return [
            {
                "hash": r["hash"],
                "from": r["from_account"],
                "to": r["to_account"],
                "amount": int(r["amount"]),
                "agreement_id": r["agreement_id"],
                "type": r["tx_type"],
            }
            for r in rows
        ]
