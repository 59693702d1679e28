"""Escrow ledger for the agreement platform.

Tracks one non-negative balance per agreement and routes payouts through the
injected PaymentBackend. The balance only grows through deposits and only
shrinks through a disbursement (release, termination refund, dispute
settlement), each of which empties it.

If any payout leg fails the whole operation fails: the caller's enclosing
transaction rolls back both the ledger row and any legs already sent.
"""

from agreements.db import Database
from agreements.errors import TransferFailed, InsufficientPayment
from agreements.payments import PaymentBackend, SimBackend, TransferError


class EscrowLedger:
    """SQLite-backed per-agreement escrow balances."""

    def __init__(self, db: Database, payment_backend: PaymentBackend | None = None):
        self.db = db
        self.payment = payment_backend or SimBackend(db)
        self._init_db()

    def _init_db(self):
        self.db.execute("""
            CREATE TABLE IF NOT EXISTS escrow_balances (
                agreement_id INTEGER PRIMARY KEY,
                balance TEXT NOT NULL DEFAULT '0',
                total_deposited TEXT NOT NULL DEFAULT '0',
                total_disbursed TEXT NOT NULL DEFAULT '0'
            )
        """)

    def open(self, agreement_id: int) -> None:
        """Start an agreement's escrow at zero."""
        self.db.execute(
            "INSERT INTO escrow_balances (agreement_id, balance) VALUES (?, '0')",
            (agreement_id,),
        )

    def balance(self, agreement_id: int) -> int:
        """Current escrow balance; zero if the agreement has no escrow row."""
        row = self.db.fetchone(
            "SELECT balance FROM escrow_balances WHERE agreement_id = ?", (agreement_id,),
        )
        return int(row["balance"]) if row else 0

    def get(self, agreement_id: int) -> dict | None:
        row = self.db.fetchone(
            "SELECT * FROM escrow_balances WHERE agreement_id = ?", (agreement_id,),
        )
        if not row:
            return None
        return {
            "agreement_id": row["agreement_id"],
            "balance": row["balance"],
            "total_deposited": row["total_deposited"],
            "total_disbursed": row["total_disbursed"],
            "escrow_account": self.payment.escrow_account(agreement_id),
        }

    def deposit(self, agreement_id: int, source: str, amount: int) -> int:
        """Pull `amount` from `source` into escrow. Returns the new balance."""
        if amount < 0:
            raise InsufficientPayment(f"Deposit amount must be non-negative, got {amount}", agreement_id)
        with self.db.transaction():
            if amount:
                self._send(agreement_id, amount, source, self.payment.escrow_account(agreement_id))
            self.db.execute(
                "UPDATE escrow_balances SET balance = ?, total_deposited = ? WHERE agreement_id = ?",
                (
                    str(self.balance(agreement_id) + amount),
                    str(self._column(agreement_id, "total_deposited") + amount),
                    agreement_id,
                ),
            )
            return self.balance(agreement_id)

    def disburse(self, agreement_id: int, payouts: list[tuple[str, int]]) -> dict:
        """Pay out the full balance across `payouts` and zero the escrow.

        `payouts` is a list of (account, amount) legs whose amounts must sum to
        the current balance. Zero-amount legs are skipped.
        """
        with self.db.transaction():
            held = self.balance(agreement_id)
            total = sum(amount for _, amount in payouts)
            if total != held or any(amount < 0 for _, amount in payouts):
                raise ValueError(
                    f"Payout legs {payouts} do not disburse escrow balance {held} exactly"
                )
            holder = self.payment.escrow_account(agreement_id)
            refs = []
            for account, amount in payouts:
                if amount == 0:
                    continue
                refs.append({
                    "to": account,
                    "amount": str(amount),
                    "ref": self._send(agreement_id, amount, holder, account),
                })
            self.db.execute(
                "UPDATE escrow_balances SET balance = '0', total_disbursed = ? WHERE agreement_id = ?",
                (str(self._column(agreement_id, "total_disbursed") + held), agreement_id),
            )
            return {"disbursed": str(held), "transfers": refs}

    def _send(self, agreement_id: int, amount: int, source: str, dest: str) -> str:
        try:
            return self.payment.transfer(amount, source, dest, agreement_id=agreement_id)
        except TransferError as e:
            raise TransferFailed(str(e), agreement_id) from e

    def _column(self, agreement_id: int, column: str) -> int:
        row = self.db.fetchone(
            f"SELECT {column} FROM escrow_balances WHERE agreement_id = ?", (agreement_id,),
        )
        return int(row[column]) if row else 0
