"""Dispute records and settlement math.

At most one dispute per agreement. Filing again overwrites the open
dispute. The administrator settles by giving the client a percentage of the
escrow; the provider receives the rest, including the floor remainder.
"""

from dataclasses import dataclass

from protocol import MIN_REFUND_PCT, MAX_REFUND_PCT
from agreements.db import Database


def split_refund(escrow: int, client_refund_pct: int) -> tuple[int, int]:
    """Split `escrow` into (client_refund, provider_amount).

    refund = floor(escrow * pct / 100); the provider gets the remainder, so
    the two legs always sum to the escrow exactly.
    """
    if not MIN_REFUND_PCT <= client_refund_pct <= MAX_REFUND_PCT:
        raise ValueError(
            f"client_refund_pct must be in [{MIN_REFUND_PCT}, {MAX_REFUND_PCT}], got {client_refund_pct}"
        )
    if escrow < 0:
        raise ValueError("escrow must be non-negative")
    refund = escrow * client_refund_pct // 100
    return refund, escrow - refund


@dataclass
class Dispute:
    agreement_id: int
    reason: str
    initiator: str
    created_at: int
    resolution: str | None = None
    client_refund_pct: int | None = None
    resolved_at: int | None = None

    @property
    def resolved(self) -> bool:
        return self.resolution is not None

    def to_dict(self) -> dict:
        return {
            "agreement_id": self.agreement_id,
            "reason": self.reason,
            "initiator": self.initiator,
            "resolution": self.resolution,
            "client_refund_pct": self.client_refund_pct,
            "created_at": self.created_at,
            "resolved_at": self.resolved_at,
        }


class DisputeStore:
    """SQLite-backed dispute records keyed by agreement id."""

    def __init__(self, db: Database):
        self.db = db
        self._init_db()

    def _init_db(self):
        self.db.execute("""
            CREATE TABLE IF NOT EXISTS disputes (
                agreement_id INTEGER PRIMARY KEY,
                reason TEXT NOT NULL,
                initiator TEXT NOT NULL,
                resolution TEXT,
                client_refund_pct INTEGER,
                created_at INTEGER NOT NULL,
                resolved_at INTEGER
            )
        """)

    def file(self, agreement_id: int, reason: str, initiator: str, now: int) -> Dispute:
        """Record a fresh dispute, replacing any prior one for the agreement."""
        self.db.execute(
            "INSERT INTO disputes (agreement_id, reason, initiator, resolution, client_refund_pct, created_at, resolved_at) "
            "VALUES (?, ?, ?, NULL, NULL, ?, NULL) "
            "ON CONFLICT(agreement_id) DO UPDATE SET reason = excluded.reason, initiator = excluded.initiator, "
            "resolution = NULL, client_refund_pct = NULL, created_at = excluded.created_at, resolved_at = NULL",
            (agreement_id, reason, initiator, now),
        )
        return Dispute(agreement_id=agreement_id, reason=reason, initiator=initiator, created_at=now)

    def get(self, agreement_id: int) -> Dispute | None:
        row = self.db.fetchone("SELECT * FROM disputes WHERE agreement_id = ?", (agreement_id,))
        if not row:
            return None
        return Dispute(
            agreement_id=row["agreement_id"],
            reason=row["reason"],
            initiator=row["initiator"],
            created_at=row["created_at"],
            resolution=row["resolution"],
            client_refund_pct=row["client_refund_pct"],
            resolved_at=row["resolved_at"],
        )

    def resolve(self, agreement_id: int, resolution: str, client_refund_pct: int, now: int) -> bool:
        """Record the settlement text. Only an unresolved dispute can be resolved."""
        cursor = self.db.execute(
            "UPDATE disputes SET resolution = ?, client_refund_pct = ?, resolved_at = ? "
            "WHERE agreement_id = ? AND resolution IS NULL",
            (resolution, client_refund_pct, now, agreement_id),
        )
        return cursor.rowcount > 0
