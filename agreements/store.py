"""Agreement registry for the escrow platform.

SQLite-backed CRUD + query by status, with state machine enforcement.
Keeps an append-only event journal per agreement for audit reads.
Records are never deleted; terminal agreements stay readable.
"""

import json
from dataclasses import dataclass, field

from protocol import AgreementState, EVENT_ACTIONS, STATE_TRANSITIONS
from agreements.db import Database
from agreements.milestones import MilestoneList


@dataclass
class Agreement:
    """One client-provider agreement record."""
    id: int
    client: str
    provider: str
    total_cost: int
    status: AgreementState
    start_time: int
    end_time: int
    dispute_deadline: int
    milestones: MilestoneList
    created_at: int = 0
    updated_at: int = 0

    def is_party(self, caller: str) -> bool:
        return caller in (self.client, self.provider)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "client": self.client,
            "provider": self.provider,
            "total_cost": str(self.total_cost),
            "status": self.status.value,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "dispute_deadline": self.dispute_deadline,
            "milestones": self.milestones.to_list(),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass
class AgreementEvent:
    agreement_id: int
    seq: int
    action: str
    caller: str
    at: int
    detail: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "agreement_id": self.agreement_id,
            "seq": self.seq,
            "action": self.action,
            "caller": self.caller,
            "at": self.at,
            "detail": self.detail,
        }


class AgreementStore:
    """SQLite-backed agreement storage with state machine enforcement.

    Methods do not commit on their own; wrap them in Database.transaction()
    when several writes must land together.
    """

    def __init__(self, db: Database):
        self.db = db
        self._init_db()

    def _init_db(self):
        self.db.execute("""
            CREATE TABLE IF NOT EXISTS agreements (
                id INTEGER PRIMARY KEY,
                client TEXT NOT NULL,
                provider TEXT NOT NULL,
                total_cost TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'awaiting_payment',
                start_time INTEGER NOT NULL,
                end_time INTEGER NOT NULL,
                dispute_deadline INTEGER NOT NULL,
                milestones TEXT NOT NULL DEFAULT '[]',
                created_at INTEGER NOT NULL,
                updated_at INTEGER NOT NULL
            )
        """)
        self.db.execute("CREATE INDEX IF NOT EXISTS idx_agreement_status ON agreements(status)")
        self.db.execute("""
            CREATE TABLE IF NOT EXISTS agreement_events (
                agreement_id INTEGER NOT NULL,
                seq INTEGER NOT NULL,
                action TEXT NOT NULL,
                caller TEXT NOT NULL,
                detail TEXT NOT NULL DEFAULT '{}',
                at INTEGER NOT NULL,
                PRIMARY KEY (agreement_id, seq)
            )
        """)

    def create(self, agreement: Agreement) -> None:
        """Insert a new agreement. Raises sqlite3.IntegrityError on duplicate id."""
        self.db.execute(
            "INSERT INTO agreements (id, client, provider, total_cost, status, start_time, end_time, dispute_deadline, milestones, created_at, updated_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                agreement.id, agreement.client, agreement.provider, str(agreement.total_cost),
                agreement.status.value, agreement.start_time, agreement.end_time,
                agreement.dispute_deadline, json.dumps(agreement.milestones.to_list()),
                agreement.created_at, agreement.updated_at,
            ),
        )

    def exists(self, agreement_id: int) -> bool:
        row = self.db.fetchone("SELECT 1 FROM agreements WHERE id = ?", (agreement_id,))
        return row is not None

    def get(self, agreement_id: int) -> Agreement | None:
        """Get an agreement by ID."""
        row = self.db.fetchone("SELECT * FROM agreements WHERE id = ?", (agreement_id,))
        if not row:
            return None
        return self._row_to_agreement(row)

    def list_by_status(self, status: str | None = None, limit: int = 50) -> list[Agreement]:
        """List agreements, newest first, optionally filtered by status."""
        if status:
            rows = self.db.fetchall(
                "SELECT * FROM agreements WHERE status = ? ORDER BY created_at DESC, id DESC LIMIT ?",
                (status, limit),
            )
        else:
            rows = self.db.fetchall(
                "SELECT * FROM agreements ORDER BY created_at DESC, id DESC LIMIT ?",
                (limit,),
            )
        return [self._row_to_agreement(r) for r in rows]

    def update_status(self, agreement_id: int, status: AgreementState, now: int) -> bool:
        """Update agreement status with state machine enforcement.

        Setting the current status again is a no-op that returns True.
        """
        row = self.db.fetchone("SELECT status FROM agreements WHERE id = ?", (agreement_id,))
        if not row:
            return False

        current = AgreementState(row["status"])
        if current == status:
            return True
        if status not in STATE_TRANSITIONS.get(current, set()):
            raise ValueError(f"Invalid state transition: {current.value} -> {status.value}")

        cursor = self.db.execute(
            "UPDATE agreements SET status = ?, updated_at = ? WHERE id = ? AND status = ?",
            (status.value, now, agreement_id, current.value),
        )
        return cursor.rowcount > 0

    def save_milestones(self, agreement_id: int, milestones: MilestoneList, now: int) -> bool:
        cursor = self.db.execute(
            "UPDATE agreements SET milestones = ?, updated_at = ? WHERE id = ?",
            (json.dumps(milestones.to_list()), now, agreement_id),
        )
        return cursor.rowcount > 0

    def append_event(self, agreement_id: int, action: str, caller: str, at: int,
                     detail: dict | None = None) -> int:
        """Append a journal entry. Returns its sequence number."""
        if action not in EVENT_ACTIONS:
            raise ValueError(f"Unknown journal action: {action}")
        row = self.db.fetchone(
            "SELECT COALESCE(MAX(seq), -1) + 1 AS next_seq FROM agreement_events WHERE agreement_id = ?",
            (agreement_id,),
        )
        seq = row["next_seq"]
        self.db.execute(
            "INSERT INTO agreement_events (agreement_id, seq, action, caller, detail, at) VALUES (?, ?, ?, ?, ?, ?)",
            (agreement_id, seq, action, caller, json.dumps(detail or {}), at),
        )
        return seq

    def events(self, agreement_id: int) -> list[AgreementEvent]:
        rows = self.db.fetchall(
            "SELECT * FROM agreement_events WHERE agreement_id = ? ORDER BY seq",
            (agreement_id,),
        )
        return [
            AgreementEvent(
                agreement_id=r["agreement_id"],
                seq=r["seq"],
                action=r["action"],
                caller=r["caller"],
                at=r["at"],
                detail=json.loads(r["detail"]),
            )
            for r in rows
        ]

    def count_by_status(self) -> dict[str, int]:
        rows = self.db.fetchall("SELECT status, COUNT(*) AS n FROM agreements GROUP BY status")
        return {r["status"]: r["n"] for r in rows}

    def _row_to_agreement(self, row) -> Agreement:
        return Agreement(
            id=row["id"],
            client=row["client"],
            provider=row["provider"],
            total_cost=int(row["total_cost"]),
            status=AgreementState(row["status"]),
            start_time=row["start_time"],
            end_time=row["end_time"],
            dispute_deadline=row["dispute_deadline"],
            milestones=MilestoneList.from_list(json.loads(row["milestones"])),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )
