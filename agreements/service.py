"""Agreement operations: creation, funding, milestones, release, disputes.

Every write follows the same shape: inside one transaction, load the
agreement, check the caller, check the status, then mutate the registry,
ledger, milestones and dispute stores together. Any raised error rolls the
whole operation back, including transfers already sent through a backend
that shares the database.
"""

import logging

from protocol import (
    ADMIN_PRINCIPAL, DISPUTE_WINDOW, MAX_STORED_INT, MILESTONE_COUNT,
    AgreementState, DISPUTABLE_STATES, TERMINABLE_STATES,
)
from agreements.clock import Clock, SystemClock
from agreements.db import Database
from agreements.disputes import Dispute, DisputeStore, split_refund
from agreements.errors import (
    AlreadyExists, InsufficientPayment, InvalidMilestoneIndex, InvalidStatus,
    NotFound, Unauthorized,
)
from agreements.escrow import EscrowLedger
from agreements.milestones import Milestone, MilestoneList
from agreements.payments import PaymentBackend
from agreements.store import Agreement, AgreementEvent, AgreementStore

logger = logging.getLogger(__name__)


def _coerce_milestone(m) -> Milestone:
    if isinstance(m, Milestone):
        return Milestone(m.description, m.payment_share, False)
    if isinstance(m, dict):
        return Milestone(
            description=str(m.get("description", "")),
            payment_share=int(m.get("payment_share", 0)),
        )
    description, payment_share = m
    return Milestone(str(description), int(payment_share))


class AgreementService:
    """Public operations over the agreement, escrow and dispute stores."""

    def __init__(
        self,
        db: Database | None = None,
        clock: Clock | None = None,
        payment_backend: PaymentBackend | None = None,
        admin: str | None = None,
        dispute_window: int | None = None,
    ):
        self.db = db or Database()
        self.clock = clock or SystemClock()
        self.admin = admin if admin is not None else ADMIN_PRINCIPAL
        self.dispute_window = dispute_window if dispute_window is not None else DISPUTE_WINDOW
        if self.dispute_window < 0:
            raise ValueError("dispute_window must be non-negative")

        self.agreements = AgreementStore(self.db)
        self.escrow = EscrowLedger(self.db, payment_backend)
        self.disputes = DisputeStore(self.db)

    @property
    def payment(self) -> PaymentBackend:
        return self.escrow.payment

    # --- helpers ---

    def _is_admin(self, caller: str) -> bool:
        return bool(self.admin) and caller == self.admin

    @staticmethod
    def _storable(agreement_id: int) -> bool:
        return 0 < agreement_id <= MAX_STORED_INT

    def _load(self, agreement_id: int) -> Agreement:
        agreement = self.agreements.get(agreement_id) if self._storable(agreement_id) else None
        if agreement is None:
            raise NotFound(f"Agreement {agreement_id} not found", agreement_id)
        return agreement

    def _require_status(self, agreement: Agreement, allowed: set[AgreementState], action: str):
        if agreement.status not in allowed:
            wanted = ", ".join(sorted(s.value for s in allowed))
            raise InvalidStatus(
                f"Cannot {action} agreement {agreement.id} in status '{agreement.status.value}' (requires {wanted})",
                agreement.id,
            )

    # --- Agreement registry ---

    def create_agreement(self, caller: str, agreement_id: int, provider: str, total_cost: int,
                         duration: int, milestones: list) -> Agreement:
        """Create an agreement with the caller as client. Escrow starts at zero."""
        if not self._storable(agreement_id):
            raise ValueError(f"Agreement id must be in 1..{MAX_STORED_INT}, got {agreement_id}")
        if duration < 0:
            raise ValueError(f"Duration must be non-negative, got {duration}")

        with self.db.transaction():
            now = self.clock.now()
            if now + duration + self.dispute_window > MAX_STORED_INT:
                raise ValueError(f"Duration {duration} puts the dispute deadline past {MAX_STORED_INT}")
            if self.agreements.exists(agreement_id):
                raise AlreadyExists(f"Agreement {agreement_id} already exists", agreement_id)
            if total_cost <= 0:
                raise InsufficientPayment(f"total_cost must be positive, got {total_cost}", agreement_id)
            if len(milestones) != MILESTONE_COUNT:
                raise InvalidMilestoneIndex(
                    f"Agreement needs exactly {MILESTONE_COUNT} milestones, got {len(milestones)}",
                    agreement_id,
                )

            end_time = now + duration
            agreement = Agreement(
                id=agreement_id,
                client=caller,
                provider=provider,
                total_cost=total_cost,
                status=AgreementState.AWAITING_PAYMENT,
                start_time=now,
                end_time=end_time,
                dispute_deadline=end_time + self.dispute_window,
                milestones=MilestoneList([_coerce_milestone(m) for m in milestones]),
                created_at=now,
                updated_at=now,
            )
            self.agreements.create(agreement)
            self.escrow.open(agreement_id)
            self.agreements.append_event(agreement_id, "create", caller, now, {
                "provider": provider,
                "total_cost": str(total_cost),
                "duration": duration,
            })

        logger.info("agreement %d created by %s (total_cost=%d)", agreement_id, caller, total_cost)
        return agreement

    def deposit_payment(self, caller: str, agreement_id: int, amount: int) -> dict:
        """Client funds escrow. Reaching total_cost activates the agreement.

        Partial deposits accumulate; deposits past total_cost are accepted.
        """
        with self.db.transaction():
            agreement = self._load(agreement_id)
            if caller != agreement.client:
                raise Unauthorized("Only the client can deposit", agreement_id)
            self._require_status(agreement, {AgreementState.AWAITING_PAYMENT}, "deposit into")

            now = self.clock.now()
            balance = self.escrow.deposit(agreement_id, caller, amount)
            status = agreement.status
            if balance >= agreement.total_cost:
                status = AgreementState.ACTIVE
                self.agreements.update_status(agreement_id, status, now)
            self.agreements.append_event(agreement_id, "deposit", caller, now, {
                "amount": str(amount),
                "balance": str(balance),
            })

        logger.info("agreement %d deposit %d by %s, escrow=%d status=%s",
                    agreement_id, amount, caller, balance, status.value)
        return {"agreement_id": agreement_id, "escrow": str(balance), "status": status.value}

    def terminate_agreement(self, caller: str, agreement_id: int) -> dict:
        """Cancel an unfunded or partly funded agreement, refunding the client."""
        with self.db.transaction():
            agreement = self._load(agreement_id)
            if not (agreement.is_party(caller) or self._is_admin(caller)):
                raise Unauthorized("Only the client, provider or administrator can terminate", agreement_id)
            self._require_status(agreement, TERMINABLE_STATES, "terminate")

            now = self.clock.now()
            refund = self.escrow.balance(agreement_id)
            payout = self.escrow.disburse(agreement_id, [(agreement.client, refund)])
            self.agreements.update_status(agreement_id, AgreementState.TERMINATED, now)
            self.agreements.append_event(agreement_id, "terminate", caller, now, {"refund": str(refund)})

        logger.info("agreement %d terminated by %s, refunded %d to client", agreement_id, caller, refund)
        return {
            "agreement_id": agreement_id,
            "status": AgreementState.TERMINATED.value,
            "refund": str(refund),
            "transfers": payout["transfers"],
        }

    # --- Milestone tracker ---

    def mark_milestone_complete(self, caller: str, agreement_id: int, index: int) -> Agreement:
        """Provider marks one milestone done. Completing the last one delivers."""
        with self.db.transaction():
            agreement = self._load(agreement_id)
            if caller != agreement.provider:
                raise Unauthorized("Only the provider can complete milestones", agreement_id)
            self._require_status(agreement, {AgreementState.ACTIVE}, "complete a milestone on")
            if not agreement.milestones.in_range(index):
                raise InvalidMilestoneIndex(
                    f"Milestone index {index} out of range (0..{len(agreement.milestones) - 1})",
                    agreement_id,
                )

            now = self.clock.now()
            changed = agreement.milestones.mark_complete(index)
            if changed:
                self.agreements.save_milestones(agreement_id, agreement.milestones, now)
                self.agreements.append_event(agreement_id, "milestone_complete", caller, now, {"index": index})
                agreement.updated_at = now
            if agreement.milestones.all_complete():
                self.agreements.update_status(agreement_id, AgreementState.DELIVERED, now)
                self.agreements.append_event(agreement_id, "delivered", caller, now)
                agreement.status = AgreementState.DELIVERED

        if changed:
            logger.info("agreement %d milestone %d complete (%d/%d)", agreement_id, index,
                        agreement.milestones.completed_count(), len(agreement.milestones))
        return agreement

    # --- Escrow ledger ---

    def release_escrowed_payment(self, caller: str, agreement_id: int) -> dict:
        """Client releases the full escrow to the provider after delivery."""
        with self.db.transaction():
            agreement = self._load(agreement_id)
            if caller != agreement.client:
                raise Unauthorized("Only the client can release payment", agreement_id)
            self._require_status(agreement, {AgreementState.DELIVERED}, "release payment for")

            now = self.clock.now()
            amount = self.escrow.balance(agreement_id)
            payout = self.escrow.disburse(agreement_id, [(agreement.provider, amount)])
            self.agreements.append_event(agreement_id, "release", caller, now, {"amount": str(amount)})

        logger.info("agreement %d released %d to provider %s", agreement_id, amount, agreement.provider)
        return {"agreement_id": agreement_id, "released": str(amount), "transfers": payout["transfers"]}

    # --- Dispute resolver ---

    def initiate_dispute(self, caller: str, agreement_id: int, reason: str) -> Dispute:
        """File (or refile) a dispute before the deadline."""
        with self.db.transaction():
            agreement = self._load(agreement_id)
            if not (agreement.is_party(caller) or self._is_admin(caller)):
                raise Unauthorized("Only the client, provider or administrator can file a dispute", agreement_id)
            now = self.clock.now()
            if now >= agreement.dispute_deadline:
                raise InvalidStatus(
                    f"Dispute window for agreement {agreement_id} closed at {agreement.dispute_deadline}",
                    agreement_id,
                )
            self._require_status(agreement, DISPUTABLE_STATES, "dispute")

            dispute = self.disputes.file(agreement_id, reason, caller, now)
            self.agreements.update_status(agreement_id, AgreementState.UNDER_DISPUTE, now)
            self.agreements.append_event(agreement_id, "dispute_filed", caller, now, {"reason": reason})

        logger.info("agreement %d disputed by %s", agreement_id, caller)
        return dispute

    def resolve_dispute_claim(self, caller: str, agreement_id: int, resolution: str,
                              client_refund_pct: int) -> dict:
        """Administrator settles a dispute by percentage and delivers the agreement."""
        with self.db.transaction():
            agreement = self._load(agreement_id)
            if not self._is_admin(caller):
                raise Unauthorized("Only the administrator can resolve disputes", agreement_id)
            self._require_status(agreement, {AgreementState.UNDER_DISPUTE}, "resolve a dispute on")

            held = self.escrow.balance(agreement_id)
            refund, provider_amount = split_refund(held, client_refund_pct)
            payout = self.escrow.disburse(agreement_id, [
                (agreement.client, refund),
                (agreement.provider, provider_amount),
            ])

            now = self.clock.now()
            if self.disputes.get(agreement_id) is None:
                raise NotFound(f"No dispute recorded for agreement {agreement_id}", agreement_id)
            self.disputes.resolve(agreement_id, resolution, client_refund_pct, now)
            self.agreements.update_status(agreement_id, AgreementState.DELIVERED, now)
            self.agreements.append_event(agreement_id, "dispute_resolved", caller, now, {
                "client_refund_pct": client_refund_pct,
                "refund": str(refund),
                "provider_amount": str(provider_amount),
            })

        logger.info("agreement %d dispute resolved: client %d, provider %d",
                    agreement_id, refund, provider_amount)
        return {
            "agreement_id": agreement_id,
            "status": AgreementState.DELIVERED.value,
            "client_refund": str(refund),
            "provider_amount": str(provider_amount),
            "transfers": payout["transfers"],
        }

    # --- Reads ---

    # Ids outside the storable range can never have been created.

    def get_agreement(self, agreement_id: int) -> Agreement | None:
        if not self._storable(agreement_id):
            return None
        return self.agreements.get(agreement_id)

    def get_escrow_balance(self, agreement_id: int) -> int:
        if not self._storable(agreement_id):
            return 0
        return self.escrow.balance(agreement_id)

    def get_escrow(self, agreement_id: int) -> dict | None:
        """Balance plus lifetime deposit/disbursement totals and the holder account."""
        if not self._storable(agreement_id):
            return None
        return self.escrow.get(agreement_id)

    def get_dispute(self, agreement_id: int) -> Dispute | None:
        if not self._storable(agreement_id):
            return None
        return self.disputes.get(agreement_id)

    def list_agreements(self, status: str | None = None, limit: int = 50) -> list[Agreement]:
        return self.agreements.list_by_status(status, limit)

    def get_events(self, agreement_id: int) -> list[AgreementEvent]:
        if not self._storable(agreement_id):
            return []
        return self.agreements.events(agreement_id)

    def stats(self) -> dict:
        return {"agreements_by_status": self.agreements.count_by_status()}

    def close(self):
        self.db.close()
