import sys
import os

# Ensure repo root is on the path for all tests
sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from agreements.clock import ManualClock
from agreements.db import Database
from agreements.service import AgreementService


CLIENT = "client_alice"
PROVIDER = "provider_bob"
ADMIN = "admin_carol"
STRANGER = "mallory"

START_TIME = 1_700_000_000
DURATION = 30 * 24 * 3600
WINDOW = 604800

MILESTONES = [
    {"description": "Design", "payment_share": 200},
    {"description": "Prototype", "payment_share": 200},
    {"description": "Build", "payment_share": 300},
    {"description": "Test", "payment_share": 200},
    {"description": "Handover", "payment_share": 100},
]


def make_service(start: int = START_TIME, window: int = WINDOW, client_funds: int = 10_000):
    """Service on a fresh in-memory database with a manual clock and a funded client."""
    clock = ManualClock(start)
    service = AgreementService(db=Database(":memory:"), clock=clock, admin=ADMIN, dispute_window=window)
    if client_funds:
        service.payment.fund(CLIENT, client_funds)
    return service, clock


def create_agreement(service, agreement_id: int = 1, total_cost: int = 1000, duration: int = DURATION):
    return service.create_agreement(CLIENT, agreement_id, PROVIDER, total_cost, duration, MILESTONES)


def create_active(service, agreement_id: int = 1, total_cost: int = 1000):
    """Create and fully fund an agreement."""
    create_agreement(service, agreement_id, total_cost)
    service.deposit_payment(CLIENT, agreement_id, total_cost)
    return service.get_agreement(agreement_id)


def create_delivered(service, agreement_id: int = 1, total_cost: int = 1000):
    create_active(service, agreement_id, total_cost)
    for i in range(len(MILESTONES)):
        service.mark_milestone_complete(PROVIDER, agreement_id, i)
    return service.get_agreement(agreement_id)


def snapshot(service, agreement_id: int = 1) -> dict:
    """Everything an operation could touch, for all-or-nothing assertions."""
    agreement = service.get_agreement(agreement_id)
    dispute = service.get_dispute(agreement_id)
    return {
        "agreement": agreement.to_dict() if agreement else None,
        "escrow": service.get_escrow_balance(agreement_id),
        "dispute": dispute.to_dict() if dispute else None,
        "events": len(service.get_events(agreement_id)),
        "client_funds": service.payment.balance_of(CLIENT),
        "provider_funds": service.payment.balance_of(PROVIDER),
        "holder_funds": service.payment.balance_of(service.payment.escrow_account(agreement_id)),
    }
