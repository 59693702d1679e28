"""Shared constants and interfaces for the milestone escrow protocol.

All modules import from here to avoid circular dependencies.
"""

import os
from enum import Enum

# --- Protocol Constants ---

PROTOCOL_VERSION = 1

# Every agreement carries exactly this many milestone slots
MILESTONE_COUNT = 5

# Dispute window past end_time. Wall-clock hosts count seconds (7 days),
# block-height hosts count blocks (~1 day at 10 min/block).
DISPUTE_WINDOW_SECONDS = 604800
DISPUTE_WINDOW_BLOCKS = 144

# Window in whatever unit the configured clock reports
DISPUTE_WINDOW = int(os.environ.get("ESCROW_DISPUTE_WINDOW", DISPUTE_WINDOW_SECONDS))

# Administrator identity -- set via ESCROW_ADMIN env var, fixed at deployment
ADMIN_PRINCIPAL = os.environ.get("ESCROW_ADMIN", "")

# Percentage bounds for dispute settlement
MIN_REFUND_PCT = 0
MAX_REFUND_PCT = 100

# Largest agreement id or timestamp a SQLite INTEGER column holds
MAX_STORED_INT = 2**63 - 1

# Escrow holder account naming (one holder account per agreement)
ESCROW_ACCOUNT_PREFIX = "escrow:"


# --- State Machine ---

class AgreementState(Enum):
    AWAITING_PAYMENT = "awaiting_payment"
    ACTIVE = "active"
    UNDER_DISPUTE = "under_dispute"
    DELIVERED = "delivered"  # terminal, funds disbursed or awaiting release
    TERMINATED = "terminated"  # canceled before funding completed


# Valid state transitions: current_state -> set of valid next states
STATE_TRANSITIONS = {
    AgreementState.AWAITING_PAYMENT: {AgreementState.ACTIVE, AgreementState.TERMINATED},
    AgreementState.ACTIVE: {AgreementState.DELIVERED, AgreementState.UNDER_DISPUTE},
    AgreementState.UNDER_DISPUTE: {AgreementState.DELIVERED},  # every ruling lands here
    AgreementState.DELIVERED: set(),
    AgreementState.TERMINATED: set(),
}

# Statuses from which a dispute may be filed. Refiling while under dispute
# overwrites the open dispute.
DISPUTABLE_STATES = {AgreementState.ACTIVE, AgreementState.UNDER_DISPUTE}

TERMINABLE_STATES = {AgreementState.AWAITING_PAYMENT}


# --- Error Kinds ---

class ErrorKind(Enum):
    UNAUTHORIZED = "unauthorized"
    INVALID_STATUS = "invalid_status"
    INSUFFICIENT_PAYMENT = "insufficient_payment"
    ALREADY_EXISTS = "already_exists"
    NOT_FOUND = "not_found"
    INVALID_MILESTONE_INDEX = "invalid_milestone_index"
    TRANSFER_FAILED = "transfer_failed"


# --- Journal Actions ---

EVENT_ACTIONS = {
    "create", "deposit", "milestone_complete", "delivered",
    "release", "dispute_filed", "dispute_resolved", "terminate",
}
