"""Error hierarchy for agreement operations.

Each public operation fails with at most one of these. The kind is a fixed
code from protocol.ErrorKind; http_status is used by the HTTP adapter.
"""

from protocol import ErrorKind


class AgreementError(Exception):
    """Base exception for all agreement operation failures."""

    kind: ErrorKind
    http_status: int = 400

    def __init__(self, message: str = "", agreement_id: int | None = None):
        super().__init__(message or self.kind.value)
        self.message = message or self.kind.value
        self.agreement_id = agreement_id

    def to_response(self) -> dict:
        return {
            "error": {
                "code": self.kind.value,
                "message": self.message,
                "agreement_id": self.agreement_id,
            }
        }


class Unauthorized(AgreementError):
    """Caller is not a permitted party for the operation."""
    kind = ErrorKind.UNAUTHORIZED
    http_status = 403


class InvalidStatus(AgreementError):
    """Agreement is in the wrong status, or the dispute window has closed."""
    kind = ErrorKind.INVALID_STATUS
    http_status = 409


class InsufficientPayment(AgreementError):
    kind = ErrorKind.INSUFFICIENT_PAYMENT
    http_status = 400


class AlreadyExists(AgreementError):
    kind = ErrorKind.ALREADY_EXISTS
    http_status = 409


class NotFound(AgreementError):
    kind = ErrorKind.NOT_FOUND
    http_status = 404


class InvalidMilestoneIndex(AgreementError):
    kind = ErrorKind.INVALID_MILESTONE_INDEX
    http_status = 400


class TransferFailed(AgreementError):
    """The payment backend declined a movement of funds."""
    kind = ErrorKind.TRANSFER_FAILED
    http_status = 402

