"""
tally.errors — Typed Failure Taxonomy
======================================

Every ledger, share and redemption operation fails with one of these.
The API maps them to HTTP responses in one place (``tally.api.main``).
"""

from __future__ import annotations


class LedgerError(Exception):
    """Base class for all expected, caller-visible failures."""

    code = "ledger_error"
    status_code = 400


class NotFoundError(LedgerError):
    code = "not_found"
    status_code = 404


class InvalidAmountError(LedgerError):
    code = "invalid_amount"
    status_code = 422


class InsufficientBalanceError(LedgerError):
    code = "insufficient_balance"
    status_code = 409

    def __init__(self, member_id: int, balance: int, requested: int) -> None:
        super().__init__(
            f"Insufficient points balance for member {member_id}: "
            f"has {balance}, needs {requested}"
        )
        self.member_id = member_id
        self.balance = balance
        self.requested = requested


class DuplicateShareError(LedgerError):
    code = "duplicate_share"
    status_code = 409


class AlreadyVerifiedError(LedgerError):
    code = "already_verified"
    status_code = 409


class NoSelfTransferError(LedgerError):
    code = "no_self_transfer"
    status_code = 422


class InvalidRequestError(LedgerError):
    """Malformed metadata, bad recipient details, or an illegal state change."""

    code = "invalid_request"
    status_code = 422
