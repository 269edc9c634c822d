"""Ledger domain errors.

Everything except PersistenceFailure is an expected outcome: routes turn these
into 4xx responses and services log them at info level.
"""
from __future__ import annotations


class LedgerError(Exception):
    """Base class for wallet/ledger domain errors."""

    code = "LEDGER_ERROR"
    message = "Ledger operation failed"

    def __init__(self, message: str | None = None, **context):
        self.message = message or self.message
        self.context = context
        super().__init__(self.message)


class InvalidAmount(LedgerError):
    code = "INVALID_AMOUNT"
    message = "Amount must be a positive whole number"


class InsufficientBalance(LedgerError):
    code = "INSUFFICIENT_BALANCE"
    message = "Insufficient balance"


class AccountSuspended(LedgerError):
    code = "ACCOUNT_SUSPENDED"
    message = "Your account has been suspended. Please contact customer service."


class NotFound(LedgerError):
    code = "NOT_FOUND"
    message = "Not found"


class AlreadyProcessed(LedgerError):
    code = "ALREADY_PROCESSED"
    message = "Withdrawal request has already been processed"


class InvalidMetadata(LedgerError):
    code = "INVALID_METADATA"
    message = "Transaction metadata does not match its category"


class InvalidSetting(LedgerError):
    code = "INVALID_SETTING"
    message = "Invalid platform setting"


class PersistenceFailure(LedgerError):
    code = "PERSISTENCE_FAILURE"
    message = "The operation could not be completed. Please try again."
