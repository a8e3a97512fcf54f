"""Exception types raised by the reconciliation engine."""

from typing import Any, List


class ReconciliationError(Exception):
    """Base class for all reconciliation errors."""


class InvalidScopeError(ReconciliationError):
    """The requested scope cannot be routed to a bank ledger."""


class InputError(ReconciliationError):
    """
    A malformed or inconsistent transaction record.

    Raised per record by the ledger validator and collected, never
    propagated out of a run: the record is excluded from matching.
    """

    def __init__(self, record_id: Any, side: str, reason: str):
        super().__init__(f"{side} transaction {record_id}: {reason}")
        self.record_id = record_id
        self.side = side
        self.reason = reason

    def to_dict(self) -> dict:
        return {
            "record_id": self.record_id,
            "side": self.side,
            "reason": self.reason,
        }


class StoreError(ReconciliationError):
    """The transaction store answered with an error."""

    def __init__(self, message: str, status_code: int = 0, details: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.details = details


class StoreUnavailable(StoreError):
    """The transaction store could not be reached (network, timeout, 5xx gateway)."""


class PartialApplyError(ReconciliationError):
    """One or more match-link updates failed while the others went through."""

    def __init__(self, failed: List[Any], succeeded: int = 0):
        super().__init__(
            f"{len(failed)} match link update(s) failed, {succeeded} succeeded"
        )
        self.failed = failed
        self.succeeded = succeeded
