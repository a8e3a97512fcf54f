"""Validation of ledger records fetched from the transaction store."""

from .validator import LedgerValidator, ValidationResult

__all__ = ["LedgerValidator", "ValidationResult"]
