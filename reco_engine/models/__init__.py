"""Data models for the ledger reconciliation system."""

from .enums import (
    AuditAction,
    ComparisonStatus,
    LedgerSide,
    MatchConfidence,
    MatchRule,
    ReconciliationStatus,
)
from .transaction import (
    BankTaxRow,
    BankTransaction,
    CustomerTaxRow,
    CustomerTransaction,
    ReconciliationScope,
    TaxRow,
    group_tax_rows,
)
from .reconciliation import (
    AppliedResult,
    AuditEntry,
    ComparisonResult,
    ComparisonSummary,
    FailedUpdate,
    MatchedPair,
    MatchOutcome,
    ReconciliationReport,
    ResetResult,
    TaxLineComparison,
)

__all__ = [
    # Enums
    "AuditAction",
    "ComparisonStatus",
    "LedgerSide",
    "MatchConfidence",
    "MatchRule",
    "ReconciliationStatus",
    # Transactions
    "BankTaxRow",
    "BankTransaction",
    "CustomerTaxRow",
    "CustomerTransaction",
    "ReconciliationScope",
    "TaxRow",
    "group_tax_rows",
    # Reconciliation
    "AppliedResult",
    "AuditEntry",
    "ComparisonResult",
    "ComparisonSummary",
    "FailedUpdate",
    "MatchedPair",
    "MatchOutcome",
    "ReconciliationReport",
    "ResetResult",
    "TaxLineComparison",
]
