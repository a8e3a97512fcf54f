"""Enumerations for the ledger reconciliation system."""

from enum import Enum


class ComparisonStatus(str, Enum):
    """
    Outcome of comparing customer-side and bank-side tax for a matched pair.

    MATCH: computed customer total equals the bank-reported tax (within tolerance)
    MISMATCH: both figures present and different
    MISSING: customer has no tax rows, or the bank reported no tax
    """
    MATCH = "match"
    MISMATCH = "mismatch"
    MISSING = "missing"


class LedgerSide(str, Enum):
    """Which ledger a record comes from."""
    BANK = "bank"
    CUSTOMER = "customer"


class MatchRule(str, Enum):
    """Rule that paired two transactions inside an amount bucket."""
    REFERENCE = "reference"            # Bank reference == customer document number
    DATE_PROXIMITY = "date_proximity"  # Nearest value date / accounting date


class MatchConfidence(str, Enum):
    """Confidence level of a match."""
    HIGH = "high"  # Amount + reference
    LOW = "low"    # Amount + date proximity only


class ReconciliationStatus(str, Enum):
    """Status of a reconciliation run."""
    PENDING = "pending"
    FETCHING = "fetching"
    VALIDATING = "validating"
    MATCHING = "matching"
    APPLYING = "applying"
    COMPARING = "comparing"
    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"


class AuditAction(str, Enum):
    """Type of audit action."""
    LEDGER_FETCHED = "ledger_fetched"
    INPUT_REJECTED = "input_rejected"
    PAIR_MATCHED = "pair_matched"
    LINK_APPLIED = "link_applied"
    LINK_FAILED = "link_failed"
    TAX_COMPARED = "tax_compared"
    COMPARISONS_WRITTEN = "comparisons_written"
    SCOPE_RESET = "scope_reset"
