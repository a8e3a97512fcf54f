"""Reconciliation result models."""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Optional, List, Dict, Any
from uuid import uuid4

from ..utils.money import format_amount
from .enums import (
    AuditAction,
    ComparisonStatus,
    MatchConfidence,
    MatchRule,
    ReconciliationStatus,
)
from .transaction import BankTransaction, CustomerTransaction, ReconciliationScope


@dataclass
class MatchedPair:
    """A bank transaction reconciled against exactly one customer transaction."""
    bank: BankTransaction
    customer: CustomerTransaction
    rule: MatchRule = MatchRule.DATE_PROXIMITY
    days_apart: Optional[int] = None

    @property
    def confidence(self) -> MatchConfidence:
        if self.rule == MatchRule.REFERENCE:
            return MatchConfidence.HIGH
        return MatchConfidence.LOW

    @property
    def key(self) -> tuple:
        return (self.bank.id, self.customer.id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "bank_transaction_id": self.bank.id,
            "customer_transaction_id": self.customer.id,
            "amount": format_amount(self.bank.amount),
            "rule": self.rule.value,
            "confidence": self.confidence.value,
            "days_apart": self.days_apart,
        }


@dataclass
class MatchOutcome:
    """Pairs plus whatever is left on each side."""
    pairs: List[MatchedPair] = field(default_factory=list)
    unmatched_bank: List[BankTransaction] = field(default_factory=list)
    unmatched_customer: List[CustomerTransaction] = field(default_factory=list)

    @property
    def high_confidence_count(self) -> int:
        return sum(1 for p in self.pairs if p.confidence == MatchConfidence.HIGH)

    @property
    def low_confidence_count(self) -> int:
        return sum(1 for p in self.pairs if p.confidence == MatchConfidence.LOW)


@dataclass
class FailedUpdate:
    """A match-link update that did not go through; enough identity to retry it."""
    customer_transaction_id: int
    bank_transaction_id: int
    error: str
    status_code: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "customer_transaction_id": self.customer_transaction_id,
            "bank_transaction_id": self.bank_transaction_id,
            "error": self.error,
            "status_code": self.status_code,
        }


@dataclass
class AppliedResult:
    """Outcome of applying a batch of match links."""
    succeeded: int = 0
    failed: List[FailedUpdate] = field(default_factory=list)
    applied_pairs: List[MatchedPair] = field(default_factory=list)

    @property
    def is_partial(self) -> bool:
        return bool(self.failed)

    @property
    def attempted(self) -> int:
        return self.succeeded + len(self.failed)


@dataclass
class TaxLineComparison:
    """Customer vs bank amount for one tax type of a matched pair."""
    tax_type: str
    status: ComparisonStatus
    customer_tax: Optional[Decimal] = None
    bank_tax: Optional[Decimal] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tax_type": self.tax_type,
            "customer_tax": format_amount(self.customer_tax),
            "bank_tax": format_amount(self.bank_tax),
            "status": self.status.value,
        }


@dataclass
class ComparisonResult:
    """
    Tax comparison for one matched pair.

    ``status`` classifies the totals; ``tax_lines`` breaks them down per
    tax type, sorted by type.
    """
    bank_transaction_id: int
    customer_transaction_id: int
    status: ComparisonStatus
    bank_tax: Optional[Decimal] = None
    customer_total_tax: Optional[Decimal] = None
    internal_number: Optional[str] = None
    tax_types: List[str] = field(default_factory=list)
    tax_lines: List[TaxLineComparison] = field(default_factory=list)

    @property
    def difference(self) -> Optional[Decimal]:
        if self.bank_tax is None or self.customer_total_tax is None:
            return None
        return self.customer_total_tax - self.bank_tax

    def to_dict(self) -> Dict[str, Any]:
        return {
            "customer_transaction_id": self.customer_transaction_id,
            "matched_bank_transaction_id": self.bank_transaction_id,
            "internal_number": self.internal_number,
            "tax_type": ",".join(self.tax_types),
            "customer_total_tax": format_amount(self.customer_total_tax),
            "bank_tax": format_amount(self.bank_tax),
            "status": self.status.value,
            "tax_lines": [line.to_dict() for line in self.tax_lines],
        }


@dataclass
class ComparisonSummary:
    """Counts of comparison results per status."""
    match: int = 0
    mismatch: int = 0
    missing: int = 0

    @property
    def total(self) -> int:
        return self.match + self.mismatch + self.missing

    def to_dict(self) -> Dict[str, int]:
        return {
            "match": self.match,
            "mismatch": self.mismatch,
            "missing": self.missing,
            "total": self.total,
        }


@dataclass
class ResetResult:
    """What the store cleared for a scope."""
    scope: ReconciliationScope
    cleared_links: int = 0
    cleared_comparisons: int = 0


@dataclass
class AuditEntry:
    """An entry in the audit log."""
    id: str = field(default_factory=lambda: str(uuid4()))
    timestamp: datetime = field(default_factory=datetime.utcnow)

    action: AuditAction = AuditAction.LEDGER_FETCHED

    transaction_ids: List[int] = field(default_factory=list)
    message: str = ""
    details: Dict[str, Any] = field(default_factory=dict)

    success: bool = True
    error_message: Optional[str] = None


@dataclass
class ReconciliationReport:
    """
    Everything a run decided for a scope.

    ``to_dict`` carries no timestamps or generated ids: two runs over the
    same data serialize identically.
    """
    scope: ReconciliationScope
    status: ReconciliationStatus = ReconciliationStatus.PENDING

    total_bank_transactions: int = 0
    matched_count: int = 0
    high_confidence_count: int = 0
    low_confidence_count: int = 0
    matched_amount: Decimal = Decimal("0")
    unmatched_bank_ids: List[int] = field(default_factory=list)
    unmatched_customer_ids: List[int] = field(default_factory=list)

    comparisons: List[ComparisonResult] = field(default_factory=list)
    comparison_summary: ComparisonSummary = field(default_factory=ComparisonSummary)

    failed_updates: List[FailedUpdate] = field(default_factory=list)
    rejected_records: List[Dict[str, Any]] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    audit_log: List[AuditEntry] = field(default_factory=list)
    audit_summary: Dict[str, Any] = field(default_factory=dict)
    audit_file: Optional[Path] = None
    started_at: datetime = field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None

    @property
    def unmatched_bank_count(self) -> int:
        return len(self.unmatched_bank_ids)

    @property
    def unmatched_customer_count(self) -> int:
        return len(self.unmatched_customer_ids)

    @property
    def high_matches_percentage(self) -> float:
        """Share of the scope's valid bank transactions matched by reference."""
        return self._percentage(self.high_confidence_count)

    @property
    def low_matches_percentage(self) -> float:
        """Share of the scope's valid bank transactions matched by date only."""
        return self._percentage(self.low_confidence_count)

    def _percentage(self, count: int) -> float:
        if self.total_bank_transactions == 0:
            return 0.0
        return round(count / self.total_bank_transactions * 100, 2)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scope": self.scope.to_dict(),
            "status": self.status.value,
            "total_bank_transactions": self.total_bank_transactions,
            "matched_count": self.matched_count,
            "high_confidence_count": self.high_confidence_count,
            "high_matches_percentage": self.high_matches_percentage,
            "low_confidence_count": self.low_confidence_count,
            "low_matches_percentage": self.low_matches_percentage,
            "matched_amount": format_amount(self.matched_amount),
            "unmatched_bank_count": self.unmatched_bank_count,
            "unmatched_customer_count": self.unmatched_customer_count,
            "unmatched_bank_ids": list(self.unmatched_bank_ids),
            "unmatched_customer_ids": list(self.unmatched_customer_ids),
            "comparison_summary": self.comparison_summary.to_dict(),
            "comparisons": [c.to_dict() for c in self.comparisons],
            "failed_updates": [f.to_dict() for f in self.failed_updates],
            "rejected_records": list(self.rejected_records),
            "errors": list(self.errors),
            "audit_summary": dict(self.audit_summary),
        }
