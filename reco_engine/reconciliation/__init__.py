"""Reconciliation engine components."""

from .matcher import TransactionMatcher
from .applier import MatchApplier
from .tax_comparator import TaxComparator
from .reset import ResetController
from .orchestrator import ReconciliationOrchestrator

__all__ = [
    "TransactionMatcher",
    "MatchApplier",
    "TaxComparator",
    "ResetController",
    "ReconciliationOrchestrator",
]
