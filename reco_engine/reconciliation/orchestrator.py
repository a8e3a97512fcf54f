"""
Reconciliation Orchestrator - Main pipeline coordinator.

Orchestrates one reconciliation run for a scope:
1. Fetch both ledgers and their tax rows from the store
2. Validate records (malformed ones are rejected, not fatal)
3. Match bank and customer transactions
4. Apply match links (concurrent, partial success allowed)
5. Compare taxes of the applied pairs
6. Replace the scope's comparison rows
"""

import asyncio
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import structlog

from ..config import get_settings
from ..errors import InvalidScopeError, PartialApplyError, StoreError
from ..ingestion import LedgerValidator
from ..integrations import TransactionStore
from ..models import (
    AuditAction,
    LedgerSide,
    MatchConfidence,
    MatchOutcome,
    ReconciliationReport,
    ReconciliationScope,
    ReconciliationStatus,
    ResetResult,
    group_tax_rows,
)
from ..utils.audit_logger import AuditLogger
from ..utils.money import sum_amounts
from .applier import MatchApplier
from .matcher import TransactionMatcher
from .reset import ResetController
from .tax_comparator import TaxComparator

logger = structlog.get_logger()


class ReconciliationOrchestrator:
    """
    Main orchestrator for the reconciliation pipeline.

    The store (and the credentials it carries) is passed in explicitly;
    nothing is read from ambient session state.
    """

    def __init__(
        self,
        store: TransactionStore,
        matcher: Optional[TransactionMatcher] = None,
        comparator: Optional[TaxComparator] = None,
        validator: Optional[LedgerValidator] = None,
        max_concurrency: Optional[int] = None,
        audit_dir: Optional[Path] = None,
    ):
        self.store = store
        settings = get_settings()
        self.audit_dir = audit_dir or (settings.reports_dir if settings.audit_export else None)
        self.validator = validator or LedgerValidator()
        self.matcher = matcher or TransactionMatcher()
        self.comparator = comparator or TaxComparator()
        self.applier = MatchApplier(store, max_concurrency=max_concurrency)
        self.reset_controller = ResetController(store)

    async def reset_scope(self, scope: ReconciliationScope) -> ResetResult:
        """Clear match links and comparisons of the scope."""
        return await self.reset_controller.reset_scope(scope)

    async def reset_and_run(self, scope: ReconciliationScope) -> ReconciliationReport:
        """Reset the scope, then reconcile it from scratch."""
        reset = await self.reset_scope(scope)
        return await self.run_reconciliation(scope, reset=reset)

    async def run_reconciliation(
        self,
        scope: ReconciliationScope,
        progress_callback: Optional[Callable[[float, str], None]] = None,
        reset: Optional[ResetResult] = None,
    ) -> ReconciliationReport:
        """
        Execute the full reconciliation pipeline for a scope.

        Args:
            scope: Bank / agency the run is bounded to
            progress_callback: Optional callback for progress updates
            reset: Reset performed just before this run, for the audit trail

        Returns:
            ReconciliationReport with every classified outcome

        Raises:
            InvalidScopeError: if the scope has no bank code
            StoreUnavailable: if the store cannot be reached; nothing is
                written in that case
        """
        if not scope.bank_code or not scope.bank_code.strip():
            raise InvalidScopeError("Bank code cannot be empty.")

        report = ReconciliationReport(scope=scope)
        audit = AuditLogger(scope)
        log = logger.bind(bank_code=scope.bank_code, agency=scope.agency_code)
        if reset is not None:
            audit.record(
                AuditAction.SCOPE_RESET,
                "Scope reset before run",
                cleared_links=reset.cleared_links,
                cleared_comparisons=reset.cleared_comparisons,
            )

        def update_progress(percent: float, status: ReconciliationStatus, phase: str):
            report.status = status
            if progress_callback:
                progress_callback(percent, phase)

        try:
            # Phase: Fetch
            update_progress(5, ReconciliationStatus.FETCHING, "Fetching ledgers")
            bank_raw, customer_raw, customer_tax_raw, bank_tax_raw = await asyncio.gather(
                self.store.fetch_bank_transactions(scope),
                self.store.fetch_customer_transactions(scope),
                self.store.fetch_customer_tax_rows(scope),
                self.store.fetch_bank_tax_rows(scope),
            )
            audit.record(
                AuditAction.LEDGER_FETCHED,
                f"Fetched {len(bank_raw)} bank and {len(customer_raw)} customer transactions",
                bank=len(bank_raw),
                customer=len(customer_raw),
            )

            # Phase: Validate
            update_progress(20, ReconciliationStatus.VALIDATING, "Validating records")
            validation = self.validator.validate(bank_raw, customer_raw)
            customer_tax_rows, customer_tax_errors = self.validator.validate_tax_rows(
                customer_tax_raw, LedgerSide.CUSTOMER
            )
            bank_tax_rows, bank_tax_errors = self.validator.validate_tax_rows(
                bank_tax_raw, LedgerSide.BANK
            )
            rejected = validation.errors + customer_tax_errors + bank_tax_errors
            for error in rejected:
                audit.record(
                    AuditAction.INPUT_REJECTED,
                    str(error),
                    success=False,
                    error_message=error.reason,
                    side=error.side,
                )
            report.rejected_records = sorted(
                (e.to_dict() for e in rejected),
                key=lambda d: (d["side"], str(d["record_id"]), d["reason"]),
            )

            # Phase: Match
            update_progress(35, ReconciliationStatus.MATCHING, "Matching transactions")
            outcome = self.matcher.match(
                validation.bank_transactions, validation.customer_transactions
            )
            self._audit_matches(audit, outcome)

            # Phase: Apply
            update_progress(55, ReconciliationStatus.APPLYING, "Applying match links")
            applied = await self.applier.apply(scope, outcome.pairs)
            for failure in applied.failed:
                audit.record(
                    AuditAction.LINK_FAILED,
                    "Match link update failed",
                    transaction_ids=[failure.customer_transaction_id, failure.bank_transaction_id],
                    success=False,
                    error_message=failure.error,
                )
            audit.record(
                AuditAction.LINK_APPLIED,
                f"Applied {applied.succeeded} match links",
                succeeded=applied.succeeded,
                failed=len(applied.failed),
            )

            # Phase: Compare
            update_progress(75, ReconciliationStatus.COMPARING, "Comparing taxes")
            comparisons = self.comparator.compare_all(
                applied.applied_pairs,
                group_tax_rows(customer_tax_rows),
                self.comparator.bank_reported_taxes(bank_tax_rows),
                group_tax_rows(bank_tax_rows),
            )
            for comparison in comparisons:
                audit.record(
                    AuditAction.TAX_COMPARED,
                    f"Tax comparison: {comparison.status.value}",
                    transaction_ids=[comparison.customer_transaction_id, comparison.bank_transaction_id],
                    status=comparison.status.value,
                )

            await self.store.replace_comparisons(scope, comparisons)
            audit.record(
                AuditAction.COMPARISONS_WRITTEN,
                f"Wrote {len(comparisons)} comparison rows",
            )

        except StoreError as e:
            log.error("Reconciliation aborted", error=str(e), status_code=e.status_code)
            report.status = ReconciliationStatus.FAILED
            raise

        # Results
        report.total_bank_transactions = len(validation.bank_transactions)
        report.matched_count = len(applied.applied_pairs)
        report.matched_amount = sum_amounts(p.bank.amount for p in applied.applied_pairs)
        report.high_confidence_count = sum(
            1 for p in applied.applied_pairs if p.confidence == MatchConfidence.HIGH
        )
        report.low_confidence_count = report.matched_count - report.high_confidence_count
        report.unmatched_bank_ids = [t.id for t in outcome.unmatched_bank]
        report.unmatched_customer_ids = [t.id for t in outcome.unmatched_customer]
        report.comparisons = comparisons
        report.comparison_summary = self.comparator.summarize(comparisons)
        report.failed_updates = list(applied.failed)
        report.audit_log = audit.entries
        report.audit_summary = audit.summary()

        if applied.is_partial:
            partial = PartialApplyError(applied.failed, succeeded=applied.succeeded)
            report.errors.append(str(partial))
            report.status = ReconciliationStatus.PARTIAL
        else:
            report.status = ReconciliationStatus.COMPLETED

        report.completed_at = datetime.utcnow()
        if self.audit_dir is not None:
            report.audit_file = audit.export_to_file(self.audit_dir)
        if progress_callback:
            progress_callback(100, "Complete")

        log.info(
            "Reconciliation finished",
            status=report.status.value,
            matched=report.matched_count,
            unmatched_bank=report.unmatched_bank_count,
            unmatched_customer=report.unmatched_customer_count,
            rejected=len(report.rejected_records),
            **report.comparison_summary.to_dict(),
        )
        return report

    async def fetch_unmatched(self, scope: ReconciliationScope) -> Dict[str, List[Dict[str, Any]]]:
        """
        Transactions of the scope with no persisted match link.

        Reads the store's current state rather than re-running the matcher.
        """
        bank_raw, customer_raw = await asyncio.gather(
            self.store.fetch_bank_transactions(scope),
            self.store.fetch_customer_transactions(scope),
        )
        validation = self.validator.validate(bank_raw, customer_raw)

        linked_bank_ids = {
            t.matched_bank_transaction
            for t in validation.customer_transactions
            if t.matched_bank_transaction is not None
        }
        return {
            "unmatched_bank_transactions": [
                t.to_dict() for t in validation.bank_transactions if t.id not in linked_bank_ids
            ],
            "unmatched_customer_transactions": [
                t.to_dict() for t in validation.customer_transactions
                if t.matched_bank_transaction is None
            ],
        }

    def _audit_matches(self, audit: AuditLogger, outcome: MatchOutcome) -> None:
        for pair in outcome.pairs:
            audit.record(
                AuditAction.PAIR_MATCHED,
                f"Matched by {pair.rule.value}",
                transaction_ids=[pair.bank.id, pair.customer.id],
                rule=pair.rule.value,
                confidence=pair.confidence.value,
                days_apart=pair.days_apart,
            )
