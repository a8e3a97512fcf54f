"""
Tax Comparator - validates customer-side tax against bank-reported tax.

For each matched pair the customer's total tax is recomputed from its tax
rows (exact Decimal sum) and compared with the tax the bank reported for
the matched bank transaction. The same comparison is repeated per tax
type so a mismatch can be traced to the tax that caused it.
"""

from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence

import structlog

from ..config import get_settings
from ..models import (
    BankTaxRow,
    ComparisonResult,
    ComparisonStatus,
    ComparisonSummary,
    CustomerTaxRow,
    MatchedPair,
    TaxLineComparison,
    TaxRow,
)
from ..utils.money import sum_amounts

logger = structlog.get_logger()


class TaxComparator:
    """
    Classifies each matched pair as match / mismatch / missing.

    The tolerance defaults to ``tax_tolerance`` from settings (zero unless
    configured): a difference up to and including the tolerance is a match.
    """

    def __init__(self, tolerance: Optional[Decimal] = None):
        if tolerance is None:
            tolerance = get_settings().tax_tolerance
        if tolerance < 0:
            raise ValueError("tolerance must not be negative")
        self.tolerance = tolerance

    def compare(
        self,
        pair: MatchedPair,
        customer_tax_rows: Sequence[CustomerTaxRow],
        bank_reported_tax: Optional[Decimal],
        bank_tax_rows: Optional[Sequence[BankTaxRow]] = None,
    ) -> ComparisonResult:
        """
        Compare one matched pair.

        Args:
            pair: The matched bank / customer transactions
            customer_tax_rows: Tax rows of ``pair.customer``
            bank_reported_tax: Tax reported by the bank, None when absent
            bank_tax_rows: Bank tax rows of ``pair.bank``; only used for the
                per-type breakdown

        Returns:
            ComparisonResult with the recomputed customer total
        """
        for row in customer_tax_rows:
            if row.customer_transaction_id != pair.customer.id:
                raise ValueError(
                    f"tax row of customer transaction {row.customer_transaction_id} "
                    f"passed for customer transaction {pair.customer.id}"
                )
        for row in bank_tax_rows or []:
            if row.bank_transaction_id != pair.bank.id:
                raise ValueError(
                    f"tax row of bank transaction {row.bank_transaction_id} "
                    f"passed for bank transaction {pair.bank.id}"
                )

        customer_total = self.total_tax(customer_tax_rows)
        status = self._classify(customer_total, bank_reported_tax)

        return ComparisonResult(
            bank_transaction_id=pair.bank.id,
            customer_transaction_id=pair.customer.id,
            status=status,
            bank_tax=bank_reported_tax,
            customer_total_tax=customer_total,
            internal_number=pair.bank.internal_number,
            tax_types=sorted({row.tax_type for row in customer_tax_rows if row.tax_type}),
            tax_lines=self.compare_lines(customer_tax_rows, bank_tax_rows or []),
        )

    def compare_lines(
        self,
        customer_tax_rows: Sequence[CustomerTaxRow],
        bank_tax_rows: Sequence[BankTaxRow],
    ) -> List[TaxLineComparison]:
        """Per tax type comparison; a type present on one side only is missing."""
        customer_by_type = self._totals_by_type(customer_tax_rows)
        bank_by_type = self._totals_by_type(bank_tax_rows)

        lines = []
        for tax_type in sorted(set(customer_by_type) | set(bank_by_type)):
            customer_tax = customer_by_type.get(tax_type)
            bank_tax = bank_by_type.get(tax_type)
            lines.append(TaxLineComparison(
                tax_type=tax_type,
                status=self._classify(customer_tax, bank_tax),
                customer_tax=customer_tax,
                bank_tax=bank_tax,
            ))
        return lines

    def compare_all(
        self,
        pairs: Iterable[MatchedPair],
        customer_rows_by_txn: Dict[int, List[CustomerTaxRow]],
        bank_tax_by_txn: Dict[int, Decimal],
        bank_rows_by_txn: Optional[Dict[int, List[BankTaxRow]]] = None,
    ) -> List[ComparisonResult]:
        """Compare every pair; results come back in pair order."""
        bank_rows_by_txn = bank_rows_by_txn or {}
        results = [
            self.compare(
                pair,
                customer_rows_by_txn.get(pair.customer.id, []),
                bank_tax_by_txn.get(pair.bank.id),
                bank_rows_by_txn.get(pair.bank.id, []),
            )
            for pair in pairs
        ]

        summary = self.summarize(results)
        logger.info("Tax comparison complete", **summary.to_dict())
        return results

    @staticmethod
    def total_tax(rows: Sequence[CustomerTaxRow]) -> Optional[Decimal]:
        """Sum of tax row amounts; None when there are no rows."""
        if not rows:
            return None
        return sum_amounts(row.tax_amount for row in rows)

    @staticmethod
    def bank_reported_taxes(rows: Iterable[BankTaxRow]) -> Dict[int, Decimal]:
        """Bank-reported tax per bank transaction (sum of its tax rows)."""
        grouped: Dict[int, List[Decimal]] = {}
        for row in rows:
            grouped.setdefault(row.bank_transaction_id, []).append(row.tax_amount)
        return {txn_id: sum_amounts(amounts) for txn_id, amounts in grouped.items()}

    @staticmethod
    def summarize(results: Iterable[ComparisonResult]) -> ComparisonSummary:
        summary = ComparisonSummary()
        for result in results:
            if result.status == ComparisonStatus.MATCH:
                summary.match += 1
            elif result.status == ComparisonStatus.MISMATCH:
                summary.mismatch += 1
            elif result.status == ComparisonStatus.MISSING:
                summary.missing += 1
            else:
                raise ValueError(f"Unknown comparison status: {result.status!r}")
        return summary

    @staticmethod
    def _totals_by_type(rows: Sequence[TaxRow]) -> Dict[str, Decimal]:
        grouped: Dict[str, List[Decimal]] = {}
        for row in rows:
            grouped.setdefault(row.tax_type, []).append(row.tax_amount)
        return {tax_type: sum_amounts(amounts) for tax_type, amounts in grouped.items()}

    def _classify(
        self,
        customer_total: Optional[Decimal],
        bank_tax: Optional[Decimal],
    ) -> ComparisonStatus:
        if customer_total is None or bank_tax is None:
            return ComparisonStatus.MISSING
        if abs(customer_total - bank_tax) <= self.tolerance:
            return ComparisonStatus.MATCH
        return ComparisonStatus.MISMATCH
