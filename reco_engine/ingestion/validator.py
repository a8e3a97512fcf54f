"""
Record validator for ledger payloads fetched from the transaction store.

Malformed records are rejected one by one with an InputError and kept out
of matching; they never abort the run.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Callable, Dict, Iterable, List, Tuple, TypeVar

import structlog

from ..errors import InputError
from ..models import (
    BankTaxRow,
    BankTransaction,
    CustomerTaxRow,
    CustomerTransaction,
    LedgerSide,
)

logger = structlog.get_logger()

T = TypeVar("T")


@dataclass
class ValidationResult:
    """Result of validating both ledgers of a scope."""
    bank_transactions: List[BankTransaction] = field(default_factory=list)
    customer_transactions: List[CustomerTransaction] = field(default_factory=list)
    errors: List[InputError] = field(default_factory=list)

    @property
    def rejected_count(self) -> int:
        return len(self.errors)

    @property
    def is_valid(self) -> bool:
        return not self.errors


class LedgerValidator:
    """
    Validates bank and customer ledger records.

    Rules, per record:
    1. The payload parses (id present, amounts numeric, dates ISO)
    2. Debit and credit are never negative
    3. Exactly one of debit / credit is non-zero
    4. Ids are unique within a ledger; exact duplicate rows collapse to
       one, conflicting rows sharing an id are all rejected
    """

    def validate(
        self,
        bank_payloads: Iterable[Dict[str, Any]],
        customer_payloads: Iterable[Dict[str, Any]],
    ) -> ValidationResult:
        bank, bank_errors = self._validate_side(
            bank_payloads, LedgerSide.BANK, BankTransaction.from_api, self._bank_sides
        )
        customer, customer_errors = self._validate_side(
            customer_payloads, LedgerSide.CUSTOMER, CustomerTransaction.from_api, self._customer_sides
        )

        result = ValidationResult(
            bank_transactions=bank,
            customer_transactions=customer,
            errors=bank_errors + customer_errors,
        )

        logger.info(
            "Ledgers validated",
            bank_valid=len(bank),
            customer_valid=len(customer),
            rejected=result.rejected_count,
        )
        return result

    def validate_tax_rows(
        self,
        payloads: Iterable[Dict[str, Any]],
        side: LedgerSide,
    ) -> Tuple[list, List[InputError]]:
        """
        Parse tax rows; malformed rows are rejected like transactions.

        Rows sharing an id collapse when identical and are all rejected
        when they conflict, so a row returned twice is never summed twice.
        Rows without an id are kept as they are.
        """
        factory = CustomerTaxRow.from_api if side == LedgerSide.CUSTOMER else BankTaxRow.from_api
        error_side = f"{side.value}_tax"
        rows = []
        errors: List[InputError] = []
        by_id: Dict[int, list] = {}
        for payload in payloads:
            try:
                row = factory(payload)
            except (ValueError, TypeError) as e:
                errors.append(InputError(payload.get("id"), error_side, str(e)))
                continue
            if row.id is None:
                rows.append(row)
            else:
                by_id.setdefault(row.id, []).append(row)

        unique, conflicts = self._collapse_duplicates(by_id, error_side)
        rows.extend(unique)
        errors.extend(conflicts)

        if errors:
            logger.warning("Tax rows rejected", side=side.value, rejected=len(errors))
        return rows, errors

    def _validate_side(
        self,
        payloads: Iterable[Dict[str, Any]],
        side: LedgerSide,
        factory: Callable[[Dict[str, Any]], T],
        amounts_of: Callable[[T], Tuple[Any, Any]],
    ) -> Tuple[List[T], List[InputError]]:
        errors: List[InputError] = []
        by_id: Dict[int, List[T]] = {}

        for payload in payloads:
            try:
                txn = factory(payload)
            except (ValueError, TypeError) as e:
                errors.append(InputError(payload.get("id"), side.value, f"unparseable record: {e}"))
                continue

            problem = self._check_amounts(*amounts_of(txn))
            if problem:
                errors.append(InputError(txn.id, side.value, problem))
                continue

            by_id.setdefault(txn.id, []).append(txn)

        valid, conflicts = self._collapse_duplicates(by_id, side.value)
        errors.extend(conflicts)

        for error in errors:
            logger.warning(
                "Record rejected",
                side=error.side,
                record_id=error.record_id,
                reason=error.reason,
            )

        return valid, errors

    @staticmethod
    def _collapse_duplicates(
        by_id: Dict[int, List[T]],
        side: str,
    ) -> Tuple[List[T], List[InputError]]:
        """Keep one copy of identical duplicates; reject ids whose copies differ."""
        valid: List[T] = []
        errors: List[InputError] = []
        for record_id in sorted(by_id):
            copies = by_id[record_id]
            first = copies[0]
            if all(c == first for c in copies[1:]):
                valid.append(first)
                if len(copies) > 1:
                    logger.debug(
                        "Duplicate rows collapsed",
                        side=side,
                        record_id=record_id,
                        copies=len(copies),
                    )
            else:
                errors.append(InputError(
                    record_id, side, f"{len(copies)} conflicting records share this id"
                ))
        return valid, errors

    @staticmethod
    def _check_amounts(debit, credit) -> str:
        debit = debit or Decimal("0")
        credit = credit or Decimal("0")
        if debit < 0 or credit < 0:
            return "negative debit or credit"
        if debit and credit:
            return "both debit and credit populated"
        if not debit and not credit:
            return "neither debit nor credit populated"
        return ""

    @staticmethod
    def _bank_sides(txn: BankTransaction):
        return txn.debit, txn.credit

    @staticmethod
    def _customer_sides(txn: CustomerTransaction):
        return txn.debit_amount, txn.credit_amount
