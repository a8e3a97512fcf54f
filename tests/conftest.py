"""
Shared fixtures: record factories and an in-memory transaction store.
"""

import asyncio
import copy
from typing import Any, Dict, List, Optional, Set

import pytest

from reco_engine.errors import StoreError, StoreUnavailable
from reco_engine.models import (
    BankTransaction,
    CustomerTransaction,
    ReconciliationScope,
)


def bank_payload(
    id: int,
    amount: str,
    value_date: Optional[str] = "2024-01-10",
    document_reference: Optional[str] = None,
    **extra: Any,
) -> Dict[str, Any]:
    """Bank ledger row as the store returns it; negative amounts are debits."""
    debit, credit = (amount.lstrip("-"), None) if amount.startswith("-") else (None, amount)
    return {
        "id": id,
        "import_batch_id": 1,
        "operation_date": value_date,
        "value_date": value_date,
        "label": f"Bank line {id}",
        "debit": debit,
        "credit": credit,
        "document_reference": document_reference,
        **extra,
    }


def customer_payload(
    id: int,
    amount: str,
    accounting_date: Optional[str] = "2024-01-10",
    external_doc_number: Optional[str] = None,
    **extra: Any,
) -> Dict[str, Any]:
    """Customer ledger row; positive amounts are debits of the bank account."""
    debit, credit = (None, amount.lstrip("-")) if amount.startswith("-") else (amount, None)
    return {
        "id": id,
        "customer_ledger_entry": 1,
        "import_batch_id": 1,
        "account_number": "532100",
        "accounting_date": accounting_date,
        "document_number": None,
        "external_doc_number": external_doc_number,
        "description": f"Customer line {id}",
        "debit_amount": debit,
        "credit_amount": credit,
        "matched_bank_transaction": None,
        **extra,
    }


def make_bank(*args, **kwargs) -> BankTransaction:
    return BankTransaction.from_api(bank_payload(*args, **kwargs))


def make_customer(*args, **kwargs) -> CustomerTransaction:
    return CustomerTransaction.from_api(customer_payload(*args, **kwargs))


class InMemoryTransactionStore:
    """
    Transaction store fake keyed by scope.

    ``fail_customer_ids`` makes link updates fail for those customers;
    ``unavailable`` makes every call raise StoreUnavailable.
    """

    def __init__(self):
        self.bank: Dict[ReconciliationScope, List[Dict[str, Any]]] = {}
        self.customer: Dict[ReconciliationScope, List[Dict[str, Any]]] = {}
        self.customer_taxes: Dict[ReconciliationScope, List[Dict[str, Any]]] = {}
        self.bank_taxes: Dict[ReconciliationScope, List[Dict[str, Any]]] = {}
        self.comparisons: Dict[ReconciliationScope, List[Dict[str, Any]]] = {}

        self.fail_customer_ids: Set[int] = set()
        self.unavailable = False
        self.patch_calls: List[tuple] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.patch_delay = 0.0

    def load(
        self,
        scope: ReconciliationScope,
        bank: List[Dict[str, Any]],
        customer: List[Dict[str, Any]],
        customer_taxes: Optional[List[Dict[str, Any]]] = None,
        bank_taxes: Optional[List[Dict[str, Any]]] = None,
    ) -> None:
        self.bank[scope] = copy.deepcopy(bank)
        self.customer[scope] = copy.deepcopy(customer)
        self.customer_taxes[scope] = copy.deepcopy(customer_taxes or [])
        self.bank_taxes[scope] = copy.deepcopy(bank_taxes or [])

    def links(self, scope: ReconciliationScope) -> Dict[int, Optional[int]]:
        return {c["id"]: c["matched_bank_transaction"] for c in self.customer.get(scope, [])}

    def _check(self) -> None:
        if self.unavailable:
            raise StoreUnavailable("Request error: connection refused")

    async def fetch_bank_transactions(self, scope):
        self._check()
        return copy.deepcopy(self.bank.get(scope, []))

    async def fetch_customer_transactions(self, scope):
        self._check()
        return copy.deepcopy(self.customer.get(scope, []))

    async def fetch_customer_tax_rows(self, scope):
        self._check()
        return copy.deepcopy(self.customer_taxes.get(scope, []))

    async def fetch_bank_tax_rows(self, scope):
        self._check()
        return copy.deepcopy(self.bank_taxes.get(scope, []))

    async def set_matched_bank_transaction(self, scope, customer_transaction_id, bank_transaction_id):
        self._check()
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.patch_delay)
            self.patch_calls.append((customer_transaction_id, bank_transaction_id))
            if customer_transaction_id in self.fail_customer_ids:
                raise StoreError("API error: 500", status_code=500)
            for row in self.customer.get(scope, []):
                if row["id"] == customer_transaction_id:
                    row["matched_bank_transaction"] = bank_transaction_id
                    return copy.deepcopy(row)
            raise StoreError(f"Resource not found: {customer_transaction_id}", status_code=404)
        finally:
            self.in_flight -= 1

    async def replace_comparisons(self, scope, results):
        self._check()
        self.comparisons[scope] = [r.to_dict() for r in results]
        return len(results)

    async def fetch_comparisons(self, scope):
        self._check()
        return copy.deepcopy(self.comparisons.get(scope, []))

    async def reset_scope(self, scope):
        self._check()
        cleared_links = 0
        for row in self.customer.get(scope, []):
            if row["matched_bank_transaction"] is not None:
                row["matched_bank_transaction"] = None
                cleared_links += 1
        cleared_comparisons = len(self.comparisons.pop(scope, []))
        return {"cleared_links": cleared_links, "cleared_comparisons": cleared_comparisons}


@pytest.fixture
def scope():
    return ReconciliationScope(bank_code="bt", agency_code="A01")


@pytest.fixture
def store():
    return InMemoryTransactionStore()
