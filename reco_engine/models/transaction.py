"""Transaction models for the ledger reconciliation system."""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Optional, List, Dict, Any, Tuple

from ..utils.money import to_decimal, format_amount


def parse_date(value: Any) -> Optional[date]:
    """Parse an ISO date ("2024-01-10" or "2024-01-10T08:00:00Z")."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()


def parse_id(value: Any) -> Optional[int]:
    """Parse a record id; ``None`` when absent."""
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValueError(f"Invalid id: {value!r}")
    return int(value)


def normalize_reference(value: Optional[str]) -> Optional[str]:
    """Trim and case-fold a document reference; blank references become None."""
    if value is None:
        return None
    text = str(value).strip()
    return text.casefold() if text else None


def _iso(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass(frozen=True)
class ReconciliationScope:
    """
    The bank (and optionally agency / import batch) a run operates on.

    Transactions from different scopes are never matched against each other.
    """
    bank_code: str
    agency_code: Optional[str] = None
    import_batch_id: Optional[int] = None

    @property
    def api_prefix(self) -> str:
        """Bank-specific route prefix on the store API, e.g. ``/bt``."""
        return f"/{self.bank_code.strip()}"

    def as_params(self) -> Dict[str, Any]:
        """Query parameters that bound a store request to this scope."""
        params: Dict[str, Any] = {}
        if self.agency_code:
            params["agency"] = self.agency_code
        if self.import_batch_id is not None:
            params["import_batch_id"] = self.import_batch_id
        return params

    def to_dict(self) -> Dict[str, Any]:
        return {
            "bank_code": self.bank_code,
            "agency_code": self.agency_code,
            "import_batch_id": self.import_batch_id,
        }


@dataclass
class BankTransaction:
    """
    A line of the bank-issued ledger.
    Exactly one of debit / credit is set; ``amount`` is derived from them.
    """
    id: int
    import_batch_id: Optional[int] = None
    operation_date: Optional[date] = None
    value_date: Optional[date] = None
    label: str = ""
    debit: Optional[Decimal] = None
    credit: Optional[Decimal] = None
    document_reference: Optional[str] = None
    ref: Optional[str] = None
    internal_number: Optional[str] = None

    # Classification (mutable after ingestion)
    payment_class_id: Optional[str] = None
    payment_status_id: Optional[str] = None
    accounting_account: Optional[str] = None
    bank_id: Optional[str] = None

    @property
    def amount(self) -> Decimal:
        """Signed amount: credits (money in) positive, debits negative."""
        return (self.credit or Decimal("0")) - (self.debit or Decimal("0"))

    @property
    def match_date(self) -> Optional[date]:
        """Date used for proximity matching."""
        return self.value_date or self.operation_date

    @property
    def references(self) -> Tuple[str, ...]:
        refs = (normalize_reference(self.document_reference), normalize_reference(self.ref))
        return tuple(r for r in refs if r)

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "BankTransaction":
        """Build from a store payload; raises ValueError on malformed fields."""
        txn_id = parse_id(data.get("id"))
        if txn_id is None:
            raise ValueError("missing id")
        return cls(
            id=txn_id,
            import_batch_id=parse_id(data.get("import_batch_id")),
            operation_date=parse_date(data.get("operation_date")),
            value_date=parse_date(data.get("value_date")),
            label=data.get("label") or "",
            debit=to_decimal(data.get("debit")),
            credit=to_decimal(data.get("credit")),
            document_reference=data.get("document_reference"),
            ref=data.get("ref"),
            internal_number=data.get("internal_number"),
            payment_class_id=_opt_str(data.get("payment_class_id")),
            payment_status_id=_opt_str(data.get("payment_status_id")),
            accounting_account=data.get("accounting_account"),
            bank_id=_opt_str(data.get("bank_id")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "import_batch_id": self.import_batch_id,
            "operation_date": _iso(self.operation_date),
            "value_date": _iso(self.value_date),
            "label": self.label,
            "debit": format_amount(self.debit),
            "credit": format_amount(self.credit),
            "amount": format_amount(self.amount),
            "document_reference": self.document_reference,
            "ref": self.ref,
            "internal_number": self.internal_number,
            "payment_class_id": self.payment_class_id,
            "payment_status_id": self.payment_status_id,
            "accounting_account": self.accounting_account,
        }


@dataclass
class CustomerTransaction:
    """
    A line of the customer (internal accounting) ledger.

    The bank account is debited in the customer's books when the bank
    credits it, so the signed amount is debit - credit and lines up with
    ``BankTransaction.amount`` for the same movement.
    """
    id: int
    customer_ledger_entry: Optional[int] = None
    import_batch_id: Optional[int] = None
    account_number: str = ""
    accounting_date: Optional[date] = None
    document_number: Optional[str] = None
    external_doc_number: Optional[str] = None
    description: str = ""
    debit_amount: Optional[Decimal] = None
    credit_amount: Optional[Decimal] = None
    due_date: Optional[date] = None
    payment_type: Optional[str] = None

    # Set only by the match applier
    matched_bank_transaction: Optional[int] = None

    @property
    def amount(self) -> Decimal:
        return (self.debit_amount or Decimal("0")) - (self.credit_amount or Decimal("0"))

    @property
    def references(self) -> Tuple[str, ...]:
        refs = (
            normalize_reference(self.document_number),
            normalize_reference(self.external_doc_number),
        )
        return tuple(r for r in refs if r)

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "CustomerTransaction":
        txn_id = parse_id(data.get("id"))
        if txn_id is None:
            raise ValueError("missing id")
        return cls(
            id=txn_id,
            customer_ledger_entry=parse_id(data.get("customer_ledger_entry")),
            import_batch_id=parse_id(data.get("import_batch_id")),
            account_number=data.get("account_number") or "",
            accounting_date=parse_date(data.get("accounting_date")),
            document_number=data.get("document_number"),
            external_doc_number=data.get("external_doc_number"),
            description=data.get("description") or "",
            debit_amount=to_decimal(data.get("debit_amount")),
            credit_amount=to_decimal(data.get("credit_amount")),
            due_date=parse_date(data.get("due_date")),
            payment_type=data.get("payment_type"),
            matched_bank_transaction=parse_id(data.get("matched_bank_transaction")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "customer_ledger_entry": self.customer_ledger_entry,
            "import_batch_id": self.import_batch_id,
            "account_number": self.account_number,
            "accounting_date": _iso(self.accounting_date),
            "document_number": self.document_number,
            "external_doc_number": self.external_doc_number,
            "description": self.description,
            "debit_amount": format_amount(self.debit_amount),
            "credit_amount": format_amount(self.credit_amount),
            "amount": format_amount(self.amount),
            "due_date": _iso(self.due_date),
            "payment_type": self.payment_type,
            "matched_bank_transaction": self.matched_bank_transaction,
        }


@dataclass
class TaxRow:
    """One tax line item attached to a transaction."""
    transaction_id: int
    tax_type: str
    tax_amount: Decimal
    id: Optional[int] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any], id_field: str) -> "TaxRow":
        transaction_id = parse_id(data.get(id_field))
        if transaction_id is None:
            raise ValueError(f"tax row without {id_field}")
        amount = to_decimal(data.get("tax_amount", data.get("value")))
        if amount is None:
            raise ValueError("tax row without amount")
        return cls(
            transaction_id=transaction_id,
            tax_type=str(data.get("tax_type") or data.get("tax_name") or ""),
            tax_amount=amount,
            id=parse_id(data.get("id")),
        )


@dataclass
class CustomerTaxRow(TaxRow):
    """Tax line of a customer transaction."""

    @property
    def customer_transaction_id(self) -> int:
        return self.transaction_id

    @classmethod
    def from_api(cls, data: Dict[str, Any], id_field: str = "customer_transaction") -> "CustomerTaxRow":
        if id_field not in data and "customer_transaction_id" in data:
            id_field = "customer_transaction_id"
        return super().from_api(data, id_field)


@dataclass
class BankTaxRow(TaxRow):
    """Tax line reported by the bank for one of its transactions."""

    @property
    def bank_transaction_id(self) -> int:
        return self.transaction_id

    @classmethod
    def from_api(cls, data: Dict[str, Any], id_field: str = "bank_transaction") -> "BankTaxRow":
        if id_field not in data and "bank_transaction_id" in data:
            id_field = "bank_transaction_id"
        return super().from_api(data, id_field)


def group_tax_rows(rows: List[TaxRow]) -> Dict[int, List[TaxRow]]:
    """Index tax rows by the id of the transaction they belong to."""
    grouped: Dict[int, List[TaxRow]] = {}
    for row in rows:
        grouped.setdefault(row.transaction_id, []).append(row)
    return grouped


def _opt_str(value: Any) -> Optional[str]:
    return None if value is None or value == "" else str(value)
