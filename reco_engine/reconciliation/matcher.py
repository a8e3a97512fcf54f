"""
Transaction Matcher - pairs bank ledger lines with customer ledger lines.

Pairing is one-to-one and only ever happens between transactions with the
same signed amount. Inside an amount bucket candidates are ranked by:

1. Reference match (bank document reference / ref == customer document
   number / external document number)
2. Nearest date (bank value date vs customer accounting date)
3. Ascending bank transaction id, then ascending customer transaction id

and assigned greedily in that order. The ranking is a total order over
ids, so the outcome does not depend on the order of the inputs.
"""

from collections import defaultdict
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Set, Tuple

import structlog

from ..models import (
    BankTransaction,
    CustomerTransaction,
    MatchedPair,
    MatchOutcome,
    MatchRule,
)

logger = structlog.get_logger()

# Rank of undated candidates: after every dated one
_UNDATED = (1, 0)


@dataclass
class CandidateMatch:
    """A potential pairing inside an amount bucket."""
    bank: BankTransaction
    customer: CustomerTransaction
    reference_match: bool
    days_apart: Optional[int]

    @property
    def sort_key(self) -> Tuple:
        tier = 0 if self.reference_match else 1
        distance = (0, self.days_apart) if self.days_apart is not None else _UNDATED
        return (tier, distance, self.bank.id, self.customer.id)


class TransactionMatcher:
    """Deterministic one-to-one matcher over two ledgers of the same scope."""

    def match(
        self,
        bank_txns: Sequence[BankTransaction],
        customer_txns: Sequence[CustomerTransaction],
    ) -> MatchOutcome:
        """
        Pair bank and customer transactions.

        Args:
            bank_txns: Validated bank ledger lines of the scope
            customer_txns: Validated customer ledger lines of the scope

        Returns:
            MatchOutcome with pairs sorted by bank id and the unmatched
            remainders sorted by id
        """
        logger.info(
            "Starting matching",
            bank=len(bank_txns),
            customer=len(customer_txns),
        )

        bank_by_amount = self._build_amount_index(bank_txns)
        customer_by_amount = self._build_amount_index(customer_txns)

        pairs: List[MatchedPair] = []
        for amount in sorted(set(bank_by_amount) & set(customer_by_amount)):
            pairs.extend(self._match_bucket(
                bank_by_amount[amount],
                customer_by_amount[amount],
            ))

        pairs.sort(key=lambda p: p.key)

        matched_bank_ids: Set[int] = {p.bank.id for p in pairs}
        matched_customer_ids: Set[int] = {p.customer.id for p in pairs}

        outcome = MatchOutcome(
            pairs=pairs,
            unmatched_bank=sorted(
                (t for t in bank_txns if t.id not in matched_bank_ids),
                key=lambda t: t.id,
            ),
            unmatched_customer=sorted(
                (t for t in customer_txns if t.id not in matched_customer_ids),
                key=lambda t: t.id,
            ),
        )

        logger.info(
            "Matching complete",
            matched=len(outcome.pairs),
            by_reference=outcome.high_confidence_count,
            by_date=outcome.low_confidence_count,
            unmatched_bank=len(outcome.unmatched_bank),
            unmatched_customer=len(outcome.unmatched_customer),
        )
        return outcome

    def _build_amount_index(self, transactions) -> Dict[Decimal, list]:
        """Build index of transactions by signed amount."""
        index = defaultdict(list)
        for txn in transactions:
            index[txn.amount].append(txn)
        return index

    def _match_bucket(
        self,
        bank_txns: List[BankTransaction],
        customer_txns: List[CustomerTransaction],
    ) -> List[MatchedPair]:
        """Greedy first-fit assignment over the ranked candidates of one bucket."""
        candidates = [
            self._candidate(bank, customer)
            for bank in bank_txns
            for customer in customer_txns
        ]
        candidates.sort(key=lambda c: c.sort_key)

        used_bank: Set[int] = set()
        used_customer: Set[int] = set()
        pairs: List[MatchedPair] = []
        limit = min(len(bank_txns), len(customer_txns))

        for candidate in candidates:
            if len(pairs) == limit:
                break
            if candidate.bank.id in used_bank or candidate.customer.id in used_customer:
                continue

            used_bank.add(candidate.bank.id)
            used_customer.add(candidate.customer.id)
            pairs.append(MatchedPair(
                bank=candidate.bank,
                customer=candidate.customer,
                rule=MatchRule.REFERENCE if candidate.reference_match else MatchRule.DATE_PROXIMITY,
                days_apart=candidate.days_apart,
            ))

            logger.debug(
                "Pair matched",
                bank_id=candidate.bank.id,
                customer_id=candidate.customer.id,
                reference_match=candidate.reference_match,
                days_apart=candidate.days_apart,
            )

        return pairs

    def _candidate(
        self,
        bank: BankTransaction,
        customer: CustomerTransaction,
    ) -> CandidateMatch:
        return CandidateMatch(
            bank=bank,
            customer=customer,
            reference_match=self._references_match(bank, customer),
            days_apart=self._days_between(bank, customer),
        )

    @staticmethod
    def _references_match(bank: BankTransaction, customer: CustomerTransaction) -> bool:
        return bool(set(bank.references) & set(customer.references))

    @staticmethod
    def _days_between(bank: BankTransaction, customer: CustomerTransaction) -> Optional[int]:
        if bank.match_date is None or customer.accounting_date is None:
            return None
        return abs((bank.match_date - customer.accounting_date).days)
