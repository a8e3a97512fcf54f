"""
Match Applier - persists matched pairs as customer -> bank match links.

Each pair is one independent PATCH on the customer transaction. Updates run
concurrently, bounded by ``store_max_concurrency``; a failed update never
blocks or rolls back the others. The batch is not atomic: partial
application is reported, not hidden.
"""

import asyncio
from typing import List, Optional, Sequence

import structlog

from ..config import get_settings
from ..errors import StoreError
from ..integrations import TransactionStore
from ..models import AppliedResult, FailedUpdate, MatchedPair, ReconciliationScope

logger = structlog.get_logger()


class MatchApplier:
    """Writes match links through the transaction store."""

    def __init__(self, store: TransactionStore, max_concurrency: Optional[int] = None):
        self.store = store
        self.max_concurrency = max_concurrency or get_settings().store_max_concurrency

    async def apply(
        self,
        scope: ReconciliationScope,
        pairs: Sequence[MatchedPair],
    ) -> AppliedResult:
        """
        Apply every pair as an independent update.

        Returns:
            AppliedResult; ``applied_pairs`` keeps the input order
        """
        if not pairs:
            return AppliedResult()

        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def apply_one(pair: MatchedPair) -> Optional[FailedUpdate]:
            async with semaphore:
                try:
                    await self.store.set_matched_bank_transaction(
                        scope, pair.customer.id, pair.bank.id
                    )
                except StoreError as e:
                    logger.warning(
                        "Match link update failed",
                        customer_id=pair.customer.id,
                        bank_id=pair.bank.id,
                        status_code=e.status_code,
                        error=str(e),
                    )
                    return FailedUpdate(
                        customer_transaction_id=pair.customer.id,
                        bank_transaction_id=pair.bank.id,
                        error=str(e),
                        status_code=e.status_code,
                    )
            pair.customer.matched_bank_transaction = pair.bank.id
            return None

        outcomes = await asyncio.gather(*(apply_one(pair) for pair in pairs))

        result = AppliedResult()
        for pair, failure in zip(pairs, outcomes):
            if failure is None:
                result.succeeded += 1
                result.applied_pairs.append(pair)
            else:
                result.failed.append(failure)

        logger.info(
            "Match links applied",
            bank_code=scope.bank_code,
            succeeded=result.succeeded,
            failed=len(result.failed),
        )
        return result

    async def retry_failed(
        self,
        scope: ReconciliationScope,
        previous: AppliedResult,
        pairs: Sequence[MatchedPair],
    ) -> AppliedResult:
        """Re-apply only the pairs that failed in ``previous``."""
        failed_ids = {f.customer_transaction_id for f in previous.failed}
        retry_pairs: List[MatchedPair] = [p for p in pairs if p.customer.id in failed_ids]

        logger.info("Retrying failed match links", count=len(retry_pairs))
        retried = await self.apply(scope, retry_pairs)

        applied = previous.applied_pairs + retried.applied_pairs
        applied.sort(key=lambda p: p.key)
        return AppliedResult(
            succeeded=previous.succeeded + retried.succeeded,
            failed=retried.failed,
            applied_pairs=applied,
        )
