"""
Tests for the Match Applier.
"""

import httpx
import pytest

from reco_engine.integrations import TransactionStoreClient
from reco_engine.models import MatchedPair
from reco_engine.reconciliation.applier import MatchApplier

from conftest import bank_payload, customer_payload, make_bank, make_customer


def build_pairs(count):
    return [
        MatchedPair(bank=make_bank(i, "10.00"), customer=make_customer(100 + i, "10.00"))
        for i in range(1, count + 1)
    ]


@pytest.fixture
def loaded_store(store, scope):
    store.load(
        scope,
        [bank_payload(i, "10.00") for i in range(1, 11)],
        [customer_payload(100 + i, "10.00") for i in range(1, 11)],
    )
    return store


class TestMatchApplier:
    """Independent, bounded, partially failing link updates."""

    @pytest.mark.asyncio
    async def test_all_pairs_applied(self, loaded_store, scope):
        pairs = build_pairs(3)
        applier = MatchApplier(loaded_store, max_concurrency=2)

        result = await applier.apply(scope, pairs)

        assert result.succeeded == 3
        assert result.failed == []
        assert not result.is_partial
        assert loaded_store.links(scope)[101] == 1
        assert loaded_store.links(scope)[103] == 3
        assert loaded_store.links(scope)[104] is None
        assert all(p.customer.matched_bank_transaction == p.bank.id for p in pairs)

    @pytest.mark.asyncio
    async def test_failed_update_does_not_block_others(self, loaded_store, scope):
        """The third of five updates fails; the other four persist."""
        loaded_store.fail_customer_ids = {103}
        pairs = build_pairs(5)
        applier = MatchApplier(loaded_store, max_concurrency=2)

        result = await applier.apply(scope, pairs)

        assert result.succeeded == 4
        assert result.is_partial
        assert result.attempted == 5
        assert len(result.failed) == 1
        failure = result.failed[0]
        assert failure.customer_transaction_id == 103
        assert failure.bank_transaction_id == 3
        assert failure.status_code == 500

        links = loaded_store.links(scope)
        assert [links[c] for c in (101, 102, 104, 105)] == [1, 2, 4, 5]
        assert links[103] is None
        assert [p.customer.id for p in result.applied_pairs] == [101, 102, 104, 105]
        assert pairs[2].customer.matched_bank_transaction is None

    @pytest.mark.asyncio
    async def test_concurrency_is_bounded(self, loaded_store, scope):
        loaded_store.patch_delay = 0.01
        applier = MatchApplier(loaded_store, max_concurrency=3)

        result = await applier.apply(scope, build_pairs(10))

        assert result.succeeded == 10
        assert len(loaded_store.patch_calls) == 10
        assert 1 <= loaded_store.max_in_flight <= 3

    @pytest.mark.asyncio
    async def test_empty_batch(self, loaded_store, scope):
        result = await MatchApplier(loaded_store).apply(scope, [])

        assert result.succeeded == 0
        assert result.failed == []
        assert loaded_store.patch_calls == []

    @pytest.mark.asyncio
    async def test_unreachable_store_fails_every_update(self, loaded_store, scope):
        loaded_store.unavailable = True

        result = await MatchApplier(loaded_store).apply(scope, build_pairs(2))

        assert result.succeeded == 0
        assert [f.customer_transaction_id for f in result.failed] == [101, 102]

    @pytest.mark.asyncio
    async def test_malformed_store_reply_is_a_failed_update(self, scope):
        """An HTML body for one PATCH fails that pair only."""
        def handler(request):
            if request.url.path.endswith("/12/"):
                return httpx.Response(200, content=b"<html>Bad gateway page</html>")
            return httpx.Response(200, json={"id": 11, "matched_bank_transaction": 1})

        client = TransactionStoreClient(
            base_url="http://store.test/api",
            retry_wait=0,
            transport=httpx.MockTransport(handler),
        )
        pairs = [
            MatchedPair(bank=make_bank(1, "10.00"), customer=make_customer(11, "10.00")),
            MatchedPair(bank=make_bank(2, "20.00"), customer=make_customer(12, "20.00")),
        ]

        async with client:
            result = await MatchApplier(client).apply(scope, pairs)

        assert result.succeeded == 1
        assert [f.customer_transaction_id for f in result.failed] == [12]
        assert result.failed[0].status_code == 200
        assert [p.customer.id for p in result.applied_pairs] == [11]

    @pytest.mark.asyncio
    async def test_retry_failed_only_retries_failures(self, loaded_store, scope):
        loaded_store.fail_customer_ids = {102, 104}
        pairs = build_pairs(5)
        applier = MatchApplier(loaded_store)

        first = await applier.apply(scope, pairs)
        loaded_store.fail_customer_ids = set()
        loaded_store.patch_calls.clear()
        retried = await applier.retry_failed(scope, first, pairs)

        assert sorted(loaded_store.patch_calls) == [(102, 2), (104, 4)]
        assert retried.succeeded == 5
        assert retried.failed == []
        assert [p.customer.id for p in retried.applied_pairs] == [101, 102, 103, 104, 105]
        assert [loaded_store.links(scope)[100 + i] for i in range(1, 6)] == [1, 2, 3, 4, 5]


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
