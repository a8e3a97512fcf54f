"""
Tests for the transaction store HTTP client.
"""

import json
from decimal import Decimal

import httpx
import pytest

from reco_engine.errors import StoreError, StoreUnavailable
from reco_engine.integrations import TransactionStoreClient
from reco_engine.models import ComparisonResult, ComparisonStatus, ReconciliationScope

BASE_URL = "http://store.test/api"


class Recorder:
    """MockTransport handler that records requests and replays canned responses."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if callable(response):
            return response(request)
        return httpx.Response(
            response.status_code, headers=response.headers, content=response.content
        )


def make_client(recorder, **kwargs):
    return TransactionStoreClient(
        token="secret-token",
        base_url=BASE_URL,
        retry_attempts=kwargs.pop("retry_attempts", 3),
        retry_wait=0,
        transport=httpx.MockTransport(recorder),
        **kwargs,
    )


@pytest.fixture
def scope():
    return ReconciliationScope(bank_code="bt", agency_code="A01")


class TestTransactionStoreClient:
    """Routing, auth, pagination and error mapping."""

    @pytest.mark.asyncio
    async def test_bank_transactions_routed_by_scope(self, scope):
        recorder = Recorder(httpx.Response(200, json=[{"id": 1}]))

        async with make_client(recorder) as client:
            items = await client.fetch_bank_transactions(scope)

        assert items == [{"id": 1}]
        request = recorder.requests[0]
        assert request.method == "GET"
        assert request.url.path == "/api/bt/reco-bank-transactions/"
        assert request.url.params["agency"] == "A01"
        assert request.headers["Authorization"] == "Bearer secret-token"

    @pytest.mark.asyncio
    async def test_no_token_no_auth_header(self, scope):
        recorder = Recorder(httpx.Response(200, json=[]))

        client = TransactionStoreClient(
            base_url=BASE_URL, retry_wait=0, transport=httpx.MockTransport(recorder)
        )
        await client.fetch_customer_transactions(scope)
        await client.close()

        assert "Authorization" not in recorder.requests[0].headers

    @pytest.mark.asyncio
    async def test_follows_pagination(self, scope):
        recorder = Recorder(
            httpx.Response(200, json={
                "count": 3,
                "next": f"{BASE_URL}/bt/reco-customer-transactions/?agency=A01&page=2",
                "results": [{"id": 1}, {"id": 2}],
            }),
            httpx.Response(200, json={"count": 3, "next": None, "results": [{"id": 3}]}),
        )

        async with make_client(recorder) as client:
            items = await client.fetch_customer_transactions(scope)

        assert [i["id"] for i in items] == [1, 2, 3]
        assert recorder.requests[1].url.params["page"] == "2"

    @pytest.mark.asyncio
    async def test_with_taxes_view_flattened(self, scope):
        recorder = Recorder(httpx.Response(200, json={
            "transactions_with_taxes": [
                {
                    "bank_transaction": {"id": 4, "credit": "100.000"},
                    "taxes": [
                        {"tax_name": "TVA", "value": "19.000"},
                        {"tax_name": "TIMBRE", "value": "1.000"},
                    ],
                },
                {"bank_transaction": {"id": 5}, "taxes": []},
            ]
        }))

        async with make_client(recorder) as client:
            rows = await client.fetch_bank_tax_rows(scope)

        assert recorder.requests[0].url.path == "/api/bt/reco-bank-transactions/with-taxes/"
        assert rows == [
            {"tax_name": "TVA", "value": "19.000", "bank_transaction": 4},
            {"tax_name": "TIMBRE", "value": "1.000", "bank_transaction": 4},
        ]

    @pytest.mark.asyncio
    async def test_with_taxes_view_paginated(self, scope):
        recorder = Recorder(
            httpx.Response(200, json={
                "next": f"{BASE_URL}/bt/reco-bank-transactions/with-taxes/?agency=A01&page=2",
                "transactions_with_taxes": [
                    {"bank_transaction": {"id": 4}, "taxes": [{"tax_name": "TVA", "value": "19.000"}]},
                ],
            }),
            httpx.Response(200, json={
                "next": None,
                "transactions_with_taxes": [
                    {"bank_transaction": {"id": 6}, "taxes": [{"tax_name": "TVA", "value": "2.000"}]},
                ],
            }),
        )

        async with make_client(recorder) as client:
            rows = await client.fetch_bank_tax_rows(scope)

        assert [r["bank_transaction"] for r in rows] == [4, 6]
        assert recorder.requests[1].url.params["page"] == "2"

    @pytest.mark.asyncio
    async def test_with_taxes_view_as_bare_list(self, scope):
        recorder = Recorder(httpx.Response(200, json=[
            {"bank_transaction": {"id": 7}, "taxes": [{"tax_name": "TVA", "value": "3.000"}]},
        ]))

        async with make_client(recorder) as client:
            rows = await client.fetch_bank_tax_rows(scope)

        assert rows == [{"tax_name": "TVA", "value": "3.000", "bank_transaction": 7}]

    @pytest.mark.asyncio
    async def test_link_update_is_patch(self, scope):
        recorder = Recorder(httpx.Response(200, json={"id": 11, "matched_bank_transaction": 4}))

        async with make_client(recorder) as client:
            await client.set_matched_bank_transaction(scope, 11, 4)

        request = recorder.requests[0]
        assert request.method == "PATCH"
        assert request.url.path == "/api/bt/reco-customer-transactions/11/"
        assert json.loads(request.content) == {"matched_bank_transaction": 4}

    @pytest.mark.asyncio
    async def test_replace_comparisons(self, scope):
        recorder = Recorder(httpx.Response(201, json={"created": 1}))
        result = ComparisonResult(
            bank_transaction_id=4,
            customer_transaction_id=11,
            status=ComparisonStatus.MATCH,
            bank_tax=Decimal("19.000"),
            customer_total_tax=Decimal("19.000"),
            tax_types=["TVA"],
        )

        async with make_client(recorder) as client:
            created = await client.replace_comparisons(scope, [result])

        request = recorder.requests[0]
        assert created == 1
        assert request.method == "PUT"
        assert request.url.path == "/api/bt/tax-comparison/"
        body = json.loads(request.content)
        assert body["results"][0]["status"] == "match"
        assert body["agency"] == "A01"
        assert body["results"][0]["bank_tax"] == "19.000"

    @pytest.mark.asyncio
    async def test_reset_is_single_scoped_delete(self, scope):
        recorder = Recorder(httpx.Response(200, json={"cleared_links": 2, "cleared_comparisons": 2}))

        async with make_client(recorder) as client:
            response = await client.reset_scope(scope)

        assert len(recorder.requests) == 1
        assert recorder.requests[0].method == "DELETE"
        assert recorder.requests[0].url.path == "/api/bt/reconciliation-state/"
        assert recorder.requests[0].url.params["agency"] == "A01"
        assert response["cleared_links"] == 2

    @pytest.mark.asyncio
    async def test_gateway_error_retried_then_unavailable(self, scope):
        recorder = Recorder(httpx.Response(503))

        async with make_client(recorder, retry_attempts=3) as client:
            with pytest.raises(StoreUnavailable) as exc_info:
                await client.fetch_bank_transactions(scope)

        assert exc_info.value.status_code == 503
        assert len(recorder.requests) == 3

    @pytest.mark.asyncio
    async def test_transient_error_recovers(self, scope):
        recorder = Recorder(httpx.Response(502), httpx.Response(200, json=[{"id": 9}]))

        async with make_client(recorder) as client:
            items = await client.fetch_bank_transactions(scope)

        assert items == [{"id": 9}]
        assert len(recorder.requests) == 2

    @pytest.mark.asyncio
    async def test_connection_error_is_unavailable(self, scope):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        recorder = Recorder(refuse)

        async with make_client(recorder, retry_attempts=2) as client:
            with pytest.raises(StoreUnavailable):
                await client.fetch_bank_transactions(scope)

        assert len(recorder.requests) == 2

    @pytest.mark.asyncio
    async def test_not_found_is_not_retried(self, scope):
        recorder = Recorder(httpx.Response(404))

        async with make_client(recorder) as client:
            with pytest.raises(StoreError) as exc_info:
                await client.set_matched_bank_transaction(scope, 99, 1)

        assert not isinstance(exc_info.value, StoreUnavailable)
        assert exc_info.value.status_code == 404
        assert len(recorder.requests) == 1

    @pytest.mark.asyncio
    async def test_validation_error_carries_details(self, scope):
        recorder = Recorder(httpx.Response(400, json={"matched_bank_transaction": ["invalid"]}))

        async with make_client(recorder) as client:
            with pytest.raises(StoreError) as exc_info:
                await client.set_matched_bank_transaction(scope, 11, 1)

        assert exc_info.value.status_code == 400
        assert exc_info.value.details == {"matched_bank_transaction": ["invalid"]}

    @pytest.mark.asyncio
    async def test_non_json_body_is_store_error(self, scope):
        """A proxy page with a 200 status is an error, not a crash."""
        recorder = Recorder(httpx.Response(
            200, headers={"Content-Type": "text/html"}, content=b"<html>Maintenance</html>"
        ))

        async with make_client(recorder) as client:
            with pytest.raises(StoreError) as exc_info:
                await client.set_matched_bank_transaction(scope, 11, 1)

        assert not isinstance(exc_info.value, StoreUnavailable)
        assert exc_info.value.status_code == 200
        assert "Maintenance" in exc_info.value.details
        assert len(recorder.requests) == 1

    @pytest.mark.asyncio
    async def test_auth_failure(self, scope):
        recorder = Recorder(httpx.Response(401))

        async with make_client(recorder) as client:
            with pytest.raises(StoreError) as exc_info:
                await client.fetch_comparisons(scope)

        assert exc_info.value.status_code == 401


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
