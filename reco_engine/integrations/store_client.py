"""
Transaction store client for the remote ledger data API.

Every request is bound to a ReconciliationScope: the bank code selects the
bank-specific route prefix (``/{bank_code}/...``) and the agency / import
batch become query filters.
"""

from typing import Any, Dict, List, Optional, Protocol, Sequence

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..config import get_settings
from ..errors import StoreError, StoreUnavailable
from ..models import ComparisonResult, ReconciliationScope

logger = structlog.get_logger()

# Gateway statuses mean the store is down, not that the request was wrong
UNAVAILABLE_STATUSES = {502, 503, 504}


class TransactionStore(Protocol):
    """Operations the engine needs from the transaction store."""

    async def fetch_bank_transactions(self, scope: ReconciliationScope) -> List[Dict[str, Any]]: ...

    async def fetch_customer_transactions(self, scope: ReconciliationScope) -> List[Dict[str, Any]]: ...

    async def fetch_customer_tax_rows(self, scope: ReconciliationScope) -> List[Dict[str, Any]]: ...

    async def fetch_bank_tax_rows(self, scope: ReconciliationScope) -> List[Dict[str, Any]]: ...

    async def set_matched_bank_transaction(
        self,
        scope: ReconciliationScope,
        customer_transaction_id: int,
        bank_transaction_id: Optional[int],
    ) -> Dict[str, Any]: ...

    async def replace_comparisons(
        self,
        scope: ReconciliationScope,
        results: Sequence[ComparisonResult],
    ) -> int: ...

    async def fetch_comparisons(self, scope: ReconciliationScope) -> List[Dict[str, Any]]: ...

    async def reset_scope(self, scope: ReconciliationScope) -> Dict[str, Any]: ...


class TransactionStoreClient:
    """
    Client for the transaction store API.
    Handles authentication, retries and pagination.
    """

    def __init__(
        self,
        token: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        retry_attempts: Optional[int] = None,
        retry_wait: float = 1.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = get_settings()
        self.base_url = (base_url or self.settings.store_api_url).rstrip("/")
        self.token = token
        self.timeout = timeout or self.settings.store_timeout_seconds
        self.retry_attempts = retry_attempts or self.settings.store_retry_attempts
        self.retry_wait = retry_wait
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self) -> "TransactionStoreClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    @property
    def headers(self) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=self.headers,
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self):
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def _request(self, method: str, endpoint: str, **kwargs) -> Any:
        """Make a request, retrying while the store is unavailable."""
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.retry_attempts),
            wait=wait_exponential(multiplier=self.retry_wait, max=10),
            retry=retry_if_exception_type(StoreUnavailable),
            reraise=True,
        ):
            with attempt:
                return await self._send(method, endpoint, **kwargs)

    async def _send(self, method: str, endpoint: str, **kwargs) -> Any:
        client = await self._get_client()

        try:
            response = await client.request(method, endpoint, **kwargs)
        except httpx.TimeoutException:
            logger.warning("Store request timeout", method=method, endpoint=endpoint)
            raise StoreUnavailable(f"Request timeout: {method} {endpoint}")
        except httpx.RequestError as e:
            logger.warning("Store unreachable", method=method, endpoint=endpoint, error=str(e))
            raise StoreUnavailable(f"Request error: {e}")

        if response.status_code in UNAVAILABLE_STATUSES:
            raise StoreUnavailable(
                f"Store unavailable: {response.status_code}",
                status_code=response.status_code,
            )

        if response.status_code in (401, 403):
            raise StoreError(
                "Authentication failed. Check the access token.",
                status_code=response.status_code,
            )

        if response.status_code == 404:
            raise StoreError(
                f"Resource not found: {endpoint}",
                status_code=404,
            )

        if response.status_code >= 400:
            error_detail: Any = response.text
            try:
                error_detail = response.json()
            except ValueError:
                pass
            raise StoreError(
                f"API error: {response.status_code}",
                status_code=response.status_code,
                details=error_detail,
            )

        if response.status_code == 204 or not response.content:
            return {}

        try:
            return response.json()
        except ValueError:
            logger.warning(
                "Store returned a non-JSON body",
                method=method,
                endpoint=endpoint,
                status_code=response.status_code,
            )
            raise StoreError(
                f"Invalid JSON response: {response.status_code}",
                status_code=response.status_code,
                details=response.text,
            )

    async def _get_all(
        self,
        endpoint: str,
        params: Dict[str, Any],
        items_key: str = "results",
    ) -> List[Dict[str, Any]]:
        """
        GET a list endpoint, following ``next`` links of paginated responses.

        A page is either a bare list or an object holding its items under
        ``items_key`` (falling back to ``results``).
        """
        items: List[Dict[str, Any]] = []
        data = await self._request("GET", endpoint, params=params)

        while True:
            if isinstance(data, list):
                items.extend(data)
                break
            items.extend(data.get(items_key, data.get("results", [])))
            next_url = data.get("next")
            if not next_url:
                break
            data = await self._request("GET", next_url)

        return items

    async def fetch_bank_transactions(self, scope: ReconciliationScope) -> List[Dict[str, Any]]:
        """List bank ledger lines of the scope."""
        items = await self._get_all(
            f"{scope.api_prefix}/reco-bank-transactions/", scope.as_params()
        )
        logger.info("Bank transactions fetched", bank_code=scope.bank_code, count=len(items))
        return items

    async def fetch_customer_transactions(self, scope: ReconciliationScope) -> List[Dict[str, Any]]:
        """List customer ledger lines of the scope."""
        items = await self._get_all(
            f"{scope.api_prefix}/reco-customer-transactions/", scope.as_params()
        )
        logger.info("Customer transactions fetched", bank_code=scope.bank_code, count=len(items))
        return items

    async def fetch_customer_tax_rows(self, scope: ReconciliationScope) -> List[Dict[str, Any]]:
        return await self._get_all(
            f"{scope.api_prefix}/customer-tax-rows/", scope.as_params()
        )

    async def fetch_bank_tax_rows(self, scope: ReconciliationScope) -> List[Dict[str, Any]]:
        """
        Flatten the ``with-taxes`` view into one row per bank tax line.

        The view groups taxes under their bank transaction:
        ``{"transactions_with_taxes": [{"bank_transaction": {...}, "taxes": [...]}]}``
        """
        groups = await self._get_all(
            f"{scope.api_prefix}/reco-bank-transactions/with-taxes/",
            scope.as_params(),
            items_key="transactions_with_taxes",
        )

        rows: List[Dict[str, Any]] = []
        for group in groups:
            bank_id = (group.get("bank_transaction") or {}).get("id")
            for tax in group.get("taxes", []):
                rows.append({**tax, "bank_transaction": bank_id})
        return rows

    async def set_matched_bank_transaction(
        self,
        scope: ReconciliationScope,
        customer_transaction_id: int,
        bank_transaction_id: Optional[int],
    ) -> Dict[str, Any]:
        """Set (or clear, with None) a customer transaction's match link."""
        return await self._request(
            "PATCH",
            f"{scope.api_prefix}/reco-customer-transactions/{customer_transaction_id}/",
            json={"matched_bank_transaction": bank_transaction_id},
        )

    async def replace_comparisons(
        self,
        scope: ReconciliationScope,
        results: Sequence[ComparisonResult],
    ) -> int:
        """Replace the scope's comparison rows in one request."""
        response = await self._request(
            "PUT",
            f"{scope.api_prefix}/tax-comparison/",
            params=scope.as_params(),
            json={**scope.as_params(), "results": [r.to_dict() for r in results]},
        )
        created = response.get("created", len(results)) if isinstance(response, dict) else len(results)
        logger.info("Comparisons written", bank_code=scope.bank_code, count=created)
        return created

    async def fetch_comparisons(self, scope: ReconciliationScope) -> List[Dict[str, Any]]:
        return await self._get_all(f"{scope.api_prefix}/tax-comparison/", scope.as_params())

    async def reset_scope(self, scope: ReconciliationScope) -> Dict[str, Any]:
        """Delete match links and comparison rows of the scope only."""
        return await self._request(
            "DELETE",
            f"{scope.api_prefix}/reconciliation-state/",
            params=scope.as_params(),
        )
