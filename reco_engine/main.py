"""
FastAPI application exposing reconciliation runs per bank / agency scope.
"""

import logging
import sys
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Optional

import structlog
from fastapi import Depends, FastAPI, Header, HTTPException
from pydantic import BaseModel

from .config import get_settings
from .errors import InvalidScopeError, StoreError, StoreUnavailable
from .integrations import TransactionStore, TransactionStoreClient
from .models import ReconciliationScope
from .reconciliation import ReconciliationOrchestrator

logger = structlog.get_logger()
settings = get_settings()


def setup_logging() -> None:
    """Configure stdlib logging and route structlog through it."""
    logging.basicConfig(
        level=getattr(logging, settings.app_log_level.upper(), logging.INFO),
        format="%(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    renderer = (
        structlog.processors.JSONRenderer()
        if settings.is_production
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

setup_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info("Starting Ledger Reconciliation API", store=settings.store_api_url)
    if settings.audit_export:
        settings.reports_dir.mkdir(parents=True, exist_ok=True)
    yield
    logger.info("Shutting down Ledger Reconciliation API")


app = FastAPI(
    title="Ledger Reconciliation Engine",
    description="Bank / customer ledger matching and tax comparison",
    version="1.0.0",
    lifespan=lifespan,
)


# Request/Response models
class ResetResponse(BaseModel):
    bank_code: str
    agency: Optional[str]
    cleared_links: int
    cleared_comparisons: int


async def get_store(
    authorization: Optional[str] = Header(default=None),
) -> AsyncIterator[TransactionStore]:
    """Store client carrying the caller's own credentials."""
    token = None
    if authorization and authorization.lower().startswith("bearer "):
        token = authorization[7:].strip()

    client = TransactionStoreClient(token=token)
    try:
        yield client
    finally:
        await client.close()


def build_scope(
    bank_code: str,
    agency: Optional[str] = None,
    import_batch_id: Optional[int] = None,
) -> ReconciliationScope:
    if not bank_code.strip():
        raise HTTPException(400, "Bank code cannot be empty.")
    return ReconciliationScope(
        bank_code=bank_code.strip(),
        agency_code=agency,
        import_batch_id=import_batch_id,
    )


def store_http_error(error: StoreError) -> HTTPException:
    if isinstance(error, StoreUnavailable):
        return HTTPException(503, f"Transaction store unavailable: {error}")
    return HTTPException(502, f"Transaction store error: {error}")


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "timestamp": datetime.utcnow().isoformat()}


@app.post("/api/{bank_code}/reconciliation")
async def run_reconciliation(
    scope: ReconciliationScope = Depends(build_scope),
    reset: bool = True,
    store: TransactionStore = Depends(get_store),
):
    """Reset the scope (unless ``reset=false``) and reconcile it."""
    orchestrator = ReconciliationOrchestrator(store)
    try:
        if reset:
            report = await orchestrator.reset_and_run(scope)
        else:
            report = await orchestrator.run_reconciliation(scope)
    except InvalidScopeError as e:
        raise HTTPException(400, str(e))
    except StoreError as e:
        raise store_http_error(e)

    return report.to_dict()


@app.delete("/api/{bank_code}/reconciliation", response_model=ResetResponse)
async def reset_reconciliation(
    scope: ReconciliationScope = Depends(build_scope),
    store: TransactionStore = Depends(get_store),
):
    """Clear match links and tax comparisons of the scope."""
    orchestrator = ReconciliationOrchestrator(store)
    try:
        result = await orchestrator.reset_scope(scope)
    except InvalidScopeError as e:
        raise HTTPException(400, str(e))
    except StoreError as e:
        raise store_http_error(e)

    return ResetResponse(
        bank_code=scope.bank_code,
        agency=scope.agency_code,
        cleared_links=result.cleared_links,
        cleared_comparisons=result.cleared_comparisons,
    )


@app.get("/api/{bank_code}/unmatched-transactions")
async def unmatched_transactions(
    scope: ReconciliationScope = Depends(build_scope),
    store: TransactionStore = Depends(get_store),
):
    """Transactions of the scope without a persisted match link."""
    orchestrator = ReconciliationOrchestrator(store)
    try:
        return await orchestrator.fetch_unmatched(scope)
    except StoreError as e:
        raise store_http_error(e)
