"""Reset Controller - clears match links and comparisons of one scope."""

import structlog

from ..errors import InvalidScopeError
from ..integrations import TransactionStore
from ..models import ReconciliationScope, ResetResult

logger = structlog.get_logger()


class ResetController:
    """
    Scope-bounded reset before a re-run.

    The store clears links and comparison rows of the scope in a single
    request (one transaction on its side), so callers never see a scope
    half cleared. Other banks and agencies are left untouched.
    """

    def __init__(self, store: TransactionStore):
        self.store = store

    async def reset_scope(self, scope: ReconciliationScope) -> ResetResult:
        if not scope.bank_code or not scope.bank_code.strip():
            raise InvalidScopeError("Bank code cannot be empty.")

        response = await self.store.reset_scope(scope) or {}
        result = ResetResult(
            scope=scope,
            cleared_links=int(response.get("cleared_links", 0)),
            cleared_comparisons=int(response.get("cleared_comparisons", 0)),
        )

        logger.info(
            "Scope reset",
            bank_code=scope.bank_code,
            agency=scope.agency_code,
            cleared_links=result.cleared_links,
            cleared_comparisons=result.cleared_comparisons,
        )
        return result
