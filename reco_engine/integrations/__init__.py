"""External integrations for the ledger reconciliation system."""

from .store_client import TransactionStore, TransactionStoreClient

__all__ = ["TransactionStore", "TransactionStoreClient"]
