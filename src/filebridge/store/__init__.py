"""
Job stores: the interface to the control-plane database plus reference
implementations.
"""

from filebridge.store.base import JobStore
from filebridge.store.duckdb import DuckDBJobStore
from filebridge.store.memory import MemoryJobStore

__all__ = [
    "JobStore",
    "DuckDBJobStore",
    "MemoryJobStore",
    "create_store",
]


def create_store(config: dict) -> JobStore:
    """Build the store named by the ``store`` config section."""
    store_config = config.get("store", {}) or {}
    if store_config.get("type", "duckdb") == "memory":
        return MemoryJobStore()
    return DuckDBJobStore(store_config.get("path", ":memory:"))
