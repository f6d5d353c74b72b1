"""
Cache module - Stale-while-revalidate metadata cache.

This module handles:
- In-memory values with fetch timestamps (store.py)
- The persisted org schema snapshot (persistence.py)
- Single-flight refresh and the staleness sweep (coordinator.py)
"""
from schema_gateway.cache.store import TTLCacheStore, CacheLookup, epoch_ms
from schema_gateway.cache.persistence import SnapshotPersistence
from schema_gateway.cache.coordinator import RefreshCoordinator, KeySpec

__all__ = [
    "TTLCacheStore",
    "CacheLookup",
    "epoch_ms",
    "SnapshotPersistence",
    "RefreshCoordinator",
    "KeySpec",
]
