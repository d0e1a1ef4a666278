"""
Sync-state stores: optimistic local state reconciled with the remote provider.
"""
from .models import (
    SyncStatus,
    BindingStatus,
    SiteContext,
    RedirectRule,
    TdsRule,
    DomainBinding,
    SyncStats,
    calculate_sync_stats,
    describe_last_sync,
)
from .store import StoreSnapshot, SyncStateStore
from .redirects_store import RedirectsStore
from .tds_store import TdsStore
from .reconciler import SyncAllResult, ZoneSyncReconciler

__all__ = [
    # Models
    "SyncStatus",
    "BindingStatus",
    "SiteContext",
    "RedirectRule",
    "TdsRule",
    "DomainBinding",
    "SyncStats",
    "calculate_sync_stats",
    "describe_last_sync",
    # Stores
    "StoreSnapshot",
    "SyncStateStore",
    "RedirectsStore",
    "TdsStore",
    # Reconciliation
    "SyncAllResult",
    "ZoneSyncReconciler",
]
