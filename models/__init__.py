"""ORM models and value types for the offline layer."""
from .cached_response import CachedResponse
from .connectivity import ConnectionStatus, ConnectivityState
from .pending_item import PendingItem, PendingRecord
from .sync_result import SyncResult

__all__ = [
    "CachedResponse",
    "ConnectionStatus",
    "ConnectivityState",
    "PendingItem",
    "PendingRecord",
    "SyncResult",
]
