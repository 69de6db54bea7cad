"""Typed messages exchanged between the service worker and app instances."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union


# app -> worker

@dataclass(frozen=True)
class SyncPending:
    """Something was queued; treat like a background-sync callback."""

    tag: str = "sync-pending"


@dataclass(frozen=True)
class CheckConnection:
    pass


# worker -> app

@dataclass(frozen=True)
class TriggerSync:
    tag: str = "sync-pending"


@dataclass(frozen=True)
class ConnectionVerdict:
    online: bool


ClientMessage = Union[SyncPending, CheckConnection]
WorkerMessage = Union[TriggerSync, ConnectionVerdict]


__all__ = [
    "CheckConnection",
    "ClientMessage",
    "ConnectionVerdict",
    "SyncPending",
    "TriggerSync",
    "WorkerMessage",
]
