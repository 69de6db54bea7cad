"""Derived connectivity state. Never persisted."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ConnectionStatus(Enum):
    ONLINE = "online"
    OFFLINE_SERVER = "offline-server"      # internet fine, our server is not
    OFFLINE_INTERNET = "offline-internet"


@dataclass(frozen=True)
class ConnectivityState:
    has_internet: bool = True
    has_server: bool = True

    @property
    def is_online(self) -> bool:
        return self.has_internet and self.has_server

    @property
    def status(self) -> ConnectionStatus:
        if not self.has_internet:
            return ConnectionStatus.OFFLINE_INTERNET
        if not self.has_server:
            return ConnectionStatus.OFFLINE_SERVER
        return ConnectionStatus.ONLINE


OFFLINE = ConnectivityState(has_internet=False, has_server=False)


__all__ = ["ConnectionStatus", "ConnectivityState", "OFFLINE"]
