from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class SyncResult:
    synced: int = 0
    failed: int = 0
    dead: int = 0
    skipped: bool = False

    @property
    def partial(self) -> bool:
        return self.synced > 0 and self.failed > 0


__all__ = ["SyncResult"]
