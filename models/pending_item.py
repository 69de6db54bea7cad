"""SQLModel table and record type for queued mutating requests."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional

from sqlmodel import Field, SQLModel

from datetime_utils import now_ms
from models.request_body import RequestBody


STATUS_PENDING = "pending"
STATUS_DEAD = "dead"


class PendingRecord(SQLModel, table=True):
    __tablename__ = "pending"
    # AUTOINCREMENT keeps ids monotonic even after the newest row is deleted
    __table_args__ = {"sqlite_autoincrement": True}

    id: Optional[int] = Field(default=None, primary_key=True)
    url: str = Field(index=True)
    method: str
    headers: str = "{}"
    body_type: str
    body: str = "null"
    created_at: int = Field(default_factory=now_ms, index=True)
    retry_count: int = Field(default=0)
    status: str = Field(default=STATUS_PENDING, index=True)
    last_error: Optional[str] = None


@dataclass
class PendingItem:
    id: int
    url: str
    method: str
    headers: Dict[str, str]
    body: RequestBody
    created_at: int
    retry_count: int = 0
    status: str = STATUS_PENDING
    last_error: Optional[str] = None

    @property
    def body_type(self) -> str:
        return self.body.body_type


__all__ = ["PendingRecord", "PendingItem", "STATUS_PENDING", "STATUS_DEAD"]
