"""SQLModel table backing the service worker's shell cache."""

from __future__ import annotations

from typing import Optional

from sqlalchemy import Column, LargeBinary
from sqlmodel import Field, SQLModel

from datetime_utils import now_ms


class CachedResponse(SQLModel, table=True):
    __tablename__ = "cached_response"

    id: Optional[int] = Field(default=None, primary_key=True)
    cache_name: str = Field(index=True)
    url: str = Field(index=True)
    status: int = 200
    headers: str = "{}"
    content: bytes = Field(default=b"", sa_column=Column(LargeBinary, nullable=False))
    cached_at: int = Field(default_factory=now_ms)


__all__ = ["CachedResponse"]
