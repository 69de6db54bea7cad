from __future__ import annotations

import json
from typing import Callable, List, Mapping, Optional, Set

from sqlalchemy import func
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import select

from core.log import get_logger
from core.settings import MUTATING_METHODS, OFFLINE, QueueSettings
from datetime_utils import now_ms
from models.pending_item import STATUS_DEAD, STATUS_PENDING, PendingItem, PendingRecord
from models.request_body import FormDataBody, RequestBody, decode_body, encode_body
from storage.db import get_session


class QueueError(Exception):
    """Base class for offline queue failures."""


class QueueValidationError(QueueError, ValueError):
    """The request can never be queued as given (e.g. oversized file)."""


class QueueUnavailableError(QueueError):
    """The durable store could not be read or written."""


def _to_item(row: PendingRecord) -> PendingItem:
    try:
        headers = json.loads(row.headers or "{}")
    except json.JSONDecodeError:
        headers = {}
    return PendingItem(
        id=row.id,
        url=row.url,
        method=row.method,
        headers={str(k): str(v) for k, v in headers.items()},
        body=decode_body(row.body_type, row.body),
        created_at=row.created_at,
        retry_count=row.retry_count,
        status=row.status,
        last_error=row.last_error,
    )


class PendingQueue:
    """Durable FIFO of mutating requests waiting for the server.

    Each operation opens its own short session, so every mutation is a single
    SQLite transaction.
    """

    def __init__(self, engine: Optional[Engine] = None, settings: Optional[QueueSettings] = None) -> None:
        self.engine = engine
        self.settings = settings or OFFLINE.queue
        self.logger = get_logger("hive.queue")
        self._listeners: Set[Callable[[int], None]] = set()

    # ------------------------------------------------------------------
    # change notifications
    def subscribe(self, callback: Callable[[int], None]) -> Callable[[], None]:
        """Call ``callback(count)`` after every mutation. Returns an unsubscriber."""

        self._listeners.add(callback)
        return lambda: self._listeners.discard(callback)

    def _emit(self) -> None:
        if not self._listeners:
            return
        try:
            current = self.count()
        except QueueUnavailableError:
            return
        for listener in list(self._listeners):
            try:
                listener(current)
            except Exception:
                self.logger.exception("Queue listener failed")

    # ------------------------------------------------------------------
    def validate(self, method: str, body: RequestBody) -> str:
        verb = (method or "POST").upper()
        if verb not in MUTATING_METHODS:
            raise QueueValidationError(f"Only mutating requests can be queued, got {verb}")
        if isinstance(body, FormDataBody):
            limit = self.settings.max_file_size
            for entry in body.files:
                if entry.size > limit:
                    raise QueueValidationError(
                        f"File {entry.name!r} too large ({entry.size}). Limit: {limit}."
                    )
        return verb

    def enqueue(
        self,
        url: str,
        method: str,
        body: RequestBody,
        headers: Optional[Mapping[str, str]] = None,
    ) -> int:
        verb = self.validate(method, body)
        record = PendingRecord(
            url=url,
            method=verb,
            headers=json.dumps(dict(headers or {}), ensure_ascii=False),
            body_type=body.body_type,
            body=encode_body(body),
            created_at=now_ms(),
        )
        try:
            with get_session(self.engine) as session:
                session.add(record)
                session.commit()
                session.refresh(record)
                new_id = int(record.id)
        except SQLAlchemyError as exc:
            self.logger.error("Could not queue %s %s: %s", verb, url, exc)
            raise QueueUnavailableError(str(exc)) from exc
        self.logger.info("Queued %s %s as #%s (%s)", verb, url, new_id, body.body_type)
        self._emit()
        return new_id

    def list_pending(self) -> List[PendingItem]:
        # ids are handed out in submission order; the wall clock can jump back
        stmt = (
            select(PendingRecord)
            .where(PendingRecord.status == STATUS_PENDING)
            .order_by(PendingRecord.id.asc())
        )
        items, unreadable = self._select(stmt)
        if unreadable:
            self._quarantine(unreadable)
        return items

    def list_dead(self) -> List[PendingItem]:
        stmt = (
            select(PendingRecord)
            .where(PendingRecord.status == STATUS_DEAD)
            .order_by(PendingRecord.id.asc())
        )
        items, _ = self._select(stmt)
        return items

    def _select(self, stmt):
        try:
            with get_session(self.engine) as session:
                rows = list(session.exec(stmt))
        except SQLAlchemyError as exc:
            raise QueueUnavailableError(str(exc)) from exc
        items, unreadable = [], {}
        for row in rows:
            try:
                items.append(_to_item(row))
            except (ValueError, TypeError, KeyError, AttributeError) as exc:
                self.logger.error("Queue entry #%s is unreadable: %s", row.id, exc)
                unreadable[row.id] = f"Unreadable entry: {exc}"
        return items, unreadable

    def _quarantine(self, errors: Mapping[int, str]) -> None:
        """Dead-letter rows that can no longer be decoded, without decoding them."""

        try:
            with get_session(self.engine) as session:
                for item_id, error in errors.items():
                    record = session.get(PendingRecord, item_id)
                    if not record:
                        continue
                    record.status = STATUS_DEAD
                    record.retry_count += 1
                    record.last_error = error[:1000]
                    session.add(record)
                session.commit()
        except SQLAlchemyError as exc:
            raise QueueUnavailableError(str(exc)) from exc
        self.logger.warning("Moved %s unreadable entries to dead-letter", len(errors))
        self._emit()

    def get(self, item_id: int) -> Optional[PendingItem]:
        try:
            with get_session(self.engine) as session:
                row = session.get(PendingRecord, item_id)
                return _to_item(row) if row else None
        except SQLAlchemyError as exc:
            raise QueueUnavailableError(str(exc)) from exc

    def remove(self, item_id: int) -> None:
        removed = False
        try:
            with get_session(self.engine) as session:
                record = session.get(PendingRecord, item_id)
                if record:
                    session.delete(record)
                    session.commit()
                    removed = True
        except SQLAlchemyError as exc:
            raise QueueUnavailableError(str(exc)) from exc
        if removed:
            self.logger.info("Removed #%s from queue", item_id)
            self._emit()

    def mark_failed(self, item_id: int, error: str, *, dead: bool = False) -> Optional[PendingItem]:
        """Record a failed replay. The item stays queued unless it is dead-lettered."""

        try:
            with get_session(self.engine) as session:
                record = session.get(PendingRecord, item_id)
                if not record:
                    return None
                record.retry_count += 1
                record.last_error = (error or "")[:1000]
                limit = self.settings.max_retries
                if dead or (limit > 0 and record.retry_count >= limit):
                    record.status = STATUS_DEAD
                session.add(record)
                session.commit()
                session.refresh(record)
                item = _to_item(record)
        except SQLAlchemyError as exc:
            raise QueueUnavailableError(str(exc)) from exc
        if item.status == STATUS_DEAD:
            self.logger.warning(
                "#%s moved to dead-letter after %s attempts: %s", item_id, item.retry_count, error
            )
            self._emit()
        return item

    def requeue(self, item_id: int) -> bool:
        """Put a dead-lettered item back into the pending queue."""

        try:
            with get_session(self.engine) as session:
                record = session.get(PendingRecord, item_id)
                if not record or record.status != STATUS_DEAD:
                    return False
                record.status = STATUS_PENDING
                record.retry_count = 0
                record.last_error = None
                session.add(record)
                session.commit()
        except SQLAlchemyError as exc:
            raise QueueUnavailableError(str(exc)) from exc
        self.logger.info("Requeued #%s", item_id)
        self._emit()
        return True

    def discard(self, item_id: int) -> None:
        self.remove(item_id)

    def count(self) -> int:
        return self._count(STATUS_PENDING)

    def dead_count(self) -> int:
        return self._count(STATUS_DEAD)

    def _count(self, status: str) -> int:
        stmt = select(func.count()).select_from(PendingRecord).where(PendingRecord.status == status)
        try:
            with get_session(self.engine) as session:
                return int(session.exec(stmt).one())
        except SQLAlchemyError as exc:
            raise QueueUnavailableError(str(exc)) from exc


__all__ = [
    "PendingQueue",
    "QueueError",
    "QueueUnavailableError",
    "QueueValidationError",
]
