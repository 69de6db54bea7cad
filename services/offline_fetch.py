from __future__ import annotations

from typing import Any, Mapping, Optional, Protocol

import httpx

from core.log import get_logger
from core.settings import MUTATING_METHODS, OFFLINE, QueueSettings
from models.request_body import coerce_body, request_kwargs
from services.channel import Channel
from services.connectivity import NetworkMonitor
from services.pending_queue import PendingQueue


NO_STORE = {"Cache-Control": "no-store"}


class SyncRequester(Protocol):
    def request_sync(self) -> None: ...


def queued_response(request: httpx.Request, item_id: int) -> httpx.Response:
    return httpx.Response(202, json={"queued": True, "id": item_id}, request=request)


def unavailable_response(request: httpx.Request) -> httpx.Response:
    return httpx.Response(
        503,
        json={"error": "service unavailable", "offline": True},
        request=request,
    )


def is_queued(response: httpx.Response) -> bool:
    if response.status_code != 202:
        return False
    try:
        return bool(response.json().get("queued"))
    except ValueError:
        return False


class OfflineFetcher:
    """The one entry point UI actions use instead of a raw request.

    Mutating calls either reach the server or land in the durable queue; the
    caller only ever sees a real response or a 202 ``{"queued": true}``.
    Reads are never queued and degrade to a synthetic 503.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        queue: PendingQueue,
        monitor: NetworkMonitor,
        sync: Optional[SyncRequester] = None,
        settings: Optional[QueueSettings] = None,
    ) -> None:
        self.client = client
        self.queue = queue
        self.monitor = monitor
        self.sync = sync
        self.settings = settings or OFFLINE.queue
        self.queued: Channel[int] = Channel("queued")
        self.logger = get_logger("hive.sync")

    async def __call__(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.fetch(url, **kwargs)

    async def fetch(
        self,
        url: str,
        method: str = "GET",
        headers: Optional[Mapping[str, str]] = None,
        body: Any = None,
    ) -> httpx.Response:
        verb = (method or "GET").upper()
        if verb not in MUTATING_METHODS:
            return await self._read(url, verb, headers)

        payload = coerce_body(body)
        request_headers = dict(headers or {})

        if not self.monitor.is_online:
            # known to fail, don't spend the timeout on it
            return self._enqueue(url, verb, payload, request_headers)

        kwargs = request_kwargs(payload, {**NO_STORE, **request_headers})
        try:
            res = await self.client.request(verb, url, **kwargs)
        except httpx.HTTPError as exc:
            self.logger.warning("%s %s failed, queueing: %s", verb, url, exc)
            return self._enqueue(url, verb, payload, request_headers)

        if res.is_success:
            return res
        if res.is_client_error and not self.settings.requeue_client_errors:
            return res
        self.logger.warning("%s %s returned %s, queueing", verb, url, res.status_code)
        return self._enqueue(url, verb, payload, request_headers)

    async def _read(self, url: str, verb: str, headers: Optional[Mapping[str, str]]) -> httpx.Response:
        try:
            return await self.client.request(verb, url, headers={**NO_STORE, **dict(headers or {})})
        except httpx.HTTPError as exc:
            self.logger.debug("%s %s unavailable: %s", verb, url, exc)
            return unavailable_response(self.client.build_request(verb, url))

    def _enqueue(self, url, verb, payload, headers) -> httpx.Response:
        # QueueValidationError / QueueUnavailableError propagate to the caller
        item_id = self.queue.enqueue(url, verb, payload, headers)
        self.queued.publish(item_id)
        if self.sync is not None:
            self.sync.request_sync()
        return queued_response(self.client.build_request(verb, url), item_id)


__all__ = [
    "OfflineFetcher",
    "SyncRequester",
    "is_queued",
    "queued_response",
    "unavailable_response",
]
