from __future__ import annotations

import asyncio
import socket
from typing import Optional

import httpx

from core.log import get_logger
from core.settings import OFFLINE, ConnectivitySettings
from datetime_utils import now_ms
from models.connectivity import OFFLINE as OFFLINE_STATE
from models.connectivity import ConnectivityState
from services.channel import Channel


NO_STORE_HEADERS = {
    "Cache-Control": "no-store, no-cache, must-revalidate, proxy-revalidate",
    "Pragma": "no-cache",
}


def _bust(url: str) -> str:
    sep = "&" if "?" in url else "?"
    return f"{url}{sep}ts={now_ms()}"


class NetworkMonitor:
    """Holds the immediate "is there a network at all" flag.

    The host can flip it with :meth:`set_online`; :meth:`start` also watches
    the OS routing table. A UDP ``connect`` sends no packets but fails at
    once when there is no route to a public address.
    """

    def __init__(
        self,
        online: bool = True,
        settings: Optional[ConnectivitySettings] = None,
    ) -> None:
        self.settings = settings or OFFLINE.connectivity
        self._online = online
        self.changes: Channel[bool] = Channel("network")
        self._task: Optional[asyncio.Task] = None
        self.logger = get_logger("hive.connectivity")

    @property
    def is_online(self) -> bool:
        return self._online

    def set_online(self, online: bool) -> None:
        online = bool(online)
        if online == self._online:
            return
        self._online = online
        self.logger.info("Network link %s", "up" if online else "down")
        self.changes.publish(online)

    def link_up(self) -> bool:
        try:
            with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
                sock.connect((self.settings.link_probe_host, 53))
            return True
        except OSError:
            return False

    def start(self, interval: Optional[float] = None) -> None:
        if self._task is not None:
            return
        period = interval or self.settings.poll_interval

        async def _watch():
            while True:
                self.set_online(self.link_up())
                await asyncio.sleep(period)

        self._task = asyncio.get_running_loop().create_task(_watch())

    def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
        self._task = None


class ConnectivityProber:
    """Tells "no internet" apart from "internet fine, server down"."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        monitor: Optional[NetworkMonitor] = None,
        settings: Optional[ConnectivitySettings] = None,
    ) -> None:
        self.client = client
        self.settings = settings or OFFLINE.connectivity
        self.monitor = monitor or NetworkMonitor(settings=self.settings)
        self.state = ConnectivityState()
        self.changes: Channel[ConnectivityState] = Channel("connectivity")
        self.logger = get_logger("hive.connectivity")
        self._inflight: Optional[asyncio.Task] = None
        self._poll_task: Optional[asyncio.Task] = None
        self._unsubscribe = None
        self.cycles = 0
        self._generation = 0
        self._inflight_generation = 0

    # ------------------------------------------------------------------
    # probes
    async def _get_ok(self, url: str, headers: Optional[dict] = None) -> Optional[httpx.Response]:
        timeout = self.settings.probe_timeout
        try:
            return await asyncio.wait_for(
                self.client.get(_bust(url), headers=headers, timeout=timeout),
                timeout=timeout,
            )
        except (httpx.HTTPError, asyncio.TimeoutError) as exc:
            self.logger.debug("Probe %s failed: %s", url, exc)
            return None

    async def has_internet(self) -> bool:
        if not self.monitor.is_online:
            return False
        res = await self._get_ok(self.settings.internet_probe_url)
        return bool(res is not None and res.is_success)

    async def has_server(self) -> bool:
        if not self.monitor.is_online:
            return False
        res = await self._get_ok(self.settings.health_path, NO_STORE_HEADERS)
        if res is None:
            return False
        if res.is_success:
            return True
        if res.status_code == 404 and self.settings.health_fallback_path:
            # older deployments have no /api/health yet
            fallback = await self._get_ok(self.settings.health_fallback_path, NO_STORE_HEADERS)
            return bool(fallback is not None and fallback.is_success)
        return False

    # ------------------------------------------------------------------
    # cycles
    def check(self) -> "asyncio.Future[ConnectivityState]":
        """Run one probe cycle, or join the one already in flight."""

        stale = self._inflight_generation != self._generation
        if self._inflight is None or self._inflight.done() or stale:
            self._inflight_generation = self._generation
            self._inflight = asyncio.get_running_loop().create_task(self._cycle(self._generation))
        return asyncio.shield(self._inflight)

    async def _cycle(self, generation: int) -> ConnectivityState:
        self.cycles += 1
        if not self.monitor.is_online:
            self._set_state(OFFLINE_STATE)
            return self.state
        internet, server = await asyncio.gather(self.has_internet(), self.has_server())
        self.logger.debug("Probe: internet=%s server=%s", internet, server)
        if generation != self._generation or not self.monitor.is_online:
            # went offline while probing; that verdict wins
            self.logger.debug("Dropping probe result started before going offline")
            return self.state
        self._set_state(ConnectivityState(has_internet=internet, has_server=server))
        return self.state

    def force_offline(self) -> None:
        self._generation += 1
        self._set_state(OFFLINE_STATE)

    def _set_state(self, state: ConnectivityState) -> None:
        if state == self.state:
            return
        previous, self.state = self.state, state
        self.logger.info("Connectivity %s -> %s", previous.status.value, state.status.value)
        self.changes.publish(state)

    def _on_link(self, online: bool) -> None:
        if online:
            self.check()
        else:
            # the OS saying "offline" is authoritative, no need to probe
            self.force_offline()

    # ------------------------------------------------------------------
    def start(self) -> None:
        if self._poll_task is not None:
            return
        self._unsubscribe = self.monitor.changes.subscribe(self._on_link)

        async def _poll():
            while True:
                try:
                    await self.check()
                except Exception:
                    self.logger.exception("Probe cycle crashed")
                await asyncio.sleep(self.settings.poll_interval)

        self._poll_task = asyncio.get_running_loop().create_task(_poll())

    def stop(self) -> None:
        if self._unsubscribe:
            self._unsubscribe()
            self._unsubscribe = None
        if self._poll_task is not None:
            self._poll_task.cancel()
        self._poll_task = None


__all__ = ["ConnectivityProber", "NetworkMonitor", "NO_STORE_HEADERS"]
