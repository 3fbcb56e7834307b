"""Cached network reachability.

is_online() answers from the cached flag and never touches the network.
The flag is updated by the platform (set_online) or by an explicit probe().
"""

import logging
from typing import Callable

import httpx

from inspection_sync.config import settings

logger = logging.getLogger(__name__)


class ConnectivityMonitor:
    def __init__(
        self,
        initially_online: bool = True,
        probe_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._online = initially_online
        self.probe_url = probe_url or settings.CONNECTIVITY_PROBE_URL
        self._transport = transport
        self._listeners: set[Callable[[bool], None]] = set()

    def is_online(self) -> bool:
        return self._online

    def set_online(self, online: bool) -> None:
        if online == self._online:
            return
        self._online = online
        logger.info("Connectivity changed: %s", "online" if online else "offline")
        for listener in list(self._listeners):
            try:
                listener(online)
            except Exception:
                logger.error("Connectivity listener failed", exc_info=True)

    def subscribe(self, callback: Callable[[bool], None]) -> Callable[[], None]:
        """Register a change callback. Returns the unsubscribe function."""
        self._listeners.add(callback)
        return lambda: self._listeners.discard(callback)

    async def probe(self) -> bool:
        """Check reachability of the remote service and refresh the cache."""
        try:
            async with httpx.AsyncClient(
                timeout=settings.CONNECTIVITY_PROBE_TIMEOUT_SECONDS,
                transport=self._transport,
            ) as client:
                resp = await client.head(self.probe_url)
            online = resp.status_code < 500
        except httpx.HTTPError as exc:
            logger.debug("Connectivity probe failed: %s", exc)
            online = False
        self.set_online(online)
        return online
