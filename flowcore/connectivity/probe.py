"""HTTP reachability probe: a ReachabilitySource backed by periodic GET requests."""

import asyncio
import logging
from typing import Callable

import httpx

logger = logging.getLogger(__name__)


class HttpReachabilityProbe:
    """Poll a URL and report reachability to listeners.

    Any response below HTTP 400 counts as reachable; 4xx/5xx, timeouts and
    transport errors count as unreachable.
    """

    def __init__(
        self,
        url: str,
        interval: float = 15.0,
        timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = url
        self._interval = interval
        self._timeout = timeout
        self._transport = transport
        self._listeners: list[Callable[[bool], None]] = []
        self._task: asyncio.Task[None] | None = None

    def add_listener(self, callback: Callable[[bool], None]) -> Callable[[], None]:
        self._listeners.append(callback)

        def remove() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return remove

    async def check_once(self) -> bool:
        """Probe the URL once, notify listeners, return the reading."""
        reachable = await self._probe()
        for callback in list(self._listeners):
            try:
                callback(reachable)
            except Exception as e:
                logger.exception("Reachability listener failed: %s", e)
        return reachable

    async def start(self) -> None:
        """Start the polling loop as an asyncio Task."""
        if self._task is not None:
            return
        self._task = asyncio.create_task(self._poll_loop())
        logger.info("Reachability probe started for %s", self._url)

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
            logger.info("Reachability probe stopped")

    async def _probe(self) -> bool:
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                resp = await client.get(self._url)
            return resp.status_code < 400
        except httpx.TimeoutException:
            logger.debug("Reachability probe timed out: %s", self._url)
            return False
        except httpx.HTTPError as e:
            logger.debug("Reachability probe failed: %s", e)
            return False

    async def _poll_loop(self) -> None:
        while True:
            await self.check_once()
            await asyncio.sleep(self._interval)
