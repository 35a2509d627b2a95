"""
Network observer that probes connectivity itself.

Resolves a well-known hostname through the event loop's resolver on a
fixed interval. A successful resolution means online. Listeners are only
notified when the probed state changes.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import socket

from .base import NetworkObserver

logger = logging.getLogger(__name__)


class ProbeNetworkObserver(NetworkObserver):
    """Polls DNS resolution of ``probe_host`` to detect connectivity.

    Example:
        >>> observer = ProbeNetworkObserver(probe_host="collector.example.com")
        >>> await observer.start()
        >>> ...
        >>> await observer.stop()
    """

    def __init__(
        self,
        probe_host: str = "dns.google",
        interval: float = 15.0,
        timeout: float = 5.0,
        assume_online: bool = True,
    ):
        """Initialize the probe observer.

        Args:
            probe_host: Hostname to resolve
            interval: Seconds between probes
            timeout: Seconds before a probe counts as failed
            assume_online: State reported before the first probe completes
        """
        super().__init__()
        self.probe_host = probe_host
        self.interval = interval
        self.timeout = timeout
        self._online = assume_online
        self._task: asyncio.Task[None] | None = None

    def is_online(self) -> bool:
        return self._online

    async def check_connectivity(self) -> bool:
        """Run one probe and update the observed state.

        Returns:
            True if online, False otherwise
        """
        loop = asyncio.get_running_loop()
        try:
            await asyncio.wait_for(
                loop.getaddrinfo(self.probe_host, None, type=socket.SOCK_STREAM),
                timeout=self.timeout,
            )
            online = True
        except (OSError, TimeoutError):
            online = False

        if online != self._online:
            self._online = online
            logger.info(
                "Connectivity probe for %s: %s",
                self.probe_host,
                "online" if online else "offline",
            )
            self._emit(online)
        return online

    async def start(self) -> None:
        """Start probing in the background."""
        if self._task is not None:
            return

        async def probe_loop() -> None:
            while True:
                await self.check_connectivity()
                await asyncio.sleep(self.interval)

        self._task = asyncio.create_task(probe_loop())

    async def stop(self) -> None:
        """Stop probing."""
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
