"""
Delivery collectors.

A collector sends one batch of events to the remote endpoint in a single
operation and reports how long a prefix of the batch was accepted.
Failures are raised as DeliveryError; the sync engine turns them into
backoff, so producers never see them.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

import aiohttp

from ..exceptions import DeliveryError
from ..models import DeliveryReport, QueuedEvent

logger = logging.getLogger(__name__)


class Collector(ABC):
    """Remote destination for queued events."""

    @abstractmethod
    async def deliver(self, events: Sequence[QueuedEvent]) -> DeliveryReport:
        """
        Deliver a batch of events, oldest first.

        Args:
            events: Events in ascending id order

        Returns:
            DeliveryReport with the accepted prefix length

        Raises:
            DeliveryError: If the batch could not be delivered
        """
        pass

    async def close(self) -> None:
        """Release network resources."""


class HttpCollector(Collector):
    """Collector that POSTs batches as JSON over HTTP.

    Request body: ``{"events": [{"id", "payload", "enqueued_at", "attempts"}, ...]}``

    A 2xx response accepts the whole batch unless its JSON body carries
    ``{"accepted": n}``, in which case only the first n events are
    confirmed. Any other status is a DeliveryError.

    Example:
        >>> collector = HttpCollector(
        ...     "https://collector.example.com/v1/events",
        ...     auth_token="...",
        ... )
        >>> report = await collector.deliver(batch)
    """

    def __init__(
        self,
        endpoint: str,
        auth_token: str | None = None,
        headers: dict[str, str] | None = None,
        session: aiohttp.ClientSession | None = None,
    ):
        """Initialize the HTTP collector.

        Args:
            endpoint: URL batches are POSTed to
            auth_token: Optional bearer token
            headers: Extra request headers
            session: Existing aiohttp session (not closed by this collector)
        """
        self.endpoint = endpoint
        self.auth_token = auth_token
        self.headers = dict(headers or {})
        self._session = session
        self._owns_session = session is None

    def _request_headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json", **self.headers}
        if self.auth_token:
            headers["Authorization"] = f"Bearer {self.auth_token}"
        return headers

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def deliver(self, events: Sequence[QueuedEvent]) -> DeliveryReport:
        if not events:
            return DeliveryReport(accepted=0)

        session = await self._get_session()
        body = {"events": [event.to_dict() for event in events]}

        try:
            async with session.post(
                self.endpoint, json=body, headers=self._request_headers()
            ) as response:
                if not 200 <= response.status < 300:
                    detail = (await response.text())[:200]
                    raise DeliveryError(
                        f"Collector rejected batch: HTTP {response.status} {detail}".rstrip(),
                        status_code=response.status,
                    )

                accepted = len(events)
                if response.content_type == "application/json":
                    data = await response.json()
                    if isinstance(data, dict) and data.get("accepted") is not None:
                        accepted = int(data["accepted"])
        except aiohttp.ClientError as e:
            raise DeliveryError(f"Collector request failed: {e}", cause=e) from e
        except (TypeError, ValueError) as e:
            raise DeliveryError(f"Malformed collector response: {e}", cause=e) from e

        accepted = max(0, min(accepted, len(events)))
        logger.debug("Collector accepted %d of %d events", accepted, len(events))
        return DeliveryReport(accepted=accepted)

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None


class CallbackCollector(Collector):
    """Collector wrapping an async callable.

    The callable receives the batch and returns the number of accepted
    events, a DeliveryReport, or None for the whole batch. Useful for
    fanning events out to in-process analytics providers.
    """

    def __init__(self, send: Callable[[list[QueuedEvent]], Awaitable[Any]]):
        self._send = send

    async def deliver(self, events: Sequence[QueuedEvent]) -> DeliveryReport:
        result = await self._send(list(events))
        if result is None:
            return DeliveryReport(accepted=len(events))
        if isinstance(result, DeliveryReport):
            return result
        return DeliveryReport(accepted=max(0, min(int(result), len(events))))
