"""Network observer driven by the host application."""

from __future__ import annotations

import logging

from .base import NetworkObserver

logger = logging.getLogger(__name__)


class ManualNetworkObserver(NetworkObserver):
    """Observer whose state is pushed in by the application.

    Call ``set_online`` from whatever platform hook reports network status
    changes. Every call notifies listeners, even if the state is unchanged.
    """

    def __init__(self, online: bool = True):
        super().__init__()
        self._online = online

    def is_online(self) -> bool:
        return self._online

    def set_online(self, online: bool) -> None:
        if online != self._online:
            logger.info("Connectivity changed: %s", "online" if online else "offline")
        self._online = online
        self._emit(online)
