"""Holder for the live network-reachability signal."""

import threading
from typing import Callable, List

from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="connectivity")

ConnectivityListener = Callable[[bool], None]


class ConnectivityMonitor:
    """Track online/offline transitions reported by the host platform."""

    def __init__(self, initially_online: bool = True) -> None:
        self._online = initially_online
        self._listeners: List[ConnectivityListener] = []
        self._lock = threading.Lock()
        logger.info("Initial network status: %s", "ONLINE" if initially_online else "OFFLINE")

    @property
    def is_online(self) -> bool:
        return self._online

    def set_online(self, online: bool) -> None:
        """Record the current reachability; listeners fire only on a change."""
        with self._lock:
            if online == self._online:
                return
            self._online = online
            listeners = list(self._listeners)
        logger.info("Network status: %s", "ONLINE" if online else "OFFLINE")
        for listener in listeners:
            try:
                listener(online)
            except Exception:
                logger.exception("Connectivity listener failed")

    def subscribe(self, listener: ConnectivityListener) -> Callable[[], None]:
        """Register a listener and return a callable that removes it."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe
