"""
Connection registry enforcing one client per board address.

A registry is injected into each RaspiClient. Clients that share a registry
cannot target the same host at the same time; the module-level default
registry makes that rule process-wide.
"""

from __future__ import annotations

import threading
from enum import Enum

from raspi_io.errors import ConnectionExistsError
from raspi_io.logging import get_logger

logger = get_logger(__name__)


class RegistryEntry(str, Enum):
    """Registry entry markers."""

    PENDING = "pending"
    LIVE = "live"


class ConnectionRegistry:
    """
    Lock-guarded table of hosts with a connecting or live client.

    A host is reserved when a client starts connecting, marked live when the
    client becomes ready and released when the client closes or fails to
    connect.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: dict[str, RegistryEntry] = {}

    @staticmethod
    def _key(host: str) -> str:
        return host.strip().lower()

    def reserve(self, host: str) -> None:
        """
        Reserve a host for a connecting client.

        Raises:
            ConnectionExistsError: If the host is already reserved or live.
        """
        key = self._key(host)
        with self._lock:
            if key in self._entries:
                raise ConnectionExistsError(host)
            self._entries[key] = RegistryEntry.PENDING
        logger.debug("Host reserved", extra={"host": host})

    def activate(self, host: str) -> None:
        """Mark a reserved host as having a live client."""
        with self._lock:
            self._entries[self._key(host)] = RegistryEntry.LIVE

    def release(self, host: str) -> None:
        """Remove the host's entry, if any."""
        with self._lock:
            self._entries.pop(self._key(host), None)
        logger.debug("Host released", extra={"host": host})

    def is_live(self, host: str) -> bool:
        """Whether the host has a live client."""
        with self._lock:
            return self._entries.get(self._key(host)) is RegistryEntry.LIVE

    def __contains__(self, host: object) -> bool:
        if not isinstance(host, str):
            return False
        with self._lock:
            return self._key(host) in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def hosts(self) -> list[str]:
        """Hosts currently reserved or live."""
        with self._lock:
            return list(self._entries)


_default_registry = ConnectionRegistry()


def get_default_registry() -> ConnectionRegistry:
    """Return the process-wide registry."""
    return _default_registry
