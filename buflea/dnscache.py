"""Per-client cache of hostnames resolved for transparent HTTPS forwarding."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, replace
from typing import Dict, Optional


@dataclass
class DnsRecord:
    """A resolution handed to a client: who asked, for what, and when."""

    client: str
    hostname: str = ""
    domainip: str = ""
    now: float = 0.0


class DnsHtps:
    """Maps client addresses to request signatures and their resolved hosts."""

    def __init__(self, max_records: int, timeout: float) -> None:
        self.max_records = max_records
        self.timeout = timeout
        self._clients: Dict[str, Dict[int, DnsRecord]] = {}
        self._lock = threading.RLock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._clients)

    def __contains__(self, client: object) -> bool:
        with self._lock:
            return client in self._clients

    def queue_host(self, record: DnsRecord) -> None:
        """Make ``record`` the default entry for its client, replacing older ones."""
        if len(self._clients) > self.max_records:
            self.cleanup()
        with self._lock:
            record.now = time.time()
            self._clients[record.client] = {0: replace(record)}

    def update_host(self, client: str, signature: int) -> None:
        """Refresh the entry for ``signature`` or bind it to the client's default."""
        with self._lock:
            routes = self._clients.get(client)
            if routes is None:
                return
            entry = routes.get(signature)
            if entry is not None:
                entry.now = time.time()
                return
            default = routes.get(0)
            if default is not None:
                routes[signature] = replace(default)

    def deque_host(self, client: str, signature: int) -> Optional[DnsRecord]:
        """The record for ``signature``, else the client's default, else None."""
        with self._lock:
            routes = self._clients.get(client)
            if routes is None:
                return None
            entry = routes.get(signature, routes.get(0))
            return replace(entry) if entry is not None else None

    def cleanup(self, now: Optional[float] = None) -> None:
        """Drop entries older than the timeout and clients left without entries."""
        if now is None:
            now = time.time()
        with self._lock:
            for client in list(self._clients):
                routes = self._clients[client]
                for signature in [s for s, r in routes.items() if now - r.now > self.timeout]:
                    del routes[signature]
                if not routes:
                    del self._clients[client]