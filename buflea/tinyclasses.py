"""Small shared containers, byte counters and socket helpers."""

from __future__ import annotations

import select
import socket
from dataclasses import dataclass, field
from typing import ClassVar, Generic, Iterator, List, Optional, Tuple, TypeVar

T = TypeVar("T")

_DEFAULT_RECEIVE_TIMEOUT = 0xFFF / 1_000_000


class Bucket(Generic[T]):
    """Fixed-capacity unordered container with O(1) swap removal."""

    def __init__(self, capacity: int = 64) -> None:
        if capacity < 0:
            raise ValueError("capacity must not be negative")
        self.capacity = capacity
        self._items: List[T] = []

    def push(self, item: T) -> bool:
        """Append ``item``; return False when the bucket is full."""
        if len(self._items) >= self.capacity:
            return False
        self._items.append(item)
        return True

    def pop(self) -> Optional[T]:
        """Remove and return the last item, or None when empty."""
        if not self._items:
            return None
        return self._items.pop()

    def remove(self, index: int) -> None:
        """Remove the item at ``index`` by moving the last item into its place."""
        if not self._items:
            return
        if not 0 <= index < len(self._items):
            raise IndexError("bucket index out of range")
        last = self._items.pop()
        if index < len(self._items):
            self._items[index] = last

    def clear(self) -> None:
        self._items.clear()

    def __len__(self) -> int:
        return len(self._items)

    def __getitem__(self, index: int) -> T:
        return self._items[index]

    def __iter__(self) -> Iterator[T]:
        return iter(list(self._items))


def _three() -> List[int]:
    return [0, 0, 0]


@dataclass
class ByteStats:
    """Incoming/outgoing byte counters and rates."""

    IN: ClassVar[int] = 0
    OUT: ClassVar[int] = 1

    temp_bytes: List[int] = field(default_factory=_three)
    total_bytes: List[int] = field(default_factory=_three)
    bps_spin: List[int] = field(default_factory=_three)

    def reset_spin(self) -> None:
        """Zero the per-spin rates and the temporary byte counters."""
        for direction in (self.IN, self.OUT):
            self.bps_spin[direction] = 0
            self.temp_bytes[direction] = 0


@dataclass
class SinOut:
    """Accumulated inbound/outbound rates."""

    inbound: int = 0
    outbound: int = 0


def parse_bind_address(address: str) -> Tuple[Optional[str], int]:
    """Split ``proto:host:port`` into (host, port); ``*`` means any interface."""
    rest = address[4:]
    host, sep, port = rest.partition(":")
    if not sep:
        raise ValueError(f"no port in address {address!r}")
    return (None if host.startswith("*") else host), int(port)


def bind_udp_socket(address: str) -> socket.socket:
    """Create a UDP socket bound to ``udp:host:port``."""
    host, port = parse_bind_address(address)
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        sock.bind((host or "", port))
    except OSError:
        sock.close()
        raise
    return sock


def bind_listener_socket(address: str) -> socket.socket:
    """Create a non-blocking TCP listening socket on ``tcp:host:port``."""
    host, port = parse_bind_address(address)
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        sock.bind((host or "", port))
        sock.listen(32)
    except OSError:
        sock.close()
        raise
    sock.setblocking(False)
    return sock


def receive_some(
    sock: socket.socket,
    maxbytes: int = 64,
    timeout: float = _DEFAULT_RECEIVE_TIMEOUT,
) -> Optional[Tuple[bytes, tuple]]:
    """Wait up to ``timeout`` seconds for a datagram; return (data, sender) or None."""
    readable, _, _ = select.select([sock], [], [], timeout)
    if sock not in readable:
        return None
    data, sender = sock.recvfrom(maxbytes)
    if not data:
        return None
    return data, sender