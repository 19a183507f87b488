"""Stream socket wrapper that can carry plain TCP or TLS traffic."""

from __future__ import annotations

import errno
import logging
import select
import socket
import ssl
import time
from typing import Optional, Tuple, Union

_log = logging.getLogger(__name__)

HANDSHAKE_DONE = 1
WOULD_BLOCK = -1
FAILED = 0

DEFAULT_SEND_TIMEOUT = 8.912
_SSL_WRITE_ATTEMPTS = 9
_SSL_RETRY_DELAY = 0xFF / 1_000_000

_Buffer = Union[bytes, bytearray, memoryview]


def classify_ssl_error(exc: Optional[BaseException]) -> int:
    """Map a TLS failure to 1 (no error), -1 (retry later) or 0 (connection is done)."""
    if exc is None:
        return HANDSHAKE_DONE
    if isinstance(exc, (ssl.SSLWantReadError, ssl.SSLWantWriteError, BlockingIOError)):
        return WOULD_BLOCK
    if isinstance(exc, ssl.SSLZeroReturnError):
        return FAILED
    if isinstance(exc, ssl.SSLSyscallError) and exc.errno == errno.EAGAIN:
        return WOULD_BLOCK
    _log.error("TLS error: %s", exc)
    return FAILED


class TcpPipe:
    """A connected stream socket, optionally upgraded to TLS in either role."""

    def __init__(self, sock: socket.socket) -> None:
        self.sock: socket.socket = sock
        self.tls: Optional[ssl.SSLSocket] = None
        self.connected = False
        self.remote_address: Optional[Tuple] = None
        self.send_timeout = DEFAULT_SEND_TIMEOUT

    def fileno(self) -> int:
        return self.sock.fileno()

    @property
    def closed(self) -> bool:
        return self.sock.fileno() == -1

    def sendall(self, data: _Buffer) -> int:
        """Send ``data``; return how many bytes could not be sent."""
        if self.tls is not None:
            return self._tls_sendall(data)
        view = memoryview(data)
        deadline = time.monotonic() + self.send_timeout
        while view:
            try:
                sent = self.sock.send(view)
            except BlockingIOError:
                sent = 0
            if sent:
                view = view[sent:]
                continue
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            _, writable, _ = select.select([], [self.sock], [], remaining)
            if not writable:
                break
        return len(view)

    def _tls_sendall(self, data: _Buffer) -> int:
        assert self.tls is not None
        view = memoryview(data)
        for _ in range(_SSL_WRITE_ATTEMPTS):
            if not view:
                break
            try:
                sent = self.tls.send(view)
            except (ssl.SSLWantReadError, ssl.SSLWantWriteError):
                sent = 0
            except (ssl.SSLError, OSError):
                break
            view = view[sent:]
            time.sleep(_SSL_RETRY_DELAY)
        return len(view)

    def receive(self, size: int = 4096) -> Optional[bytes]:
        """Read up to ``size`` bytes: data, ``b""`` when closed, None when nothing yet."""
        if self.tls is not None:
            try:
                return self.tls.recv(size)
            except (ssl.SSLError, BlockingIOError) as exc:
                return None if classify_ssl_error(exc) == WOULD_BLOCK else b""
        try:
            return self.sock.recv(size)
        except BlockingIOError:
            return None
        except ConnectionError:
            return b""

    def ssl_pre_accept(self, context: ssl.SSLContext, blocking: bool = False) -> bool:
        """Prepare the server side of a TLS session; False if already prepared."""
        if self.tls is not None:
            return False
        self.tls = context.wrap_socket(
            self.sock, server_side=True, do_handshake_on_connect=False
        )
        self.sock = self.tls
        self.tls.setblocking(blocking)
        return True

    def ssl_accept(self) -> int:
        """Advance the server handshake; 1 done, -1 retry later, 0 failed."""
        if self.tls is None:
            raise RuntimeError("TLS session was not prepared")
        return self._handshake()

    def ssl_pre_connect(
        self,
        context: ssl.SSLContext,
        blocking: bool = False,
        server_hostname: Optional[str] = None,
    ) -> bool:
        """Prepare the client side of a TLS session; False if already prepared."""
        if self.tls is not None:
            return False
        self.tls = context.wrap_socket(
            self.sock,
            server_side=False,
            do_handshake_on_connect=False,
            server_hostname=server_hostname,
        )
        self.sock = self.tls
        self.tls.setblocking(blocking)
        return True

    def ssl_connect(self) -> int:
        """Advance the client handshake; 1 done, -1 retry later, 0 failed."""
        if self.tls is None:
            raise RuntimeError("TLS session was not prepared")
        result = self._handshake()
        if result == HANDSHAKE_DONE:
            self.connected = True
        return result

    def _handshake(self) -> int:
        assert self.tls is not None
        try:
            self.tls.do_handshake()
        except (ssl.SSLError, OSError) as exc:
            return classify_ssl_error(exc)
        return HANDSHAKE_DONE

    def destroy(self) -> None:
        """Shut down TLS if active and close the socket."""
        if self.tls is not None:
            try:
                self.tls.unwrap()
            except (ssl.SSLError, OSError, ValueError):
                pass
            self.tls = None
        self.sock.close()
        self.connected = False

    def __enter__(self) -> "TcpPipe":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.destroy()