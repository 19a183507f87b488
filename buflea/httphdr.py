"""Incremental parser for proxy request headers."""

from __future__ import annotations

import re
import sys
from typing import Optional

MAX_HEADER_BYTES = 16384

_CR = ord("\r")
_LF = ord("\n")
_SP = ord(" ")

_HOST = b"Host: "
_PROXY = b"Proxy-Connection: "
_CONTENT = b"Content-Length: "
_CONNECT = b"CONNECT "
_REFERER = b"Referer: "
_ENCODING = b"Accept-Encoding: "
_HTTP = b"http://"

_ATOI = re.compile(rb"\s*([+-]?\d+)")


class HeaderOverflow(ValueError):
    """Raised when a header grows beyond the allowed size."""


class SocksHdr:
    """Accumulates request bytes and locates Host, Referer and similar fields."""

    def __init__(self) -> None:
        self._buf = bytearray()
        self.clear()

    @property
    def data(self) -> bytes:
        return bytes(self._buf)

    def append(self, data: bytes) -> None:
        if len(data) + len(self._buf) > MAX_HEADER_BYTES:
            raise HeaderOverflow("header overflow")
        self._buf.extend(data)

    def clear(self, force: bool = True) -> None:
        if force:
            self._buf.clear()
        self.last_len = 0
        self.hdr_len = 0
        self.body_len = 0
        self.ok = False
        self.has_open = False
        self.nhost = 0
        self.nhost_end = 0
        self.nprx = 0
        self.nprx_end = 0
        self.nreferer = 0
        self.nreferer_end = 0
        self.nencoding = 0
        self.nencoding_end = 0

    def __len__(self) -> int:
        return len(self._buf)

    def as_u64(self) -> int:
        """The first eight bytes as a native-order unsigned integer."""
        head = bytes(self._buf[:8]).ljust(8, b"\0")
        return int.from_bytes(head, sys.byteorder)

    def _at(self, index: int) -> int:
        if 0 <= index < len(self._buf):
            return self._buf[index]
        return 0

    def _is(self, pos: int, key: bytes, *offsets: int) -> bool:
        return all(self._at(pos + off) == key[off] for off in offsets)

    def _atoi(self, pos: int) -> int:
        match = _ATOI.match(self._buf, pos)
        return int(match.group(1)) if match else 0

    def parse(self) -> bool:
        """Scan new bytes; return True once header and body are complete."""
        length = len(self._buf)
        if length < 18:
            return False
        pos = self.last_len - 18 if self.last_len > 18 else 0
        prev = _LF
        eoh = False

        while pos < length and self._buf[pos] != 0:
            ch = self._buf[pos]
            if ch == _LF:
                if prev == _CR:
                    if eoh and self.hdr_len == 0:
                        self.hdr_len = pos + 1
                    eoh = True
            elif ch == _CR:
                if self.nhost and not self.nhost_end:
                    self.nhost_end = pos
                elif self.nreferer and not self.nreferer_end:
                    self.nreferer_end = pos
                elif self.nencoding and not self.nencoding_end:
                    self.nencoding_end = pos
                elif self.nprx and not self.nprx_end:
                    self.nprx_end = pos
                if prev != _LF:
                    eoh = False
            elif ch == ord("R"):
                if prev == _LF and self._is(pos, _REFERER, 0, 3, 7) and not self.nreferer:
                    pos += len(_REFERER)
                    self.nreferer = pos
                    self.nreferer_end = 0
            elif ch == ord("A"):
                if prev == _LF and self._is(pos, _ENCODING, 0, 3, 14) and not self.nencoding:
                    pos += len(_ENCODING)
                    self.nencoding = pos
                    self.nencoding_end = 0
            elif ch == ord("H"):
                if prev == _LF and self._is(pos, _HOST, 0, 4, 5) and not self.nhost:
                    pos += len(_HOST)
                    self.nhost = pos
                    self.nhost_end = 0
            elif ch == ord("C"):
                if prev == _LF:
                    if self._is(pos, _CONTENT, 0, 14, 15):
                        pos += len(_CONTENT)
                        self.body_len = self._atoi(pos)
                    elif self._is(pos, _CONNECT, 0, 3, 7):
                        pos += len(_CONNECT)
                        self.nhost = pos
                        self.nhost_end = 0
                        self.has_open = True
            elif ch == ord("P"):
                if prev == _LF and self._is(pos, _PROXY, 0, 16, 17):
                    self.nprx = pos
                    self.nprx_end = pos + 6
                    pos += len(_PROXY)
            elif self.nhost and not self.nhost_end and ch == _SP:
                self.nhost_end = pos
            prev = self._at(pos)
            pos += 1

        self.last_len = pos
        if self.hdr_len == 0:
            return False
        if length >= self.hdr_len + self.body_len:
            self.ok = True
            return True
        return False

    def _slice(self, start: int, end: int) -> bytes:
        if end < start:
            return bytes(self._buf[start:])
        return bytes(self._buf[start:end])

    def get_host(self) -> str:
        return self._slice(self.nhost, self.nhost_end).decode("latin-1")

    def get_referer(self) -> str:
        return self._slice(self.nreferer, self.nreferer_end).decode("latin-1")

    def prep_doc(self) -> None:
        """Drop the ``Proxy-`` prefix and turn an absolute URL into a path."""
        if self.nprx:
            del self._buf[self.nprx:self.nprx_end]
        if not self.nhost:
            return
        host = self._slice(self.nhost, self.nhost_end)
        start = self._buf.find(b" ")
        if start == -1:
            return
        end = self._buf.find(b" ", start + 1)
        if end == -1 or end - start <= 2:
            return
        start += 1
        doc = bytes(self._buf[start:end])
        if _HTTP not in doc:
            return
        nhttp = self._buf.find(_HTTP)
        if nhttp == -1:
            return
        hdoc = _HTTP + host
        if doc.find(host) == 7 and doc.find(hdoc) == 0:
            del self._buf[nhttp:nhttp + len(hdoc)]

    def _erase(self, pos: int, count: int) -> None:
        if pos < 0 or pos > len(self._buf):
            raise IndexError("erase position out of range")
        del self._buf[pos:pos + count]

    def replace_option(self, start: int, stop: int, replacement: Optional[bytes] = None) -> None:
        """Replace a field value, or remove the whole field line when no replacement."""
        diff = -(stop - start)
        if replacement is not None:
            self._buf[start:stop] = replacement
            diff += len(replacement)
        else:
            for attr, key in (
                ("nhost", _HOST),
                ("nprx", _PROXY),
                ("nreferer", _REFERER),
                ("nencoding", _ENCODING),
            ):
                if start == getattr(self, attr):
                    self._erase(start - len(key), stop - start + len(key) + 2)
                    diff -= len(key) + 2
                    setattr(self, attr, 0)
                    setattr(self, attr + "_end", 0)
                    break

        for attr in ("nhost", "nprx", "nreferer", "nencoding"):
            if getattr(self, attr) > start:
                setattr(self, attr, getattr(self, attr) + diff)
            end_attr = attr + "_end"
            if getattr(self, end_attr) > start:
                setattr(self, end_attr, getattr(self, end_attr) - diff)

        self.last_len += diff
        self.hdr_len += diff