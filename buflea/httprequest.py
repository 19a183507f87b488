"""Parsing of plain HTTP requests: request line, headers, query and cookies."""

from __future__ import annotations

import os
import re
import tempfile
from typing import IO, Dict, List, Optional, Tuple
from urllib.parse import unquote

MAX_REQUEST = 4096
MAX_HDRS = 32

_LEADING_INT = re.compile(r"\s*([+-]?\d+)")


def method_hash(name: str) -> int:
    """Sum of the character codes of ``name`` after its first character."""
    return sum(name.encode("latin-1")[1:])


GET = method_hash("GET")
POST = method_hash("POST")
HEAD = method_hash("HEAD")
PUT = method_hash("PUT")
DELETE = method_hash("DELETE")
OPTIONS = method_hash("OPTIONS")
TRACE = method_hash("TRACE")
CONNECT = method_hash("CONNECT")


def _parse_pairs(text: str, separator: str) -> Dict[str, str]:
    pairs: Dict[str, str] = {}
    for part in text.split(separator):
        if len(pairs) >= MAX_HDRS:
            break
        key, _, value = part.partition("=")
        if not key:
            break
        pairs[key] = value
    return pairs


def _atoll(text: str) -> int:
    match = _LEADING_INT.match(text)
    return int(match.group(1)) if match else 0


class Request:
    """An HTTP request accumulated from the wire and parsed once complete."""

    def __init__(self) -> None:
        self._buffer = bytearray()
        self.done = False
        self.first_line: Optional[str] = None
        self.method = ""
        self.method_hash = 0
        self.uri = ""
        self.version = ""
        self.args: Dict[str, str] = {}
        self.headers: List[Tuple[str, str]] = []
        self.cookies: Dict[str, str] = {}
        self.body = b""
        self.uri_dir = ""
        self.uri_doc = ""
        self.post_length = 0
        self.post_file: Optional[IO[bytes]] = None

    def parse(self, data: bytes) -> bool:
        """Add received bytes; return True once the whole header has arrived."""
        if self.done:
            return True
        self._buffer.extend(data)
        end = self._buffer.find(b"\r\n\r\n")
        if end == -1:
            if len(self._buffer) > MAX_REQUEST:
                raise ValueError("request header too large")
            eol = self._buffer.find(b"\r\n")
            if eol != -1:
                self.first_line = self._buffer[:eol].decode("latin-1")
            return False
        if end > MAX_REQUEST:
            raise ValueError("request header too large")
        self._parse_header(self._buffer[:end].decode("latin-1"))
        self.body = bytes(self._buffer[end + 4:])
        self.done = True
        return True

    def _parse_header(self, text: str) -> None:
        text = text.lstrip(" \t")
        first, _, rest = text.partition("\r\n")
        self.first_line = first
        method, _, remainder = first.partition(" ")
        uri, _, version = remainder.partition(" ")
        self.method = method.upper()
        self.method_hash = method_hash(self.method)
        path, has_query, query = uri.partition("?")
        self.uri = path
        if has_query:
            self.args = _parse_pairs(query, "&")
        self.version = version
        self.headers = [(self.method, path), ("_VER", version)]
        if not rest:
            return
        for line in rest.split("\r\n"):
            if len(self.headers) >= MAX_HDRS:
                break
            key, _, value = line.partition(": ")
            key = key.upper()
            if key == "COOKIE":
                self.cookies.update(_parse_pairs(value, "; "))
                continue
            self.headers.append((key, value))

    def close_header(self, home: str, index: str) -> Tuple[str, str]:
        """Split the decoded URI into directory and document, picking an index file."""
        decoded = unquote(self.uri)
        slash = decoded.rfind("/")
        uri_dir = decoded[:slash + 1]
        uri_doc = decoded[slash + 1:]
        if not uri_doc:
            for token in index.split(","):
                if os.path.exists(f"{home}{uri_dir}/{token}"):
                    uri_doc = token
        self.uri_dir = uri_dir
        self.uri_doc = uri_doc
        return uri_dir, uri_doc

    def read_post_data(self, data: bytes) -> int:
        """Store POST body bytes in a temporary file; return bytes still expected."""
        if self.post_file is None:
            length = self.get_header("CONTENT-LENGTH")
            if length is None:
                return 0
            self.post_length = _atoll(length)
            if self.post_length == 0:
                return 0
            self.post_file = tempfile.TemporaryFile()
        self.post_file.write(data)
        self.post_length -= len(data)
        if self.post_length == 0:
            self.post_file.seek(0)
        return self.post_length

    def get_header(self, key: str) -> Optional[str]:
        """Value of the first header named ``key`` (case-insensitive), or None."""
        wanted = key.upper()
        for name, value in self.headers:
            if name == wanted:
                return value
        return None

    def close(self) -> None:
        if self.post_file is not None:
            self.post_file.close()
            self.post_file = None

    def __enter__(self) -> "Request":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()