import struct

import pytest

from buflea.httphdr import MAX_HEADER_BYTES, HeaderOverflow, SocksHdr

PROXIED = (
    b"GET http://example.com/index.html HTTP/1.1\r\n"
    b"Host: example.com\r\n"
    b"Proxy-Connection: keep-alive\r\n\r\n"
)


def _parsed(raw: bytes) -> SocksHdr:
    hdr = SocksHdr()
    hdr.append(raw)
    hdr.parse()
    return hdr


def test_short_buffer_needs_more():
    hdr = SocksHdr()
    hdr.append(b"GET / HTTP/1.1")
    assert hdr.parse() is False
    assert hdr.ok is False


def test_incomplete_header_needs_more():
    hdr = SocksHdr()
    hdr.append(b"GET / HTTP/1.1\r\nHost: example.com\r\n")
    assert hdr.parse() is False
    hdr.append(b"\r\n")
    assert hdr.parse() is True
    assert hdr.ok is True
    assert hdr.get_host() == "example.com"


def test_header_length_covers_blank_line():
    raw = b"GET / HTTP/1.1\r\nHost: example.com\r\n\r\n"
    hdr = _parsed(raw)
    assert hdr.hdr_len == len(raw)
    assert hdr.body_len == 0


def test_waits_for_body():
    hdr = SocksHdr()
    hdr.append(b"POST / HTTP/1.1\r\nHost: example.com\r\nContent-Length: 5\r\n\r\n")
    assert hdr.parse() is False
    assert hdr.body_len == 5
    hdr.append(b"hello")
    assert hdr.parse() is True


def test_connect_sets_host_and_open():
    hdr = _parsed(b"CONNECT example.com:443 HTTP/1.1\r\nHost: example.com:443\r\n\r\n")
    assert hdr.has_open is True
    assert hdr.get_host() == "example.com:443"


def test_referer_and_encoding_located():
    hdr = _parsed(
        b"GET / HTTP/1.1\r\nHost: example.com\r\n"
        b"Referer: http://example.com/a\r\nAccept-Encoding: gzip\r\n\r\n"
    )
    assert hdr.get_referer() == "http://example.com/a"
    assert hdr.data[hdr.nencoding:hdr.nencoding_end] == b"gzip"


def test_proxy_connection_span_is_prefix():
    hdr = _parsed(PROXIED)
    assert hdr.data[hdr.nprx:hdr.nprx_end] == b"Proxy-"


def test_prep_doc_rewrites_absolute_url_and_proxy_header():
    hdr = _parsed(PROXIED)
    hdr.prep_doc()
    assert hdr.data == (
        b"GET /index.html HTTP/1.1\r\n"
        b"Host: example.com\r\n"
        b"Connection: keep-alive\r\n\r\n"
    )


def test_prep_doc_leaves_relative_request_alone():
    raw = b"GET /index.html HTTP/1.1\r\nHost: example.com\r\n\r\n"
    hdr = _parsed(raw)
    hdr.prep_doc()
    assert hdr.data == raw


def test_replace_option_with_value():
    hdr = _parsed(b"GET / HTTP/1.1\r\nHost: example.com\r\n\r\n")
    hdr.replace_option(hdr.nhost, hdr.nhost_end, b"other.example.com")
    assert hdr.data == b"GET / HTTP/1.1\r\nHost: other.example.com\r\n\r\n"


def test_replace_option_removes_referer_line():
    hdr = _parsed(
        b"GET / HTTP/1.1\r\nHost: example.com\r\nReferer: http://example.com/a\r\n\r\n"
    )
    before = hdr.hdr_len
    hdr.replace_option(hdr.nreferer, hdr.nreferer_end)
    assert hdr.data == b"GET / HTTP/1.1\r\nHost: example.com\r\n\r\n"
    assert hdr.nreferer == 0 and hdr.nreferer_end == 0
    assert hdr.hdr_len == before - len(b"Referer: http://example.com/a\r\n")


def test_append_overflow_raises():
    hdr = SocksHdr()
    hdr.append(b"x" * MAX_HEADER_BYTES)
    assert len(hdr) == MAX_HEADER_BYTES
    with pytest.raises(HeaderOverflow):
        hdr.append(b"y")


def test_as_u64_matches_first_bytes():
    hdr = _parsed(PROXIED)
    assert struct.pack("=Q", hdr.as_u64()) == PROXIED[:8]


def test_clear_without_force_keeps_bytes():
    hdr = _parsed(PROXIED)
    hdr.clear(force=False)
    assert len(hdr) == len(PROXIED)
    assert hdr.ok is False
    assert hdr.nhost == 0
    hdr.clear()
    assert len(hdr) == 0