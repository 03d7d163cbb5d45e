"""Tests for HTTP/1.1 request serialisation and incremental response parsing."""

import pytest

from TunnelHttp.errors import MalformedResponse, ValidationError
from TunnelHttp.wire import (
    ParserState,
    ResponseParser,
    host_header,
    read_response,
    request_target,
    serialize_request,
)


class _ChunkedStream:
    """Stream double returning scripted reads, then EOF."""

    def __init__(self, *chunks: bytes):
        self._chunks = list(chunks)

    def read(self, size: int = 8192) -> bytes:
        return self._chunks.pop(0) if self._chunks else b""


class TestSerializeRequest:
    """Request line and header emission."""

    def test_host_first_and_caller_host_skipped(self):
        payload = serialize_request(
            "GET",
            "http://example.com/path?q=1#frag",
            [("Accept", "*/*"), ("Host", "evil.example"), ("X-Test", "1")],
        )
        assert payload == (
            b"GET /path?q=1 HTTP/1.1\r\n"
            b"Host: example.com\r\n"
            b"Accept: */*\r\n"
            b"X-Test: 1\r\n"
            b"\r\n"
        )

    def test_content_length_added_for_body(self):
        payload = serialize_request("POST", "http://example.com/", [], b"abc")
        assert payload.endswith(b"Content-Length: 3\r\n\r\nabc")

    def test_caller_content_length_kept(self):
        payload = serialize_request("POST", "http://example.com/", [("Content-Length", "3")], b"abc")
        assert payload.count(b"Content-Length") == 1

    def test_empty_post_sends_zero_length(self):
        payload = serialize_request("POST", "http://example.com/", [])
        assert b"Content-Length: 0\r\n" in payload

    def test_get_without_body_has_no_length(self):
        assert b"Content-Length" not in serialize_request("GET", "http://example.com/", [])

    @pytest.mark.parametrize(
        ("url", "expected"),
        [
            ("http://example.com/", "example.com"),
            ("http://example.com:80/", "example.com"),
            ("https://example.com:443/", "example.com"),
            ("http://example.com:8080/", "example.com:8080"),
            ("https://[::1]:8443/", "[::1]:8443"),
        ],
    )
    def test_host_header(self, url, expected):
        assert host_header(url) == expected

    def test_request_target_defaults_and_quotes(self):
        assert request_target("http://example.com") == "/"
        assert request_target("http://example.com/a b?x=1 2") == "/a%20b?x=1%202"
        assert request_target("http://example.com/a%20b?x=%41") == "/a%20b?x=%41"

    def test_header_injection_rejected(self):
        with pytest.raises(ValidationError):
            serialize_request("GET", "http://example.com/", [("X-Bad", "a\r\nInjected: 1")])


class TestResponseParser:
    """State machine behaviour."""

    def test_content_length(self):
        parser = ResponseParser()
        parser.feed(b"HTTP/1.1 201 Created\r\nContent-Length: 5\r\nX-A: 1\r\n\r\nhello")
        assert parser.done
        result = parser.result()
        assert (result.status_code, result.reason, result.http_version) == (201, "Created", "HTTP/1.1")
        assert result.headers == [("Content-Length", "5"), ("X-A", "1")]
        assert result.body == b"hello"

    def test_trailing_bytes_ignored(self):
        parser = ResponseParser()
        parser.feed(b"HTTP/1.1 200 OK\r\nContent-Length: 2\r\n\r\nhiEXTRA")
        assert parser.result().body == b"hi"

    def test_chunked_with_extensions_and_trailers(self):
        parser = ResponseParser()
        parser.feed(
            b"HTTP/1.1 200 OK\r\nTransfer-Encoding: chunked\r\n\r\n"
            b"5;name=value\r\nhello\r\n"
            b"6\r\n world\r\n"
            b"0\r\nX-Trailer: yes\r\n\r\n"
        )
        assert parser.done
        assert parser.result().body == b"hello world"

    def test_chunked_preferred_over_content_length(self):
        parser = ResponseParser()
        parser.feed(
            b"HTTP/1.1 200 OK\r\nContent-Length: 100\r\nTransfer-Encoding: gzip, chunked\r\n\r\n"
            b"3\r\nabc\r\n0\r\n\r\n"
        )
        assert parser.result().body == b"abc"

    def test_until_close(self):
        parser = ResponseParser()
        parser.feed(b"HTTP/1.0 200 OK\r\nServer: x\r\n\r\npart1")
        assert parser.state is ParserState.BODY_UNTIL_CLOSE
        parser.feed(b"part2")
        parser.feed_eof()
        assert parser.result().body == b"part1part2"

    @pytest.mark.parametrize("status", [204, 304])
    def test_bodyless_status(self, status):
        parser = ResponseParser()
        parser.feed(f"HTTP/1.1 {status} X\r\nContent-Length: 10\r\n\r\n".encode())
        assert parser.done
        assert parser.result().body == b""

    def test_head_has_no_body(self):
        parser = ResponseParser(method="HEAD")
        parser.feed(b"HTTP/1.1 200 OK\r\nContent-Length: 1000\r\n\r\n")
        assert parser.done

    def test_interim_responses_skipped(self):
        parser = ResponseParser()
        parser.feed(
            b"HTTP/1.1 100 Continue\r\n\r\n"
            b"HTTP/1.1 103 Early Hints\r\nLink: </a.css>\r\n\r\n"
            b"HTTP/1.1 200 OK\r\nContent-Length: 2\r\n\r\nok"
        )
        result = parser.result()
        assert result.status_code == 200
        assert result.headers == [("Content-Length", "2")]

    def test_switching_protocols_is_final(self):
        parser = ResponseParser()
        parser.feed(b"HTTP/1.1 101 Switching Protocols\r\nUpgrade: websocket\r\n\r\n")
        assert parser.done
        assert parser.result().status_code == 101

    def test_folded_header_and_junk_line(self):
        parser = ResponseParser()
        parser.feed(b"HTTP/1.1 200 OK\r\nX-Long: a\r\n  b\r\nno-colon-here\r\nContent-Length: 0\r\n\r\n")
        assert parser.result().headers == [("X-Long", "a b"), ("Content-Length", "0")]

    def test_latin1_header_fallback(self):
        parser = ResponseParser()
        parser.feed(b"HTTP/1.1 200 OK\r\nX-Name: caf\xe9\r\nContent-Length: 0\r\n\r\n")
        assert parser.result().headers[0] == ("X-Name", "café")

    def test_reason_optional(self):
        parser = ResponseParser()
        parser.feed(b"HTTP/1.1 404\r\nContent-Length: 0\r\n\r\n")
        assert parser.result().reason == ""

    @pytest.mark.parametrize(
        "head",
        [b"SPDY/3 200 OK\r\n\r\n", b"HTTP/1.1 abc OK\r\n\r\n", b"HTTP/1.1\r\n\r\n", b"garbage\r\n\r\n"],
    )
    def test_bad_status_line(self, head):
        with pytest.raises(MalformedResponse):
            ResponseParser().feed(head)

    def test_invalid_content_length(self):
        with pytest.raises(MalformedResponse):
            ResponseParser().feed(b"HTTP/1.1 200 OK\r\nContent-Length: ten\r\n\r\n")

    def test_eof_before_separator(self):
        parser = ResponseParser()
        parser.feed(b"HTTP/1.1 200 OK\r\nContent-Length: 5\r\n")
        with pytest.raises(MalformedResponse):
            parser.feed_eof()

    def test_truncated_content_length_body(self):
        parser = ResponseParser()
        parser.feed(b"HTTP/1.1 200 OK\r\nContent-Length: 5\r\n\r\nhel")
        with pytest.raises(MalformedResponse):
            parser.feed_eof()

    def test_truncated_chunk(self):
        parser = ResponseParser()
        parser.feed(b"HTTP/1.1 200 OK\r\nTransfer-Encoding: chunked\r\n\r\n5\r\nhel")
        with pytest.raises(MalformedResponse):
            parser.feed_eof()

    def test_missing_final_trailer_line_tolerated(self):
        parser = ResponseParser()
        parser.feed(b"HTTP/1.1 200 OK\r\nTransfer-Encoding: chunked\r\n\r\n2\r\nhi\r\n0\r\n")
        parser.feed_eof()
        assert parser.result().body == b"hi"

    def test_bad_chunk_size(self):
        with pytest.raises(MalformedResponse):
            ResponseParser().feed(b"HTTP/1.1 200 OK\r\nTransfer-Encoding: chunked\r\n\r\nzz\r\n")

    def test_chunk_without_crlf_terminator(self):
        with pytest.raises(MalformedResponse):
            ResponseParser().feed(
                b"HTTP/1.1 200 OK\r\nTransfer-Encoding: chunked\r\n\r\n2\r\nhiXX0\r\n\r\n"
            )

    def test_result_before_done(self):
        parser = ResponseParser()
        parser.feed(b"HTTP/1.1 200 OK\r\n")
        with pytest.raises(MalformedResponse):
            parser.result()

    def test_byte_at_a_time(self):
        raw = b"HTTP/1.1 200 OK\r\nTransfer-Encoding: chunked\r\n\r\n4\r\nwiki\r\n5\r\npedia\r\n0\r\n\r\n"
        parser = ResponseParser()
        for index in range(len(raw)):
            parser.feed(raw[index : index + 1])
        assert parser.result().body == b"wikipedia"


def test_read_response_drives_parser_until_done():
    stream = _ChunkedStream(b"HTTP/1.1 200 OK\r\nContent-", b"Length: 3\r\n\r\nab", b"c", b"ignored")
    result = read_response(stream)
    assert result.body == b"abc"


def test_read_response_until_close():
    stream = _ChunkedStream(b"HTTP/1.1 200 OK\r\n\r\nbody", b"-rest")
    assert read_response(stream).body == b"body-rest"


def test_read_response_eof_before_headers():
    with pytest.raises(MalformedResponse):
        read_response(_ChunkedStream(b"HTTP/1.1 200"))
