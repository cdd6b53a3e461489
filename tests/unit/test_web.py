"""
Unit tests for request parsing and response encoding.
"""

import asyncio

import pytest

from qdb.web import HTTPError, Response, read_request


def _parse(raw: bytes):
    async def go():
        reader = asyncio.StreamReader()
        reader.feed_data(raw)
        reader.feed_eof()
        return await read_request(reader)

    return asyncio.run(go())


class TestReadRequest:
    def test_get_with_query_and_cookie(self):
        request = _parse(
            b"GET /quotes/?page=2 HTTP/1.1\r\n"
            b"Host: localhost\r\n"
            b"Cookie: qdb_session=abc123; other=x\r\n"
            b"\r\n"
        )
        assert request.method == "GET"
        assert request.path == "/quotes/"
        assert request.query == {"page": "2"}
        assert request.cookies["qdb_session"] == "abc123"

    def test_form_body(self):
        body = b"name=alice&password=p%40ss"
        request = _parse(
            b"POST /user/login HTTP/1.1\r\n"
            b"Content-Type: application/x-www-form-urlencoded\r\n"
            b"Content-Length: " + str(len(body)).encode() + b"\r\n\r\n" + body
        )
        assert request.form == {"name": "alice", "password": "p@ss"}
        assert request.param("name") == "alice"

    def test_form_wins_over_query(self):
        body = b"flags=3"
        request = _parse(
            b"POST /user/1/set_flags?flags=63 HTTP/1.1\r\n"
            b"Content-Type: application/x-www-form-urlencoded\r\n"
            b"Content-Length: 7\r\n\r\n" + body
        )
        assert request.param("flags") == "3"

    @pytest.mark.parametrize(
        "raw,status",
        [
            (b"", 400),
            (b"GARBAGE\r\n\r\n", 400),
            (b"POST / HTTP/1.1\r\nContent-Length: nope\r\n\r\n", 400),
            (b"POST / HTTP/1.1\r\nContent-Length: 10\r\n\r\nshort", 400),
            (b"POST / HTTP/1.1\r\nContent-Length: 99999999\r\n\r\n", 413),
        ],
    )
    def test_bad_requests(self, raw, status):
        with pytest.raises(HTTPError) as exc:
            _parse(raw)
        assert exc.value.status == status


class TestResponse:
    def test_redirect(self):
        raw = Response.redirect("/user/login").encode()
        assert raw.startswith(b"HTTP/1.1 303 See Other\r\n")
        assert b"Location: /user/login\r\n" in raw
        assert raw.endswith(b"Content-Length: 0\r\nConnection: close\r\n\r\n")

    def test_error_page_escapes(self):
        response = Response.error("<script>", 400)
        assert "&lt;script&gt;" in response.body
        assert response.encode().startswith(b"HTTP/1.1 400 Bad Request\r\n")
