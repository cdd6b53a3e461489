"""
qdb.web
~~~~~~~
Just enough HTTP/1.1 for the quote board: read one request (head plus a
``Content-Length`` body), write one response, close.
"""

from __future__ import annotations

import asyncio
import html
from dataclasses import dataclass, field
from http.cookies import CookieError, SimpleCookie
from typing import Dict, List, Optional, Tuple
from urllib.parse import parse_qs, urlsplit

CRLF = b"\r\n"
MAX_BODY = 1_048_576

_REASONS = {
    200: "OK",
    303: "See Other",
    400: "Bad Request",
    401: "Unauthorized",
    404: "Not Found",
    405: "Method Not Allowed",
    409: "Conflict",
    413: "Payload Too Large",
    500: "Internal Server Error",
}


class HTTPError(Exception):
    def __init__(self, status: int, msg: str):
        self.status = status
        self.msg = msg
        super().__init__(f"{status} {msg}")


@dataclass
class Request:
    method: str
    path: str
    query: Dict[str, str] = field(default_factory=dict)
    headers: Dict[str, str] = field(default_factory=dict)
    form: Dict[str, str] = field(default_factory=dict)
    cookies: Dict[str, str] = field(default_factory=dict)
    peer: str = "-"

    def param(self, name: str) -> Optional[str]:
        """Form field first, then query string."""
        if name in self.form:
            return self.form[name]
        return self.query.get(name)


@dataclass
class Response:
    status: int = 200
    body: str = ""
    headers: List[Tuple[str, str]] = field(default_factory=list)

    @classmethod
    def redirect(cls, location: str) -> "Response":
        return cls(303, "", [("Location", location)])

    @classmethod
    def page(cls, fragment: str, status: int = 200) -> "Response":
        return cls(status, f"<!doctype html>\n<html><body>\n{fragment}\n</body></html>\n")

    @classmethod
    def error(cls, message: str, status: int) -> "Response":
        return cls.page(f"<h2>Error</h2>\n<p>{esc(message)}</p>", status)

    def encode(self) -> bytes:
        body = self.body.encode("utf-8")
        reason = _REASONS.get(self.status, "Error")
        head = f"HTTP/1.1 {self.status} {reason}\r\n"
        if body:
            head += "Content-Type: text/html; charset=utf-8\r\n"
        for k, v in self.headers:
            head += f"{k}: {v}\r\n"
        head += f"Content-Length: {len(body)}\r\nConnection: close\r\n\r\n"
        return head.encode("latin-1") + body


def esc(text: object) -> str:
    return html.escape(str(text))


async def read_request(reader: asyncio.StreamReader) -> Request:
    req_line, headers = await _read_request_head(reader)
    method, target, _ = _parse_request_line(req_line)
    parts = urlsplit(target)

    body = b""
    length = headers.get("content-length")
    if length:
        try:
            n = int(length)
        except ValueError:
            raise HTTPError(400, "Bad Request: invalid Content-Length") from None
        if n < 0:
            raise HTTPError(400, "Bad Request: invalid Content-Length")
        if n > MAX_BODY:
            raise HTTPError(413, "Payload Too Large")
        try:
            body = await reader.readexactly(n)
        except asyncio.IncompleteReadError:
            raise HTTPError(400, "Bad Request: body shorter than Content-Length") from None

    form = {}
    if body and headers.get("content-type", "").startswith("application/x-www-form-urlencoded"):
        form = _flatten(parse_qs(body.decode("utf-8", "replace"), keep_blank_values=True))

    return Request(
        method=method.upper(),
        path=parts.path or "/",
        query=_flatten(parse_qs(parts.query, keep_blank_values=True)),
        headers=headers,
        form=form,
        cookies=_parse_cookies(headers.get("cookie", "")),
    )


async def write_response(writer: asyncio.StreamWriter, response: Response) -> None:
    writer.write(response.encode())
    await writer.drain()


async def _read_request_head(reader: asyncio.StreamReader) -> Tuple[bytes, Dict[str, str]]:
    head = b""
    while True:
        line = await reader.readline()
        if not line:
            raise HTTPError(400, "Bad Request: EOF before headers complete")
        head += line
        if line == CRLF:
            break

    lines = head.split(CRLF)[:-1]
    if not lines or not lines[0]:
        raise HTTPError(400, "Bad Request: empty head")

    req_line = lines[0]
    hdrs = {}
    for raw in lines[1:]:
        if b":" in raw:
            k, v = raw.split(b":", 1)
            hdrs[k.decode("latin-1").strip().lower()] = v.decode("latin-1").strip()
    return req_line, hdrs


def _parse_request_line(line: bytes) -> Tuple[str, str, str]:
    try:
        method, target, version = line.decode("latin-1").strip().split()
    except ValueError:
        raise HTTPError(400, "Bad Request: malformed request-line") from None
    return method, target, version


def _flatten(parsed: Dict[str, List[str]]) -> Dict[str, str]:
    # Last value wins, like a plain form post.
    return {k: v[-1] for k, v in parsed.items()}


def _parse_cookies(raw: str) -> Dict[str, str]:
    jar = SimpleCookie()
    try:
        jar.load(raw)
    except CookieError:
        return {}
    return {k: m.value for k, m in jar.items()}
