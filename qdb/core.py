"""
qdb.core
~~~~~~~~
Non-blocking HTTP server for the quote board: one request per connection,
session cookie in, route table, session cookie out, access log.
"""

from __future__ import annotations

import asyncio
import logging
import ssl
import time
from typing import Tuple

from .acls import ACLChecker
from .auth import Session, SessionManager
from .config import Config
from .logger import AccessLogger, ModerationLog
from .permissions import DEFAULT_REGISTRY
from .routes import QuoteBoard
from .sessions import COOKIE_NAME, SessionStore
from .store import Store
from .web import HTTPError, Request, Response, read_request, write_response

log = logging.getLogger(__name__)


def run_server(config: Config) -> None:
    server = QuoteBoardServer(config)
    try:
        asyncio.run(server.serve_forever())
    except KeyboardInterrupt:
        print("\n▸ qdb shut down.")
    finally:
        server.close()


class QuoteBoardServer:
    def __init__(self, cfg: Config) -> None:
        self.cfg = cfg
        self.store = Store(cfg.db_path, page_size=cfg.page_size)
        self.store.initialize_db()
        self.moderation_log = ModerationLog(cfg.moderation_log_path)
        self.access_log = AccessLogger(cfg.access_log_path)
        self.session_store = SessionStore(ttl=cfg.session_ttl)
        self.sessions = SessionManager(self.store, self.moderation_log, DEFAULT_REGISTRY)
        self.app = QuoteBoard(
            self.store,
            self.sessions,
            self.moderation_log,
            ACLChecker(DEFAULT_REGISTRY),
            self.access_log,
        )

    async def serve_forever(self) -> None:
        server = await self.start()

        bind_str = ", ".join(str(s.getsockname()) for s in server.sockets)
        print(f"▸ qdb listening on {bind_str}  (TLS={self.cfg.use_tls})")

        async with server:
            await server.serve_forever()

    async def start(self) -> asyncio.Server:
        ssl_ctx = _server_ssl_context(self.cfg) if self.cfg.use_tls else None
        return await asyncio.start_server(
            self._handle_client,
            host=self.cfg.listen_host,
            port=self.cfg.listen_port,
            ssl=ssl_ctx,
        )

    def process(self, request: Request) -> Response:
        """Run *request* against the route table under its session cookie."""
        return self._dispatch(request)[0]

    def _dispatch(self, request: Request) -> Tuple[Response, Session]:
        token, session = self.session_store.get(request.cookies.get(COOKIE_NAME))
        user_id = session.user_id
        response = self.app.handle(request, session)
        if user_id is not None and not session.logged_in:
            if self.store.find_user_by_id(user_id) is None:
                # account deleted: other clients lose their sessions too
                self.session_store.discard_user(user_id)
        cookie = self.session_store.sync(token, session)
        if cookie is not None:
            response.headers.append(("Set-Cookie", SessionStore.cookie(cookie)))
        return response, session

    async def _handle_client(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        start_ts = time.time()
        peer = writer.get_extra_info("peername")
        peer_ip = peer[0] if peer else "-"
        request = None
        user = "-"

        try:
            request = await read_request(reader)
            request.peer = peer_ip
            response, session = self._dispatch(request)
            user = session.username or "-"
        except HTTPError as e:
            response = Response.error(e.msg, e.status)
        except Exception:
            log.exception("unhandled error for %s", peer_ip)
            response = Response.error("Internal Server Error", 500)

        try:
            await write_response(writer, response)
        except ConnectionResetError:
            pass
        finally:
            self.access_log.end(
                user,
                peer_ip,
                request.method if request else "-",
                request.path if request else "-",
                response.status,
                int((time.time() - start_ts) * 1000),
            )
            writer.close()
            try:
                await writer.wait_closed()
            except ConnectionResetError:
                pass

    def close(self) -> None:
        self.store.close()
        self.moderation_log.close()
        self.access_log.close()


def _server_ssl_context(cfg: Config) -> ssl.SSLContext:
    ctx = ssl.create_default_context(ssl.Purpose.CLIENT_AUTH)
    ctx.load_cert_chain(cfg.tls_cert, cfg.tls_key)
    return ctx
