"""
qdb.routes
~~~~~~~~~~
Route table and resource handlers for quotes and users.

Every protected route names the roles it needs.  The gate runs before the
handler; a DENY becomes a redirect to the login page.  Handlers that mutate
something on a moderator's behalf record it in the moderation log once the
store has confirmed the change.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

from .acls import ACLChecker, AuthorizationError, authorize
from .auth import (
    AlreadyLoggedIn,
    InvalidCredentials,
    PasswordMismatch,
    Session,
    SessionManager,
    UserNotFound,
)
from .logger import AccessLogger, ModerationLog
from .permissions import LOGGED_IN, Role, RoleLike
from .store import SQLITE_MAX_INT, DuplicateUser, PersistenceError, Quote, Store
from .web import HTTPError, Request, Response, esc

log = logging.getLogger(__name__)

LOGIN_PATH = "/user/login"

Handler = Callable[..., Response]


@dataclass(frozen=True)
class Route:
    method: str
    pattern: re.Pattern
    handler: Handler
    roles: Optional[Sequence[RoleLike]] = None  # None: public

    def match(self, path: str):
        return self.pattern.fullmatch(path)


def _compile(path: str) -> re.Pattern:
    return re.compile(re.sub(r"<(\w+)>", r"(?P<\1>\\d+)", path))


class QuoteBoard:
    def __init__(
        self,
        store: Store,
        sessions: SessionManager,
        moderation_log: ModerationLog,
        acl: Optional[ACLChecker] = None,
        access_log: Optional[AccessLogger] = None,
    ):
        self.store = store
        self.sessions = sessions
        self.moderation_log = moderation_log
        self.acl = acl or ACLChecker(sessions.registry)
        self.access_log = access_log
        self.routes: List[Route] = []

        self.add("GET", "/", self.index)
        self.add("GET", "/quote", self.to("/quotes/"))
        self.add("GET", "/quotes", self.to("/quotes/"))
        self.add("GET", "/quotes/", self.list_quotes)
        self.add("GET", "/quote/new", self.new_quote_form, [Role.POST_QUOTES])
        self.add("POST", "/quote/new", self.new_quote, [Role.POST_QUOTES])
        self.add("GET", "/quote/<id>", self.view_quote)
        self.add("GET", "/quote/<id>/edit", self.edit_quote_form, [Role.EDIT_QUOTES])
        self.add("POST", "/quote/<id>/edit", self.edit_quote, [Role.EDIT_QUOTES])
        self.add("GET", "/quote/<id>/delete", self.delete_quote_form, [Role.DELETE_QUOTES])
        self.add("POST", "/quote/<id>/delete", self.delete_quote, [Role.DELETE_QUOTES])
        self.add("POST", "/quote/<id>/approve", self.approve_quote, [Role.APPROVE_QUOTES])
        self.add("GET", "/moderate/queue", self.moderation_queue, [Role.APPROVE_QUOTES])

        self.add("GET", "/login", self.to(LOGIN_PATH))
        self.add("GET", "/register", self.to("/user/register"))
        self.add("GET", "/logout", self.to("/user/logout"))
        self.add("GET", LOGIN_PATH, self.login_form)
        self.add("POST", LOGIN_PATH, self.login)
        self.add("GET", "/user/register", self.register_form)
        self.add("POST", "/user/register", self.register)
        self.add("GET", "/user/settings", self.settings, [LOGGED_IN])
        self.add("GET", "/user/logout", self.logout, [LOGGED_IN])
        self.add("GET", "/user/change_pw", self.change_pw_form, [LOGGED_IN])
        self.add("POST", "/user/change_pw", self.change_pw, [LOGGED_IN])
        self.add("GET", "/user/delete", self.delete_user_form, [LOGGED_IN])
        self.add("POST", "/user/delete", self.delete_user, [LOGGED_IN])
        self.add("GET", "/user/list", self.list_users, [Role.LIST_USERS])
        self.add("GET", "/user/<id>/set_flags", self.set_flags_form, [Role.SET_FLAGS])
        self.add("POST", "/user/<id>/set_flags", self.set_flags, [Role.SET_FLAGS])

    # ------------------------------------------------------------------ #
    # dispatch
    # ------------------------------------------------------------------ #

    def add(
        self,
        method: str,
        path: str,
        handler: Handler,
        roles: Optional[Sequence[RoleLike]] = None,
    ) -> None:
        if roles is not None:
            self.acl.check_roles(roles)  # UnknownRole here aborts startup
        self.routes.append(Route(method, _compile(path), handler, roles))

    def handle(self, request: Request, session: Session) -> Response:
        try:
            route, params = self._resolve(request)
            if route.roles is not None:
                decision = self.acl.permit(session, route.roles)
                if not decision:
                    raise AuthorizationError.for_decision(decision)
            return route.handler(request, session, **params)
        except AuthorizationError as e:
            if self.access_log:
                self.access_log.deny(
                    session.username or "-", request.method, request.path, e.reason.value
                )
            return Response.redirect(LOGIN_PATH)
        except HTTPError as e:
            return Response.error(e.msg, e.status)
        except AlreadyLoggedIn:
            return Response.error("You're already logged in!", 409)
        except UserNotFound:
            return Response.error("No such user!", 404)
        except InvalidCredentials:
            return Response.error("User/password invalid :(", 401)
        except PasswordMismatch:
            return Response.error("Two new passwords didn't match!", 400)
        except DuplicateUser:
            return Response.error("That username is taken!", 409)
        except PersistenceError as e:
            log.error("persistence failure on %s %s: %s", request.method, request.path, e)
            return Response.error("Error saving your changes!", 500)

    def _resolve(self, request: Request):
        path_matched = False
        for route in self.routes:
            m = route.match(request.path)
            if not m:
                continue
            path_matched = True
            if route.method == request.method:
                return route, {k: int(v) for k, v in m.groupdict().items()}
        if path_matched:
            raise HTTPError(405, "Method Not Allowed")
        raise HTTPError(404, "Not Found")

    @staticmethod
    def to(location: str) -> Handler:
        def redirect(request: Request, session: Session) -> Response:
            return Response.redirect(location)

        return redirect

    # ------------------------------------------------------------------ #
    # viewing quotes
    # ------------------------------------------------------------------ #

    def index(self, request: Request, session: Session) -> Response:
        if session.logged_in:
            roles = ", ".join(session.roles(self.sessions.registry)) or "none"
            who = f"<p>Logged in as {esc(session.username)} (roles: {esc(roles)})</p>"
        else:
            who = '<p><a href="/user/login">Log in</a> or <a href="/user/register">register</a></p>'
        return Response.page(f'<h1>qdb</h1>\n{who}\n<p><a href="/quotes/">Quotes</a></p>')

    def view_quote(self, request: Request, session: Session, id: int) -> Response:
        quote = self.store.find_quote(id)
        if quote and (
            quote.approved or authorize(session, [Role.APPROVE_QUOTES], self.sessions.registry)
        ):
            return Response.page(_render_quote(quote))
        raise HTTPError(404, "No such quote!")

    def list_quotes(self, request: Request, session: Session) -> Response:
        quotes = self.store.list_approved(_page(request))
        body = "\n".join(_render_quote(q) for q in quotes) or "<p>No quotes yet.</p>"
        return Response.page(body)

    # ------------------------------------------------------------------ #
    # logins
    # ------------------------------------------------------------------ #

    def login_form(self, request: Request, session: Session) -> Response:
        return Response.page(
            '<form method="post" action="/user/login">'
            '<input name="name"><input name="password" type="password">'
            '<button>Log in</button></form>'
        )

    def login(self, request: Request, session: Session) -> Response:
        name, password = _require(request, "name", "password")
        try:
            self.sessions.login(session, name, password)
        except (UserNotFound, InvalidCredentials) as e:
            if self.access_log:
                self.access_log.auth_fail(request.peer, name, type(e).__name__)
            raise
        return Response.page(f"<h2> Successfully logged in as {esc(session.username)}! </h2>")

    def register_form(self, request: Request, session: Session) -> Response:
        return Response.page(
            '<form method="post" action="/user/register">'
            '<input name="name"><input name="password" type="password">'
            '<button>Register</button></form>'
        )

    def register(self, request: Request, session: Session) -> Response:
        name, password = _require(request, "name", "password")
        user = self.sessions.register(name, password)
        return Response.page(f"<h2>Successfully registered with username {esc(user.name)}!</h2>")

    # ------------------------------------------------------------------ #
    # own account
    # ------------------------------------------------------------------ #

    def settings(self, request: Request, session: Session) -> Response:
        user = self.sessions.current_user(session)
        roles = ", ".join(self.sessions.registry.roles_of(user.flags)) or "none"
        return Response.page(
            f"<h2>{esc(user.name)}</h2>\n<p>flags: {user.flags} ({esc(roles)})</p>\n"
            '<p><a href="/user/change_pw">Change password</a> '
            '<a href="/user/delete">Delete account</a></p>'
        )

    def logout(self, request: Request, session: Session) -> Response:
        self.sessions.logout(session)
        return Response.page("<h2> Session cleared! </h2>")

    def change_pw_form(self, request: Request, session: Session) -> Response:
        self.sessions.current_user(session)
        return Response.page(
            '<form method="post" action="/user/change_pw">'
            '<input name="old_password" type="password">'
            '<input name="password" type="password">'
            '<input name="password_confirm" type="password">'
            '<button>Change</button></form>'
        )

    def change_pw(self, request: Request, session: Session) -> Response:
        old, new, confirm = _require(request, "old_password", "password", "password_confirm")
        self.sessions.change_password(session, old, new, confirm)
        return Response.page("<h2>New password successfully saved! Re-login to try it out!</h2>")

    def delete_user_form(self, request: Request, session: Session) -> Response:
        return Response.page(
            '<form method="post" action="/user/delete">'
            '<button>Really delete my account</button></form>'
        )

    def delete_user(self, request: Request, session: Session) -> Response:
        self.sessions.delete_self(session)
        return Response.page(
            "<h2>Done! You're now logged out and your user has been deleted.</h2>"
        )

    # ------------------------------------------------------------------ #
    # managing quotes
    # ------------------------------------------------------------------ #

    def new_quote_form(self, request: Request, session: Session) -> Response:
        return Response.page(
            '<form method="post" action="/quote/new">'
            '<textarea name="quote"></textarea><button>Submit</button></form>'
        )

    def new_quote(self, request: Request, session: Session) -> Response:
        (text,) = _require(request, "quote")
        quote = self.store.create_quote(text, session.username)
        self._record(session, Role.POST_QUOTES, quote.id)
        return Response.redirect("/quotes/")

    def edit_quote_form(self, request: Request, session: Session, id: int) -> Response:
        quote = self._quote(id)
        return Response.page(
            f'<form method="post" action="/quote/{quote.id}/edit">'
            f'<input name="author" value="{esc(quote.author)}">'
            f'<textarea name="quote">{esc(quote.quote)}</textarea>'
            '<button>Save</button></form>'
        )

    def edit_quote(self, request: Request, session: Session, id: int) -> Response:
        author, text = _require(request, "author", "quote")
        quote = self._quote(id)
        quote.author, quote.quote = author, text
        if not self.store.save_quote(quote):
            raise HTTPError(500, "Error saving quote!")
        self._record(session, Role.EDIT_QUOTES, id)
        return Response.redirect(f"/quote/{id}")

    def delete_quote_form(self, request: Request, session: Session, id: int) -> Response:
        quote = self._quote(id)
        return Response.page(
            f"{_render_quote(quote)}\n"
            f'<form method="post" action="/quote/{quote.id}/delete"><button>Delete</button></form>'
        )

    def delete_quote(self, request: Request, session: Session, id: int) -> Response:
        self._quote(id)
        if not self.store.delete_quote(id):
            raise HTTPError(500, "Error deleting quote!")
        self._record(session, Role.DELETE_QUOTES, id)
        return Response.page(f"<h2> Destroyed quote {id} successfully. </h2>")

    def approve_quote(self, request: Request, session: Session, id: int) -> Response:
        quote = self._quote(id)
        quote.approved = True
        if not self.store.save_quote(quote):
            raise HTTPError(500, "Error saving quote!")
        self._record(session, Role.APPROVE_QUOTES, id)
        return Response.page(f"<h2> Successfully saved quote {id}! </h2>")

    def moderation_queue(self, request: Request, session: Session) -> Response:
        quotes = self.store.moderation_queue()
        if not quotes:
            return Response.page("<p>Moderation queue clear. :D</p>")
        return Response.page(
            "\n".join(
                f"{_render_quote(q)}\n"
                f'<form method="post" action="/quote/{q.id}/approve"><button>Approve</button></form>'
                for q in quotes
            )
        )

    # ------------------------------------------------------------------ #
    # managing users
    # ------------------------------------------------------------------ #

    def list_users(self, request: Request, session: Session) -> Response:
        registry = self.sessions.registry
        rows = "\n".join(
            f"<tr><td>{u.id}</td><td>{esc(u.name)}</td><td>{u.flags}</td>"
            f"<td>{esc(', '.join(registry.roles_of(u.flags)))}</td></tr>"
            for u in self.store.list_users(_page(request))
        )
        return Response.page(f"<table>\n{rows}\n</table>")

    def set_flags_form(self, request: Request, session: Session, id: int) -> Response:
        return Response.page(
            f'<form method="post" action="/user/{id}/set_flags">'
            '<input name="flags"><button>Save</button></form>'
        )

    def set_flags(self, request: Request, session: Session, id: int) -> Response:
        (raw,) = _require(request, "flags")
        try:
            flags = int(raw)
        except ValueError:
            raise HTTPError(400, "Invalid form data! 'flags' must be an integer") from None
        if flags < 0:
            raise HTTPError(400, "Invalid form data! 'flags' must not be negative")
        if flags > SQLITE_MAX_INT:
            raise HTTPError(400, "Invalid form data! 'flags' is too large")
        user = self.sessions.set_flags(id, flags, session)
        return Response.page(
            f"<h2> Successfully saved new flags {user.flags} to user {esc(user.name)} </h2>"
        )

    # ------------------------------------------------------------------ #
    # helpers
    # ------------------------------------------------------------------ #

    def _quote(self, quote_id: int) -> Quote:
        quote = self.store.find_quote(quote_id)
        if quote is None:
            raise HTTPError(404, "No such quote!")
        return quote

    def _record(self, session: Session, role: Role, on: object) -> None:
        self.moderation_log.record(session.username, ":" + role.tag, on)


def _require(request: Request, *names: str) -> List[str]:
    values = [request.param(n) for n in names]
    if any(v is None or v == "" for v in values):
        raise HTTPError(400, "Invalid request body!")
    return values


def _page(request: Request) -> int:
    try:
        return max(int(request.query.get("page", 1)), 1)
    except ValueError:
        return 1


def _render_quote(quote: Quote) -> str:
    return (
        f'<blockquote id="quote-{quote.id}"><pre>{esc(quote.quote)}</pre>'
        f"<footer>#{quote.id} by {esc(quote.author)}</footer></blockquote>"
    )
