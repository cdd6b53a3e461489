"""Shared fixtures: a throw-away sqlite database, log files and seeded users."""

import pytest

from qdb.auth import Session, SessionManager, hash_password
from qdb.config import Config
from qdb.logger import ModerationLog
from qdb.permissions import Role
from qdb.store import Store

# Cheap hashes keep the suite fast; verify_password reads the count from the hash.
FAST_ITERATIONS = 1_000


@pytest.fixture
def store(tmp_path):
    s = Store(str(tmp_path / "qdb.sqlite3"), page_size=10)
    s.initialize_db()
    yield s
    s.close()


@pytest.fixture
def moderation_log_path(tmp_path):
    return tmp_path / "log" / "moderation.log"


@pytest.fixture
def moderation_log(moderation_log_path):
    ml = ModerationLog(moderation_log_path)
    yield ml
    ml.close()


@pytest.fixture
def read_moderation_log(moderation_log_path):
    def _read():
        if not moderation_log_path.exists():
            return []
        return moderation_log_path.read_text(encoding="utf-8").splitlines()

    return _read


@pytest.fixture
def manager(store, moderation_log):
    return SessionManager(store, moderation_log)


@pytest.fixture
def make_user(store):
    def _make(name="alice", password="hunter2", flags=0):
        return store.create_user(name, hash_password(password, FAST_ITERATIONS), flags)

    return _make


@pytest.fixture
def alice_session():
    """Logged-in session holding post_quotes | delete_quotes (flags=5)."""
    return Session(username="alice", user_id=1, flags=int(Role.POST_QUOTES | Role.DELETE_QUOTES))


@pytest.fixture
def anonymous_session():
    return Session()


@pytest.fixture
def config(tmp_path):
    return Config(
        listen_host="127.0.0.1",
        listen_port=0,
        use_tls=False,
        tls_cert="server.pem",
        tls_key="server.key",
        db_path=str(tmp_path / "qdb.sqlite3"),
        moderation_log_path=str(tmp_path / "log" / "moderation.log"),
        access_log_path=str(tmp_path / "log" / "access.log"),
        page_size=10,
    )
