"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

import os

# ---------------------------------------------------------------------------
# Ensure a valid JWT_SECRET is always set for test runs.
# This must happen before any import of agora.api.deps which validates
# the secret at module-load time.
# ---------------------------------------------------------------------------
_TEST_JWT_SECRET = "test-secret-for-pytest-only-" + "x" * 40  # > 32 chars
os.environ.setdefault("JWT_SECRET", _TEST_JWT_SECRET)

import pytest  # noqa: E402
from sqlalchemy import Engine, create_engine  # noqa: E402

from agora.config import AgoraConfig  # noqa: E402
from agora.database.engine import get_session, init_db  # noqa: E402
from agora.database.models import Profile, UserRole  # noqa: E402
from agora.realtime.notify import attach_manager, detach_manager  # noqa: E402
from agora.realtime.subscriptions import SubscriptionManager  # noqa: E402
from agora.services.storage_service import ObjectStorage  # noqa: E402
from agora.session import SessionContext  # noqa: E402

ALICE = "00000000-0000-0000-0000-00000000000a"
BOB = "00000000-0000-0000-0000-00000000000b"
CAROL = "00000000-0000-0000-0000-00000000000c"
ADMIN = "00000000-0000-0000-0000-0000000000ad"
MOD = "00000000-0000-0000-0000-0000000000d0"


@pytest.fixture
def db_engine(tmp_path) -> Engine:
    """A file-backed SQLite engine with all Agora tables.

    A file (not ``sqlite://`` + StaticPool) so that every thread gets its own
    connection: feeds re-fetch from commit hooks and ``FollowPanel`` reads
    on a thread pool.
    """
    engine = create_engine(
        f"sqlite:///{tmp_path / 'agora-test.db'}",
        echo=False,
        connect_args={"check_same_thread": False},
    )
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def manager(db_engine: Engine):
    """A SubscriptionManager receiving every commit on ``db_engine``."""
    mgr = SubscriptionManager()
    attach_manager(db_engine, mgr)
    yield mgr
    detach_manager(db_engine, mgr)
    mgr.close()


@pytest.fixture
def storage(tmp_path) -> ObjectStorage:
    return ObjectStorage(tmp_path / "storage", public_url="/api/storage", max_bytes=1024)


def seed_profile(
    engine: Engine,
    user_id: str,
    username: str | None = None,
    *,
    full_name: str | None = None,
    role: str | None = None,
) -> str:
    """Insert a profile (and optionally a role) and return its id."""
    with get_session(engine) as session:
        session.add(Profile(id=user_id, username=username, full_name=full_name))
        if role is not None:
            session.add(UserRole(user_id=user_id, role=role))
    return user_id


@pytest.fixture
def users(db_engine: Engine) -> dict[str, str]:
    """alice, bob, carol (plain users), admin and mod."""
    seed_profile(db_engine, ALICE, "alice", full_name="Alice Anders")
    seed_profile(db_engine, BOB, "bob", full_name="Bob Brown")
    seed_profile(db_engine, CAROL, "carol")
    seed_profile(db_engine, ADMIN, "root", full_name="Ada Admin", role="admin")
    seed_profile(db_engine, MOD, "mod", role="moderator")
    return {"alice": ALICE, "bob": BOB, "carol": CAROL, "admin": ADMIN, "mod": MOD}


def as_user(user_id: str) -> SessionContext:
    return SessionContext.for_user(user_id)


class NoticeRecorder:
    """Notifier that keeps every Notice for assertions."""

    def __init__(self) -> None:
        self.notices = []

    def __call__(self, notice) -> None:
        self.notices.append(notice)

    @property
    def titles(self) -> list[str]:
        return [n.title for n in self.notices]


@pytest.fixture
def notices() -> NoticeRecorder:
    return NoticeRecorder()


# ---------------------------------------------------------------------------
# API fixtures
# ---------------------------------------------------------------------------
def make_token(sub: str, **claims) -> str:
    """Create a signed access token.  Usable as a factory in any test."""
    import jwt

    from agora.api.deps import JWT_ALGORITHM, JWT_SECRET

    return jwt.encode({"sub": sub, **claims}, JWT_SECRET, algorithm=JWT_ALGORITHM)


def auth(user_id: str) -> dict:
    return {"Authorization": f"Bearer {make_token(user_id)}"}


@pytest.fixture
def test_config() -> AgoraConfig:
    return AgoraConfig(
        community_name="Agora Test",
        api_port=8000,
        storage_public_url="/api/storage",
        search_limit=5,
    )


@pytest.fixture
def client(db_engine, manager, storage, test_config):
    """FastAPI TestClient wired to the test engine, manager and storage."""
    from fastapi.testclient import TestClient

    from agora.api.deps import get_config, get_engine, get_manager, get_storage
    from agora.api.main import app

    app.dependency_overrides[get_engine] = lambda: db_engine
    app.dependency_overrides[get_manager] = lambda: manager
    app.dependency_overrides[get_storage] = lambda: storage
    app.dependency_overrides[get_config] = lambda: test_config
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()
