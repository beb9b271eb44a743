"""
Shared fixtures for the comment moderation test suite.

Everything runs against an in-memory SQLite database and a fresh channel
registry per test, so no external services (Google, a real DB) are needed.
"""

import os

# Configure BEFORE importing app modules - app.config reads these at import.
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["GOOGLE_CLIENT_ID"] = "test-client-id"
os.environ["STAFF_ROLES"] = "desk@paper.test:SECTION_HEAD,eic@paper.test:EDITOR_IN_CHIEF"
os.environ["COMMENT_REVIEW_ROLE"] = "SECTION_HEAD"

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.database import Base, get_db
from app.models.article import Article
from app.services.lexicon import Lexicon, LexiconMatcher
from app.services.notifications import ChannelRegistry, NotificationDispatcher, Principal, get_dispatcher


DESK = Principal(user_id="desk@paper.test", role="SECTION_HEAD")
EIC = Principal(user_id="eic@paper.test", role="EDITOR_IN_CHIEF")
READER = Principal(user_id="reader@example.com", role="READER")


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=eng)
    yield eng
    Base.metadata.drop_all(bind=eng)
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db_session(session_factory):
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def article(db_session):
    a = Article(title="Council passes budget", slug="council-passes-budget", comment_count=0)
    db_session.add(a)
    db_session.commit()
    db_session.refresh(a)
    return a


# ---------------------------------------------------------------------------
# Moderation fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def small_lexicon():
    return Lexicon.from_words(["damn", "idiot", "shit", "sh*t", "bull****", "puta ka"])


@pytest.fixture
def matcher(small_lexicon):
    return LexiconMatcher(small_lexicon)


# ---------------------------------------------------------------------------
# Notification fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def registry():
    return ChannelRegistry(queue_size=10)


@pytest.fixture
def dispatcher(registry):
    return NotificationDispatcher(registry)


# ---------------------------------------------------------------------------
# API fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def client(session_factory, dispatcher):
    """TestClient wired to the test DB and registry. Use login() to pick a caller."""
    from fastapi.testclient import TestClient
    from app.main import app

    def _get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def login():
    """Return a function that makes the given principal the authenticated caller."""
    from app.main import app
    from app.dependencies import get_optional_principal, get_principal

    def _login(principal: Principal):
        app.dependency_overrides[get_principal] = lambda: principal
        app.dependency_overrides[get_optional_principal] = lambda: principal
        return principal

    return _login
