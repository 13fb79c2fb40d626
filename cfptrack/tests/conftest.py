"""Shared fixtures: an in-memory database, a couple of users, and an API client."""
from __future__ import annotations

from datetime import date

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from cfptrack.config import get_settings
from cfptrack.models import Base, Event, Proposal, Talk, User


@pytest.fixture()
def test_db():
    """SQLite in-memory database shared by every connection through StaticPool."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    TestSession = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return engine, TestSession


@pytest.fixture()
def session(test_db):
    _, TestSession = test_db
    sess = TestSession()
    try:
        yield sess
    finally:
        sess.close()


@pytest.fixture()
def alice(session: Session) -> User:
    user = User(name="Alice Example", email="alice@example.com")
    session.add(user)
    session.commit()
    return user


@pytest.fixture()
def bob(session: Session) -> User:
    user = User(name="Bob Example", email="bob@example.com")
    session.add(user)
    session.commit()
    return user


@pytest.fixture()
def event(session: Session) -> Event:
    ev = Event(name="PyCon Test", start_date=date(2030, 5, 1), location="Berlin")
    session.add(ev)
    session.commit()
    return ev


@pytest.fixture()
def talk(session: Session, alice: User) -> Talk:
    t = Talk(title="Typed SQL", abstract="SQLAlchemy 2 in practice", created_by_id=alice.id)
    session.add(t)
    session.commit()
    return t


@pytest.fixture()
def proposal(session: Session, alice: User, talk: Talk, event: Event) -> Proposal:
    p = Proposal(talk_id=talk.id, event_id=event.id, user_id=alice.id, status="draft", talk_type="regular")
    session.add(p)
    session.commit()
    return p


@pytest.fixture()
def client(test_db, monkeypatch):
    """FastAPI TestClient bound to the in-memory database."""
    _, TestSession = test_db
    # The app lifespan calls init_db(); keep it off the filesystem.
    monkeypatch.setenv("CFPTRACK_DATABASE_URL", "sqlite://")
    monkeypatch.setenv("CRON_SECRET", "s3cret")
    get_settings.cache_clear()
    from cfptrack.app import app, db_session

    def override_db_session():
        sess = TestSession()
        try:
            yield sess
        except Exception:
            sess.rollback()
            raise
        finally:
            sess.close()

    app.dependency_overrides[db_session] = override_db_session
    with TestClient(app, raise_server_exceptions=True) as c:
        yield c, TestSession
    app.dependency_overrides.clear()
    get_settings.cache_clear()