import os

os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest  # noqa: E402
from fastapi import Request  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

import Advisor.models  # noqa: E402,F401
from Advisor.app import create_app  # noqa: E402
from Advisor.auth import get_requester_id  # noqa: E402
from Advisor.database import Base, get_db, make_engine  # noqa: E402
from Advisor.errors import Unauthorized  # noqa: E402


def _requester_from_header(request: Request) -> str:
    user_id = request.headers.get("X-Test-User")
    if not user_id:
        raise Unauthorized()
    return user_id


@pytest.fixture
def engine(tmp_path):
    """A fresh SQLite database file per test."""
    eng = make_engine(f"sqlite:///{tmp_path / 'advisor.db'}")
    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def app(session_factory):
    """App wired to the test database; the acting user comes from the X-Test-User header."""
    application = create_app(create_tables=False)

    def _get_test_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    application.dependency_overrides[get_db] = _get_test_db
    application.dependency_overrides[get_requester_id] = _requester_from_header
    return application


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client
