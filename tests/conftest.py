import os

os.environ.setdefault("LAYERSRANK_DATABASE_URL", "sqlite://")
os.environ.setdefault("LAYERSRANK_SCHEDULER_ENABLED", "false")
os.environ.setdefault("LAYERSRANK_LEADERBOARD_CACHE_SECONDS", "0")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from layersrank import models  # noqa: E402,F401
from layersrank.core.database import Base, build_engine, get_db  # noqa: E402
from layersrank.main import create_app  # noqa: E402
from layersrank.services import event_service  # noqa: E402


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'layersrank.db'}")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


@pytest.fixture
def session(session_factory):
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def client(session_factory):
    app = create_app()

    def _override():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = _override
    return TestClient(app)


@pytest.fixture
def record(session):
    """Append and commit an event, returning its id."""

    def _record(user_id, event_type="OPPORTUNITY", source="DIRECT", **kwargs):
        event_id = event_service.record(session, user_id=user_id, event_type=event_type, source=source, **kwargs)
        session.commit()
        return event_id

    return _record
