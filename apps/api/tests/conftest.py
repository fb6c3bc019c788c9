"""
Pytest configuration and fixtures

Every test gets its own SQLite database file under tmp_path, so nothing
leaks between tests and no Postgres/Redis services are needed. Redis is
disabled by default; tests that exercise the cache patch in a FakeRedis.
"""
import base64
import os
import sys
from uuid import uuid4

import pytest

# Configure before anything imports core.config
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("LOG_FORMAT", "text")
os.environ.setdefault(
    "JUNCTION_WEBHOOK_SECRET",
    "whsec_" + base64.b64encode(b"junction-test-secret-0123456789").decode(),
)

# Add the parent directory to the path so we can import from services
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

import core.cache
import models  # noqa: F401  (registers tables)
from core.database import Base, get_db
from models import Athlete
from services.health_ingest import HealthIngestPipeline


@pytest.fixture(autouse=True)
def _redis_disabled(monkeypatch):
    """Caching degrades gracefully to a no-op when Redis is unavailable."""
    monkeypatch.setattr(core.cache, "get_redis_client", lambda: None)


@pytest.fixture
def engine(tmp_path):
    eng = create_engine(
        f"sqlite:///{tmp_path / 'ingest.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def test_athlete(db_session):
    athlete = Athlete(
        email=f"test_{uuid4()}@example.com",
        display_name="Test Athlete",
        webhook_key=f"hae-{uuid4().hex}",
        junction_user_id=f"junction-{uuid4().hex}",
    )
    db_session.add(athlete)
    db_session.commit()
    db_session.refresh(athlete)
    return athlete


@pytest.fixture
def pipeline(session_factory):
    """Single worker: SQLite serializes writers anyway."""
    return HealthIngestPipeline(session_factory, max_workers=1, allowlist=[], blocklist=[])


@pytest.fixture
def client(session_factory, pipeline):
    from main import app
    from routers.health_webhook import get_ingest_pipeline

    def override_get_db():
        db = session_factory()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_ingest_pipeline] = lambda: pipeline
    yield TestClient(app)
    app.dependency_overrides.clear()
