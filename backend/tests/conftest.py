"""Shared fixtures: in-memory database, stores and an API client."""

import os

# Keep the application engine off the filesystem
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("LOG_FORMAT", "text")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from ridemetrics.config import Settings
from ridemetrics.database import get_db
from ridemetrics.main import app
from ridemetrics.models import Activity, Athlete, Base
from ridemetrics.services.activity_store import ActivityStore, StreamStore
from ridemetrics.services.training_load_service import TrainingLoadManager

DAY = 86400
# 2024-01-01T00:00:00Z, used as day zero in UTC based tests
T0 = 1704067200


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def store(db):
    return ActivityStore(db)


@pytest.fixture
def stream_store(db):
    return StreamStore(db)


@pytest.fixture
def test_settings():
    return Settings(
        DEFAULT_TIMEZONE="UTC",
        TRAINING_LOAD_MIN_WAIT=0.05,
        TRAINING_LOAD_MAX_WAIT=0.5,
        TRAINING_LOAD_MAX_SIZE=50,
    )


@pytest.fixture
def athlete(db):
    athlete = Athlete(name="Test Rider", timezone="UTC", ftp=250)
    db.add(athlete)
    db.commit()
    db.refresh(athlete)
    return athlete


@pytest.fixture
def make_activity(db, athlete):
    """Create activities with a preset TSS and optional training record."""

    def _make(ts, tss=None, training=None, **kwargs):
        activity = Activity(athlete_id=athlete.id, ts=ts, tss=tss, **kwargs)
        if training is not None:
            activity.set_training(training["atl"], training["ctl"])
        db.add(activity)
        db.commit()
        db.refresh(activity)
        return activity

    return _make


@pytest.fixture
def client(session_factory, test_settings):
    # Async so teardown runs on the event loop thread alongside the processors
    async def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        # Replaced after startup so processors use the test database; the
        # lifespan shuts down whichever manager is installed
        app.state.training_load_manager = TrainingLoadManager(session_factory, settings=test_settings)
        yield test_client
    app.dependency_overrides.clear()
