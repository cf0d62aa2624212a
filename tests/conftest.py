import os

# Settings are read at import time; give them test values first.
os.environ.setdefault("OPENWEATHER_API_KEY", "test-key")
os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from resilient_weather.db import Base
from resilient_weather.forecast_service import ForecastService
from tests.factories import FakeClock, FakeWeatherClient, make_forecast


@pytest.fixture()
def db_session():
    """In-memory SQLite shared across threads (TestClient runs the app in a worker thread)."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    Session = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = Session()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def fake_client():
    client = FakeWeatherClient()
    client.samples = make_forecast()
    return client


@pytest.fixture()
def service(fake_client, clock):
    return ForecastService(fake_client, forecast_days=3, clock=clock)
