import os
import tempfile
from datetime import datetime, timedelta

# must run before whereto.config is imported
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("LOG_DIR", tempfile.mkdtemp(prefix="whereto-logs-"))
os.environ.setdefault("CATALOG_BACKEND", "sql")

import pytest
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from whereto.db import City, VenueOverride, VenuePartner, VenueRecord, init_db, make_engine
from whereto.services.catalog_service import SqlCatalogGateway
from whereto.services.plan_service import PlanService

CENTER = (47.0104, 28.8638)


class FakeClock:
    """Deterministic clock: every call advances one second"""

    def __init__(self, start=datetime(2026, 10, 19, 18, 0, 0)):
        self.now = start

    def __call__(self):
        self.now += timedelta(seconds=1)
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def engine():
    eng = make_engine("sqlite://", poolclass=StaticPool)
    init_db(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    yield session
    session.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def catalog(db):
    return SqlCatalogGateway(db)


@pytest.fixture
def service(db, catalog, clock):
    return PlanService(db, catalog, clock=clock)


@pytest.fixture
def add_venue(db):
    """Insert a catalog venue; returns its id"""

    def _add(name, lat=CENTER[0], lng=CENTER[1], rating=4.5, categories=("dinner",),
             partner=False, override=None, status="active", city_id=None):
        venue = VenueRecord(
            name=name,
            address=f"{name} street 1",
            lat=lat,
            lng=lng,
            rating=rating,
            categories=list(categories),
            status=status,
            city_id=city_id,
        )
        db.add(venue)
        db.flush()
        if partner:
            db.add(VenuePartner(venue_id=venue.id, is_active=True))
        if override:
            db.add(VenueOverride(venue_id=venue.id, **override))
        db.commit()
        return venue.id

    return _add


@pytest.fixture
def add_city(db):
    def _add(name, lat, lng):
        city = City(name=name, center_lat=lat, center_lng=lng)
        db.add(city)
        db.commit()
        return city.id

    return _add


@pytest.fixture
def venues(add_venue):
    """Three venues around the default center"""
    return {
        "a": add_venue("Alpha", rating=4.8, partner=True),
        "b": add_venue("Bravo", lat=47.0150, lng=28.8700, rating=4.2),
        "c": add_venue("Charlie", lat=47.0300, lng=28.8300, rating=3.9),
    }


@pytest.fixture
def make_plan(service):
    def _make(initiator="u1", **kwargs):
        kwargs.setdefault("chat_id", "chat-1")
        kwargs.setdefault("date", datetime(2026, 10, 24).date())
        kwargs.setdefault("time", "19:00")
        kwargs.setdefault("format", "dinner")
        return service.create_plan(initiator_id=initiator, **kwargs)

    return _make
