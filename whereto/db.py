# db.py
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    create_engine,
    event,
    text,
)
from sqlalchemy.orm import declarative_base, relationship, sessionmaker

from whereto.config import settings


def utcnow() -> datetime:
    """Naive UTC timestamp (SQLite drops tzinfo, so we store naive everywhere)"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    return str(uuid.uuid4())


def make_engine(url: str, **kwargs):
    if not url.startswith("sqlite"):
        return create_engine(url, **kwargs)

    kwargs.setdefault("connect_args", {"check_same_thread": False})
    sqlite_engine = create_engine(url, **kwargs)

    # pysqlite opens transactions lazily, which breaks SAVEPOINT; emit BEGIN ourselves
    @event.listens_for(sqlite_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(sqlite_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return sqlite_engine


engine = make_engine(settings.database_url)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


class Plan(Base):
    __tablename__ = "plans"

    id = Column(String(36), primary_key=True, default=new_id)
    chat_id = Column(String(64), nullable=False, index=True)
    initiator_id = Column(String(255), nullable=False, index=True)
    date = Column(Date, nullable=False, index=True)
    time = Column(String(5), nullable=False)
    area = Column(String(255))  # area name, "midpoint" or "city-center"
    city_id = Column(String(36))
    location_lat = Column(Float)
    location_lng = Column(Float)
    budget = Column(String(10))  # "$", "$$", "$$$"
    format = Column(String(50))  # "dinner", "bar", "coffee", ...
    status = Column(String(20), nullable=False, default="open", index=True)
    voting_ends_at = Column(DateTime)
    winning_venue_id = Column(String(36))
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    participants = relationship(
        "Participant",
        back_populates="plan",
        cascade="all, delete-orphan",
        order_by="Participant.joined_at",
    )
    votes = relationship(
        "Vote",
        back_populates="plan",
        cascade="all, delete-orphan",
        order_by="Vote.started_at",
    )


class Participant(Base):
    __tablename__ = "participants"
    __table_args__ = (UniqueConstraint("plan_id", "user_id", name="uq_participants_plan_user"),)

    id = Column(String(36), primary_key=True, default=new_id)
    plan_id = Column(String(36), ForeignKey("plans.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String(255), nullable=False, index=True)
    preferences = Column(JSON)
    location_lat = Column(Float)
    location_lng = Column(Float)
    joined_at = Column(DateTime, nullable=False, default=utcnow)

    plan = relationship("Plan", back_populates="participants")


class Vote(Base):
    """One voting round of a plan"""

    __tablename__ = "votes"
    __table_args__ = (
        # at most one open round per plan
        Index(
            "uq_votes_open_round",
            "plan_id",
            unique=True,
            sqlite_where=text("status = 'open'"),
            postgresql_where=text("status = 'open'"),
        ),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    plan_id = Column(String(36), ForeignKey("plans.id", ondelete="CASCADE"), nullable=False, index=True)
    status = Column(String(20), nullable=False, default="open")
    started_at = Column(DateTime, nullable=False, default=utcnow)
    ended_at = Column(DateTime)
    winner_venue_id = Column(String(36))

    plan = relationship("Plan", back_populates="votes")
    casts = relationship("VoteCast", back_populates="vote", cascade="all, delete-orphan")


class VoteCast(Base):
    __tablename__ = "vote_casts"
    __table_args__ = (UniqueConstraint("vote_id", "user_id", name="uq_vote_casts_vote_user"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    vote_id = Column(String(36), ForeignKey("votes.id", ondelete="CASCADE"), nullable=False, index=True)
    plan_id = Column(String(36), ForeignKey("plans.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String(255), nullable=False)
    venue_id = Column(String(36), nullable=False, index=True)
    cast_at = Column(DateTime, nullable=False, default=utcnow)

    vote = relationship("Vote", back_populates="casts")


# Catalog tables, read by SqlCatalogGateway


class City(Base):
    __tablename__ = "cities"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(255), nullable=False)
    center_lat = Column(Float, nullable=False)
    center_lng = Column(Float, nullable=False)


class VenueRecord(Base):
    __tablename__ = "venues"

    id = Column(String(36), primary_key=True, default=new_id)
    city_id = Column(String(36), ForeignKey("cities.id", ondelete="CASCADE"), index=True)
    name = Column(String(255), nullable=False)
    address = Column(Text, nullable=False, default="")
    lat = Column(Float, index=True)
    lng = Column(Float, index=True)
    categories = Column(JSON, default=list)
    rating = Column(Float)
    rating_count = Column(Integer)
    photo_refs = Column(JSON, default=list)
    hours = Column(JSON)
    status = Column(String(20), nullable=False, default="active")
    created_at = Column(DateTime, nullable=False, default=utcnow)

    override = relationship("VenueOverride", uselist=False, back_populates="venue", cascade="all, delete-orphan")
    partner = relationship("VenuePartner", uselist=False, back_populates="venue", cascade="all, delete-orphan")


class VenueOverride(Base):
    """Editorial corrections applied to a venue at read time"""

    __tablename__ = "venue_overrides"

    id = Column(Integer, primary_key=True, autoincrement=True)
    venue_id = Column(String(36), ForeignKey("venues.id", ondelete="CASCADE"), nullable=False, unique=True)
    name_override = Column(String(255))
    address_override = Column(Text)
    hours_override = Column(JSON)
    pin_lat = Column(Float)
    pin_lng = Column(Float)
    category_overrides = Column(JSON)
    hidden = Column(Boolean, nullable=False, default=False)
    note = Column(Text)  # editor remark, never shown to users
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    venue = relationship("VenueRecord", back_populates="override")


class VenuePartner(Base):
    __tablename__ = "venue_partners"

    id = Column(Integer, primary_key=True, autoincrement=True)
    venue_id = Column(String(36), ForeignKey("venues.id", ondelete="CASCADE"), nullable=False, unique=True)
    is_active = Column(Boolean, nullable=False, default=True)

    venue = relationship("VenueRecord", back_populates="partner")


# DB init
def init_db(bind=None):
    Base.metadata.create_all(bind=bind or engine)


# Per-request DB session
def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
