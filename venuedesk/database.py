"""
Database schema and connection management.

Uses SQLite with SQLAlchemy. The workflow engine never holds a session
across store calls, so nothing here assumes multi-statement atomicity.
"""

import uuid
from datetime import datetime
from pathlib import Path
from sqlalchemy import create_engine, Column, String, DateTime, Boolean, Integer, Text, JSON, ForeignKey
from sqlalchemy.orm import declarative_base, sessionmaker

Base = declarative_base()

ITEM_TYPES = ("worker", "venue")
ENTITY_STATUSES = ("pending", "approved", "rejected", "removed")
REVIEW_STATUSES = ("pending", "approved", "rejected")
ROLES = ("admin", "moderator", "owner", "user")


def new_id() -> str:
    return str(uuid.uuid4())


class RowMixin:
    """Plain-dict export so rows never leave a session attached."""

    def to_dict(self) -> dict:
        return {c.name: getattr(self, c.name) for c in self.__table__.columns}


class User(RowMixin, Base):
    """Account as seen by the engine. Owned by the identity service."""

    __tablename__ = "users"

    id = Column(String, primary_key=True, default=new_id)
    pseudonym = Column(String, nullable=False)
    role = Column(String, nullable=False, default="user")  # admin, moderator, owner, user
    account_type = Column(String, nullable=True)  # regular, employee, establishment_owner
    created_at = Column(DateTime, nullable=False, default=datetime.now)


class Worker(RowMixin, Base):
    """Employee profile."""

    __tablename__ = "workers"

    id = Column(String, primary_key=True, default=new_id)
    name = Column(String, nullable=False)
    nickname = Column(String)
    age = Column(Integer)
    sex = Column(String, nullable=False)
    nationality = Column(JSON)  # list of at most two names
    description = Column(Text)
    photos = Column(JSON)
    social_media = Column(JSON)
    is_freelance = Column(Boolean, nullable=False, default=False)
    status = Column(String, nullable=False, default="pending")
    created_by = Column(String, ForeignKey("users.id"), nullable=False)
    user_id = Column(String, ForeignKey("users.id"), nullable=True)  # linked self account
    created_at = Column(DateTime, nullable=False, default=datetime.now)
    updated_at = Column(DateTime, nullable=False, default=datetime.now, onupdate=datetime.now)


class Venue(RowMixin, Base):
    """Establishment."""

    __tablename__ = "venues"

    id = Column(String, primary_key=True, default=new_id)
    name = Column(String, nullable=False)
    address = Column(String, nullable=False)
    zone = Column(String, nullable=False)
    category = Column(String, nullable=False)  # e.g. Nightclub, Bar, GoGo Bar
    description = Column(Text)
    phone = Column(String)
    website = Column(String)
    logo_url = Column(String)
    ladydrink = Column(String)
    barfine = Column(String)
    rooms = Column(String)
    status = Column(String, nullable=False, default="pending")
    created_by = Column(String, ForeignKey("users.id"), nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.now)
    updated_at = Column(DateTime, nullable=False, default=datetime.now, onupdate=datetime.now)


class Association(RowMixin, Base):
    """Employment history row linking a worker to a venue."""

    __tablename__ = "employment_history"

    id = Column(String, primary_key=True, default=new_id)
    worker_id = Column(String, ForeignKey("workers.id"), nullable=False, index=True)
    venue_id = Column(String, ForeignKey("venues.id"), nullable=False, index=True)
    position = Column(String)
    is_current = Column(Boolean, nullable=False, default=True)
    start_date = Column(DateTime, nullable=False, default=datetime.now)
    end_date = Column(DateTime)
    notes = Column(Text)
    created_by = Column(String, ForeignKey("users.id"), nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.now)


class VenueOwner(RowMixin, Base):
    """Ownership grant with per-area edit permissions."""

    __tablename__ = "venue_owners"

    id = Column(String, primary_key=True, default=new_id)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    venue_id = Column(String, ForeignKey("venues.id"), nullable=False, index=True)
    owner_role = Column(String, nullable=False, default="owner")
    permissions = Column(JSON, nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.now)


class Proposal(RowMixin, Base):
    """Edit proposal; also the audit record of every privileged edit."""

    __tablename__ = "edit_proposals"

    id = Column(String, primary_key=True, default=new_id)
    item_type = Column(String, nullable=False)  # worker, venue
    item_id = Column(String, nullable=False, index=True)
    proposed_changes = Column(JSON, nullable=False)
    current_values = Column(JSON)
    proposed_by = Column(String, ForeignKey("users.id"), nullable=False)
    status = Column(String, nullable=False, default="pending")  # pending, approved, rejected
    moderator_id = Column(String, ForeignKey("users.id"))
    moderator_notes = Column(Text)
    reviewed_at = Column(DateTime)
    created_at = Column(DateTime, nullable=False, default=datetime.now)


class QueueEntry(RowMixin, Base):
    """Moderation queue entry for a brand-new worker or venue."""

    __tablename__ = "moderation_queue"

    id = Column(String, primary_key=True, default=new_id)
    item_type = Column(String, nullable=False)
    item_id = Column(String, nullable=False, index=True)
    submitted_by = Column(String, ForeignKey("users.id"), nullable=False)
    status = Column(String, nullable=False, default="pending")
    moderator_id = Column(String, ForeignKey("users.id"))
    moderator_notes = Column(Text)
    reviewed_at = Column(DateTime)
    created_at = Column(DateTime, nullable=False, default=datetime.now)


def get_engine(db_path: Path):
    """
    Create an engine for the SQLite database file.

    Args:
        db_path: Path to SQLite database file

    Returns:
        SQLAlchemy engine
    """
    return create_engine(f"sqlite:///{db_path}")


def init_database(db_path: Path) -> None:
    """
    Initialize database and create tables.

    Args:
        db_path: Path to SQLite database file
    """
    db_path.parent.mkdir(parents=True, exist_ok=True)
    engine = get_engine(db_path)
    Base.metadata.create_all(engine)


def get_session(db_path: Path):
    """
    Get database session.

    Args:
        db_path: Path to SQLite database file

    Returns:
        SQLAlchemy session
    """
    Session = sessionmaker(bind=get_engine(db_path), expire_on_commit=False)
    return Session()
