"""
Database schema and connection management.

Uses SQLite with SQLAlchemy for contacts, their dependent collections
and per-organization settings.
"""

import uuid
from datetime import datetime
from pathlib import Path
from sqlalchemy import (
    create_engine,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    JSON,
    String,
    Text,
)
from sqlalchemy.orm import declarative_base, sessionmaker

Base = declarative_base()


def _new_id() -> str:
    return uuid.uuid4().hex


class Organization(Base):
    """Tenant owning contacts. ``settings`` is a free-form JSON blob."""

    __tablename__ = "organizations"

    id = Column(String, primary_key=True, default=_new_id)
    name = Column(String, nullable=False)
    settings = Column(JSON, nullable=False, default=dict)
    settings_version = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=datetime.now)


class Contact(Base):
    """Contact record."""

    __tablename__ = "contacts"

    id = Column(String, primary_key=True, default=_new_id)
    organization_id = Column(String, ForeignKey("organizations.id"), nullable=False, index=True)
    full_name = Column(String, nullable=False)
    phone = Column(String, nullable=False, default="")
    email = Column(String, nullable=True)
    address = Column(String, nullable=True)
    tags = Column(JSON, nullable=False, default=list)
    custom_fields = Column(JSON, nullable=False, default=dict)
    last_contact_date = Column(DateTime, nullable=True)
    total_events_attended = Column(Integer, nullable=False, default=0)
    engagement_score = Column(JSON, nullable=True)  # ContactScore payload
    version = Column(Integer, nullable=False, default=1)  # bumped on every merge write
    created_at = Column(DateTime, nullable=False, default=datetime.now, index=True)
    updated_at = Column(DateTime, nullable=False, default=datetime.now, onupdate=datetime.now)


class ContactInteraction(Base):
    """Call, email or text interaction logged against a contact."""

    __tablename__ = "contact_interactions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    organization_id = Column(String, nullable=False, index=True)
    contact_id = Column(String, ForeignKey("contacts.id"), nullable=False, index=True)
    type = Column(String, nullable=False)  # call, email, text, note
    status = Column(String, nullable=True)  # completed, opened, clicked, ...
    direction = Column(String, nullable=True)  # inbound, outbound
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.now, index=True)


class CampaignActivity(Base):
    """Campaign-level action taken by a contact (donation, petition signature)."""

    __tablename__ = "campaign_activities"

    id = Column(Integer, primary_key=True, autoincrement=True)
    organization_id = Column(String, nullable=False, index=True)
    contact_id = Column(String, ForeignKey("contacts.id"), nullable=False, index=True)
    campaign_id = Column(String, nullable=True)
    activity_type = Column(String, nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.now, index=True)


class CallLog(Base):
    __tablename__ = "call_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    organization_id = Column(String, nullable=False, index=True)
    contact_id = Column(String, ForeignKey("contacts.id"), nullable=False, index=True)
    status = Column(String, nullable=True)
    duration_seconds = Column(Integer, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.now)


class EventParticipant(Base):
    __tablename__ = "event_participants"

    id = Column(Integer, primary_key=True, autoincrement=True)
    organization_id = Column(String, nullable=False, index=True)
    contact_id = Column(String, ForeignKey("contacts.id"), nullable=False, index=True)
    event_id = Column(String, nullable=False)
    status = Column(String, nullable=False, default="registered")  # registered, attended, no_show
    attended_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.now)


class EventRegistration(Base):
    __tablename__ = "event_registrations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    organization_id = Column(String, nullable=False, index=True)
    contact_id = Column(String, ForeignKey("contacts.id"), nullable=False, index=True)
    event_id = Column(String, nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.now)


class CallAssignment(Base):
    __tablename__ = "call_assignments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    organization_id = Column(String, nullable=False, index=True)
    contact_id = Column(String, ForeignKey("contacts.id"), nullable=False, index=True)
    campaign_id = Column(String, nullable=True)
    assigned_to = Column(String, nullable=True)
    status = Column(String, nullable=False, default="pending")
    created_at = Column(DateTime, nullable=False, default=datetime.now)


class GroupMember(Base):
    __tablename__ = "group_members"

    id = Column(Integer, primary_key=True, autoincrement=True)
    organization_id = Column(String, nullable=False, index=True)
    contact_id = Column(String, ForeignKey("contacts.id"), nullable=False, index=True)
    group_id = Column(String, nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.now)


class PathwayMember(Base):
    __tablename__ = "pathway_members"

    id = Column(Integer, primary_key=True, autoincrement=True)
    organization_id = Column(String, nullable=False, index=True)
    contact_id = Column(String, ForeignKey("contacts.id"), nullable=False, index=True)
    pathway_id = Column(String, nullable=False)
    current_step = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=datetime.now)


class ContactMergeLog(Base):
    """Audit row for one contact absorbed into a primary by a merge."""

    __tablename__ = "contact_merge_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    organization_id = Column(String, nullable=False, index=True)
    group_id = Column(String, nullable=False)
    primary_contact_id = Column(String, nullable=False, index=True)
    # The absorbed contact row is gone after the merge, so no foreign key here.
    absorbed_contact_id = Column(String, nullable=False)
    # Which member each overridable field was taken from, e.g. {"email": "<id>"}
    field_resolutions = Column(JSON, nullable=True)
    absorbed_snapshot = Column(JSON, nullable=True)
    merged_at = Column(DateTime, nullable=False, default=datetime.now)


# Every table whose contact_id must follow a contact into its merge primary.
DEPENDENT_MODELS = (
    ContactInteraction,
    CampaignActivity,
    CallLog,
    EventParticipant,
    EventRegistration,
    CallAssignment,
    GroupMember,
    PathwayMember,
)


def _create_engine(db_path: Path, timeout: float = 10.0):
    return create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False, "timeout": timeout},
        # room for a full scoring batch of concurrent sessions
        max_overflow=64,
    )


def init_database(db_path: Path) -> None:
    """
    Initialize database and create tables.

    Args:
        db_path: Path to SQLite database file
    """
    db_path.parent.mkdir(parents=True, exist_ok=True)
    engine = _create_engine(db_path)
    Base.metadata.create_all(engine)
    engine.dispose()


def get_session_factory(db_path: Path, timeout: float = 10.0):
    """
    Build a thread-safe session factory bound to one engine.

    Each worker thread must open its own session from the factory.

    Args:
        db_path: Path to SQLite database file
        timeout: Seconds a connection waits on a locked database before failing

    Returns:
        SQLAlchemy sessionmaker
    """
    engine = _create_engine(db_path, timeout=timeout)
    return sessionmaker(bind=engine, expire_on_commit=False)


def get_session(db_path: Path):
    """
    Get database session.

    Args:
        db_path: Path to SQLite database file

    Returns:
        SQLAlchemy session
    """
    return get_session_factory(db_path)()
