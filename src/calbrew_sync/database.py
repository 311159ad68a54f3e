"""Database models and operations for events, occurrences and calendar bindings."""

from datetime import date, datetime
from typing import Dict, Iterable, List, Optional, Set
from uuid import UUID, uuid4

from sqlalchemy import (
    create_engine, Column, String, DateTime, Date, Text, Integer, ForeignKey, Index,
    UniqueConstraint, func,
)
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import declarative_base, sessionmaker, Session, relationship
from sqlalchemy.dialects.postgresql import UUID as PostgresUUID
from sqlalchemy.types import TypeDecorator, CHAR
import pytz

from .config import Settings

Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(pytz.UTC)


class GUID(TypeDecorator):
    """Platform-independent GUID type."""

    impl = CHAR
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == 'postgresql':
            return dialect.type_descriptor(PostgresUUID())
        else:
            return dialect.type_descriptor(CHAR(32))

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        elif dialect.name == 'postgresql':
            return str(value)
        else:
            if not isinstance(value, UUID):
                return "%.32x" % UUID(value).int
            else:
                return "%.32x" % value.int

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        else:
            if not isinstance(value, UUID):
                return UUID(value)
            return value


class UserDB(Base):
    """Calendar binding: one managed Google calendar per user."""

    __tablename__ = 'users'

    id = Column(String(255), primary_key=True)
    email = Column(String(255), nullable=True)
    calbrew_calendar_id = Column(String(255), nullable=True)

    created_at = Column(DateTime, nullable=False, default=_utcnow)
    updated_at = Column(DateTime, nullable=False, default=_utcnow)


class EventDB(Base):
    """Recurring event anchored to a Hebrew date."""

    __tablename__ = 'events'

    id = Column(GUID(), primary_key=True, default=uuid4)
    user_id = Column(String(255), nullable=False, index=True)

    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)

    hebrew_year = Column(Integer, nullable=False)
    hebrew_month = Column(Integer, nullable=False)
    hebrew_day = Column(Integer, nullable=False)
    recurrence_rule = Column(String(20), nullable=False, default='yearly')

    # High-water mark; existing occurrence rows remain the source of truth
    last_synced_hebrew_year = Column(Integer, nullable=True)

    created_at = Column(DateTime, nullable=False, default=_utcnow)
    updated_at = Column(DateTime, nullable=False, default=_utcnow)

    occurrences = relationship(
        "EventOccurrenceDB",
        back_populates="event",
        cascade="all, delete-orphan",
        order_by="EventOccurrenceDB.hebrew_year",
    )

    __table_args__ = (
        Index('idx_events_user_created', 'user_id', 'created_at'),
    )


class EventOccurrenceDB(Base):
    """One materialized occurrence mirrored as a single all-day Google event."""

    __tablename__ = 'event_occurrences'

    id = Column(GUID(), primary_key=True, default=uuid4)
    event_id = Column(GUID(), ForeignKey('events.id', ondelete='CASCADE'), nullable=False, index=True)

    hebrew_year = Column(Integer, nullable=False)
    gregorian_date = Column(Date, nullable=False)
    google_event_id = Column(String(255), nullable=False)

    created_at = Column(DateTime, nullable=False, default=_utcnow)

    event = relationship("EventDB", back_populates="occurrences")

    __table_args__ = (
        # At most one occurrence per event and Hebrew year
        UniqueConstraint('event_id', 'hebrew_year', name='uq_event_occurrence_year'),
        Index('idx_event_occurrence_google_id', 'google_event_id'),
    )


class DatabaseManager:
    """Database manager for events, occurrences and calendar bindings."""

    def __init__(self, settings: Settings):
        """Initialize database manager.

        Args:
            settings: Application settings
        """
        self.settings = settings
        self.engine = create_engine(
            settings.database_url,
            echo=settings.debug,
            pool_pre_ping=True
        )
        self.SessionLocal = sessionmaker(
            autocommit=False, autoflush=False, expire_on_commit=False, bind=self.engine
        )

    def init_db(self) -> None:
        """Initialize database tables."""
        Base.metadata.create_all(bind=self.engine)

    def get_session(self) -> Session:
        """Get database session."""
        return self.SessionLocal()

    # Calendar binding

    def get_calendar_id(self, session: Session, user_id: str) -> Optional[str]:
        """Return the user's bound calendar ID, if any."""
        user = session.get(UserDB, user_id)
        return user.calbrew_calendar_id if user else None

    def set_calendar_id(self, session: Session, user_id: str, calendar_id: Optional[str]) -> UserDB:
        """Bind (or rebind) a user to a calendar, creating the user row if needed."""
        user = session.get(UserDB, user_id)
        if user is None:
            user = UserDB(id=user_id)
            session.add(user)
        user.calbrew_calendar_id = calendar_id
        user.updated_at = _utcnow()
        session.commit()
        return user

    # Events

    def create_event(
        self,
        session: Session,
        user_id: str,
        title: str,
        hebrew_year: int,
        hebrew_month: int,
        hebrew_day: int,
        description: Optional[str] = None,
        recurrence_rule: str = 'yearly',
        last_synced_hebrew_year: Optional[int] = None,
        event_id: Optional[UUID] = None,
    ) -> EventDB:
        """Create a new event row.

        Args:
            session: Database session
            user_id: Owner ID
            title: Display title
            hebrew_year: Anchor year
            hebrew_month: Anchor month (Nisan = 1)
            hebrew_day: Anchor day
            description: Optional description
            recurrence_rule: Recurrence kind
            last_synced_hebrew_year: Initial high-water mark
            event_id: Explicit ID, generated when omitted

        Returns:
            Created event
        """
        event = EventDB(
            id=event_id or uuid4(),
            user_id=user_id,
            title=title,
            description=description,
            hebrew_year=hebrew_year,
            hebrew_month=hebrew_month,
            hebrew_day=hebrew_day,
            recurrence_rule=recurrence_rule,
            last_synced_hebrew_year=last_synced_hebrew_year,
        )
        session.add(event)
        session.commit()
        return event

    def get_event(self, session: Session, event_id: UUID, user_id: Optional[str] = None) -> Optional[EventDB]:
        """Get an event, scoped to its owner when ``user_id`` is given."""
        query = session.query(EventDB).filter(EventDB.id == event_id)
        if user_id is not None:
            query = query.filter(EventDB.user_id == user_id)
        return query.first()

    def get_events_by_user(self, session: Session, user_id: str) -> List[EventDB]:
        """Get all events of a user, newest first."""
        return session.query(EventDB).filter(
            EventDB.user_id == user_id
        ).order_by(EventDB.created_at.desc()).all()

    def update_event_details(
        self,
        session: Session,
        event: EventDB,
        title: Optional[str] = None,
        description: Optional[str] = None,
    ) -> EventDB:
        """Update the display fields of an event."""
        if title is not None:
            event.title = title
        event.description = description
        event.updated_at = _utcnow()
        session.commit()
        return event

    def advance_last_synced_year(self, session: Session, event: EventDB, year: int) -> int:
        """Raise the high-water mark to ``year``; never lowers it.

        Returns:
            The stored high-water mark after the update
        """
        current = event.last_synced_hebrew_year
        if current is None or year > current:
            event.last_synced_hebrew_year = year
            event.updated_at = _utcnow()
            session.commit()
        return event.last_synced_hebrew_year

    def delete_event(self, session: Session, event_id: UUID) -> bool:
        """Delete an event row together with any remaining occurrence rows.

        Returns:
            True if the event row existed
        """
        session.query(EventOccurrenceDB).filter(
            EventOccurrenceDB.event_id == event_id
        ).delete(synchronize_session=False)
        deleted = session.query(EventDB).filter(
            EventDB.id == event_id
        ).delete(synchronize_session=False)
        session.commit()
        return deleted > 0

    # Occurrences

    def create_event_occurrence(
        self,
        session: Session,
        event_id: UUID,
        hebrew_year: int,
        gregorian_date: date,
        google_event_id: str,
    ) -> Optional[EventOccurrenceDB]:
        """Persist an occurrence.

        Returns:
            The created row, or None when the event already has an
            occurrence for ``hebrew_year``
        """
        occurrence = EventOccurrenceDB(
            event_id=event_id,
            hebrew_year=hebrew_year,
            gregorian_date=gregorian_date,
            google_event_id=google_event_id,
        )
        session.add(occurrence)
        try:
            session.commit()
        except IntegrityError:
            session.rollback()
            return None
        return occurrence

    def get_event_occurrences(self, session: Session, event_id: UUID) -> List[EventOccurrenceDB]:
        """Get occurrences of an event ordered by Hebrew year."""
        return session.query(EventOccurrenceDB).filter(
            EventOccurrenceDB.event_id == event_id
        ).order_by(EventOccurrenceDB.hebrew_year).all()

    def get_occurrence_years(self, session: Session, event_id: UUID) -> Set[int]:
        """Hebrew years that already have an occurrence."""
        rows = session.query(EventOccurrenceDB.hebrew_year).filter(
            EventOccurrenceDB.event_id == event_id
        ).all()
        return {row[0] for row in rows}

    def delete_event_occurrences(self, session: Session, event_id: UUID) -> int:
        """Delete all occurrence rows of an event.

        Returns:
            Number of rows removed
        """
        deleted = session.query(EventOccurrenceDB).filter(
            EventOccurrenceDB.event_id == event_id
        ).delete(synchronize_session=False)
        session.commit()
        return deleted

    def is_event_synced(self, session: Session, event_id: UUID) -> bool:
        """Whether any occurrence exists for the event."""
        return session.query(EventOccurrenceDB.id).filter(
            EventOccurrenceDB.event_id == event_id
        ).first() is not None

    def get_events_sync_status(self, session: Session, event_ids: Iterable[UUID]) -> Dict[UUID, bool]:
        """Synced flag for each of the given events."""
        event_ids = list(event_ids)
        status = {event_id: False for event_id in event_ids}
        if not event_ids:
            return status

        rows = session.query(
            EventOccurrenceDB.event_id, func.count(EventOccurrenceDB.id)
        ).filter(
            EventOccurrenceDB.event_id.in_(event_ids)
        ).group_by(EventOccurrenceDB.event_id).all()

        for event_id, count in rows:
            status[event_id] = count > 0
        return status
