import enum
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Generator, List, Optional, Tuple

from sqlalchemy import create_engine, func, inspect, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker, Session, declarative_base

from smsinbox.config import settings

logger = logging.getLogger(__name__)

# check_same_thread=False is required for SQLite to work with FastAPI's threadpool
engine = create_engine(
    settings.DATABASE_URL,
    connect_args={"check_same_thread": False} if settings.is_sqlite else {},
    echo=False,
)

# Create SessionLocal class for creating database sessions
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for SQLAlchemy models
Base = declarative_base()


def init_db() -> None:
    """
    Initialize the database by creating all tables.
    Called during application startup.
    """
    logger.debug(f"Initializing database with URL: {settings.DATABASE_URL}")
    try:
        # Import models to register them with Base.metadata
        from smsinbox.models import ReceivedMessage  # noqa: F401

        Base.metadata.create_all(bind=engine)
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise


def get_db() -> Generator[Session, None, None]:
    """
    Dependency to get database session.
    Yields a session and ensures it's closed after use.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def check_db_health() -> bool:
    """
    Check if the database is reachable and the received table exists.

    Returns:
        True if DB is healthy and schema exists, False otherwise.
    """
    logger.debug("Checking database health...")
    try:
        with SessionLocal() as db:
            db.execute(text("SELECT 1"))
        if not inspect(engine).has_table("received"):
            logger.error("Database schema not applied: 'received' table not found")
            return False
        logger.debug("Database health check passed")
        return True
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return False


def to_utc_naive(value: datetime) -> datetime:
    """Convert an aware datetime to naive UTC; naive values are taken as UTC."""
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


# =============================================================================
# Persistence Backend
# =============================================================================

class PersistenceError(Exception):
    """The storage backend failed to execute an operation."""


class Ordering(enum.Enum):
    NEWEST_FIRST = "newest_first"  # received_at DESC, id DESC
    OLDEST_FIRST = "oldest_first"  # received_at ASC, id ASC


@dataclass(frozen=True)
class MessageFilter:
    """Conjunction of equality / lower-bound filters, always scoped to one owner."""
    owner_user_id: int
    message_id: Optional[int] = None
    status: Optional[str] = None
    origin: Optional[str] = None
    since: Optional[datetime] = None


class PersistenceBackend(ABC):
    """Storage operations the inbox store relies on."""

    @abstractmethod
    def insert(self, record: dict) -> int:
        """Persist a new record and return its id."""

    @abstractmethod
    def update_where(self, owner_user_id: int, message_id: int, fields: dict) -> int:
        """Rewrite `fields` on the owner's message; return rows affected."""

    @abstractmethod
    def select(
        self,
        criteria: MessageFilter,
        order: Ordering,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> list:
        pass

    @abstractmethod
    def count(self, criteria: MessageFilter) -> int:
        pass

    @abstractmethod
    def distinct_origins(self, owner_user_id: int) -> List[str]:
        pass

    @abstractmethod
    def aggregate_count_grouped_by_date(
        self, owner_user_id: int, since: datetime
    ) -> List[Tuple[str, int]]:
        """Return (YYYY-MM-DD, count) pairs for dates having messages, ascending."""


class SqlAlchemyBackend(PersistenceBackend):
    """PersistenceBackend over a SQLAlchemy session (one per request)."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def _fail(self, operation: str, exc: SQLAlchemyError) -> PersistenceError:
        self.db.rollback()
        logger.error(f"Storage operation '{operation}' failed: {exc}")
        return PersistenceError(f"{operation} failed: {exc}")

    def _query(self, criteria: MessageFilter):
        from smsinbox.models import ReceivedMessage

        query = self.db.query(ReceivedMessage).filter(
            ReceivedMessage.owner_user_id == criteria.owner_user_id
        )
        if criteria.message_id is not None:
            query = query.filter(ReceivedMessage.id == criteria.message_id)
        if criteria.status is not None:
            query = query.filter(ReceivedMessage.status == criteria.status)
        if criteria.origin is not None:
            query = query.filter(ReceivedMessage.origin == criteria.origin)
        if criteria.since is not None:
            query = query.filter(ReceivedMessage.received_at >= to_utc_naive(criteria.since))
        return query

    def insert(self, record: dict) -> int:
        from smsinbox.models import ReceivedMessage

        try:
            message = ReceivedMessage(**record)
            self.db.add(message)
            self.db.commit()
            self.db.refresh(message)
        except SQLAlchemyError as e:
            raise self._fail("insert", e) from e
        return message.id

    def update_where(self, owner_user_id: int, message_id: int, fields: dict) -> int:
        from smsinbox.models import ReceivedMessage

        try:
            rows = (
                self.db.query(ReceivedMessage)
                .filter(
                    ReceivedMessage.owner_user_id == owner_user_id,
                    ReceivedMessage.id == message_id,
                )
                .update(fields, synchronize_session="fetch")
            )
            self.db.commit()
        except SQLAlchemyError as e:
            raise self._fail("update", e) from e
        logger.debug(f"update_where user={owner_user_id} id={message_id}: {rows} row(s)")
        return rows

    def select(
        self,
        criteria: MessageFilter,
        order: Ordering,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> list:
        from smsinbox.models import ReceivedMessage

        query = self._query(criteria)
        if order is Ordering.NEWEST_FIRST:
            query = query.order_by(ReceivedMessage.received_at.desc(), ReceivedMessage.id.desc())
        else:
            query = query.order_by(ReceivedMessage.received_at.asc(), ReceivedMessage.id.asc())
        if offset:
            query = query.offset(offset)
        if limit is not None:
            query = query.limit(limit)
        try:
            return query.all()
        except SQLAlchemyError as e:
            raise self._fail("select", e) from e

    def count(self, criteria: MessageFilter) -> int:
        try:
            return self._query(criteria).count()
        except SQLAlchemyError as e:
            raise self._fail("count", e) from e

    def distinct_origins(self, owner_user_id: int) -> List[str]:
        from smsinbox.models import ReceivedMessage

        try:
            rows = (
                self.db.query(ReceivedMessage.origin)
                .filter(ReceivedMessage.owner_user_id == owner_user_id)
                .distinct()
                .order_by(ReceivedMessage.origin.asc())
                .all()
            )
        except SQLAlchemyError as e:
            raise self._fail("distinct_origins", e) from e
        return [row.origin for row in rows]

    def aggregate_count_grouped_by_date(
        self, owner_user_id: int, since: datetime
    ) -> List[Tuple[str, int]]:
        from smsinbox.models import ReceivedMessage

        day = func.date(ReceivedMessage.received_at).label("day")
        try:
            rows = (
                self.db.query(day, func.count(ReceivedMessage.id).label("nb"))
                .filter(
                    ReceivedMessage.owner_user_id == owner_user_id,
                    ReceivedMessage.received_at >= to_utc_naive(since),
                )
                .group_by(day)
                .order_by(day.asc())
                .all()
            )
        except SQLAlchemyError as e:
            raise self._fail("aggregate_count_grouped_by_date", e) from e
        # SQLite returns the date as text, other engines as a date object
        return [
            (row.day.isoformat() if isinstance(row.day, date) else str(row.day), row.nb)
            for row in rows
        ]
