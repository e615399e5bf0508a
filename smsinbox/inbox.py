"""
Inbox store for received SMS.

Four components share one PersistenceBackend, injected explicitly:
- RecordManager: create / full update of a received message
- StatusMachine: read/unread partial updates
- QueryEngine: owner-scoped listings
- Aggregator: per-day counts and discussions

Every operation is scoped by owner_user_id. Expected "no rows" outcomes are
reported as UpdateResult.NOT_FOUND or None; backend failures raise
PersistenceError.
"""

import enum
import logging
from datetime import datetime
from typing import Dict, List, Optional

from smsinbox.models import MessageStatus, ReceivedMessage
from smsinbox.storage import (
    MessageFilter,
    Ordering,
    PersistenceBackend,
    to_utc_naive,
)

logger = logging.getLogger(__name__)


class UpdateResult(enum.Enum):
    SUCCESS = "success"
    NOT_FOUND = "not_found"

    @classmethod
    def from_rows(cls, rows: int) -> "UpdateResult":
        return cls.SUCCESS if rows > 0 else cls.NOT_FOUND


class RecordManager:
    def __init__(self, backend: PersistenceBackend) -> None:
        self.backend = backend

    def create(
        self,
        owner_user_id: int,
        received_at: datetime,
        text: str,
        origin: str,
        destination: str,
        status: MessageStatus = MessageStatus.UNREAD,
        is_command: bool = False,
    ) -> int:
        """
        Store a new received message.

        Returns:
            The id assigned by the backend.

        Raises:
            PersistenceError: the write failed.
        """
        logger.info(f"Creating received message: user={owner_user_id}, from={origin}, to={destination}")
        message_id = self.backend.insert({
            "owner_user_id": owner_user_id,
            "received_at": to_utc_naive(received_at),
            "text": text,
            "origin": origin,
            "destination": destination,
            "status": MessageStatus(status),
            "is_command": is_command,
        })
        logger.info(f"Received message created: id={message_id}")
        return message_id

    def update(
        self,
        owner_user_id: int,
        message_id: int,
        received_at: datetime,
        text: str,
        origin: str,
        destination: str,
        status: MessageStatus,
        is_command: bool,
    ) -> UpdateResult:
        """Overwrite every mutable field of the owner's message."""
        rows = self.backend.update_where(owner_user_id, message_id, {
            "received_at": to_utc_naive(received_at),
            "text": text,
            "origin": origin,
            "destination": destination,
            "status": MessageStatus(status),
            "is_command": is_command,
        })
        result = UpdateResult.from_rows(rows)
        logger.info(f"Update received message: user={owner_user_id}, id={message_id}, result={result.value}")
        return result

    def get(self, owner_user_id: int, message_id: int) -> Optional[ReceivedMessage]:
        rows = self.backend.select(
            MessageFilter(owner_user_id=owner_user_id, message_id=message_id),
            Ordering.NEWEST_FIRST,
            limit=1,
        )
        return rows[0] if rows else None


class StatusMachine:
    """Read/unread transitions. Only the status column is ever written."""

    def __init__(self, backend: PersistenceBackend) -> None:
        self.backend = backend

    def _set_status(self, owner_user_id: int, message_id: int, status: MessageStatus) -> UpdateResult:
        rows = self.backend.update_where(owner_user_id, message_id, {"status": status})
        result = UpdateResult.from_rows(rows)
        logger.info(
            f"Mark received message {status.value}: user={owner_user_id}, id={message_id}, "
            f"result={result.value}"
        )
        return result

    def mark_read(self, owner_user_id: int, message_id: int) -> UpdateResult:
        return self._set_status(owner_user_id, message_id, MessageStatus.READ)

    def mark_unread(self, owner_user_id: int, message_id: int) -> UpdateResult:
        return self._set_status(owner_user_id, message_id, MessageStatus.UNREAD)


class QueryEngine:
    """
    Read-only, owner-scoped listings.

    Ordering:
        list_unread, last_n_by_date, last_for_origin: newest first
        (received_at DESC, id DESC).
        by_origin, since, since_by_origin: chronological
        (received_at ASC, id ASC).
    """

    def __init__(self, backend: PersistenceBackend) -> None:
        self.backend = backend

    def list_unread(
        self,
        owner_user_id: int,
        page_size: Optional[int] = None,
        page_index: Optional[int] = None,
    ) -> List[ReceivedMessage]:
        """
        Unread messages for a user, newest first.

        Pagination applies only when both page_size and page_index are
        given (offset = page_size * page_index); otherwise all rows are returned.
        """
        limit = offset = None
        if page_size is not None and page_index is not None:
            limit, offset = page_size, page_size * page_index
        logger.debug(f"list_unread user={owner_user_id} limit={limit} offset={offset}")
        return self.backend.select(
            MessageFilter(owner_user_id=owner_user_id, status=MessageStatus.UNREAD),
            Ordering.NEWEST_FIRST,
            limit=limit,
            offset=offset,
        )

    def count_unread(self, owner_user_id: int) -> int:
        return self.backend.count(
            MessageFilter(owner_user_id=owner_user_id, status=MessageStatus.UNREAD)
        )

    def count(self, owner_user_id: int) -> int:
        return self.backend.count(MessageFilter(owner_user_id=owner_user_id))

    def last_n_by_date(self, owner_user_id: int, n: int) -> List[ReceivedMessage]:
        if n <= 0:
            return []
        return self.backend.select(
            MessageFilter(owner_user_id=owner_user_id), Ordering.NEWEST_FIRST, limit=n
        )

    def by_origin(self, owner_user_id: int, origin: str) -> List[ReceivedMessage]:
        return self.backend.select(
            MessageFilter(owner_user_id=owner_user_id, origin=origin), Ordering.OLDEST_FIRST
        )

    def since(self, owner_user_id: int, since_timestamp: datetime) -> List[ReceivedMessage]:
        return self.backend.select(
            MessageFilter(owner_user_id=owner_user_id, since=since_timestamp),
            Ordering.OLDEST_FIRST,
        )

    def since_by_origin(
        self, owner_user_id: int, since_timestamp: datetime, origin: str
    ) -> List[ReceivedMessage]:
        return self.backend.select(
            MessageFilter(owner_user_id=owner_user_id, since=since_timestamp, origin=origin),
            Ordering.OLDEST_FIRST,
        )

    def last_for_origin(self, owner_user_id: int, origin: str) -> Optional[ReceivedMessage]:
        """Most recent message from origin, or None when there is none."""
        rows = self.backend.select(
            MessageFilter(owner_user_id=owner_user_id, origin=origin),
            Ordering.NEWEST_FIRST,
            limit=1,
        )
        return rows[0] if rows else None


class Aggregator:
    def __init__(self, backend: PersistenceBackend) -> None:
        self.backend = backend

    def count_by_day_since(self, owner_user_id: int, since_timestamp: datetime) -> Dict[str, int]:
        """
        Count messages per calendar day (UTC, YYYY-MM-DD) since a timestamp.

        Sparse: days without messages are absent, callers fill gaps themselves.
        """
        counts_by_day = {}
        for day, nb in self.backend.aggregate_count_grouped_by_date(owner_user_id, since_timestamp):
            counts_by_day[day] = nb
        return counts_by_day

    def discussions(self, owner_user_id: int) -> List[str]:
        """Distinct origins the user received messages from, sorted."""
        return self.backend.distinct_origins(owner_user_id)


class InboxStore:
    """Bundles the four components over a single backend handle."""

    def __init__(self, backend: PersistenceBackend) -> None:
        self.backend = backend
        self.records = RecordManager(backend)
        self.status = StatusMachine(backend)
        self.queries = QueryEngine(backend)
        self.aggregates = Aggregator(backend)
