"""
SQLAlchemy ORM models for database tables.

This module contains database table definitions using SQLAlchemy.
For Pydantic request/response schemas, see schemas.py.
"""

import enum

from sqlalchemy import Boolean, Column, DateTime, Enum, Index, Integer, String, Text

from smsinbox.storage import Base


class MessageStatus(str, enum.Enum):
    """Read/unread lifecycle flag of a received message."""
    UNREAD = "unread"
    READ = "read"


class ReceivedMessage(Base):
    """
    SQLAlchemy model for SMS received by a user.

    Table: received
    Primary Key: id (assigned on insert)
    Every row belongs to exactly one user (owner_user_id); all queries are
    scoped by it.
    """
    __tablename__ = "received"

    id = Column(Integer, primary_key=True, autoincrement=True)
    owner_user_id = Column(Integer, nullable=False, index=True)
    received_at = Column(DateTime, nullable=False, index=True)  # naive UTC
    text = Column(Text, nullable=False)
    origin = Column(String(64), nullable=False, index=True)
    destination = Column(String(64), nullable=False)
    status = Column(
        Enum(
            MessageStatus,
            name="received_status",
            values_callable=lambda e: [member.value for member in e],
        ),
        nullable=False,
        default=MessageStatus.UNREAD,
    )
    is_command = Column(Boolean, nullable=False, default=False)

    __table_args__ = (
        Index("ix_received_owner_received_at", "owner_user_id", "received_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<ReceivedMessage(id={self.id}, owner_user_id={self.owner_user_id}, "
            f"origin={self.origin}, status={self.status})>"
        )
