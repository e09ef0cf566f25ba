"""
Database models for the Call Forward Service.

SQLAlchemy ORM models with async support for PostgreSQL.
"""

from datetime import datetime
from typing import List

from sqlalchemy import String, Integer, DateTime, ForeignKey, Index, UniqueConstraint
from sqlalchemy.ext.asyncio import AsyncAttrs
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


# Name of the constraint enforcing one rule per (source, context)
CONTEXT_UNIQUE_CONSTRAINT = "uq_map_call_forward_context_from_context"


class Base(AsyncAttrs, DeclarativeBase):
    """Base class for all database models with async support."""
    pass


class CallForwardRow(Base):
    """
    A persisted call forward.

    The contexts a forward applies in live in `map_call_forward_context`.
    """

    __tablename__ = "call_forward"

    fwd_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    from_extension: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Extension the call was dialed to"
    )

    to_extension: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Extension the call is forwarded to"
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=datetime.utcnow
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=datetime.utcnow,
        onupdate=datetime.utcnow
    )

    contexts: Mapped[List["CallForwardContextRow"]] = relationship(
        back_populates="call_forward",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
    )

    __table_args__ = (
        Index('ix_call_forward_from_extension', 'from_extension'),
        # Never hand a deleted rule's id to a new one
        {"sqlite_autoincrement": True},
    )


class CallForwardContextRow(Base):
    """
    Membership of a call forward in one context.

    `from_extension` duplicates the owning forward's source so the database
    can reject two forwards from the same extension in the same context.
    """

    __tablename__ = "map_call_forward_context"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    fwd_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("call_forward.fwd_id", ondelete="CASCADE"),
        nullable=False,
    )

    from_extension: Mapped[str] = mapped_column(String(255), nullable=False)

    context: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Asterisk context name"
    )

    call_forward: Mapped[CallForwardRow] = relationship(back_populates="contexts")

    __table_args__ = (
        UniqueConstraint('from_extension', 'context', name=CONTEXT_UNIQUE_CONSTRAINT),
        Index('ix_map_call_forward_context_fwd_id', 'fwd_id'),
    )
