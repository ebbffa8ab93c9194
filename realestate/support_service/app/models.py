"""SQLAlchemy models for the support case service."""

from __future__ import annotations

from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def _uuid_str() -> str:
    return str(uuid4())


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for support ORM models."""


class SupportCase(Base):
    __tablename__ = "support_cases"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid_str)
    case_status: Mapped[str] = mapped_column(
        String(16), nullable=False, default="open", server_default="open", index=True
    )
    opened_by: Mapped[str] = mapped_column(String(16), nullable=False, index=True)
    supporter_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    supporter_name: Mapped[str] = mapped_column(String(255), nullable=False, default="", server_default="")
    property_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    display_name1: Mapped[str] = mapped_column(String(255), nullable=False)
    display_name2: Mapped[str] = mapped_column(String(255), nullable=False)
    closed_by: Mapped[str | None] = mapped_column(String(16), nullable=True)
    rating: Mapped[float | None] = mapped_column(Float, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now_utc
    )

    conversation: Mapped[list[SupportMessage]] = relationship(
        back_populates="support_case",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
        order_by="SupportMessage.seq",
    )


class SupportMessage(Base):
    __tablename__ = "support_messages"

    # Insertion order of the conversation; concurrent appends each get their own row.
    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    id: Mapped[str] = mapped_column(String(36), nullable=False, unique=True, default=_uuid_str)
    case_id: Mapped[str] = mapped_column(
        ForeignKey("support_cases.id", ondelete="CASCADE"), nullable=False, index=True
    )
    display_name: Mapped[str] = mapped_column(String(255), nullable=False)
    contact_email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    author_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now_utc)
    inquiry_about: Mapped[str | None] = mapped_column(String(512), nullable=True)
    inquiry_details: Mapped[str | None] = mapped_column(Text, nullable=True)
    seen_by_admin: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="0")
    seen_by_agent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="0")
    seen_by_client: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="0")

    support_case: Mapped[SupportCase] = relationship(back_populates="conversation")


class Property(Base):
    """Read-only mirror of the property catalogue."""

    __tablename__ = "properties"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_uuid_str)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    owner_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)


class Account(Base):
    """Read-only mirror of the user directory."""

    __tablename__ = "accounts"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_uuid_str)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    role: Mapped[str | None] = mapped_column(String(32), nullable=True)
