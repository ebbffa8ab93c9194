"""Conversation log of a support case.

Messages are rows keyed by an insertion sequence, so appending is a single
INSERT and never rewrites the rest of the conversation. Seen flags are
switched on with targeted UPDATE statements; no code path switches one off.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import ColumnElement, and_, delete, func, or_, select, true, update
from sqlalchemy.ext.asyncio import AsyncSession

from .errors import SupportNotFoundError, SupportValidationError
from .models import SupportCase, SupportMessage
from .roles import Role, SeenTrack

_SEEN_COLUMNS = {
    SeenTrack.ADMIN: SupportMessage.seen_by_admin,
    SeenTrack.AGENT: SupportMessage.seen_by_agent,
    SeenTrack.CLIENT: SupportMessage.seen_by_client,
}

CLIENT_OPENING_TEXT = "A representative will be with you shortly"


def seen_column(track: SeenTrack):
    return _SEEN_COLUMNS[track]


def initial_seen_flags(author_role: Role) -> dict[str, bool]:
    """The author has implicitly seen their own message; nobody else has."""

    return {
        "seen_by_admin": author_role is Role.SUPER_ADMIN,
        "seen_by_agent": author_role is Role.AGENT,
        "seen_by_client": author_role is Role.CLIENT,
    }


def opening_text(opened_by: Role) -> str:
    if opened_by is Role.SUPER_ADMIN:
        return "New support case created by Platform Administration"
    if opened_by is Role.AGENT:
        return "New support case created by agent"
    return CLIENT_OPENING_TEXT


@dataclass(slots=True)
class NewMessage:
    display_name: str
    body: str | None
    author_role: Role
    contact_email: str | None = None
    author_id: str | None = None
    inquiry_about: str | None = None
    inquiry_details: str | None = None
    date: datetime | None = None


def _not_authored_by(identity: str | None) -> ColumnElement[bool]:
    if identity is None:
        return true()
    return or_(SupportMessage.author_id.is_(None), SupportMessage.author_id != identity)


class ConversationLog:
    """Atomic operations over the messages of support cases."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def append(self, case_id: str, entry: NewMessage, *, first: bool = False) -> SupportMessage:
        body = entry.body.strip() if entry.body else ""
        if not body:
            raise SupportValidationError("Message body is required")
        if first and not (entry.inquiry_about and entry.inquiry_about.strip()):
            raise SupportValidationError("inquiryAbout is required on the opening message")
        message = SupportMessage(
            case_id=case_id,
            display_name=entry.display_name,
            contact_email=entry.contact_email,
            author_id=entry.author_id,
            message=body,
            date=entry.date or datetime.now(timezone.utc),
            inquiry_about=entry.inquiry_about,
            inquiry_details=entry.inquiry_details,
            **initial_seen_flags(entry.author_role),
        )
        self.session.add(message)
        await self.session.flush()
        return message

    async def mark_seen(
        self,
        case_id: str,
        track: SeenTrack,
        *,
        exclude_author: str | None = None,
    ) -> int:
        """Switch on ``track`` for the case's messages.

        With ``exclude_author`` only messages not written by that identity are
        marked (the conditional variant); without it every message is marked.
        Returns the number of messages that changed.
        """

        column = seen_column(track)
        stmt = (
            update(SupportMessage)
            .where(
                SupportMessage.case_id == case_id,
                column.is_(False),
                _not_authored_by(exclude_author),
            )
            .values({column: True})
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount or 0

    async def mark_seen_where(
        self,
        case_clause: ColumnElement[bool],
        track: SeenTrack,
        *,
        exclude_author: str | None = None,
    ) -> int:
        """Bulk variant of :meth:`mark_seen` over every case matching ``case_clause``."""

        column = seen_column(track)
        case_ids = select(SupportCase.id).where(case_clause)
        stmt = (
            update(SupportMessage)
            .where(
                SupportMessage.case_id.in_(case_ids),
                column.is_(False),
                _not_authored_by(exclude_author),
            )
            .values({column: True})
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount or 0

    async def unseen_count(
        self,
        case_clause: ColumnElement[bool],
        track: SeenTrack,
        *,
        exclude_author: str | None = None,
    ) -> int:
        column = seen_column(track)
        stmt = (
            select(func.count(SupportMessage.seq))
            .join(SupportCase, SupportCase.id == SupportMessage.case_id)
            .where(case_clause, column.is_(False), _not_authored_by(exclude_author))
        )
        return (await self.session.execute(stmt)).scalar_one()

    async def delete(self, case_id: str, message_id: str) -> None:
        exists = await self.session.execute(
            select(SupportMessage.seq).where(
                SupportMessage.case_id == case_id, SupportMessage.id == message_id
            )
        )
        if exists.scalar_one_or_none() is None:
            raise SupportNotFoundError("Support case or message not found")

        remaining = (
            select(func.count(SupportMessage.seq))
            .where(SupportMessage.case_id == case_id)
            .scalar_subquery()
        )
        stmt = (
            delete(SupportMessage)
            .where(
                and_(
                    SupportMessage.case_id == case_id,
                    SupportMessage.id == message_id,
                    remaining > 1,
                )
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        if not result.rowcount:
            raise SupportValidationError("A support case must keep at least one message")
