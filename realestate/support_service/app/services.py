"""Lifecycle of support cases: creation, updates, reads and seen-marks."""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Any, get_args

from sqlalchemy import and_

from realestate.common import get_tracer

from .broadcaster import (
    CLOSE_CASE,
    MESSAGE_DELETED,
    MESSAGE_SEEN,
    NEW_CHAT,
    RECEIVE_MESSAGE,
    RoomBroadcaster,
)
from .conversation import NewMessage, opening_text
from .errors import SupportAuthorizationError, SupportNotFoundError, SupportValidationError
from .metrics import (
    SUPPORT_CASE_CLOSED_TOTAL,
    SUPPORT_CASE_CREATED_TOTAL,
    SUPPORT_MESSAGE_ADDED_TOTAL,
    SUPPORT_MESSAGE_DELETED_TOTAL,
    SUPPORT_MESSAGES_SEEN_TOTAL,
    normalise_label,
)
from .models import Account, Property, SupportCase, SupportMessage
from .notifier import CaseNotifier
from .repository import SupportCaseRepository
from .roles import Caller, Role, SeenTrack
from .schemas import (
    CaseCreate,
    CaseOrigin,
    CaseResponse,
    CaseStatus,
    CaseUpdate,
    MessageDeletedResponse,
    SeenUpdateResponse,
    UnseenCountResponse,
)
from .side_effects import SideEffectDispatcher
from .visibility import (
    can_read_case,
    case_filter,
    own_cases_clause,
    participant_clause,
    readable_clause,
    status_clause,
)

logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)

DEFAULT_CONTACT_EMAIL = "no-email@example.com"
NOTHING_TO_MARK = "Support case not found or no unseen messages"
_CASE_STATUSES = frozenset(get_args(CaseStatus))
_CASE_ORIGINS = frozenset(get_args(CaseOrigin))
_PROPERTY_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,64}$")

_REQUIRED_CREATE_FIELDS = (
    ("customer_name", "customerName"),
    ("inquiry_about", "inquiryAbout"),
    ("inquiry_details", "inquiryDetails"),
    ("supporter_id", "supporterId"),
    ("owner_id", "ownerId"),
    ("display_name1", "displayName1"),
    ("display_name2", "displayName2"),
)


def _ensure_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def acting_role(caller: Caller) -> Role:
    """Role recorded as ``openedBy`` / ``closedBy`` for a caller."""

    if caller.role is Role.SUPER_ADMIN:
        return Role.SUPER_ADMIN
    if caller.role is Role.AGENT:
        return Role.AGENT
    return Role.CLIENT


def _message_to_dict(message: SupportMessage) -> dict[str, Any]:
    return {
        "id": message.id,
        "messageBy": {
            "displayName": message.display_name,
            "contactEmail": message.contact_email,
            "authorId": message.author_id,
        },
        "message": message.message,
        "date": _ensure_utc(message.date),
        "inquiryAbout": message.inquiry_about,
        "inquiryDetails": message.inquiry_details,
        "seenByAdmin": message.seen_by_admin,
        "seenByAgent": message.seen_by_agent,
        "seenByClient": message.seen_by_client,
    }


def _serialize_case(
    support_case: SupportCase,
    *,
    supporter: Account | None = None,
    property: Property | None = None,
) -> dict[str, Any]:
    return {
        "id": support_case.id,
        "caseStatus": support_case.case_status,
        "openedBy": support_case.opened_by,
        "supporterId": support_case.supporter_id,
        "supporterName": support_case.supporter_name or "",
        "propertyId": support_case.property_id,
        "displayName1": support_case.display_name1,
        "displayName2": support_case.display_name2,
        "closedBy": support_case.closed_by,
        "rating": support_case.rating,
        "createdAt": _ensure_utc(support_case.created_at),
        "conversation": [_message_to_dict(message) for message in support_case.conversation],
        "supporter": None
        if supporter is None
        else {"id": supporter.id, "name": supporter.name, "email": supporter.email, "role": supporter.role},
        "property": None
        if property is None
        else {"id": property.id, "name": property.name, "ownerId": property.owner_id},
    }


def _to_response(support_case: SupportCase, **expand: Any) -> CaseResponse:
    return CaseResponse.model_validate(_serialize_case(support_case, **expand))


def _wire(model: CaseResponse) -> dict[str, Any]:
    return model.model_dump(mode="json", by_alias=True, exclude={"supporter", "property"})


class SupportCaseService:
    """Application service orchestrating the support case lifecycle.

    Every write is committed before its broadcasts and emails are handed to
    the side-effect dispatcher, so a failing collaborator can never undo or
    fail a change that already happened.
    """

    def __init__(
        self,
        repository: SupportCaseRepository,
        broadcaster: RoomBroadcaster,
        notifier: CaseNotifier,
        side_effects: SideEffectDispatcher,
    ) -> None:
        self.repository = repository
        self.broadcaster = broadcaster
        self.notifier = notifier
        self.side_effects = side_effects

    async def create_case(self, payload: CaseCreate, caller: Caller) -> CaseResponse:
        missing = [alias for name, alias in _REQUIRED_CREATE_FIELDS if getattr(payload, name) is None]
        if missing:
            raise SupportValidationError(f"Missing required fields: {', '.join(missing)}")

        opened_by = acting_role(caller)
        first_message = NewMessage(
            display_name=payload.customer_name or "",
            body=opening_text(opened_by),
            author_role=opened_by,
            contact_email=payload.customer_email or DEFAULT_CONTACT_EMAIL,
            author_id=payload.supporter_id if opened_by is Role.SUPER_ADMIN else payload.owner_id,
            inquiry_about=payload.inquiry_about,
            inquiry_details=payload.inquiry_details,
        )
        with tracer.start_as_current_span("support.create_case") as span:
            span.set_attribute("support.opened_by", opened_by.value)
            support_case = await self.repository.create_case(
                opened_by=opened_by.value,
                supporter_id=payload.supporter_id,
                supporter_name=payload.supporter_name or "",
                property_id=payload.property_id,
                display_name1=payload.display_name1 or "",
                display_name2=payload.display_name2 or "",
                first_message=first_message,
            )
            await self.repository.commit()
            span.set_attribute("support.case_id", support_case.id)

        SUPPORT_CASE_CREATED_TOTAL.labels(opened_by=normalise_label(opened_by.value)).inc()
        logger.info("Support case %s opened by %s", support_case.id, opened_by.value)

        response = _to_response(support_case)
        owner_id = await self.repository.property_owner(support_case.property_id)
        property_name = await self.repository.property_name(support_case.property_id)
        case_payload = _wire(response)
        self.side_effects.dispatch(
            "broadcast",
            self.broadcaster.broadcast_global(NEW_CHAT, {**case_payload, "targetAgentId": owner_id}),
        )
        self.side_effects.dispatch("email", self.notifier.case_opened(case_payload, property_name))
        return response

    async def get_case(self, case_id: str, caller: Caller) -> CaseResponse:
        support_case = await self._readable_case(case_id, caller)
        supporter = await self.repository.get_account(support_case.supporter_id)
        property = await self.repository.get_property(support_case.property_id)
        return _to_response(support_case, supporter=supporter, property=property)

    async def update_case(self, case_id: str, payload: CaseUpdate, caller: Caller) -> CaseResponse:
        if not any(getattr(payload, field) is not None for field in CaseUpdate.model_fields):
            raise SupportValidationError("No valid fields provided for update")

        support_case = await self._readable_case(case_id, caller)
        requested_status = payload.case_status
        if requested_status == "open" and support_case.case_status == "closed":
            raise SupportValidationError("A closed support case cannot be reopened")
        if payload.closed_by is not None and requested_status != "closed":
            raise SupportValidationError("closedBy can only be set when closing the case")

        closing = requested_status == "closed" and support_case.case_status == "open"
        closed_by = payload.closed_by or acting_role(caller).value
        values = {
            column: getattr(payload, column)
            for column in ("supporter_id", "supporter_name", "property_id", "rating")
            if getattr(payload, column) is not None
        }

        with tracer.start_as_current_span("support.update_case") as span:
            span.set_attribute("support.case_id", case_id)
            appended: SupportMessage | None = None
            if payload.conversation is not None:
                appended = await self._append_message(case_id, payload, caller)
            await self.repository.update_fields(case_id, values)
            if closing:
                # Only the request that still finds the case open performs the transition.
                changed = await self.repository.update_fields(
                    case_id,
                    {"case_status": "closed", "closed_by": closed_by},
                    where=SupportCase.case_status == "open",
                )
                closing = changed == 1
            await self.repository.commit()

        support_case = await self.repository.reload(case_id)
        response = _to_response(support_case)
        case_payload = _wire(response)

        if appended is not None:
            SUPPORT_MESSAGE_ADDED_TOTAL.labels(author_role=normalise_label(acting_role(caller).value)).inc()
            message_payload = next(
                (message for message in case_payload["conversation"] if message["id"] == appended.id),
                None,
            )
            self.side_effects.dispatch(
                "broadcast",
                self.broadcaster.broadcast_to_room(
                    case_id,
                    RECEIVE_MESSAGE,
                    {"caseId": case_id, "message": message_payload, "case": case_payload},
                ),
            )
        if closing:
            SUPPORT_CASE_CLOSED_TOTAL.labels(closed_by=normalise_label(closed_by)).inc()
            logger.info("Support case %s closed by %s", case_id, closed_by)
            owner_id = await self.repository.property_owner(support_case.property_id)
            property_name = await self.repository.property_name(support_case.property_id)
            self.side_effects.dispatch(
                "broadcast",
                self.broadcaster.broadcast_global(
                    CLOSE_CASE,
                    {"case": {**case_payload, "targetAgentId": owner_id}, "closedBy": closed_by},
                ),
            )
            self.side_effects.dispatch(
                "email", self.notifier.case_closed(case_payload, property_name, closed_by)
            )
        return response

    async def _append_message(self, case_id: str, payload: CaseUpdate, caller: Caller) -> SupportMessage:
        assert payload.conversation is not None
        incoming = payload.conversation
        author = incoming.message_by
        if author is None or author.display_name is None:
            raise SupportValidationError("messageBy.displayName is required")
        entry = NewMessage(
            display_name=author.display_name,
            body=incoming.message,
            author_role=acting_role(caller),
            contact_email=author.contact_email,
            author_id=author.author_id or caller.identity,
            inquiry_about=incoming.inquiry_about,
            inquiry_details=incoming.inquiry_details,
            date=_ensure_utc(incoming.date),
        )
        return await self.repository.conversation.append(case_id, entry)

    async def list_cases(
        self,
        caller: Caller,
        *,
        status: str | None = None,
        origin: str | None = None,
        property_id: str | None = None,
    ) -> list[CaseResponse]:
        if status is not None and status not in _CASE_STATUSES:
            raise SupportValidationError("status must be 'open' or 'closed'")
        if origin is not None and origin not in _CASE_ORIGINS:
            raise SupportValidationError("origin must be 'b2b' or 'b2c'")
        clause = case_filter(caller, status=status, origin=origin, property_id=property_id)
        return await self._expanded(await self.repository.find_cases(clause))

    async def list_admin_cases(self, caller: Caller, *, origin: str, status: str) -> list[CaseResponse]:
        if caller.role is not Role.SUPER_ADMIN:
            raise SupportAuthorizationError()
        return await self.list_cases(caller, status=status, origin=origin)

    async def list_property_cases(
        self,
        caller: Caller,
        property_id: str,
        *,
        status: str,
        origin: str | None = None,
    ) -> list[CaseResponse]:
        if not _PROPERTY_ID_PATTERN.match(property_id):
            raise SupportValidationError("Invalid property ID")
        return await self.list_cases(caller, status=status, origin=origin, property_id=property_id)

    async def list_own_cases(self, caller: Caller, *, status: str | None = None) -> list[CaseResponse]:
        if status is not None and status not in _CASE_STATUSES:
            raise SupportValidationError("status must be 'open' or 'closed'")
        cases = await self.repository.find_cases(and_(own_cases_clause(caller), status_clause(status)))
        return await self._expanded(cases)

    async def mark_seen(
        self,
        case_id: str,
        caller: Caller,
        track: SeenTrack | None = None,
    ) -> SeenUpdateResponse:
        own_track = caller.seen_track
        if own_track is None:
            raise SupportAuthorizationError()
        track = track or own_track
        if track is not own_track and caller.role is not Role.SUPER_ADMIN:
            raise SupportAuthorizationError()
        await self._readable_case(case_id, caller)

        # Staff never mark their own messages; a client marks the whole case.
        exclude = caller.identity if caller.role.is_staff else None
        updated = await self.repository.conversation.mark_seen(case_id, track, exclude_author=exclude)
        if not updated:
            raise SupportNotFoundError(NOTHING_TO_MARK)
        await self.repository.commit()

        SUPPORT_MESSAGES_SEEN_TOTAL.labels(track=track.value).inc(updated)
        self.side_effects.dispatch(
            "broadcast",
            self.broadcaster.broadcast_to_room(
                case_id,
                MESSAGE_SEEN,
                {"caseId": case_id, "userId": caller.identity, "track": track.value},
            ),
        )
        return SeenUpdateResponse(message="Messages marked as seen", updated=updated)

    async def mark_all_seen(self, caller: Caller) -> SeenUpdateResponse:
        track = caller.seen_track
        if track is None:
            raise SupportAuthorizationError()
        exclude = caller.identity if caller.role.is_staff else None
        updated = await self.repository.conversation.mark_seen_where(
            readable_clause(caller), track, exclude_author=exclude
        )
        if not updated:
            raise SupportNotFoundError(NOTHING_TO_MARK)
        await self.repository.commit()
        SUPPORT_MESSAGES_SEEN_TOTAL.labels(track=track.value).inc(updated)
        logger.info("Marked %d message(s) as seen on the %s track", updated, track.value)
        return SeenUpdateResponse(message="All messages marked as seen", updated=updated)

    async def unseen_count(self, caller: Caller) -> UnseenCountResponse:
        track = caller.seen_track
        if track is None:
            return UnseenCountResponse(count=0)
        if caller.role is Role.CLIENT:
            clause = and_(participant_clause(caller), status_clause("open"))
        else:
            clause = readable_clause(caller)
        count = await self.repository.conversation.unseen_count(
            clause, track, exclude_author=caller.identity
        )
        return UnseenCountResponse(count=count)

    async def delete_message(self, case_id: str, message_id: str, caller: Caller) -> MessageDeletedResponse:
        if not caller.role.is_staff:
            raise SupportAuthorizationError()
        await self._readable_case(case_id, caller)
        await self.repository.conversation.delete(case_id, message_id)
        await self.repository.commit()

        SUPPORT_MESSAGE_DELETED_TOTAL.inc()
        logger.info("Message %s deleted from support case %s", message_id, case_id)
        support_case = await self.repository.reload(case_id)
        self.side_effects.dispatch(
            "broadcast",
            self.broadcaster.broadcast_to_room(
                case_id, MESSAGE_DELETED, {"caseId": case_id, "messageId": message_id}
            ),
        )
        return MessageDeletedResponse(message="Message deleted successfully", updated_case=_to_response(support_case))

    async def _expanded(self, cases: list[SupportCase]) -> list[CaseResponse]:
        accounts, properties = await self.repository.references_for(cases)
        return [
            _to_response(
                support_case,
                supporter=accounts.get(support_case.supporter_id or ""),
                property=properties.get(support_case.property_id or ""),
            )
            for support_case in cases
        ]

    async def _readable_case(self, case_id: str, caller: Caller) -> SupportCase:
        support_case = await self.repository.get_case(case_id)
        if support_case is None:
            raise SupportNotFoundError("Support case not found")
        owner_id = await self.repository.property_owner(support_case.property_id)
        if not can_read_case(caller, support_case, property_owner_id=owner_id):
            raise SupportAuthorizationError()
        return support_case

    async def can_join_room(self, case_id: str, caller: Caller) -> bool:
        """Whether ``caller`` may receive the real-time events of a case."""

        support_case = await self.repository.get_case(case_id)
        if support_case is None:
            return False
        owner_id = await self.repository.property_owner(support_case.property_id)
        return can_read_case(caller, support_case, property_owner_id=owner_id)
