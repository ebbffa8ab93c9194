"""Role-based visibility of support cases.

Every function here is pure: it maps a caller (and optional listing filters)
onto a SQLAlchemy predicate over ``SupportCase`` or a yes/no answer for an
already loaded case. Nothing is executed against the database.
"""

from __future__ import annotations

from collections.abc import Iterable

from sqlalchemy import ColumnElement, and_, exists, false, or_, select, true
from sqlalchemy.orm import aliased

from .models import Property, SupportCase, SupportMessage
from .roles import Caller, Role

STAFF_OPENERS = (Role.SUPER_ADMIN.value, Role.AGENT.value)
CLIENT_OPENERS = (Role.CLIENT.value,)


def origin_clause(origin: str | None) -> ColumnElement[bool]:
    """B2B cases were opened by staff, B2C cases by a client."""

    if origin is None:
        return true()
    if origin == "b2b":
        return SupportCase.opened_by.in_(STAFF_OPENERS)
    if origin == "b2c":
        return SupportCase.opened_by.in_(CLIENT_OPENERS)
    raise ValueError(f"unknown case origin: {origin!r}")


def status_clause(status: str | None) -> ColumnElement[bool]:
    if status is None:
        return true()
    return SupportCase.case_status == status


def owned_by(agent_id: str) -> ColumnElement[bool]:
    """Cases whose property belongs to ``agent_id``."""

    owned_properties = select(Property.id).where(Property.owner_id == agent_id)
    return SupportCase.property_id.in_(owned_properties)


def participated_by(identity: str) -> ColumnElement[bool]:
    """Cases with at least one message authored by ``identity``."""

    # Aliased so the subquery keeps its own FROM when the outer query already
    # selects from support_messages; only the case row is correlated.
    authored = aliased(SupportMessage)
    return exists(
        select(authored.seq)
        .where(authored.case_id == SupportCase.id, authored.author_id == identity)
        .correlate(SupportCase)
    )


def agent_clause(agent_id: str, origin: str | None) -> ColumnElement[bool]:
    assigned = SupportCase.supporter_id == agent_id
    if origin == "b2b":
        return assigned
    if origin == "b2c":
        return or_(assigned, owned_by(agent_id))
    return or_(
        and_(origin_clause("b2b"), assigned),
        and_(origin_clause("b2c"), or_(assigned, owned_by(agent_id))),
    )


def staff_listing_clause(caller: Caller, origin: str | None = None) -> ColumnElement[bool]:
    """Restriction applied to the staff case listings.

    Clients and unauthenticated callers see nothing through these listings.
    """

    if caller.role is Role.SUPER_ADMIN:
        return true()
    if caller.role is Role.AGENT and caller.identity:
        return agent_clause(caller.identity, origin)
    return false()


def participant_clause(caller: Caller) -> ColumnElement[bool]:
    """Cases the caller took part in, used for "my cases" and client reads."""

    if caller.identity is None or caller.role is Role.ANONYMOUS:
        return false()
    return participated_by(caller.identity)


def own_cases_clause(caller: Caller) -> ColumnElement[bool]:
    """Cases the caller wrote in or is assigned to as supporter."""

    if caller.identity is None or caller.role is Role.ANONYMOUS:
        return false()
    return or_(participated_by(caller.identity), SupportCase.supporter_id == caller.identity)


def readable_clause(caller: Caller) -> ColumnElement[bool]:
    """Every case the caller may open individually."""

    if caller.role is Role.SUPER_ADMIN:
        return true()
    if caller.role is Role.AGENT and caller.identity:
        return or_(SupportCase.supporter_id == caller.identity, owned_by(caller.identity))
    return participant_clause(caller)


def case_filter(
    caller: Caller,
    *,
    status: str | None = None,
    origin: str | None = None,
    property_id: str | None = None,
) -> ColumnElement[bool]:
    """Compose visibility with the status/origin/property listing axes.

    For example open B2B cases for agent X become
    ``case_status = 'open' AND opened_by IN (agent, super admin) AND supporter_id = X``.
    """

    clauses = [staff_listing_clause(caller, origin), status_clause(status), origin_clause(origin)]
    if property_id is not None:
        clauses.append(SupportCase.property_id == property_id)
    return and_(*clauses)


def can_read_case(
    caller: Caller,
    support_case: SupportCase,
    *,
    property_owner_id: str | None,
) -> bool:
    """Decide whether ``caller`` may read an already loaded case."""

    if caller.role is Role.SUPER_ADMIN:
        return True
    if caller.identity is None or caller.role is Role.ANONYMOUS:
        return False
    if caller.role is Role.AGENT:
        if support_case.supporter_id == caller.identity:
            return True
        return property_owner_id is not None and property_owner_id == caller.identity
    return is_participant(caller.identity, support_case.conversation)


def is_participant(identity: str, conversation: Iterable[SupportMessage]) -> bool:
    return any(message.author_id == identity for message in conversation)
