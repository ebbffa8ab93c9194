"""Dependency helpers for the support service."""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import cast

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from realestate.common import lifespan_session

from .broadcaster import RoomBroadcaster
from .notifier import CaseNotifier
from .repository import SupportCaseRepository
from .roles import Caller
from .services import SupportCaseService
from .side_effects import SideEffectDispatcher


async def get_session(request: Request) -> AsyncIterator[AsyncSession]:
    session_factory: async_sessionmaker[AsyncSession] = request.app.state.session_factory
    async with lifespan_session(session_factory) as session:
        yield session


def get_repository(session: AsyncSession = Depends(get_session)) -> SupportCaseRepository:
    return SupportCaseRepository(session)


def get_caller(
    user_id: str | None = Header(default=None, alias="X-User-Id"),
    user_role: str | None = Header(default=None, alias="X-User-Role"),
) -> Caller:
    """Identity and role as forwarded by the authentication layer."""

    return Caller.from_claims(user_id, user_role)


def _required_state(request: Request, name: str, description: str) -> object:
    value = getattr(request.app.state, name, None)
    if value is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{description} is not configured",
        )
    return value


def get_broadcaster(request: Request) -> RoomBroadcaster:
    return cast(RoomBroadcaster, _required_state(request, "broadcaster", "Real-time broadcaster"))


def get_notifier(request: Request) -> CaseNotifier:
    return cast(CaseNotifier, _required_state(request, "notifier", "Email notifier"))


def get_side_effects(request: Request) -> SideEffectDispatcher:
    return cast(SideEffectDispatcher, _required_state(request, "side_effects", "Side effect dispatcher"))


def get_service(
    repository: SupportCaseRepository = Depends(get_repository),
    broadcaster: RoomBroadcaster = Depends(get_broadcaster),
    notifier: CaseNotifier = Depends(get_notifier),
    side_effects: SideEffectDispatcher = Depends(get_side_effects),
) -> SupportCaseService:
    return SupportCaseService(repository, broadcaster, notifier, side_effects)
