"""Database helpers for support cases."""

from __future__ import annotations

from typing import Any

from sqlalchemy import ColumnElement, Select, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .conversation import ConversationLog, NewMessage
from .models import Account, Property, SupportCase

# Columns an update may write; ``opened_by`` and ``created_at`` are never among them.
UPDATABLE_FIELDS = frozenset(
    {"supporter_id", "case_status", "closed_by", "rating", "supporter_name", "property_id"}
)


class SupportCaseRepository:
    """Persistence helpers for support cases and their conversations."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self.conversation = ConversationLog(session)

    async def create_case(
        self,
        *,
        opened_by: str,
        supporter_id: str | None,
        supporter_name: str,
        property_id: str | None,
        display_name1: str,
        display_name2: str,
        first_message: NewMessage,
    ) -> SupportCase:
        support_case = SupportCase(
            case_status="open",
            opened_by=opened_by,
            supporter_id=supporter_id,
            supporter_name=supporter_name,
            property_id=property_id,
            display_name1=display_name1,
            display_name2=display_name2,
        )
        self.session.add(support_case)
        await self.session.flush()
        await self.conversation.append(support_case.id, first_message, first=True)
        return await self.reload(support_case.id)

    async def get_case(self, case_id: str) -> SupportCase | None:
        result = await self.session.execute(
            select(SupportCase)
            .where(SupportCase.id == case_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def reload(self, case_id: str) -> SupportCase:
        support_case = await self.get_case(case_id)
        if support_case is None:
            raise LookupError(case_id)
        return support_case

    async def update_fields(
        self,
        case_id: str,
        values: dict[str, Any],
        *,
        where: ColumnElement[bool] | None = None,
    ) -> int:
        """Write ``values`` onto one case with a single UPDATE.

        ``where`` narrows the statement further; the close transition uses it
        to only match cases that are still open.
        """

        unknown = set(values) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"fields not updatable: {sorted(unknown)}")
        if not values:
            return 0
        stmt = update(SupportCase).where(SupportCase.id == case_id)
        if where is not None:
            stmt = stmt.where(where)
        result = await self.session.execute(
            stmt.values(**values).execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    async def find_cases(self, clause: ColumnElement[bool]) -> list[SupportCase]:
        stmt: Select[tuple[SupportCase]] = (
            select(SupportCase)
            .where(clause)
            .order_by(SupportCase.created_at.desc())
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().unique())

    async def references_for(
        self, cases: list[SupportCase]
    ) -> tuple[dict[str, Account], dict[str, Property]]:
        """Load the supporter accounts and properties referenced by ``cases`` in two queries."""

        account_ids = {case.supporter_id for case in cases if case.supporter_id}
        property_ids = {case.property_id for case in cases if case.property_id}
        accounts: dict[str, Account] = {}
        properties: dict[str, Property] = {}
        if account_ids:
            account_rows = await self.session.execute(select(Account).where(Account.id.in_(account_ids)))
            accounts = {account.id: account for account in account_rows.scalars()}
        if property_ids:
            property_rows = await self.session.execute(select(Property).where(Property.id.in_(property_ids)))
            properties = {prop.id: prop for prop in property_rows.scalars()}
        return accounts, properties

    async def get_property(self, property_id: str | None) -> Property | None:
        if not property_id:
            return None
        return await self.session.get(Property, property_id)

    async def property_owner(self, property_id: str | None) -> str | None:
        if not property_id:
            return None
        result = await self.session.execute(
            select(Property.owner_id).where(Property.id == property_id)
        )
        return result.scalar_one_or_none()

    async def property_name(self, property_id: str | None) -> str | None:
        if not property_id:
            return None
        result = await self.session.execute(select(Property.name).where(Property.id == property_id))
        return result.scalar_one_or_none()

    async def get_account(self, account_id: str | None) -> Account | None:
        if not account_id:
            return None
        return await self.session.get(Account, account_id)

    async def commit(self) -> None:
        await self.session.commit()
