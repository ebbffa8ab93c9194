"""Pydantic schemas for the support case service."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

CaseStatus = Literal["open", "closed"]
ClosedBy = Literal["client", "agent", "super admin"]
CaseOrigin = Literal["b2b", "b2c"]


def _strip_or_none(value: str | None) -> str | None:
    if value is None:
        return None
    cleaned = value.strip()
    return cleaned or None


class MessageAuthor(BaseModel):
    display_name: str | None = Field(
        default=None,
        validation_alias=AliasChoices("displayName", "customerName", "display_name"),
        serialization_alias="displayName",
    )
    contact_email: str | None = Field(
        default=None,
        validation_alias=AliasChoices("contactEmail", "customerEmail", "contact_email"),
        serialization_alias="contactEmail",
    )
    author_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("authorId", "userId", "author_id"),
        serialization_alias="authorId",
    )

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("display_name", "contact_email", "author_id")
    @classmethod
    def _strip(cls, value: str | None) -> str | None:
        return _strip_or_none(value)


class MessageCreate(BaseModel):
    message_by: MessageAuthor | None = Field(default=None, alias="messageBy")
    message: str | None = None
    date: datetime | None = None
    inquiry_about: str | None = Field(default=None, alias="inquiryAbout")
    inquiry_details: str | None = Field(default=None, alias="inquiryDetails")

    model_config = ConfigDict(populate_by_name=True)


class MessageResponse(BaseModel):
    id: str
    message_by: MessageAuthor = Field(alias="messageBy")
    message: str
    date: datetime
    inquiry_about: str | None = Field(default=None, alias="inquiryAbout")
    inquiry_details: str | None = Field(default=None, alias="inquiryDetails")
    seen_by_admin: bool = Field(alias="seenByAdmin")
    seen_by_agent: bool = Field(alias="seenByAgent")
    seen_by_client: bool = Field(alias="seenByClient")

    model_config = ConfigDict(populate_by_name=True)


class CaseCreate(BaseModel):
    """Opening request; required fields are checked by the service."""

    customer_name: str | None = Field(default=None, alias="customerName")
    customer_email: str | None = Field(default=None, alias="customerEmail")
    inquiry_about: str | None = Field(default=None, alias="inquiryAbout")
    inquiry_details: str | None = Field(default=None, alias="inquiryDetails")
    supporter_id: str | None = Field(default=None, alias="supporterId")
    supporter_name: str | None = Field(default=None, alias="supporterName")
    owner_id: str | None = Field(default=None, alias="ownerId")
    property_id: str | None = Field(default=None, alias="propertyId")
    display_name1: str | None = Field(default=None, alias="displayName1")
    display_name2: str | None = Field(default=None, alias="displayName2")

    model_config = ConfigDict(populate_by_name=True)

    @field_validator(
        "customer_name",
        "customer_email",
        "inquiry_about",
        "inquiry_details",
        "supporter_id",
        "supporter_name",
        "owner_id",
        "property_id",
        "display_name1",
        "display_name2",
    )
    @classmethod
    def _strip(cls, value: str | None) -> str | None:
        return _strip_or_none(value)


class CaseUpdate(BaseModel):
    supporter_id: str | None = Field(default=None, alias="supporterId")
    case_status: CaseStatus | None = Field(default=None, alias="caseStatus")
    conversation: MessageCreate | None = None
    closed_by: ClosedBy | None = Field(default=None, alias="closedBy")
    rating: float | None = Field(default=None, ge=0, le=5)
    supporter_name: str | None = Field(default=None, alias="supporterName")
    property_id: str | None = Field(default=None, alias="propertyId")

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("supporter_id", "supporter_name", "property_id")
    @classmethod
    def _strip(cls, value: str | None) -> str | None:
        return _strip_or_none(value)

    @field_validator("case_status", "closed_by", mode="before")
    @classmethod
    def _normalise_choice(cls, value: object) -> object:
        if isinstance(value, str):
            cleaned = _strip_or_none(value)
            return cleaned.lower() if cleaned else None
        return value


class AccountSummary(BaseModel):
    id: str
    name: str
    email: str | None = None
    role: str | None = None

    model_config = ConfigDict(from_attributes=True)


class PropertySummary(BaseModel):
    id: str
    name: str
    owner_id: str | None = Field(default=None, alias="ownerId")

    model_config = ConfigDict(populate_by_name=True, from_attributes=True)


class CaseResponse(BaseModel):
    id: str
    case_status: str = Field(alias="caseStatus")
    opened_by: str = Field(alias="openedBy")
    supporter_id: str | None = Field(default=None, alias="supporterId")
    supporter_name: str = Field(default="", alias="supporterName")
    property_id: str | None = Field(default=None, alias="propertyId")
    display_name1: str = Field(alias="displayName1")
    display_name2: str = Field(alias="displayName2")
    closed_by: str | None = Field(default=None, alias="closedBy")
    rating: float | None = None
    created_at: datetime = Field(alias="createdAt")
    conversation: list[MessageResponse]
    supporter: AccountSummary | None = None
    property: PropertySummary | None = None

    model_config = ConfigDict(populate_by_name=True)


class SeenUpdateResponse(BaseModel):
    message: str
    updated: int


class UnseenCountResponse(BaseModel):
    count: int


class MessageDeletedResponse(BaseModel):
    message: str
    updated_case: CaseResponse = Field(alias="updatedCase")

    model_config = ConfigDict(populate_by_name=True)
