"""Webhook envelope, typed identity events and provider records.

The identity provider posts loosely-typed JSON. Everything here is validated at
the boundary so the dispatcher only ever sees one of the typed event variants.
"""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator


OrganizationRole = Literal["admin", "member", "viewer"]
MembershipStatus = Literal["active", "inactive", "pending"]


class EventType(str, Enum):
    USER_CREATED = "user.created"
    USER_UPDATED = "user.updated"
    USER_DELETED = "user.deleted"
    ORGANIZATION_CREATED = "organization.created"
    ORGANIZATION_UPDATED = "organization.updated"
    ORGANIZATION_DELETED = "organization.deleted"
    MEMBERSHIP_CREATED = "organization_membership.created"
    MEMBERSHIP_UPDATED = "organization_membership.updated"
    MEMBERSHIP_DELETED = "organization_membership.deleted"


class WebhookEnvelope(BaseModel):
    """`{id, type, data, createdAt}`; the provider's `event`/`created_at` spelling is accepted too."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    type: str = Field(validation_alias=AliasChoices("type", "event"))
    data: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime | None = Field(
        default=None,
        validation_alias=AliasChoices("createdAt", "created_at"),
        serialization_alias="createdAt",
    )


# ── Provider records ─────────────────────────────────────────────────────────


class ProviderUser(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    email: str = ""
    first_name: str | None = Field(default=None, validation_alias=AliasChoices("first_name", "firstName"))
    last_name: str | None = Field(default=None, validation_alias=AliasChoices("last_name", "lastName"))
    profile_picture_url: str | None = Field(
        default=None, validation_alias=AliasChoices("profile_picture_url", "profilePictureUrl")
    )


class ProviderOrganization(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    name: str = ""
    domain: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _first_domain(cls, values: Any) -> Any:
        # Organizations carry `domains: [{domain: ...}]`; older payloads a flat `domain`.
        if isinstance(values, dict) and not values.get("domain"):
            domains = values.get("domains") or []
            if domains and isinstance(domains[0], dict):
                values = {**values, "domain": domains[0].get("domain")}
        return values


class ProviderMembership(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    user_id: str = Field(validation_alias=AliasChoices("user_id", "userId"))
    organization_id: str = Field(validation_alias=AliasChoices("organization_id", "organizationId"))
    role: OrganizationRole = "member"
    status: MembershipStatus = "active"

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, values: Any) -> Any:
        if not isinstance(values, dict):
            return values
        return {**values, "role": map_role(values.get("role")), "status": map_status(values.get("status"))}


def map_role(raw: Any) -> OrganizationRole:
    """Map a provider role (`"admin"` or `{"slug": "admin"}`) onto the local role set."""
    slug = raw.get("slug") if isinstance(raw, dict) else raw
    slug = str(slug or "").strip().lower()
    if slug in ("admin", "owner"):
        return "admin"
    if slug in ("viewer", "guest"):
        return "viewer"
    return "member"


def map_status(raw: Any) -> MembershipStatus:
    status = str(raw or "").strip().lower()
    if status in ("inactive", "pending"):
        return status  # type: ignore[return-value]
    return "active"


# ── Typed events ─────────────────────────────────────────────────────────────


class _Event(BaseModel):
    id: str
    created_at: datetime | None = None


class UserEvent(_Event):
    kind: Literal["user"] = "user"
    type: Literal[EventType.USER_CREATED, EventType.USER_UPDATED, EventType.USER_DELETED]
    data: ProviderUser


class OrganizationEvent(_Event):
    kind: Literal["organization"] = "organization"
    type: Literal[
        EventType.ORGANIZATION_CREATED,
        EventType.ORGANIZATION_UPDATED,
        EventType.ORGANIZATION_DELETED,
    ]
    data: ProviderOrganization


class MembershipEvent(_Event):
    kind: Literal["membership"] = "membership"
    type: Literal[
        EventType.MEMBERSHIP_CREATED,
        EventType.MEMBERSHIP_UPDATED,
        EventType.MEMBERSHIP_DELETED,
    ]
    data: ProviderMembership


class UnknownEvent(_Event):
    kind: Literal["unknown"] = "unknown"
    type: str
    data: dict[str, Any] = Field(default_factory=dict)


IdentityEvent = UserEvent | OrganizationEvent | MembershipEvent | UnknownEvent

_EVENT_MODELS: dict[str, type[_Event]] = {
    "user": UserEvent,
    "organization": OrganizationEvent,
    "organization_membership": MembershipEvent,
}


def parse_event(envelope: WebhookEnvelope) -> IdentityEvent:
    """Validate an envelope into its typed variant; unrecognised types become UnknownEvent."""
    try:
        event_type = EventType(envelope.type)
    except ValueError:
        return UnknownEvent(id=envelope.id, type=envelope.type, data=envelope.data, created_at=envelope.created_at)
    model = _EVENT_MODELS[event_type.value.rsplit(".", 1)[0]]
    return model.model_validate(
        {"id": envelope.id, "type": event_type, "data": envelope.data, "created_at": envelope.created_at}
    )
