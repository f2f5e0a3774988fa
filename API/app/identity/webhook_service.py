"""Apply identity-provider events to the local store.

The provider does not order related events, so a membership can arrive before
the user or organization it references. `organization_membership.created` is
the repair point: it fetches whatever is missing and attaches the tenant to the
user.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.errors import EntityNotFoundError
from app.core.identity_provider import IdentityProvider
from app.core.logging import DOMAIN_IDENTITY, get_domain_logger
from app.identity.sync_service import SyncService
from app.schemas.identity import (
    EventType,
    IdentityEvent,
    MembershipEvent,
    OrganizationEvent,
    UnknownEvent,
    UserEvent,
    WebhookEnvelope,
    parse_event,
)

logger = get_domain_logger(__name__, DOMAIN_IDENTITY)


class FailureClass(str, Enum):
    RECOVERABLE = "recoverable"
    FATAL = "fatal"


class Outcome(str, Enum):
    APPLIED = "applied"
    ABSORBED = "absorbed"
    IGNORED = "ignored"


# Updates and deletes may legitimately arrive before the record they address exists.
_ABSENCE_TOLERANT = frozenset(
    {
        EventType.USER_UPDATED,
        EventType.USER_DELETED,
        EventType.ORGANIZATION_DELETED,
        EventType.MEMBERSHIP_DELETED,
    }
)


def classify_failure(event_type: EventType, exc: BaseException) -> FailureClass:
    if event_type == EventType.USER_CREATED:
        # A later membership event recreates the user with its tenant attached.
        return FailureClass.RECOVERABLE
    if isinstance(exc, EntityNotFoundError) and event_type in _ABSENCE_TOLERANT:
        return FailureClass.RECOVERABLE
    return FailureClass.FATAL


@dataclass(frozen=True)
class ProcessingResult:
    event_id: str
    event_type: str
    outcome: Outcome


class WebhookService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        identity_provider: IdentityProvider,
        sync_service: SyncService | None = None,
    ):
        self.identity_provider = identity_provider
        self.sync = sync_service or SyncService(session_factory)
        self._handlers: dict[EventType, Callable[[IdentityEvent], Awaitable[None]]] = {
            EventType.USER_CREATED: self._user_created,
            EventType.USER_UPDATED: self._user_updated,
            EventType.USER_DELETED: self._user_deleted,
            EventType.ORGANIZATION_CREATED: self._organization_created,
            EventType.ORGANIZATION_UPDATED: self._organization_updated,
            EventType.ORGANIZATION_DELETED: self._organization_deleted,
            EventType.MEMBERSHIP_CREATED: self._membership_created,
            EventType.MEMBERSHIP_UPDATED: self._membership_updated,
            EventType.MEMBERSHIP_DELETED: self._membership_deleted,
        }
        unhandled = set(EventType) - set(self._handlers)
        if unhandled:
            raise RuntimeError(f"No webhook handler for event types: {sorted(t.value for t in unhandled)}")

    async def process_envelope(self, envelope: WebhookEnvelope) -> ProcessingResult:
        return await self.process_event(parse_event(envelope))

    async def process_event(self, event: IdentityEvent) -> ProcessingResult:
        if isinstance(event, UnknownEvent):
            logger.info("Unhandled webhook event type: %s | event_id=%s", event.type, event.id)
            return ProcessingResult(event.id, event.type, Outcome.IGNORED)

        event_type = EventType(event.type)
        logger.info("Processing webhook event: %s | event_id=%s", event_type.value, event.id)
        try:
            await self._handlers[event_type](event)
        except Exception as exc:
            if classify_failure(event_type, exc) == FailureClass.RECOVERABLE:
                logger.warning(
                    "Absorbed webhook failure | type=%s event_id=%s error=%s",
                    event_type.value,
                    event.id,
                    exc,
                )
                return ProcessingResult(event.id, event_type.value, Outcome.ABSORBED)
            logger.error(
                "Error processing webhook event | type=%s event_id=%s error=%s",
                event_type.value,
                event.id,
                exc,
            )
            raise
        return ProcessingResult(event.id, event_type.value, Outcome.APPLIED)

    # ── users ────────────────────────────────────────────────────────────────

    async def _user_created(self, event: UserEvent) -> None:
        user = await self.sync.sync_user(event.data, None)
        logger.info(
            "User synced | local_user_id=%s workos_user_id=%s tenant_id=%s",
            user.id,
            user.workos_user_id,
            user.tenant_id,
        )

    async def _user_updated(self, event: UserEvent) -> None:
        user = await self.sync.update_user(event.data)
        logger.info("User updated | local_user_id=%s workos_user_id=%s", user.id, user.workos_user_id)

    async def _user_deleted(self, event: UserEvent) -> None:
        user = await self.sync.soft_delete_user(event.data.id)
        logger.info("User soft deleted | local_user_id=%s deleted_at=%s", user.id, user.deleted_at)

    # ── organizations ────────────────────────────────────────────────────────

    async def _organization_created(self, event: OrganizationEvent) -> None:
        tenant = await self.sync.sync_tenant(event.data)
        logger.info("Organization synced | tenant_id=%s workos_org_id=%s", tenant.id, tenant.workos_organization_id)

    async def _organization_updated(self, event: OrganizationEvent) -> None:
        tenant = await self.sync.update_tenant(event.data)
        logger.info("Organization updated | tenant_id=%s name=%s", tenant.id, tenant.name)

    async def _organization_deleted(self, event: OrganizationEvent) -> None:
        tenant = await self.sync.soft_delete_tenant(event.data.id)
        logger.warning(
            "Tenant soft deleted; child users, memberships and progress rows are kept | tenant_id=%s",
            tenant.id,
        )

    # ── memberships ──────────────────────────────────────────────────────────

    async def _resolve_tenant(self, provider_org_id: str) -> uuid.UUID:
        tenant_id = await self.sync.get_local_tenant_id(provider_org_id)
        if tenant_id is not None:
            return tenant_id
        logger.info("Organization not found locally, fetching from provider | workos_org_id=%s", provider_org_id)
        organization = await self.identity_provider.get_organization(provider_org_id)
        tenant = await self.sync.sync_tenant(organization)
        return tenant.id

    async def _resolve_user(self, provider_user_id: str, tenant_id: uuid.UUID) -> uuid.UUID:
        user = await self.sync.get_local_user(provider_user_id)
        if user is None:
            logger.info("User not found locally, fetching from provider | workos_user_id=%s", provider_user_id)
            fetched = await self.identity_provider.get_user(provider_user_id)
            created = await self.sync.sync_user(fetched, tenant_id)
            return created.id
        if user.tenant_id is None:
            # user.created got here first and had no tenant to attach.
            await self.sync.assign_tenant_if_missing(user.id, tenant_id)
            logger.info("Attached tenant to existing user | local_user_id=%s tenant_id=%s", user.id, tenant_id)
        return user.id

    async def _membership_created(self, event: MembershipEvent) -> None:
        data = event.data
        # Tenant first: a newly created user needs the tenant id at creation time.
        tenant_id = await self._resolve_tenant(data.organization_id)
        await self._resolve_user(data.user_id, tenant_id)
        membership = await self.sync.sync_membership(data)
        logger.info(
            "Membership synced | membership_id=%s user_id=%s organization_id=%s role=%s",
            membership.id,
            membership.user_id,
            membership.organization_id,
            membership.role,
        )

    async def _membership_updated(self, event: MembershipEvent) -> None:
        data = event.data
        membership = await self.sync.update_membership(data.user_id, data.organization_id, data.role, data.status)
        logger.info("Membership updated | membership_id=%s role=%s status=%s", membership.id, membership.role, membership.status)

    async def _membership_deleted(self, event: MembershipEvent) -> None:
        data = event.data
        membership = await self.sync.remove_membership(data.user_id, data.organization_id)
        logger.info("Membership soft deleted | membership_id=%s", membership.id)
