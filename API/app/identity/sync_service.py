"""Local store operations for identity-provider records.

Every public method opens its own session and commits on its own; callers get
no cross-method transaction.
"""
from __future__ import annotations

import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.errors import EntityNotFoundError
from app.core.logging import DOMAIN_IDENTITY, get_domain_logger
from app.models.entities import OrganizationMembership, Tenant, User, utcnow
from app.schemas.identity import (
    MembershipStatus,
    OrganizationRole,
    ProviderMembership,
    ProviderOrganization,
    ProviderUser,
)

logger = get_domain_logger(__name__, DOMAIN_IDENTITY)


class SyncService:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    # ── lookups ──────────────────────────────────────────────────────────────

    @staticmethod
    async def _active_user(db: AsyncSession, provider_user_id: str) -> User | None:
        return (
            await db.execute(
                select(User).where(User.workos_user_id == provider_user_id, User.deleted_at.is_(None)).limit(1)
            )
        ).scalar_one_or_none()

    @staticmethod
    async def _active_tenant(db: AsyncSession, provider_org_id: str) -> Tenant | None:
        return (
            await db.execute(
                select(Tenant)
                .where(Tenant.workos_organization_id == provider_org_id, Tenant.deleted_at.is_(None))
                .limit(1)
            )
        ).scalar_one_or_none()

    async def get_local_user(self, provider_user_id: str) -> User | None:
        async with self._session_factory() as db:
            return await self._active_user(db, provider_user_id)

    async def get_local_tenant_id(self, provider_org_id: str) -> uuid.UUID | None:
        async with self._session_factory() as db:
            tenant = await self._active_tenant(db, provider_org_id)
            return tenant.id if tenant else None

    # ── users ────────────────────────────────────────────────────────────────

    async def sync_user(self, provider_user: ProviderUser, tenant_id: uuid.UUID | None) -> User:
        """Create or update a user by provider id. A None tenant never overwrites an existing one."""
        async with self._session_factory() as db:
            user = (
                await db.execute(select(User).where(User.workos_user_id == provider_user.id).limit(1))
            ).scalar_one_or_none()
            if user is None:
                user = User(
                    workos_user_id=provider_user.id,
                    email=provider_user.email,
                    first_name=provider_user.first_name or None,
                    last_name=provider_user.last_name or None,
                    avatar=provider_user.profile_picture_url,
                    tenant_id=tenant_id,
                )
                db.add(user)
            else:
                user.email = provider_user.email or user.email
                user.first_name = provider_user.first_name or None
                user.last_name = provider_user.last_name or None
                if provider_user.profile_picture_url:
                    user.avatar = provider_user.profile_picture_url
                if tenant_id is not None:
                    user.tenant_id = tenant_id
                user.deleted_at = None
            await db.commit()
            return user

    async def update_user(self, provider_user: ProviderUser) -> User:
        async with self._session_factory() as db:
            user = await self._active_user(db, provider_user.id)
            if user is None:
                raise EntityNotFoundError("User", provider_user.id)
            if provider_user.email:
                user.email = provider_user.email
            user.first_name = provider_user.first_name or None
            user.last_name = provider_user.last_name or None
            user.updated_at = utcnow()
            await db.commit()
            return user

    async def soft_delete_user(self, provider_user_id: str) -> User:
        async with self._session_factory() as db:
            user = await self._active_user(db, provider_user_id)
            if user is None:
                raise EntityNotFoundError("User", provider_user_id)
            user.deleted_at = utcnow()
            await db.commit()
            return user

    async def assign_tenant_if_missing(self, user_id: uuid.UUID, tenant_id: uuid.UUID) -> bool:
        async with self._session_factory() as db:
            user = await db.get(User, user_id)
            if user is None or user.tenant_id is not None:
                return False
            user.tenant_id = tenant_id
            await db.commit()
            return True

    # ── tenants ──────────────────────────────────────────────────────────────

    async def sync_tenant(self, provider_org: ProviderOrganization) -> Tenant:
        async with self._session_factory() as db:
            tenant = (
                await db.execute(
                    select(Tenant).where(Tenant.workos_organization_id == provider_org.id).limit(1)
                )
            ).scalar_one_or_none()
            if tenant is None:
                tenant = Tenant(
                    workos_organization_id=provider_org.id,
                    name=provider_org.name,
                    domain=provider_org.domain or None,
                )
                db.add(tenant)
            else:
                tenant.name = provider_org.name or tenant.name
                tenant.domain = provider_org.domain or None
                tenant.deleted_at = None
            await db.commit()
            return tenant

    async def update_tenant(self, provider_org: ProviderOrganization) -> Tenant:
        async with self._session_factory() as db:
            tenant = await self._active_tenant(db, provider_org.id)
            if tenant is None:
                raise EntityNotFoundError("Tenant", provider_org.id)
            tenant.name = provider_org.name or tenant.name
            tenant.domain = provider_org.domain or None
            tenant.updated_at = utcnow()
            await db.commit()
            return tenant

    async def soft_delete_tenant(self, provider_org_id: str) -> Tenant:
        """Mark the tenant deleted. Users, memberships and learning records pointing at it are left untouched."""
        async with self._session_factory() as db:
            tenant = await self._active_tenant(db, provider_org_id)
            if tenant is None:
                raise EntityNotFoundError("Tenant", provider_org_id)
            tenant.deleted_at = utcnow()
            await db.commit()
            return tenant

    # ── memberships ──────────────────────────────────────────────────────────

    async def _resolve_pair(
        self, db: AsyncSession, provider_user_id: str, provider_org_id: str
    ) -> tuple[User, Tenant]:
        user = await self._active_user(db, provider_user_id)
        if user is None:
            raise EntityNotFoundError("User", provider_user_id)
        tenant = await self._active_tenant(db, provider_org_id)
        if tenant is None:
            raise EntityNotFoundError("Tenant", provider_org_id)
        return user, tenant

    @staticmethod
    async def _membership_row(
        db: AsyncSession, user_id: uuid.UUID, tenant_id: uuid.UUID
    ) -> OrganizationMembership | None:
        return (
            await db.execute(
                select(OrganizationMembership)
                .where(
                    OrganizationMembership.user_id == user_id,
                    OrganizationMembership.organization_id == tenant_id,
                )
                .limit(1)
            )
        ).scalar_one_or_none()

    async def sync_membership(self, membership: ProviderMembership) -> OrganizationMembership:
        """Upsert on (user, organization); replays of the same event update the one row."""
        async with self._session_factory() as db:
            user, tenant = await self._resolve_pair(db, membership.user_id, membership.organization_id)
            row = await self._membership_row(db, user.id, tenant.id)
            if row is None:
                row = OrganizationMembership(
                    workos_membership_id=membership.id,
                    user_id=user.id,
                    organization_id=tenant.id,
                    role=membership.role,
                    status=membership.status,
                )
                db.add(row)
            else:
                row.workos_membership_id = membership.id
                row.role = membership.role
                row.status = membership.status
                row.deleted_at = None
            await db.commit()
            return row

    async def update_membership(
        self,
        provider_user_id: str,
        provider_org_id: str,
        role: OrganizationRole,
        status: MembershipStatus | None = None,
    ) -> OrganizationMembership:
        async with self._session_factory() as db:
            user, tenant = await self._resolve_pair(db, provider_user_id, provider_org_id)
            row = await self._membership_row(db, user.id, tenant.id)
            if row is None or row.deleted_at is not None:
                raise EntityNotFoundError("Membership", f"{provider_user_id}/{provider_org_id}")
            row.role = role
            if status is not None:
                row.status = status
            await db.commit()
            return row

    async def remove_membership(self, provider_user_id: str, provider_org_id: str) -> OrganizationMembership:
        async with self._session_factory() as db:
            user, tenant = await self._resolve_pair(db, provider_user_id, provider_org_id)
            row = await self._membership_row(db, user.id, tenant.id)
            if row is None or row.deleted_at is not None:
                raise EntityNotFoundError("Membership", f"{provider_user_id}/{provider_org_id}")
            row.status = "inactive"
            row.deleted_at = utcnow()
            await db.commit()
            return row
