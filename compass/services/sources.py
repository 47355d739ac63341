"""Contracts for the external data sources the analyzers consume."""

from __future__ import annotations

from datetime import date
from typing import Protocol

from compass.schemas.inventory import (
    Application,
    ConditionalAccessSnapshot,
    CostRecord,
    DirectoryUser,
    ManagedDevice,
    Principal,
    Resource,
    TenantContext,
)


class ResourceCatalogSource(Protocol):
    async def fetch(
        self, subscription_ids: list[str], mode: str, tenant: TenantContext
    ) -> list[Resource]: ...


class IdentityContextSource(Protocol):
    async def test_access(self, tenant: TenantContext) -> bool: ...

    async def fetch_privileged_principals(self, tenant: TenantContext) -> list[Principal]: ...

    async def fetch_applications(self, tenant: TenantContext) -> list[Application]: ...

    async def fetch_inactive_users(self, tenant: TenantContext) -> list[DirectoryUser]: ...

    async def fetch_devices(self, tenant: TenantContext) -> list[ManagedDevice]: ...

    async def fetch_conditional_access(self, tenant: TenantContext) -> ConditionalAccessSnapshot: ...


class CostDataSource(Protocol):
    async def fetch(
        self,
        subscription_id: str,
        start: date,
        end: date,
        mode: str,
        tenant: TenantContext,
    ) -> list[CostRecord]: ...


class CredentialProbe(Protocol):
    async def test_credentials(self, tenant: TenantContext) -> bool: ...
