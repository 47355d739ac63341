"""HTTP clients for Azure Resource Graph, Microsoft Graph and Cost Management."""

from __future__ import annotations

import time
from datetime import date, datetime, timezone
from typing import Any

import httpx
import structlog

from compass.config import Settings
from compass.errors import SourceClientError
from compass.schemas.inventory import (
    Application,
    ConditionalAccessPolicy,
    ConditionalAccessSnapshot,
    CostRecord,
    DirectoryUser,
    ManagedDevice,
    Principal,
    Resource,
    TenantContext,
)

logger = structlog.get_logger()

MANAGEMENT_SCOPE = "https://management.azure.com/.default"
GRAPH_SCOPE = "https://graph.microsoft.com/.default"

RESOURCE_GRAPH_QUERY = (
    "resources"
    " | union securityresources"
    " | union recoveryservicesresources"
    " | project id, name, type, resourceGroup, location, subscriptionId, kind, sku, tags, properties, identity"
)

# Microsoft Graph application permissions that grant tenant-wide write access
HIGH_PRIVILEGE_APP_ROLES = {
    "19dbc75e-c2e2-444c-a770-ec69d8559fc7": "Directory.ReadWrite.All",
    "9e3f62cf-ca93-4989-b6ce-bf83c28f9fe8": "RoleManagement.ReadWrite.Directory",
    "1bfefb4e-e0b5-418b-a88f-73c46d2cc8e9": "Application.ReadWrite.All",
    "741f803b-c850-494e-b5df-cde7c675a1ca": "User.ReadWrite.All",
}
INACTIVE_AFTER_DAYS = 90


class DelegatedTokenStore:
    """Holds access tokens granted by client tenants, keyed by client and organization."""

    def __init__(self) -> None:
        self._tokens: dict[tuple[str, str], str] = {}

    def set_token(self, client_id: str, organization_id: str, token: str) -> None:
        self._tokens[(client_id, organization_id)] = token

    def get_token(self, client_id: str | None, organization_id: str) -> str | None:
        if client_id is None:
            return None
        return self._tokens.get((client_id, organization_id))


class AzureTokenProvider:
    """Issues bearer tokens: delegated for enhanced mode, client credentials otherwise."""

    def __init__(self, settings: Settings, delegated: DelegatedTokenStore) -> None:
        self.settings = settings
        self.delegated = delegated
        self._cache: dict[str, tuple[str, float]] = {}

    async def get_token(self, scope: str, mode: str, tenant: TenantContext) -> str:
        if mode == "enhanced":
            token = self.delegated.get_token(tenant.client_id, tenant.organization_id)
            if not token:
                raise SourceClientError(f"No delegated token for client {tenant.client_id}")
            return token

        cached = self._cache.get(scope)
        if cached and cached[1] > time.monotonic():
            return cached[0]

        s = self.settings
        async with httpx.AsyncClient(timeout=s.azure_http_timeout_seconds) as client:
            response = await client.post(
                f"{s.azure_login_url}/{s.azure_tenant_id}/oauth2/v2.0/token",
                data={
                    "grant_type": "client_credentials",
                    "client_id": s.azure_client_id,
                    "client_secret": s.azure_client_secret,
                    "scope": scope,
                },
            )
            if response.status_code != 200:
                raise SourceClientError(f"Token request failed: {response.status_code} {response.text}")
            data = response.json()
        token = data.get("access_token", "")
        # Refresh a minute before expiry
        self._cache[scope] = (token, time.monotonic() + int(data.get("expires_in", 3600)) - 60)
        return token


class _AzureHttpClient:
    def __init__(self, base_url: str, tokens: AzureTokenProvider, scope: str, timeout: float) -> None:
        self.base_url = base_url.rstrip("/")
        self.tokens = tokens
        self.scope = scope
        self.timeout = timeout

    async def _headers(self, mode: str, tenant: TenantContext) -> dict[str, str]:
        token = await self.tokens.get_token(self.scope, mode, tenant)
        return {"Authorization": f"Bearer {token}"}

    async def _request(
        self,
        method: str,
        url: str,
        mode: str,
        tenant: TenantContext,
        json: dict[str, Any] | None = None,
        extra_headers: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        headers = await self._headers(mode, tenant)
        headers.update(extra_headers or {})
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.request(method, url, headers=headers, json=json)
            if response.status_code >= 300:
                raise SourceClientError(f"{method} {url} failed: {response.status_code} {response.text[:200]}")
            return response.json()

    async def _get_paged(self, path: str, mode: str, tenant: TenantContext) -> list[dict[str, Any]]:
        """Follow ``@odata.nextLink`` until every page is read."""
        items: list[dict[str, Any]] = []
        url: str | None = f"{self.base_url}{path}"
        while url:
            data = await self._request("GET", url, mode, tenant)
            items.extend(data.get("value", []))
            url = data.get("@odata.nextLink")
        return items


class ResourceGraphClient(_AzureHttpClient):
    """Inventory source backed by Azure Resource Graph."""

    async def fetch(self, subscription_ids: list[str], mode: str, tenant: TenantContext) -> list[Resource]:
        if not subscription_ids:
            return []
        url = f"{self.base_url}/providers/Microsoft.ResourceGraph/resources?api-version=2021-03-01"
        resources: list[Resource] = []
        skip_token: str | None = None
        while True:
            options: dict[str, Any] = {"$top": 1000}
            if skip_token:
                options["$skipToken"] = skip_token
            data = await self._request(
                "POST", url, mode, tenant,
                json={"subscriptions": subscription_ids, "query": RESOURCE_GRAPH_QUERY, "options": options},
            )
            resources.extend(_to_resource(row) for row in data.get("data", []))
            skip_token = data.get("$skipToken")
            if not skip_token:
                break
        logger.info("resource_graph_fetched", count=len(resources), subscriptions=len(subscription_ids))
        return resources


def _to_resource(row: dict[str, Any]) -> Resource:
    properties = dict(row.get("properties") or {})
    if row.get("identity"):
        properties["identity"] = row["identity"]
    sku = row.get("sku")
    return Resource(
        id=row.get("id", ""),
        name=row.get("name", ""),
        type=row.get("type", ""),
        resource_group=row.get("resourceGroup", ""),
        location=row.get("location", ""),
        subscription_id=row.get("subscriptionId", ""),
        kind=row.get("kind") or None,
        sku=sku.get("name") if isinstance(sku, dict) else sku,
        tags={k: str(v) for k, v in (row.get("tags") or {}).items()},
        properties=properties,
    )


class GraphIdentityClient(_AzureHttpClient):
    """Directory data source backed by Microsoft Graph. Always uses delegated tokens."""

    MODE = "enhanced"

    async def test_access(self, tenant: TenantContext) -> bool:
        try:
            await self._request("GET", f"{self.base_url}/organization", self.MODE, tenant)
        except (SourceClientError, httpx.HTTPError) as exc:
            logger.warning("graph_access_test_failed", client_id=tenant.client_id, error=str(exc))
            return False
        return True

    async def fetch_privileged_principals(self, tenant: TenantContext) -> list[Principal]:
        roles = await self._get_paged("/directoryRoles?$expand=members", self.MODE, tenant)
        principals: dict[str, Principal] = {}
        for role in roles:
            for member in role.get("members", []):
                odata_type = str(member.get("@odata.type", ""))
                principal = principals.setdefault(member["id"], Principal(
                    id=member["id"],
                    display_name=member.get("displayName") or member["id"],
                    principal_type="ServicePrincipal" if odata_type.endswith("servicePrincipal") else "User",
                ))
                principal.roles.append(role.get("displayName", ""))
        return list(principals.values())

    async def fetch_applications(self, tenant: TenantContext) -> list[Application]:
        apps = await self._get_paged(
            "/applications?$select=id,displayName,passwordCredentials,keyCredentials,requiredResourceAccess",
            self.MODE, tenant,
        )
        now = datetime.now(timezone.utc)
        result = []
        for app in apps:
            credentials = [*app.get("passwordCredentials", []), *app.get("keyCredentials", [])]
            expired = 0
            for credential in credentials:
                end = credential.get("endDateTime")
                if end and datetime.fromisoformat(end.replace("Z", "+00:00")) < now:
                    expired += 1
            permissions = [
                HIGH_PRIVILEGE_APP_ROLES[access["id"]]
                for resource in app.get("requiredResourceAccess", [])
                for access in resource.get("resourceAccess", [])
                if access.get("type") == "Role" and access.get("id") in HIGH_PRIVILEGE_APP_ROLES
            ]
            result.append(Application(
                id=app["id"],
                display_name=app.get("displayName") or app["id"],
                credential_count=len(credentials),
                expired_credential_count=expired,
                high_privilege_permissions=permissions,
            ))
        return result

    async def fetch_inactive_users(self, tenant: TenantContext) -> list[DirectoryUser]:
        users = await self._get_paged(
            "/users?$select=id,displayName,userPrincipalName,signInActivity", self.MODE, tenant
        )
        now = datetime.now(timezone.utc)
        inactive = []
        for user in users:
            last = (user.get("signInActivity") or {}).get("lastSignInDateTime")
            if not last:
                continue
            days = (now - datetime.fromisoformat(last.replace("Z", "+00:00"))).days
            if days > INACTIVE_AFTER_DAYS:
                inactive.append(DirectoryUser(
                    id=user["id"],
                    display_name=user.get("displayName") or user["id"],
                    user_principal_name=user.get("userPrincipalName", ""),
                    days_since_sign_in=days,
                ))
        return inactive

    async def fetch_devices(self, tenant: TenantContext) -> list[ManagedDevice]:
        devices = await self._get_paged(
            "/deviceManagement/managedDevices?$select=id,deviceName,complianceState,managementState",
            self.MODE, tenant,
        )
        return [
            ManagedDevice(
                id=d["id"],
                display_name=d.get("deviceName") or d["id"],
                is_compliant=str(d.get("complianceState", "")).lower() == "compliant",
                is_managed=str(d.get("managementState", "managed")).lower() == "managed",
            )
            for d in devices
        ]

    async def fetch_conditional_access(self, tenant: TenantContext) -> ConditionalAccessSnapshot:
        raw = await self._get_paged("/identity/conditionalAccess/policies", self.MODE, tenant)
        policies = []
        covers_all_users = False
        for policy in raw:
            controls = (policy.get("grantControls") or {}).get("builtInControls") or []
            parsed = ConditionalAccessPolicy(
                id=policy["id"],
                display_name=policy.get("displayName") or policy["id"],
                state=policy.get("state", "disabled"),
                requires_mfa="mfa" in controls,
            )
            policies.append(parsed)
            users = ((policy.get("conditions") or {}).get("users") or {}).get("includeUsers") or []
            if parsed.is_enabled and parsed.requires_mfa and "All" in users:
                covers_all_users = True

        count = await self._request(
            "GET", f"{self.base_url}/users/$count", self.MODE, tenant,
            extra_headers={"ConsistencyLevel": "eventual"},
        )
        total_users = int(count) if isinstance(count, (int, float)) else int(count.get("value", 0))
        return ConditionalAccessSnapshot(
            policies=policies,
            total_users=total_users,
            users_covered_by_mfa=total_users if covers_all_users else 0,
        )


class CostManagementClient(_AzureHttpClient):
    """Cost data source backed by the Cost Management query API."""

    async def fetch(
        self,
        subscription_id: str,
        start: date,
        end: date,
        mode: str,
        tenant: TenantContext,
    ) -> list[CostRecord]:
        url = (
            f"{self.base_url}/subscriptions/{subscription_id}"
            "/providers/Microsoft.CostManagement/query?api-version=2023-03-01"
        )
        body = {
            "type": "ActualCost",
            "timeframe": "Custom",
            "timePeriod": {"from": start.isoformat(), "to": end.isoformat()},
            "dataset": {
                "granularity": "Daily",
                "aggregation": {"totalCost": {"name": "Cost", "function": "Sum"}},
                "grouping": [
                    {"type": "Dimension", "name": "ResourceGroupName"},
                    {"type": "Dimension", "name": "ResourceType"},
                ],
            },
        }
        data = await self._request("POST", url, mode, tenant, json=body)
        properties = data.get("properties", {})
        columns = [c.get("name", "") for c in properties.get("columns", [])]
        records = []
        for row in properties.get("rows", []):
            values = dict(zip(columns, row))
            usage = values.get("UsageDate")
            records.append(CostRecord(
                subscription_id=subscription_id,
                resource_group=str(values.get("ResourceGroupName") or ""),
                resource_type=str(values.get("ResourceType") or ""),
                cost=float(values.get("Cost") or values.get("PreTaxCost") or 0.0),
                currency=str(values.get("Currency") or "USD"),
                usage_date=datetime.strptime(str(usage), "%Y%m%d").date() if usage else None,
            ))
        return records


class DelegatedCredentialProbe:
    """Checks that a client's delegated token is accepted by Azure Resource Manager."""

    def __init__(self, settings: Settings, delegated: DelegatedTokenStore) -> None:
        self.settings = settings
        self.delegated = delegated

    async def test_credentials(self, tenant: TenantContext) -> bool:
        token = self.delegated.get_token(tenant.client_id, tenant.organization_id)
        if not token:
            return False
        async with httpx.AsyncClient(timeout=self.settings.azure_http_timeout_seconds) as client:
            response = await client.get(
                f"{self.settings.azure_management_url}/subscriptions?api-version=2022-12-01",
                headers={"Authorization": f"Bearer {token}"},
            )
            return response.status_code == 200
