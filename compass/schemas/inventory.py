"""Schemas for inventory, identity and cost data returned by external sources."""

from __future__ import annotations

from datetime import date
from typing import Any

from pydantic import BaseModel, Field

_ENVIRONMENT_TAG_KEYS = ("environment", "env", "stage")

_ENVIRONMENT_NAME_PATTERNS = {
    "prod": ("-prod", "prod-", "-prd", "prd-", "production"),
    "staging": ("-stg", "stg-", "-staging", "staging-"),
    "test": ("-test", "test-", "-tst", "tst-", "-qa", "qa-", "-uat", "uat-"),
    "dev": ("-dev", "dev-", "development"),
}


class Resource(BaseModel):
    """A cloud resource from the inventory catalog."""

    id: str
    name: str
    type: str
    resource_group: str = ""
    location: str = ""
    subscription_id: str = ""
    kind: str | None = None
    sku: str | None = None
    tags: dict[str, str] = Field(default_factory=dict)
    properties: dict[str, Any] = Field(default_factory=dict)

    @property
    def type_lower(self) -> str:
        return self.type.lower()

    @property
    def has_tags(self) -> bool:
        return bool(self.tags)

    @property
    def environment(self) -> str | None:
        """Environment inferred from tags, falling back to name patterns."""
        for key, value in self.tags.items():
            if key.lower() in _ENVIRONMENT_TAG_KEYS and value.strip():
                return value.strip().lower()
        lowered = self.name.lower()
        for env, patterns in _ENVIRONMENT_NAME_PATTERNS.items():
            if any(p in lowered for p in patterns):
                return env
        return None

    def prop(self, *path: str, default: Any = None) -> Any:
        """Walk nested ``properties`` keys, returning ``default`` when absent."""
        node: Any = self.properties
        for key in path:
            if not isinstance(node, dict) or key not in node:
                return default
            node = node[key]
        return node


class TenantContext(BaseModel):
    """Who an external call is made on behalf of."""

    organization_id: str
    client_id: str | None = None
    tenant_id: str | None = None

    @property
    def has_delegation(self) -> bool:
        return self.client_id is not None


class Environment(BaseModel):
    """A registered cloud environment owned by an organization."""

    id: str
    organization_id: str
    name: str
    subscription_ids: list[str] = Field(default_factory=list)
    client_id: str | None = None
    tenant_id: str | None = None


class ClientPreferenceOverride(BaseModel):
    """Per-client governance rules replacing the default tag and naming rules."""

    client_id: str
    organization_id: str
    required_tags: list[str] = Field(default_factory=list)
    enforce_tag_compliance: bool = False
    allowed_naming_patterns: list[str] = Field(default_factory=list)
    require_environment_indicator: bool = False
    environment_indicators: list[str] = Field(default_factory=lambda: ["dev", "test", "stg", "prod"])


class Principal(BaseModel):
    """A user, group or service principal holding directory or RBAC roles."""

    id: str
    display_name: str
    principal_type: str = "User"
    roles: list[str] = Field(default_factory=list)
    scope: str = "/"

    @property
    def is_service_principal(self) -> bool:
        return self.principal_type.lower() == "serviceprincipal"


class Application(BaseModel):
    """An app registration in the directory."""

    id: str
    display_name: str
    credential_count: int = 0
    expired_credential_count: int = 0
    high_privilege_permissions: list[str] = Field(default_factory=list)


class DirectoryUser(BaseModel):
    id: str
    display_name: str
    user_principal_name: str = ""
    days_since_sign_in: int | None = None


class ManagedDevice(BaseModel):
    id: str
    display_name: str
    is_compliant: bool = True
    is_managed: bool = True


class ConditionalAccessPolicy(BaseModel):
    id: str
    display_name: str
    state: str = "enabled"
    requires_mfa: bool = False

    @property
    def is_enabled(self) -> bool:
        return self.state.lower() == "enabled"


class ConditionalAccessSnapshot(BaseModel):
    """Conditional access policies plus how much of the directory they cover."""

    policies: list[ConditionalAccessPolicy] = Field(default_factory=list)
    total_users: int = 0
    users_covered_by_mfa: int = 0

    @property
    def coverage_percentage(self) -> float:
        if self.total_users == 0:
            return 0.0
        return self.users_covered_by_mfa / self.total_users * 100


class CostRecord(BaseModel):
    """One row of cost data for a subscription and billing day."""

    subscription_id: str
    resource_group: str = ""
    resource_type: str = ""
    cost: float = 0.0
    currency: str = "USD"
    usage_date: date | None = None
