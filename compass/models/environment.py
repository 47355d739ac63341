"""Environment and client preference models."""

from __future__ import annotations

from sqlalchemy import JSON, Boolean, String
from sqlalchemy.orm import Mapped, mapped_column

from compass.models.base import Base, RecordMixin


class AzureEnvironment(RecordMixin, Base):
    """A cloud environment registered by an organization."""

    __tablename__ = "azure_environments"

    organization_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    subscription_ids: Mapped[list[str]] = mapped_column(JSON, default=list)
    client_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    tenant_id: Mapped[str | None] = mapped_column(String(36), nullable=True)

    def __repr__(self) -> str:
        return f"<AzureEnvironment {self.name}>"


class ClientPreferences(RecordMixin, Base):
    """Governance rule overrides for one client of an organization."""

    __tablename__ = "client_preferences"

    client_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    organization_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    required_tags: Mapped[list[str]] = mapped_column(JSON, default=list)
    enforce_tag_compliance: Mapped[bool] = mapped_column(Boolean, default=False)
    allowed_naming_patterns: Mapped[list[str]] = mapped_column(JSON, default=list)
    require_environment_indicator: Mapped[bool] = mapped_column(Boolean, default=False)
    environment_indicators: Mapped[list[str]] = mapped_column(JSON, default=list)

    def __repr__(self) -> str:
        return f"<ClientPreferences client={self.client_id[:8]}>"
