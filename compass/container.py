"""Service wiring — builds the collector, analyzers, dispatcher and lifecycle from settings."""

from __future__ import annotations

from dataclasses import dataclass

from compass.config import Settings
from compass.database import SqlDatabase
from compass.services.azure_clients import (
    GRAPH_SCOPE,
    MANAGEMENT_SCOPE,
    AzureTokenProvider,
    CostManagementClient,
    DelegatedCredentialProbe,
    DelegatedTokenStore,
    GraphIdentityClient,
    ResourceGraphClient,
)
from compass.services.business_continuity import BusinessContinuityAnalyzer
from compass.services.collector import RateLimitedCollector
from compass.services.cost_trends import CostTrendAnalyzer
from compass.services.credentials import CredentialResolver
from compass.services.dispatcher import CategoryDispatcher
from compass.services.governance import GovernanceAnalyzer
from compass.services.identity_access import IdentityAccessAnalyzer
from compass.services.lifecycle import AssessmentLifecycleManager, TaskSupervisor
from compass.services.security_posture import SecurityPostureAnalyzer
from compass.services.sources import (
    CostDataSource,
    CredentialProbe,
    IdentityContextSource,
    ResourceCatalogSource,
)
from compass.store import SessionFactory, database


@dataclass
class Sources:
    """Outbound data sources. Tests substitute fakes here."""

    catalog: ResourceCatalogSource
    identity: IdentityContextSource | None
    costs: CostDataSource
    probe: CredentialProbe | None


@dataclass
class ServiceContainer:
    collector: RateLimitedCollector
    credentials: CredentialResolver
    dispatcher: CategoryDispatcher
    lifecycle: AssessmentLifecycleManager
    cost_trends: CostTrendAnalyzer
    sql: SqlDatabase | None = None


def azure_sources(settings: Settings, delegated: DelegatedTokenStore | None = None) -> Sources:
    """Sources backed by the Azure REST APIs."""
    delegated = delegated or DelegatedTokenStore()
    tokens = AzureTokenProvider(settings, delegated)
    timeout = settings.azure_http_timeout_seconds
    return Sources(
        catalog=ResourceGraphClient(settings.azure_management_url, tokens, MANAGEMENT_SCOPE, timeout),
        identity=GraphIdentityClient(settings.azure_graph_url, tokens, GRAPH_SCOPE, timeout),
        costs=CostManagementClient(settings.azure_management_url, tokens, MANAGEMENT_SCOPE, timeout),
        probe=DelegatedCredentialProbe(settings, delegated),
    )


def build_services(
    settings: Settings,
    sources: Sources | None = None,
    session_factory: SessionFactory | None = None,
) -> ServiceContainer:
    """Wire every service from settings.

    ``session_factory`` defaults to the configured store backend.
    """
    sources = sources or azure_sources(settings)
    sql = None
    if session_factory is None:
        if settings.store_backend == "sql":
            sql = SqlDatabase(settings.database_url)
            session_factory = sql.session
        else:
            session_factory = database.session

    collector = RateLimitedCollector(
        max_concurrency=settings.collector_max_concurrency,
        min_interval=settings.collector_min_interval_seconds,
    )
    credentials = CredentialResolver(sources.probe, collector)
    dispatcher = CategoryDispatcher(
        [
            GovernanceAnalyzer(sources.catalog, collector),
            IdentityAccessAnalyzer(sources.catalog, sources.identity, collector),
            BusinessContinuityAnalyzer(sources.catalog, collector),
            SecurityPostureAnalyzer(sources.catalog, collector),
        ],
        credentials,
    )
    lifecycle = AssessmentLifecycleManager(
        session_factory,
        dispatcher,
        TaskSupervisor(settings.max_concurrent_assessments),
    )
    cost_trends = CostTrendAnalyzer(
        session_factory,
        sources.costs,
        collector,
        credentials,
        stagger_seconds=settings.cost_stagger_seconds,
    )
    return ServiceContainer(
        collector=collector,
        credentials=credentials,
        dispatcher=dispatcher,
        lifecycle=lifecycle,
        cost_trends=cost_trends,
        sql=sql,
    )
