"""Cost trend analysis — current versus previous period spend."""

from __future__ import annotations

import asyncio
from collections import defaultdict
from collections.abc import Awaitable, Callable
from datetime import date, timedelta
from typing import Any

import structlog

from compass.errors import EnvironmentNotFoundError
from compass.schemas.costs import CostTrendItem, CostTrendRequest, CostTrendResponse
from compass.schemas.inventory import CostRecord, TenantContext
from compass.services.collector import RateLimitedCollector
from compass.services.credentials import AccessMode, CredentialResolver
from compass.services.sources import CostDataSource
from compass.store import SessionFactory

logger = structlog.get_logger()

_GROUP_KEYS: dict[str, Callable[[CostRecord], str]] = {
    "resource_group": lambda r: r.resource_group or "(none)",
    "resource_type": lambda r: r.resource_type or "(unknown)",
    "subscription": lambda r: r.subscription_id,
}


def _change_percentage(current: float, previous: float) -> float | None:
    if previous == 0:
        return None
    return round((current - previous) / previous * 100, 2)


def compare_periods(current: list[CostRecord], previous: list[CostRecord], group_by: str) -> list[CostTrendItem]:
    key = _GROUP_KEYS[group_by]
    current_totals: dict[str, float] = defaultdict(float)
    previous_totals: dict[str, float] = defaultdict(float)
    for record in current:
        current_totals[key(record)] += record.cost
    for record in previous:
        previous_totals[key(record)] += record.cost

    items = []
    for name in sorted(set(current_totals) | set(previous_totals)):
        now, before = current_totals.get(name, 0.0), previous_totals.get(name, 0.0)
        items.append(CostTrendItem(
            key=name,
            current_cost=round(now, 2),
            previous_cost=round(before, 2),
            change=round(now - before, 2),
            change_percentage=_change_percentage(now, before),
        ))
    items.sort(key=lambda i: abs(i.change), reverse=True)
    return items


class CostTrendAnalyzer:
    """Fetches two billing periods concurrently and compares them.

    The previous-period fetch is launched ``stagger_seconds`` after the
    current-period fetch so the two do not hit the collector at once.
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        source: CostDataSource,
        collector: RateLimitedCollector,
        credentials: CredentialResolver,
        stagger_seconds: float = 1.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        today: Callable[[], date] = date.today,
    ) -> None:
        self._session_factory = session_factory
        self._source = source
        self._collector = collector
        self._credentials = credentials
        self._stagger = stagger_seconds
        self._sleep = sleep
        self._today = today

    async def _fetch_period(
        self,
        subscription_ids: list[str],
        start: date,
        end: date,
        mode: AccessMode,
        tenant: TenantContext,
    ) -> list[CostRecord]:
        records: list[CostRecord] = []
        for subscription_id in subscription_ids:
            records.extend(await self._collector.fetch(
                "cost_data", self._source.fetch, subscription_id, start, end, mode.value, tenant
            ))
        return records

    async def analyze(self, request: CostTrendRequest) -> CostTrendResponse:
        """Compare spend of the last ``period_days`` against the period before.

        Raises:
            EnvironmentNotFoundError: If the environment is unknown to the organization.
        """
        async with self._session_factory() as store:
            environment = await store.get_environment(request.environment_id)
        if environment is None or environment.organization_id != request.organization_id:
            raise EnvironmentNotFoundError(f"Environment {request.environment_id} not found")

        tenant = TenantContext(
            organization_id=environment.organization_id,
            client_id=environment.client_id,
            tenant_id=environment.tenant_id,
        )
        mode = await self._credentials.resolve(tenant)

        end = request.end_date or self._today()
        span = timedelta(days=request.period_days - 1)
        current_start = end - span
        previous_end = current_start - timedelta(days=1)
        previous_start = previous_end - span
        subscriptions = list(environment.subscription_ids)

        current_task = asyncio.create_task(
            self._fetch_period(subscriptions, current_start, end, mode, tenant)
        )
        try:
            await self._sleep(self._stagger)
            previous_task = asyncio.create_task(
                self._fetch_period(subscriptions, previous_start, previous_end, mode, tenant)
            )
        except BaseException:
            current_task.cancel()
            raise
        try:
            current, previous = await asyncio.gather(current_task, previous_task)
        except BaseException:
            for task in (current_task, previous_task):
                task.cancel()
            await asyncio.gather(current_task, previous_task, return_exceptions=True)
            raise

        current_total = round(sum(r.cost for r in current), 2)
        previous_total = round(sum(r.cost for r in previous), 2)
        currency = next((r.currency for r in [*current, *previous]), "USD")
        logger.info(
            "cost_trend_computed",
            environment_id=environment.id,
            current_total=current_total,
            previous_total=previous_total,
            access_mode=mode.value,
        )
        return CostTrendResponse(
            environment_id=environment.id,
            group_by=request.group_by,
            access_mode=mode.value,
            current_period_start=current_start,
            current_period_end=end,
            previous_period_start=previous_start,
            previous_period_end=previous_end,
            current_total=current_total,
            previous_total=previous_total,
            change_percentage=_change_percentage(current_total, previous_total),
            currency=currency,
            items=compare_periods(current, previous, request.group_by),
        )
