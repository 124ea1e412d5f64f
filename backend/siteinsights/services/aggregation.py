"""
Aggregation service: resolves one ``{metric_type, date_range}`` request.

Resolution order is an explicit chain of steps returning ``Ok``/``Err``:

1. external - the Google provider for the metric, when configured
2. cache    - the stored result for the (metric_type, canonical range) key,
               skipped for realtime, which is never cached
3. computed - first-party computation over the raw event tables

A provider failure is logged and the chain moves on; only when every step
fails does the request fail.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Generic, Optional, TypeVar, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from siteinsights.core.config import Settings, settings as default_settings
from siteinsights.core.logging import get_logger
from siteinsights.repositories.cache import AnalyticsCacheRepository, SeoCacheRepository
from siteinsights.schemas.analytics import AggregateRequest, MetricShape, MetricType, SeoShape
from siteinsights.services.date_range import DateWindow, resolve_date_range
from siteinsights.services.external_metrics import CredentialsNotConfigured, fetch_external
from siteinsights.services.google_client import GoogleAPIError, GoogleClients
from siteinsights.services.insight_generator import InsightGenerator
from siteinsights.services.internal_metrics import InternalMetrics

logger = get_logger(__name__)

T = TypeVar("T")

SOURCE_EXTERNAL = "external"
SOURCE_CACHE = "cache"
SOURCE_COMPUTED = "computed"

# Served live on every request; a stored copy would never refresh
UNCACHED_METRICS = frozenset({MetricType.REALTIME})


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T


@dataclass(frozen=True)
class Err:
    reason: str
    error: Optional[BaseException] = None


Result = Union[Ok[T], Err]


class AggregationError(Exception):
    """No step of the chain produced a result."""


@dataclass
class AggregateOutcome:
    payload: dict[str, Any]
    source: str


class AggregationService:
    """Runs the resolution chain for one request."""

    def __init__(
        self,
        session: AsyncSession,
        settings: Optional[Settings] = None,
        clients: Optional[GoogleClients] = None,
    ) -> None:
        self.session = session
        self.settings = settings or default_settings
        self.clients = clients if clients is not None else GoogleClients.from_settings(self.settings)
        self.cache = AnalyticsCacheRepository(session)
        self.internal = InternalMetrics(session, site_url=self.settings.site_url)

    async def aggregate(self, request: AggregateRequest, now: Optional[datetime] = None) -> AggregateOutcome:
        metric = request.metric_type
        window = resolve_date_range(request.date_range, now=now)
        log = logger.bind(metric_type=metric.value, date_range=window.label)

        if metric is MetricType.GENERATE_INSIGHTS:
            result = await InsightGenerator(self.session).run(now=now)
            return AggregateOutcome(payload=result.to_payload(), source=SOURCE_COMPUTED)

        external = await self._external(metric, window)
        if isinstance(external, Ok):
            payload = external.value.to_payload()
            await self._persist(metric, window, external.value, payload)
            log.info("Served metric", source=SOURCE_EXTERNAL)
            return AggregateOutcome(payload=payload, source=SOURCE_EXTERNAL)
        if external.error is not None:
            log.warning("External analytics failed, falling back", reason=external.reason, error=str(external.error))

        cached = await self._cached(metric, window)
        if isinstance(cached, Ok):
            log.info("Served metric", source=SOURCE_CACHE)
            return AggregateOutcome(payload=cached.value, source=SOURCE_CACHE)

        computed = await self._computed(metric, window)
        if isinstance(computed, Ok):
            payload = computed.value.to_payload()
            await self._write_cache(metric, window, payload)
            log.info("Served metric", source=SOURCE_COMPUTED)
            return AggregateOutcome(payload=payload, source=SOURCE_COMPUTED)

        log.error("Aggregation failed", reason=computed.reason, error=str(computed.error))
        raise AggregationError(computed.reason) from computed.error

    # --- steps --------------------------------------------------------------

    async def _external(self, metric: MetricType, window: DateWindow) -> Result[MetricShape]:
        try:
            return Ok(await fetch_external(metric, window, self.clients))
        except CredentialsNotConfigured:
            return Err("not_configured")
        except GoogleAPIError as e:
            return Err("provider_error", e)

    async def _cached(self, metric: MetricType, window: DateWindow) -> Result[dict[str, Any]]:
        if metric in UNCACHED_METRICS:
            return Err("not_cacheable")
        try:
            row = await self.cache.get_fresh(
                metric.value,
                window.cache_key,
                self.settings.analytics_cache_ttl_seconds,
            )
        except SQLAlchemyError as e:
            return Err("cache_unavailable", e)
        if row is None:
            return Err("cache_miss")
        return Ok(row.data)

    async def _computed(self, metric: MetricType, window: DateWindow) -> Result[MetricShape]:
        try:
            return Ok(await self.internal.compute(metric, window))
        except (SQLAlchemyError, ValueError) as e:
            return Err("compute_failed", e)

    # --- writes -------------------------------------------------------------

    async def _write_cache(self, metric: MetricType, window: DateWindow, payload: dict[str, Any]) -> None:
        if metric in UNCACHED_METRICS:
            return
        try:
            await self.cache.upsert(metric.value, window.cache_key, payload)
        except SQLAlchemyError as e:
            logger.warning("Cache write failed", metric_type=metric.value, date_range=window.cache_key, error=str(e))

    async def _persist(
        self,
        metric: MetricType,
        window: DateWindow,
        shape: MetricShape,
        payload: dict[str, Any],
    ) -> None:
        await self._write_cache(metric, window, payload)
        if not isinstance(shape, SeoShape):
            return

        repo = SeoCacheRepository(self.session)
        try:
            await repo.upsert(metric.value, window.cache_key, payload)
            await repo.replace_keywords(window.cache_key, [k.model_dump() for k in shape.keywords])
            await repo.replace_pages(window.cache_key, [p.model_dump() for p in shape.pages])
        except SQLAlchemyError as e:
            logger.warning("SEO persistence failed", date_range=window.cache_key, error=str(e))
