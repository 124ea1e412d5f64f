"""
Cache repositories: one row per (metric_type, date_range), last writer wins.
"""
from datetime import datetime, timedelta, timezone
from typing import Any, Generic, Optional, TypeVar, Union

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError

from siteinsights.core.logging import get_logger
from siteinsights.models.cache import AnalyticsCache, SeoCache, SeoKeyword, SeoPage
from siteinsights.models.columns import utcnow
from siteinsights.repositories.base import BaseRepository

logger = get_logger(__name__)

CacheModel = TypeVar("CacheModel", bound=Union[AnalyticsCache, SeoCache])


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored in UTC
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class _KeyedCacheRepository(BaseRepository[CacheModel], Generic[CacheModel]):
    """Shared get/upsert for the keyed cache tables."""

    async def get(self, metric_type: str, date_range: str) -> Optional[CacheModel]:
        stmt = select(self.model).where(
            self.model.metric_type == metric_type,
            self.model.date_range == date_range,
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_fresh(
        self,
        metric_type: str,
        date_range: str,
        max_age_seconds: Optional[int] = None,
    ) -> Optional[CacheModel]:
        """Return the row if present and, when a max age is given, young enough."""
        row = await self.get(metric_type, date_range)
        if row is None or max_age_seconds is None:
            return row
        if row.last_fetched_at is None:
            return None
        age = utcnow() - _as_utc(row.last_fetched_at)
        return row if age <= timedelta(seconds=max_age_seconds) else None

    async def upsert(self, metric_type: str, date_range: str, data: dict[str, Any]) -> CacheModel:
        """
        Insert or overwrite the row for this key.

        A concurrent writer may insert the same key first; in that case the
        insert is rolled back to the savepoint and the row is overwritten.
        """
        existing = await self.get(metric_type, date_range)
        if existing is not None:
            existing.data = data
            existing.last_fetched_at = utcnow()
            await self.session.flush()
            return existing

        row = self.model(
            metric_type=metric_type,
            date_range=date_range,
            data=data,
            last_fetched_at=utcnow(),
        )
        try:
            async with self.session.begin_nested():
                self.session.add(row)
        except IntegrityError:
            logger.info(
                "Cache row inserted concurrently, overwriting",
                table=self.model.__tablename__,
                metric_type=metric_type,
                date_range=date_range,
            )
            existing = await self.get(metric_type, date_range)
            existing.data = data
            existing.last_fetched_at = utcnow()
            await self.session.flush()
            return existing
        return row

    async def latest_for_metric(self, metric_type: str) -> Optional[CacheModel]:
        """Most recently written row for a metric, whatever its range."""
        stmt = (
            select(self.model)
            .where(self.model.metric_type == metric_type)
            .order_by(self.model.last_fetched_at.desc())
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()


class AnalyticsCacheRepository(_KeyedCacheRepository[AnalyticsCache]):
    """Repository for the aggregation result cache."""

    model = AnalyticsCache


class SeoCacheRepository(_KeyedCacheRepository[SeoCache]):
    """Repository for the Search Console cache and its breakdown tables."""

    model = SeoCache

    async def replace_keywords(self, date_range: str, keywords: list[dict[str, Any]]) -> int:
        """Drop and re-insert the keyword rows of one date range."""
        await self.session.execute(delete(SeoKeyword).where(SeoKeyword.date_range == date_range))
        self.session.add_all(
            SeoKeyword(
                date_range=date_range,
                keyword=item["keyword"],
                page_url=item.get("page_url") or None,
                clicks=item["clicks"],
                impressions=item["impressions"],
                ctr=item["ctr"],
                avg_position=item["position"],
            )
            for item in keywords
        )
        await self.session.flush()
        return len(keywords)

    async def replace_pages(self, date_range: str, pages: list[dict[str, Any]]) -> int:
        """Drop and re-insert the page rows of one date range."""
        await self.session.execute(delete(SeoPage).where(SeoPage.date_range == date_range))
        self.session.add_all(
            SeoPage(
                date_range=date_range,
                page_url=item["page_url"],
                clicks=item["clicks"],
                impressions=item["impressions"],
                avg_position=item["position"],
                indexed=item.get("indexed", True),
                status=item.get("status", "valid"),
            )
            for item in pages
        )
        await self.session.flush()
        return len(pages)

    async def get_keywords(self, date_range: Optional[str] = None) -> list[SeoKeyword]:
        stmt = select(SeoKeyword).order_by(SeoKeyword.clicks.desc(), SeoKeyword.impressions.desc())
        if date_range is not None:
            stmt = stmt.where(SeoKeyword.date_range == date_range)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_pages(self, date_range: str) -> list[SeoPage]:
        stmt = (
            select(SeoPage)
            .where(SeoPage.date_range == date_range)
            .order_by(SeoPage.clicks.desc())
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())
