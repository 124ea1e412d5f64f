"""
Insight generator - evaluates threshold rules over recent traffic, performance
and search data and records recommendations.

Rules are deduplicated by title: an unresolved (``new``) insight with the same
title suppresses a second copy, so scheduled re-runs do not pile up.
"""
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from siteinsights.core.logging import get_logger
from siteinsights.models.insight import InsightPriority, InsightType
from siteinsights.models.rum import RumMetricType
from siteinsights.repositories.cache import AnalyticsCacheRepository, SeoCacheRepository
from siteinsights.repositories.insight import InsightRepository
from siteinsights.schemas.analytics import InsightDefinition, InsightsRunShape, MetricType
from siteinsights.services.internal_metrics import RawEventReader, compute_performance

logger = get_logger(__name__)

LOOKBACK = timedelta(days=30)

MOBILE_SHARE_THRESHOLD = 40.0  # percent of sampled visitors
MOBILE_SCORE_THRESHOLD = 60
SEO_IMPRESSIONS_THRESHOLD = 500
SEO_CTR_THRESHOLD = 2.0  # percent


class InsightGenerator:
    """Runs every rule once and stores what fired."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self.insights = InsightRepository(session)
        self.reader = RawEventReader(session)

    async def run(self, now: Optional[datetime] = None) -> InsightsRunShape:
        now = now or datetime.now(timezone.utc)
        created: list[InsightDefinition] = []

        for rule in (self._mobile_experience, self._seo_opportunity):
            candidate = await rule(now)
            if candidate is None:
                continue
            definition, evidence = candidate
            if await self._store(definition, evidence):
                created.append(definition)

        logger.info("Insights generated", count=len(created))
        return InsightsRunShape(insights_generated=len(created), details=created)

    async def _store(self, definition: InsightDefinition, evidence: dict[str, Any]) -> bool:
        """Insert unless the same unresolved insight exists. Returns True if created."""
        if await self.insights.find_open_by_title(definition.title):
            logger.debug("Skipping duplicate insight", title=definition.title)
            return False

        await self.insights.create({
            "insight_type": definition.type,
            "title": definition.title,
            "description": definition.description,
            "priority": definition.priority,
            "suggested_action": definition.suggested_action,
            "evidence": evidence,
        })
        return True

    async def _recorded_mobile_score(self, since: datetime) -> Optional[int]:
        """Latest stored performance result, else one computed from RUM data."""
        cached = await AnalyticsCacheRepository(self.session).latest_for_metric(MetricType.PERFORMANCE.value)
        if cached is not None:
            pages = cached.data.get("pages") or []
            if any(p.get("device_type") == "mobile" for p in pages):
                return int(cached.data.get("mobileScore") or 0)

        metrics = await self.reader.rum_metrics(
            since,
            [RumMetricType.LCP.value, RumMetricType.CLS.value, RumMetricType.INTERACTION.value],
        )
        performance = compute_performance(metrics)
        if not any(p.device_type == "mobile" for p in performance.pages):
            return None
        return performance.mobile_score

    async def _mobile_experience(self, now: datetime) -> Optional[tuple[InsightDefinition, dict[str, Any]]]:
        since = now - LOOKBACK
        visitors = await self.reader.visitors(since)
        if not visitors:
            return None

        mobile = sum(1 for v in visitors if v.device_type == "mobile")
        share = mobile / len(visitors) * 100
        if share <= MOBILE_SHARE_THRESHOLD:
            return None

        score = await self._recorded_mobile_score(since)
        if score is None or score >= MOBILE_SCORE_THRESHOLD:
            return None

        definition = InsightDefinition(
            type=InsightType.MOBILE_EXPERIENCE.value,
            title="Mobile performance is holding back most of your visitors",
            description=(
                f"{share:.0f}% of visitors in the last 30 days browsed on mobile, "
                f"but the mobile performance score is {score}/100."
            ),
            priority=InsightPriority.HIGH.value,
            suggested_action=(
                "Compress and lazy-load hero images and galleries, defer non-critical "
                "scripts, and re-check the mobile score after deploying."
            ),
        )
        return definition, {"mobile_share": round(share, 1), "mobile_score": score, "visitors": len(visitors)}

    async def _seo_opportunity(self, now: datetime) -> Optional[tuple[InsightDefinition, dict[str, Any]]]:
        keywords = await SeoCacheRepository(self.session).get_keywords()
        candidates = [
            k for k in keywords
            if (k.impressions or 0) > SEO_IMPRESSIONS_THRESHOLD and (k.ctr or 0.0) < SEO_CTR_THRESHOLD
        ]
        if not candidates:
            return None

        keyword = max(candidates, key=lambda k: k.impressions)
        definition = InsightDefinition(
            type=InsightType.SEO_OPPORTUNITY.value,
            title=f'Low click-through for "{keyword.keyword}"',
            description=(
                f'"{keyword.keyword}" was shown {keyword.impressions} times in search '
                f"results but only {keyword.ctr:.1f}% of searchers clicked."
            ),
            priority=InsightPriority.MEDIUM.value,
            suggested_action=(
                f"Rewrite the title tag and meta description of {keyword.page_url or 'the ranking page'} "
                f'to match the intent behind "{keyword.keyword}".'
            ),
        )
        evidence = {
            "keyword": keyword.keyword,
            "impressions": keyword.impressions,
            "ctr": keyword.ctr,
            "position": keyword.avg_position,
            "page_url": keyword.page_url,
        }
        return definition, evidence
