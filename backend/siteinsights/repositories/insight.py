"""
Decision insight repository for data access operations.
"""
from typing import Optional

from sqlalchemy import func, select

from siteinsights.models.insight import DecisionInsight, InsightStatus
from siteinsights.repositories.base import BaseRepository


class InsightRepository(BaseRepository[DecisionInsight]):
    """Repository for DecisionInsight operations."""

    model = DecisionInsight

    async def find_open_by_title(self, title: str) -> Optional[DecisionInsight]:
        """Find an unresolved (status ``new``) insight with this title."""
        stmt = (
            select(DecisionInsight)
            .where(
                DecisionInsight.title == title,
                DecisionInsight.status == InsightStatus.NEW.value,
            )
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_insights(
        self,
        *,
        status: Optional[str] = None,
        priority: Optional[str] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> tuple[list[DecisionInsight], int]:
        """
        List insights, newest first.
        Returns (insights, total_count) tuple.
        """
        base_query = select(DecisionInsight)
        if status:
            base_query = base_query.where(DecisionInsight.status == status)
        if priority:
            base_query = base_query.where(DecisionInsight.priority == priority)

        count_stmt = select(func.count()).select_from(base_query.subquery())
        total = (await self.session.execute(count_stmt)).scalar() or 0

        stmt = base_query.order_by(DecisionInsight.created_at.desc()).offset(skip).limit(limit)
        result = await self.session.execute(stmt)
        return list(result.scalars().all()), total

    async def set_status(self, insight: DecisionInsight, status: InsightStatus) -> DecisionInsight:
        """Record an operator's status transition."""
        insight.status = status.value
        await self.session.flush()
        await self.session.refresh(insight)
        return insight
