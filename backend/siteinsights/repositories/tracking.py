"""
Repositories for the first-party tracking tables.
"""
from typing import Any, Optional
from uuid import UUID

from sqlalchemy import select

from siteinsights.models.columns import utcnow
from siteinsights.models.tracking import ClickEvent, PageView, Visitor, VisitorSession
from siteinsights.repositories.base import BaseRepository


class VisitorRepository(BaseRepository[Visitor]):
    """Repository for Visitor operations."""

    model = Visitor

    async def get_by_fingerprint(self, fingerprint: str) -> Optional[Visitor]:
        stmt = select(Visitor).where(Visitor.fingerprint == fingerprint)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def create_or_revisit(
        self,
        fingerprint: str,
        attributes: dict[str, Any],
    ) -> tuple[Visitor, bool]:
        """
        Create a visitor or register a revisit of an existing one.
        Returns (visitor, created) tuple.
        """
        existing = await self.get_by_fingerprint(fingerprint)

        if existing:
            existing.total_visits = (existing.total_visits or 0) + 1
            existing.last_visit = utcnow()
            for field, value in attributes.items():
                if value is not None:
                    setattr(existing, field, value)
            await self.session.flush()
            return existing, False

        visitor = Visitor(fingerprint=fingerprint, **attributes)
        self.session.add(visitor)
        await self.session.flush()
        return visitor, True


class SessionRepository(BaseRepository[VisitorSession]):
    """Repository for visitor session operations."""

    model = VisitorSession

    async def touch(self, session_id: UUID, *, new_page: bool = False) -> Optional[VisitorSession]:
        """Refresh last activity, optionally counting one more page."""
        visit = await self.get_by_id(session_id)
        if visit is None:
            return None
        visit.last_activity_at = utcnow()
        if new_page:
            visit.page_count = (visit.page_count or 0) + 1
        await self.session.flush()
        return visit

    async def end(
        self,
        session_id: UUID,
        *,
        exit_page: Optional[str],
        duration_seconds: int,
    ) -> Optional[VisitorSession]:
        visit = await self.get_by_id(session_id)
        if visit is None:
            return None
        visit.ended_at = utcnow()
        visit.exit_page = exit_page
        visit.duration_seconds = duration_seconds
        visit.is_active = False
        await self.session.flush()
        return visit


class PageViewRepository(BaseRepository[PageView]):
    """Repository for page view operations."""

    model = PageView

    async def get_latest(self, session_id: Optional[UUID], page_path: str) -> Optional[PageView]:
        """Most recent view of a path within a session."""
        stmt = (
            select(PageView)
            .where(PageView.session_id == session_id, PageView.page_path == page_path)
            .order_by(PageView.viewed_at.desc())
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def backfill(
        self,
        session_id: Optional[UUID],
        page_path: str,
        *,
        time_on_page: int,
        scroll_depth: int,
    ) -> Optional[PageView]:
        """Write time-on-page and scroll depth onto the latest matching view."""
        view = await self.get_latest(session_id, page_path)
        if view is None:
            return None
        view.time_on_page = time_on_page
        view.scroll_depth = scroll_depth
        await self.session.flush()
        return view


class ClickEventRepository(BaseRepository[ClickEvent]):
    """Repository for click/conversion events."""

    model = ClickEvent
