"""
First-party tracking tables written by the site's page tracker.

Visitors and sessions are mutated as activity arrives; page views get a
single backfill of time-on-page and scroll depth; click events are
append-only.
"""
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from siteinsights.core.database import Base
from siteinsights.models.columns import JsonType, utcnow


class ClickEventType(str, Enum):
    """Discrete user actions tracked on the marketing site."""

    WHATSAPP_CLICK = "whatsapp_click"
    FORM_SUBMIT = "form_submit"
    FILM_PLAY = "film_play"
    GALLERY_OPEN = "gallery_open"
    SERVICE_VIEW = "service_view"
    PLAN_VIEW = "plan_view"
    LINK_CLICK = "link_click"


# Event types that count as a conversion
CONVERSION_EVENT_TYPES = (ClickEventType.WHATSAPP_CLICK.value, ClickEventType.FORM_SUBMIT.value)


class Visitor(Base):
    """A browser, identified by its stored fingerprint."""

    __tablename__ = "visitors"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    fingerprint: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)

    device_type: Mapped[Optional[str]] = mapped_column(String(20))
    browser: Mapped[Optional[str]] = mapped_column(String(100))
    os: Mapped[Optional[str]] = mapped_column(String(100))
    screen_resolution: Mapped[Optional[str]] = mapped_column(String(20))
    language: Mapped[Optional[str]] = mapped_column(String(35))
    timezone: Mapped[Optional[str]] = mapped_column(String(64))

    # Best-effort geo from the client IP
    country: Mapped[Optional[str]] = mapped_column(String(100))
    city: Mapped[Optional[str]] = mapped_column(String(100))
    region: Mapped[Optional[str]] = mapped_column(String(100))

    first_visit: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    last_visit: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)
    total_visits: Mapped[int] = mapped_column(Integer, default=1)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    def __repr__(self) -> str:
        return f"<Visitor {self.fingerprint} visits={self.total_visits}>"


class VisitorSession(Base):
    """A bounded run of activity for one visitor."""

    __tablename__ = "sessions"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    visitor_id: Mapped[Optional[UUID]] = mapped_column(
        Uuid,
        ForeignKey("visitors.id", ondelete="SET NULL"),
        index=True,
    )

    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)
    ended_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    last_activity_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    entry_page: Mapped[Optional[str]] = mapped_column(String(1024))
    exit_page: Mapped[Optional[str]] = mapped_column(String(1024))
    referrer: Mapped[Optional[str]] = mapped_column(String(2048))

    utm_source: Mapped[Optional[str]] = mapped_column(String(255))
    utm_medium: Mapped[Optional[str]] = mapped_column(String(255))
    utm_campaign: Mapped[Optional[str]] = mapped_column(String(255))

    page_count: Mapped[int] = mapped_column(Integer, default=0)
    duration_seconds: Mapped[int] = mapped_column(Integer, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    def __repr__(self) -> str:
        return f"<VisitorSession {self.id} pages={self.page_count}>"


class PageView(Base):
    """One rendered page inside a session."""

    __tablename__ = "page_views"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    session_id: Mapped[Optional[UUID]] = mapped_column(Uuid, index=True)
    visitor_id: Mapped[Optional[UUID]] = mapped_column(Uuid, index=True)

    page_path: Mapped[str] = mapped_column(String(1024), nullable=False)
    page_title: Mapped[Optional[str]] = mapped_column(String(512))
    referrer_path: Mapped[Optional[str]] = mapped_column(String(1024))

    # Backfilled once when the visitor leaves the page
    scroll_depth: Mapped[Optional[int]] = mapped_column(Integer)
    time_on_page: Mapped[Optional[int]] = mapped_column(Integer)

    viewed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)

    __table_args__ = (
        Index("idx_page_views_session_path", "session_id", "page_path"),
    )


class ClickEvent(Base):
    """Immutable record of a click or conversion."""

    __tablename__ = "click_events"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    session_id: Mapped[Optional[UUID]] = mapped_column(Uuid, index=True)
    visitor_id: Mapped[Optional[UUID]] = mapped_column(Uuid, index=True)

    page_path: Mapped[str] = mapped_column(String(1024), nullable=False)
    event_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    element_id: Mapped[Optional[str]] = mapped_column(String(255))
    element_text: Mapped[Optional[str]] = mapped_column(Text)
    event_metadata: Mapped[Optional[dict[str, Any]]] = mapped_column("metadata", JsonType)

    clicked_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)

    def __repr__(self) -> str:
        return f"<ClickEvent {self.event_type} {self.page_path}>"
