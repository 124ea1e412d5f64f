"""
Computed-result caches and the stored Search Console breakdowns.
"""
from datetime import datetime
from typing import Any, Optional
from uuid import UUID, uuid4

from sqlalchemy import Boolean, DateTime, Float, Integer, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from siteinsights.core.database import Base
from siteinsights.models.columns import JsonType, utcnow


class AnalyticsCache(Base):
    """Last normalized result per (metric_type, date_range)."""

    __tablename__ = "analytics_cache"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    metric_type: Mapped[str] = mapped_column(String(50), nullable=False)
    date_range: Mapped[str] = mapped_column(String(20), nullable=False)
    data: Mapped[dict[str, Any]] = mapped_column(JsonType, nullable=False, default=dict)
    last_fetched_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        UniqueConstraint("metric_type", "date_range", name="uq_analytics_cache_key"),
    )


class SeoCache(Base):
    """Last normalized Search Console result per (metric_type, date_range)."""

    __tablename__ = "seo_cache"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    metric_type: Mapped[str] = mapped_column(String(50), nullable=False)
    date_range: Mapped[str] = mapped_column(String(20), nullable=False)
    data: Mapped[dict[str, Any]] = mapped_column(JsonType, nullable=False, default=dict)
    last_fetched_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        UniqueConstraint("metric_type", "date_range", name="uq_seo_cache_key"),
    )


class SeoKeyword(Base):
    """Search query performance, replaced wholesale per date range."""

    __tablename__ = "seo_keywords"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    date_range: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    keyword: Mapped[str] = mapped_column(String(512), nullable=False)
    page_url: Mapped[Optional[str]] = mapped_column(String(1024))
    clicks: Mapped[int] = mapped_column(Integer, default=0)
    impressions: Mapped[int] = mapped_column(Integer, default=0)
    ctr: Mapped[float] = mapped_column(Float, default=0.0)  # percent
    avg_position: Mapped[float] = mapped_column(Float, default=0.0)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class SeoPage(Base):
    """Search performance per landing page, replaced wholesale per date range."""

    __tablename__ = "seo_pages"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    date_range: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    page_url: Mapped[str] = mapped_column(String(1024), nullable=False)
    clicks: Mapped[int] = mapped_column(Integer, default=0)
    impressions: Mapped[int] = mapped_column(Integer, default=0)
    avg_position: Mapped[float] = mapped_column(Float, default=0.0)
    indexed: Mapped[bool] = mapped_column(Boolean, default=True)
    status: Mapped[str] = mapped_column(String(30), default="valid")
    last_checked: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
