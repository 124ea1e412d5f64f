"""
Real-user-monitoring tables fed by the beacon endpoint.
All rows are append-only.
"""
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from sqlalchemy import Boolean, DateTime, Float, Index, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from siteinsights.core.database import Base
from siteinsights.models.columns import JsonType, utcnow


class RumMetricType(str, Enum):
    """Performance observations recorded per page load."""

    LCP = "LCP"  # seconds
    CLS = "CLS"  # unitless
    LONG_TASK = "LONG_TASK"  # milliseconds
    INTERACTION = "INTERACTION"  # milliseconds
    RESOURCE = "RESOURCE"  # milliseconds


class RumMetric(Base):
    """A single performance observation."""

    __tablename__ = "rum_metrics"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    journey_id: Mapped[Optional[str]] = mapped_column(String(64), index=True)

    metric_type: Mapped[str] = mapped_column(String(30), nullable=False, index=True)
    value: Mapped[float] = mapped_column(Float, nullable=False)
    page_url: Mapped[Optional[str]] = mapped_column(String(1024), index=True)

    device_type: Mapped[Optional[str]] = mapped_column(String(20))
    network_type: Mapped[Optional[str]] = mapped_column(String(20))
    browser: Mapped[Optional[str]] = mapped_column(String(100))
    city: Mapped[Optional[str]] = mapped_column(String(100))
    country: Mapped[Optional[str]] = mapped_column(String(100))
    metric_metadata: Mapped[Optional[dict[str, Any]]] = mapped_column("metadata", JsonType)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)

    __table_args__ = (
        Index("idx_rum_metrics_type_created", "metric_type", "created_at"),
    )


class ResourceMetric(Base):
    """A slow resource fetch observed by the resource-timing collector."""

    __tablename__ = "resource_metrics"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    journey_id: Mapped[Optional[str]] = mapped_column(String(64), index=True)
    page_url: Mapped[Optional[str]] = mapped_column(String(1024))

    resource_name: Mapped[str] = mapped_column(String(1024), nullable=False)
    resource_type: Mapped[Optional[str]] = mapped_column(String(50))
    initiator_type: Mapped[Optional[str]] = mapped_column(String(50))
    duration: Mapped[float] = mapped_column(Float, nullable=False)
    transfer_size: Mapped[int] = mapped_column(Integer, default=0)
    is_cache_hit: Mapped[bool] = mapped_column(Boolean, default=False)

    device_type: Mapped[Optional[str]] = mapped_column(String(20))
    network_type: Mapped[Optional[str]] = mapped_column(String(20))
    browser: Mapped[Optional[str]] = mapped_column(String(100))

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)


class JourneyEvent(Base):
    """Journey start and page events emitted by the RUM tracker."""

    __tablename__ = "journey_events"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    journey_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    event_type: Mapped[str] = mapped_column(String(50), nullable=False)
    page_url: Mapped[Optional[str]] = mapped_column(String(1024))
    referrer: Mapped[Optional[str]] = mapped_column(String(2048))

    device_type: Mapped[Optional[str]] = mapped_column(String(20))
    browser: Mapped[Optional[str]] = mapped_column(String(100))

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)


class ReplayChunk(Base):
    """A flushed batch of throttled pointer/scroll/click samples."""

    __tablename__ = "replay_chunks"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    journey_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    events: Mapped[list[dict[str, Any]]] = mapped_column(JsonType, nullable=False)
    event_count: Mapped[int] = mapped_column(Integer, default=0)
    page_url: Mapped[Optional[str]] = mapped_column(String(1024))

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)
