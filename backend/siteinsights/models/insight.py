"""
Decision insight model - rule-generated recommendations for the site owner.
"""
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from sqlalchemy import DateTime, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from siteinsights.core.database import Base
from siteinsights.models.columns import JsonType, utcnow


class InsightType(str, Enum):
    """Rules the insight generator evaluates."""

    MOBILE_EXPERIENCE = "mobile_experience"
    SEO_OPPORTUNITY = "seo_opportunity"


class InsightPriority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class InsightStatus(str, Enum):
    """Lifecycle: new -> viewed -> applied."""

    NEW = "new"
    VIEWED = "viewed"
    APPLIED = "applied"


class DecisionInsight(Base):
    """A recommendation with a suggested action."""

    __tablename__ = "decision_insights"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    insight_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    description: Mapped[Optional[str]] = mapped_column(Text)
    priority: Mapped[str] = mapped_column(String(10), default=InsightPriority.MEDIUM.value)
    suggested_action: Mapped[Optional[str]] = mapped_column(Text)
    status: Mapped[str] = mapped_column(String(10), default=InsightStatus.NEW.value, index=True)

    # Figures the rule fired on
    evidence: Mapped[Optional[dict[str, Any]]] = mapped_column(JsonType)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), onupdate=utcnow)

    def __repr__(self) -> str:
        return f"<DecisionInsight {self.priority}: {self.title[:30]}>"
