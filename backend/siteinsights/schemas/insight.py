"""
Decision insight Pydantic schemas for request/response validation.
"""
from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from siteinsights.models.insight import InsightStatus


class InsightResponse(BaseModel):
    """Schema for insight API responses."""

    id: UUID
    insight_type: str = Field(
        validation_alias=AliasChoices("insight_type", "type"),
        serialization_alias="type",
    )
    title: str
    description: Optional[str] = None
    priority: str
    suggested_action: Optional[str] = None
    status: str
    created_at: datetime

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
    )


class InsightListResponse(BaseModel):
    items: list[InsightResponse]
    total: int


class InsightStatusUpdate(BaseModel):
    """Operator action on an insight."""

    status: InsightStatus
