"""
Insights API routes.

Lists generated recommendations and records operator status changes.
"""
from typing import Annotated, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status

from siteinsights.core.database import DbSession
from siteinsights.core.logging import get_logger
from siteinsights.models.insight import InsightPriority, InsightStatus
from siteinsights.repositories.insight import InsightRepository
from siteinsights.schemas.insight import (
    InsightListResponse,
    InsightResponse,
    InsightStatusUpdate,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/insights", tags=["insights"])


async def get_insight_repository(
    session: DbSession,
) -> InsightRepository:
    return InsightRepository(session)


@router.get("", response_model=InsightListResponse)
async def list_insights(
    repo: Annotated[InsightRepository, Depends(get_insight_repository)],
    insight_status: Optional[InsightStatus] = Query(None, alias="status"),
    priority: Optional[InsightPriority] = Query(None),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
) -> InsightListResponse:
    """List insights, newest first, optionally filtered by status and priority."""
    insights, total = await repo.list_insights(
        status=insight_status.value if insight_status else None,
        priority=priority.value if priority else None,
        skip=skip,
        limit=limit,
    )
    return InsightListResponse(
        items=[InsightResponse.model_validate(i) for i in insights],
        total=total,
    )


@router.patch("/{insight_id}", response_model=InsightResponse)
async def update_insight_status(
    insight_id: UUID,
    update: InsightStatusUpdate,
    repo: Annotated[InsightRepository, Depends(get_insight_repository)],
) -> InsightResponse:
    """Move an insight through new -> viewed -> applied."""
    insight = await repo.get_by_id(insight_id)
    if not insight:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Insight not found",
        )

    insight = await repo.set_status(insight, update.status)
    logger.info("Insight status changed", insight_id=str(insight_id), status=update.status.value)
    return InsightResponse.model_validate(insight)
