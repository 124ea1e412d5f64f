"""
Aggregation endpoint consumed by the dashboards.

Always answers 200 with a normalized metric shape, or an opaque 500.
"""
import json
from typing import Annotated

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from siteinsights.core.database import DbSession
from siteinsights.core.logging import get_logger
from siteinsights.schemas.analytics import AggregateRequest
from siteinsights.services.aggregation import AggregationError, AggregationService
from siteinsights.services.google_client import GoogleClients, get_google_clients

logger = get_logger(__name__)

router = APIRouter(prefix="/analytics", tags=["analytics"])

SOURCE_HEADER = "X-Analytics-Source"


class InvalidAggregateRequest(Exception):
    """The request body is not a usable aggregation request."""


def _internal_error() -> JSONResponse:
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


def parse_aggregate_request(raw: bytes) -> AggregateRequest:
    try:
        body = json.loads(raw or b"{}")
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise InvalidAggregateRequest(f"Body is not JSON: {e}")
    if not isinstance(body, dict):
        raise InvalidAggregateRequest("Body must be a JSON object")
    try:
        return AggregateRequest.model_validate(body)
    except ValidationError as e:
        raise InvalidAggregateRequest(f"{e.error_count()} validation error(s)")


def get_aggregation_service(
    session: DbSession,
    clients: Annotated[GoogleClients, Depends(get_google_clients)],
) -> AggregationService:
    return AggregationService(session, clients=clients)


@router.post("/aggregate")
async def aggregate(
    request: Request,
    service: Annotated[AggregationService, Depends(get_aggregation_service)],
) -> JSONResponse:
    """Resolve ``{metric_type, date_range}`` to its normalized shape."""
    try:
        aggregate_request = parse_aggregate_request(await request.body())
    except InvalidAggregateRequest as e:
        logger.warning("Rejected aggregation request", error=str(e))
        return _internal_error()

    try:
        outcome = await service.aggregate(aggregate_request)
    except AggregationError:
        logger.exception(
            "Aggregation request failed",
            metric_type=aggregate_request.metric_type.value,
            date_range=aggregate_request.date_range,
        )
        return _internal_error()

    return JSONResponse(content=outcome.payload, headers={SOURCE_HEADER: outcome.source})
