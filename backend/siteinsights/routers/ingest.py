"""
Ingestion endpoints for the RUM beacon and the CMS page tracker.

Beacons usually arrive as ``text/plain`` (sendBeacon), so bodies are parsed
from raw bytes rather than through a typed request model.
"""
import json
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from siteinsights.core.database import DbSession
from siteinsights.core.logging import get_logger
from siteinsights.schemas.ingest import TrackRequest
from siteinsights.services.ingestion import IngestionError, IngestionService, client_ip

logger = get_logger(__name__)

router = APIRouter(tags=["ingest"])


def get_ingestion_service(
    session: DbSession,
) -> IngestionService:
    return IngestionService(session)


def _bad_request(message: str) -> JSONResponse:
    return JSONResponse(status_code=400, content={"error": message})


async def _json_body(request: Request) -> Any:
    raw = await request.body()
    try:
        return json.loads(raw)
    except (UnicodeDecodeError, json.JSONDecodeError):
        raise IngestionError("Body is not valid JSON")


@router.post("/rum/ingest")
async def ingest_beacon(
    request: Request,
    service: Annotated[IngestionService, Depends(get_ingestion_service)],
) -> JSONResponse:
    """Store one RUM beacon."""
    try:
        await service.ingest_beacon(await _json_body(request))
    except IngestionError as e:
        logger.info("Rejected beacon", error=str(e))
        return _bad_request(str(e))
    return JSONResponse(content={"success": True})


@router.post("/track")
async def track(
    request: Request,
    service: Annotated[IngestionService, Depends(get_ingestion_service)],
) -> JSONResponse:
    """Handle one page-tracker action and return any allocated ids."""
    try:
        body = await _json_body(request)
        if not isinstance(body, dict):
            raise IngestionError("Body must be a JSON object")
        try:
            track_request = TrackRequest.model_validate(body)
        except ValidationError:
            raise IngestionError("Missing action")

        peer = request.client.host if request.client else None
        result = await service.track(
            track_request,
            user_agent=request.headers.get("user-agent"),
            ip=client_ip(dict(request.headers), peer),
        )
    except IngestionError as e:
        logger.info("Rejected track request", error=str(e))
        return _bad_request(str(e))

    return JSONResponse(content=result)
