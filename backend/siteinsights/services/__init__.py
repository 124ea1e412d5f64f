"""
Services package for business logic layer.
"""
from siteinsights.services.aggregation import AggregateOutcome, AggregationError, AggregationService
from siteinsights.services.google_client import GoogleAPIError, GoogleAuthError, GoogleClients
from siteinsights.services.ingestion import GeoLocator, IngestionError, IngestionService
from siteinsights.services.insight_generator import InsightGenerator

__all__ = [
    "AggregationService",
    "AggregateOutcome",
    "AggregationError",
    "GoogleClients",
    "GoogleAPIError",
    "GoogleAuthError",
    "IngestionService",
    "IngestionError",
    "GeoLocator",
    "InsightGenerator",
]
