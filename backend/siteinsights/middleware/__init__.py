"""
Middleware package.
"""
from siteinsights.middleware.error_handler import ErrorHandlerMiddleware
from siteinsights.middleware.request_id import RequestIdMiddleware

__all__ = [
    "ErrorHandlerMiddleware",
    "RequestIdMiddleware",
]
