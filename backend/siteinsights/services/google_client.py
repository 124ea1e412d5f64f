"""
Google API clients: Analytics Data, Search Console and PageSpeed Insights.
Handles service-account token minting, per-call timeouts and retries.
"""
import asyncio
import time
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Optional
from urllib.parse import quote

import httpx

from siteinsights.core.config import Settings, get_settings
from siteinsights.core.logging import get_logger
from siteinsights.core.security import GOOGLE_TOKEN_URI, build_service_account_assertion

logger = get_logger(__name__)

ANALYTICS_SCOPE = "https://www.googleapis.com/auth/analytics.readonly"
SEARCH_CONSOLE_SCOPE = "https://www.googleapis.com/auth/webmasters.readonly"

ANALYTICS_DATA_URL = "https://analyticsdata.googleapis.com/v1beta/properties/{property_id}"
SEARCH_CONSOLE_URL = "https://www.googleapis.com/webmasters/v3/sites/{site}/searchAnalytics/query"
PAGESPEED_URL = "https://www.googleapis.com/pagespeedonline/v5/runPagespeed"

JWT_BEARER_GRANT = "urn:ietf:params:oauth:grant-type:jwt-bearer"


class GoogleAPIError(Exception):
    """Raised when a Google API call fails."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class GoogleAuthError(GoogleAPIError):
    """Raised when an access token cannot be minted."""


class _GoogleHTTPClient:
    """
    Shared request loop.

    Transient failures (429, 5xx, network errors and timeouts) are retried
    with exponential backoff; anything else fails immediately.
    """

    RETRY_BACKOFF = 0.5  # seconds, doubled per attempt
    error_class: type[GoogleAPIError] = GoogleAPIError

    def __init__(
        self,
        *,
        timeout: float = 15.0,
        max_retries: int = 2,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.timeout = timeout
        self.max_retries = max_retries
        self.transport = transport

    async def _request(self, method: str, url: str, **kwargs: Any) -> dict[str, Any]:
        attempts = self.max_retries + 1
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            for attempt in range(attempts):
                try:
                    response = await client.request(method, url, **kwargs)
                    response.raise_for_status()
                    return response.json()

                except httpx.HTTPStatusError as e:
                    status = e.response.status_code
                    if (status == 429 or status >= 500) and attempt < attempts - 1:
                        await asyncio.sleep(self.RETRY_BACKOFF * 2 ** attempt)
                        continue
                    raise self.error_class(
                        f"HTTP error {status}: {e.response.text[:200]}",
                        status_code=status,
                    )

                except httpx.RequestError as e:
                    if attempt < attempts - 1:
                        await asyncio.sleep(self.RETRY_BACKOFF * 2 ** attempt)
                        continue
                    raise self.error_class(f"Request failed: {e!r}")

                except ValueError as e:
                    raise self.error_class(f"Malformed response body: {e}")

        raise self.error_class("Max retries exceeded")


class ServiceAccountTokenProvider(_GoogleHTTPClient):
    """
    Exchanges signed JWT assertions for OAuth access tokens.

    Tokens are reused per scope set until a minute before they expire.
    """

    EXPIRY_MARGIN = 60
    error_class = GoogleAuthError

    def __init__(self, client_email: str, private_key: str, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.client_email = client_email
        self.private_key = private_key
        self._tokens: dict[tuple[str, ...], tuple[str, float]] = {}

    async def get_access_token(self, scopes: list[str]) -> str:
        key = tuple(sorted(scopes))
        cached = self._tokens.get(key)
        if cached and cached[1] > time.time():
            return cached[0]

        try:
            assertion = build_service_account_assertion(self.client_email, self.private_key, scopes)
        except Exception as e:
            raise GoogleAuthError(f"Could not sign assertion: {e}")

        data = await self._request(
            "POST",
            GOOGLE_TOKEN_URI,
            data={"grant_type": JWT_BEARER_GRANT, "assertion": assertion},
        )
        token = data.get("access_token")
        if not token:
            raise GoogleAuthError("Token response carried no access_token")

        expires_in = int(data.get("expires_in", 3600))
        self._tokens[key] = (token, time.time() + expires_in - self.EXPIRY_MARGIN)
        logger.debug("Minted Google access token", scopes=list(key), expires_in=expires_in)
        return token


class AnalyticsDataClient(_GoogleHTTPClient):
    """Google Analytics 4 Data API for a single property."""

    def __init__(self, tokens: ServiceAccountTokenProvider, property_id: str, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.tokens = tokens
        self.base_url = ANALYTICS_DATA_URL.format(property_id=property_id)

    async def _post(self, method: str, body: dict[str, Any]) -> dict[str, Any]:
        token = await self.tokens.get_access_token([ANALYTICS_SCOPE])
        return await self._request(
            "POST",
            f"{self.base_url}:{method}",
            json=body,
            headers={"Authorization": f"Bearer {token}"},
        )

    async def run_report(self, body: dict[str, Any]) -> dict[str, Any]:
        return await self._post("runReport", body)

    async def run_realtime_report(self, body: dict[str, Any]) -> dict[str, Any]:
        return await self._post("runRealtimeReport", body)


class SearchConsoleClient(_GoogleHTTPClient):
    """Search Console search analytics for one verified site."""

    def __init__(self, tokens: ServiceAccountTokenProvider, site_url: str, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.tokens = tokens
        self.url = SEARCH_CONSOLE_URL.format(site=quote(site_url, safe=""))

    async def query(self, body: dict[str, Any]) -> dict[str, Any]:
        token = await self.tokens.get_access_token([SEARCH_CONSOLE_SCOPE])
        return await self._request(
            "POST",
            self.url,
            json=body,
            headers={"Authorization": f"Bearer {token}"},
        )


class PageSpeedClient(_GoogleHTTPClient):
    """PageSpeed Insights v5, authenticated with an API key."""

    def __init__(self, api_key: str, target_url: str, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.api_key = api_key
        self.target_url = target_url

    async def run(self, strategy: str, url: Optional[str] = None) -> dict[str, Any]:
        params = {
            "url": url or self.target_url,
            "strategy": strategy,
            "category": "performance",
            "key": self.api_key,
        }
        return await self._request("GET", PAGESPEED_URL, params=params)


@dataclass
class GoogleClients:
    """The provider clients that the current configuration enables."""

    analytics: Optional[AnalyticsDataClient] = None
    search_console: Optional[SearchConsoleClient] = None
    pagespeed: Optional[PageSpeedClient] = None

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "GoogleClients":
        options = {
            "timeout": settings.external_api_timeout,
            "max_retries": settings.external_api_max_retries,
            "transport": transport,
        }
        clients = cls()

        if settings.has_service_account:
            tokens = ServiceAccountTokenProvider(
                settings.google_service_account_email,
                settings.google_private_key,
                **options,
            )
            if settings.ga_property_id:
                clients.analytics = AnalyticsDataClient(tokens, settings.ga_property_id, **options)
            if settings.gsc_site_url:
                clients.search_console = SearchConsoleClient(tokens, settings.gsc_site_url, **options)

        if settings.pagespeed_configured:
            clients.pagespeed = PageSpeedClient(
                settings.pagespeed_api_key,
                settings.pagespeed_target_url or settings.site_url,
                # Lighthouse runs routinely take longer than a data query
                timeout=max(settings.external_api_timeout, 60.0),
                max_retries=settings.external_api_max_retries,
                transport=transport,
            )

        return clients


@lru_cache
def get_google_clients() -> GoogleClients:
    """Process-wide clients, so minted access tokens outlive a single request."""
    return GoogleClients.from_settings(get_settings())
