"""
Client environment hints derived from the runtime's navigator.
"""
from functools import lru_cache
from urllib.parse import parse_qs, urlparse

from user_agents import parse as parse_ua

from siteinsights.collectors.runtime import PageRuntime


@lru_cache(maxsize=32)
def _parsed(user_agent: str):
    return parse_ua(user_agent)


def device_type(user_agent: str) -> str:
    """tablet, mobile or desktop; anything unrecognised counts as desktop."""
    ua = _parsed(user_agent)
    if ua.is_tablet:
        return "tablet"
    if ua.is_mobile:
        return "mobile"
    return "desktop"


def browser_name(user_agent: str) -> str:
    family = _parsed(user_agent).browser.family
    return "Unknown" if family == "Other" else family


def os_name(user_agent: str) -> str:
    family = _parsed(user_agent).os.family
    return "Unknown" if family == "Other" else family


def network_type(runtime: PageRuntime) -> str:
    return runtime.navigator.effective_type or "unknown"


def screen_resolution(runtime: PageRuntime) -> str:
    return f"{runtime.screen.width}x{runtime.screen.height}"


def utm_params(runtime: PageRuntime) -> dict[str, str | None]:
    params = parse_qs(runtime.search.lstrip("?"))
    return {
        key: params[key][0] if key in params else None
        for key in ("utm_source", "utm_medium", "utm_campaign")
    }


def external_referrer(runtime: PageRuntime) -> str | None:
    """Referring host, or None for direct and same-site navigation."""
    if not runtime.referrer:
        return None
    host = urlparse(runtime.referrer).hostname
    if not host:
        return runtime.referrer
    if host == runtime.hostname:
        return None
    return host


def internal_referrer_path(runtime: PageRuntime) -> str | None:
    """Path of a same-site referrer."""
    if not runtime.referrer:
        return None
    parsed = urlparse(runtime.referrer)
    if parsed.hostname and parsed.hostname == runtime.hostname:
        return parsed.path or "/"
    return None
