"""
Partition hardening: one-time outgoing header rewrite per storage partition.

Every request leaving a hardened partition gets a desktop-browser
User-Agent (a WebKit-only one for identity-provider hosts) and an
Accept-Language built from the active UI locale.
"""

from __future__ import annotations

import logging
from typing import Optional
from urllib.parse import urlparse

from playwright.async_api import BrowserContext, Route

import engine_config

logger = logging.getLogger(__name__)


def is_identity_host(host: str, patterns: Optional[list[str]] = None) -> bool:
    """True when host is one of the identity-provider hosts or a subdomain of one."""
    host = (host or "").lower().rstrip(".")
    if not host:
        return False
    for pattern in patterns if patterns is not None else engine_config.IDENTITY_PROVIDER_HOSTS:
        pattern = pattern.lower()
        if host == pattern or host.endswith("." + pattern):
            return True
    return False


def user_agent_for(url: str) -> str:
    ua = engine_config.DESKTOP_USER_AGENT
    try:
        host = urlparse(url).hostname or ""
    except ValueError:
        return ua
    if is_identity_host(host):
        ua = engine_config.IDENTITY_USER_AGENT
    return ua


def preferred_languages(locale: Optional[str] = None) -> list[str]:
    """The UI locale first, then English."""
    locale = locale or engine_config.UI_LOCALE or "en-US"
    return [locale] if locale == "en" else [locale, "en"]


def accept_language(locale: Optional[str] = None) -> str:
    first, *rest = preferred_languages(locale)
    return ",".join([first] + [f"{lang};q=0.9" for lang in rest])


class PartitionHardener:
    """
    Tracks which partitions already carry the header rewrite.

    One instance per process; the hardened set only grows.
    """

    def __init__(self, locale: Optional[str] = None):
        self.locale = locale
        self._hardened: set[str] = set()

    def is_hardened(self, partition: str) -> bool:
        return partition in self._hardened

    @property
    def hardened(self) -> frozenset[str]:
        return frozenset(self._hardened)

    async def ensure(self, partition: str, context: BrowserContext) -> None:
        """Register the header rewrite on context unless partition already has it."""
        if partition in self._hardened:
            return
        # Claim the partition before awaiting so a concurrent call can't register twice
        self._hardened.add(partition)
        language = accept_language(self.locale)

        async def _rewrite_headers(route: Route) -> None:
            request = route.request
            headers = {
                **request.headers,
                "user-agent": user_agent_for(request.url),
                "accept-language": language,
            }
            await route.continue_(headers=headers)

        try:
            await context.route("**/*", _rewrite_headers)
        except Exception:
            self._hardened.discard(partition)
            raise
        logger.info(f"Partition hardened: {partition}")
