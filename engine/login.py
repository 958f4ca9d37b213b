"""
Federated-login redirector.

New-window requests from a session page are intercepted. Identity-provider
URLs are opened in a companion page inside the session's own persistent
context (same partition, same cookies, same header rewrite); once the
companion lands back on the session's site the companion is closed and
the session page reloads its URL, now signed in. Any other new window goes
to the user's default browser.
"""

from __future__ import annotations

import logging
import webbrowser
from contextlib import suppress
from typing import TYPE_CHECKING, Callable, Optional
from urllib.parse import urlparse

from playwright.async_api import Frame, Page, Request

import engine_config
from engine.fingerprint import AntiFingerprintInjector
from engine.hardening import is_identity_host

if TYPE_CHECKING:
    from engine.sessions import Session

logger = logging.getLogger(__name__)

IDLE = "idle"
LOGIN_PENDING = "login_pending"
RESOLVED = "resolved"


def host_of(url: str) -> str:
    try:
        return (urlparse(url).hostname or "").lower()
    except ValueError:
        return ""


class LoginRedirector:
    """Popup handling for one session page."""

    def __init__(
        self,
        session: "Session",
        injector: AntiFingerprintInjector,
        open_external: Optional[Callable[[str], object]] = None,
    ):
        self.session = session
        self.injector = injector
        self.open_external = open_external or webbrowser.open
        self.state = IDLE
        self.companion: Optional[Page] = None
        self.target_host = host_of(session.url)

    def classify(self, url: str) -> str:
        return "identity" if is_identity_host(host_of(url)) else "external"

    def matches_target(self, url: str) -> bool:
        """True when url is on the session's site (same host or a subdomain) and not a sign-in page."""
        if not self.target_host:
            return False
        host = host_of(url)
        # Sign-in hops can sit under the target's own parent domain
        if is_identity_host(host):
            return False
        return host == self.target_host or host.endswith("." + self.target_host)

    async def handle_popup(self, popup: Page) -> None:
        """Deny the popup in-app and route its URL to a companion or the OS."""
        url = await self._popup_url(popup)
        with suppress(Exception):
            await popup.close()
        if not url:
            logger.debug("Popup never got a URL, dropped")
            return

        if self.classify(url) == "identity":
            await self.open_companion(url)
        else:
            logger.info(f"Opening external link: {url}")
            try:
                self.open_external(url)
            except Exception as e:
                logger.warning(f"Could not open {url} externally: {e}")

    async def _popup_url(self, popup: Page) -> str:
        url = popup.url
        if url and url != "about:blank":
            return url
        try:
            await popup.wait_for_url(
                lambda u: u != "about:blank",
                wait_until="commit",
                timeout=engine_config.POPUP_URL_TIMEOUT,
            )
        except Exception as e:
            logger.debug(f"Popup URL wait failed: {e}")
        url = popup.url
        return "" if url == "about:blank" else url

    async def open_companion(self, url: str) -> None:
        await self._close_companion()
        self.state = LOGIN_PENDING
        logger.info(f"[login] companion window for {url} (session {self.session.id})")

        companion = await self.session.context.new_page()
        self.companion = companion
        await self.injector.inject(companion)

        companion.on("request", self._on_companion_request)
        companion.on("framenavigated", self._on_companion_navigated)
        companion.on("close", self._on_companion_closed)

        try:
            await companion.goto(url, wait_until="commit")
        except Exception as e:
            # Expected when the companion resolves (and closes) mid-navigation
            logger.debug(f"[login] companion navigation ended: {e}")

    async def _on_companion_request(self, request: Request) -> None:
        companion = self.companion
        if companion is None or not request.is_navigation_request():
            return
        if request.frame != companion.main_frame:
            return
        await self._maybe_resolve(request.url)

    async def _on_companion_navigated(self, frame: Frame) -> None:
        companion = self.companion
        if companion is None or frame != companion.main_frame:
            return
        await self._maybe_resolve(frame.url)

    async def _on_companion_closed(self, page: Page) -> None:
        if page is not self.companion:
            return
        self.companion = None
        with suppress(Exception):
            await self.injector.release(page)
        if self.state == LOGIN_PENDING:
            logger.info("[login] companion closed before sign-in finished")
            self.state = IDLE

    async def _maybe_resolve(self, url: str) -> None:
        if self.state != LOGIN_PENDING or not self.matches_target(url):
            return
        self.state = RESOLVED
        logger.info(f"[login] redirect back to {url}, reloading session {self.session.id}")
        await self._close_companion()
        with suppress(Exception):
            await self.session.page.goto(self.session.url)

    async def _close_companion(self) -> None:
        companion, self.companion = self.companion, None
        if companion is None:
            return
        with suppress(Exception):
            await self.injector.release(companion)
        with suppress(Exception):
            await companion.close()

    async def close(self) -> None:
        await self._close_companion()
        self.state = IDLE
