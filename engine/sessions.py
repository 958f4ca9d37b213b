"""
Session registry: owns the lifecycle of every open browser session.

A session is one headed, persistent Chromium context (the shell window)
with one page in it (the content view), backed by a storage partition
named after the session id. The registry is the only thing that creates
or destroys sessions; everyone else looks them up by id.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Optional

from playwright.async_api import BrowserContext, BrowserType, Page

import engine_config
from engine.fingerprint import AntiFingerprintInjector
from engine.hardening import PartitionHardener
from engine.login import LoginRedirector
from workflow_models import new_id

logger = logging.getLogger(__name__)

ClosedCallback = Callable[[str], Any]


class SessionNotFoundError(KeyError):
    def __init__(self, session_id: str):
        super().__init__(session_id)
        self.session_id = session_id

    def __str__(self) -> str:
        return f"Session not found: {self.session_id}"


def partition_for(session_id: str) -> str:
    return f"persist:{session_id}"


def profile_dirname(partition: str) -> str:
    """Filesystem-safe directory name for a partition."""
    return re.sub(r"[^A-Za-z0-9_.-]", "_", partition)


class Subscription:
    """Handle for one event listener; unsubscribe() is idempotent."""

    def __init__(self, emitter: Any, event: str, handler: Callable):
        self._emitter = emitter
        self.event = event
        self.handler = handler
        self.active = True

    @classmethod
    def attach(cls, emitter: Any, event: str, handler: Callable) -> "Subscription":
        emitter.on(event, handler)
        return cls(emitter, event, handler)

    def unsubscribe(self) -> None:
        if not self.active:
            return
        self.active = False
        try:
            self._emitter.remove_listener(self.event, self.handler)
        except Exception as e:
            logger.debug(f"Listener {self.event} already gone: {e}")


class _CallbackSubscription(Subscription):
    def __init__(self, callbacks: list, callback: ClosedCallback):
        super().__init__(None, "session.closed", callback)
        self._callbacks = callbacks

    def unsubscribe(self) -> None:
        if not self.active:
            return
        self.active = False
        if self.handler in self._callbacks:
            self._callbacks.remove(self.handler)


@dataclass
class Session:
    id: str
    partition: str
    url: str
    context: BrowserContext
    page: Page
    page_workflow_id: Optional[str] = None
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    subscriptions: list[Subscription] = field(default_factory=list, repr=False)
    redirector: Optional[LoginRedirector] = field(default=None, repr=False)

    def info(self) -> dict:
        return {
            "session_id": self.id,
            "partition": self.partition,
            "url": self.url,
            "page_workflow_id": self.page_workflow_id,
            "created_at": self.created_at,
        }


class SessionRegistry:
    """
    Process-wide map of session id -> Session.

    Construct one at startup and hand it to whatever needs sessions; tests
    build a fresh one with fake collaborators.
    """

    def __init__(
        self,
        browser_type: BrowserType,
        hardener: PartitionHardener,
        injector: AntiFingerprintInjector,
        profile_dir: Optional[Path] = None,
        open_external: Optional[Callable[[str], object]] = None,
    ):
        self.browser_type = browser_type
        self.hardener = hardener
        self.injector = injector
        self.profile_dir = Path(profile_dir) if profile_dir else engine_config.PROFILE_DIR
        self.open_external = open_external
        self._sessions: dict[str, Session] = {}
        self._closed_callbacks: list[ClosedCallback] = []

    # --- lookup ---

    def get(self, session_id: str) -> Optional[Session]:
        return self._sessions.get(session_id)

    def require(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def list_sessions(self) -> list[Session]:
        return list(self._sessions.values())

    def bound_to(self, page_workflow_id: str) -> list[Session]:
        return [s for s in self._sessions.values() if s.page_workflow_id == page_workflow_id]

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    # --- lifecycle ---

    async def _launch(self, partition: str) -> BrowserContext:
        user_data_dir = self.profile_dir / profile_dirname(partition)
        user_data_dir.mkdir(parents=True, exist_ok=True)
        return await self.browser_type.launch_persistent_context(
            str(user_data_dir),
            headless=False,
            args=[
                *engine_config.BROWSER_ARGS,
                f"--window-size={engine_config.WINDOW_WIDTH},{engine_config.WINDOW_HEIGHT}",
            ],
            ignore_default_args=["--enable-automation"],
            # Page follows the window's client area, including every resize
            no_viewport=True,
            user_agent=engine_config.DESKTOP_USER_AGENT,
            locale=engine_config.UI_LOCALE,
        )

    async def create(self, url: str, page_workflow_id: Optional[str] = None) -> str:
        """Open a new session on url and return its id."""
        session_id = new_id()
        partition = partition_for(session_id)

        context = await self._launch(partition)
        try:
            await self.hardener.ensure(partition, context)
            page = context.pages[0] if context.pages else await context.new_page()
        except Exception:
            await context.close()
            raise

        # Must land before the first navigation
        if not await self.injector.inject(page):
            logger.warning(f"Session {session_id} runs without fingerprint hardening")

        session = Session(
            id=session_id,
            partition=partition,
            url=url,
            context=context,
            page=page,
            page_workflow_id=page_workflow_id,
        )
        session.redirector = LoginRedirector(session, self.injector, self.open_external)

        async def _on_page_close(_page: Page) -> None:
            await self._close(session_id, close_context=True)

        async def _on_context_close(_context: BrowserContext) -> None:
            await self._close(session_id)

        session.subscriptions = [
            Subscription.attach(page, "popup", session.redirector.handle_popup),
            Subscription.attach(page, "close", _on_page_close),
            Subscription.attach(context, "close", _on_context_close),
        ]
        self._sessions[session_id] = session
        logger.info(f"Session {session_id} created for {url}")

        try:
            await page.goto(url, wait_until="domcontentloaded", timeout=engine_config.NAVIGATION_TIMEOUT)
        except Exception as e:
            logger.warning(f"Session {session_id}: initial load of {url} failed: {e}")

        return session_id

    async def focus(self, session_id: str) -> None:
        session = self.require(session_id)
        await session.page.bring_to_front()

    async def remove(self, session_id: str) -> None:
        """Close the session's window; the registry entry is gone when this returns."""
        self.require(session_id)
        await self._close(session_id, close_context=True)

    async def close_all(self) -> None:
        for session_id in list(self._sessions):
            await self._close(session_id, close_context=True)

    async def _close(self, session_id: str, close_context: bool = False) -> None:
        session = self._sessions.pop(session_id, None)
        if session is None:
            return

        for sub in session.subscriptions:
            sub.unsubscribe()
        session.subscriptions.clear()

        if session.redirector is not None:
            await session.redirector.close()
        await self.injector.release(session.page)

        if close_context:
            try:
                await session.context.close()
            except Exception as e:
                logger.debug(f"Session {session_id} context already closed: {e}")

        logger.info(f"Session {session_id} closed")
        await self._notify_closed(session_id)

    # --- close notifications ---

    def subscribe_closed(self, callback: ClosedCallback) -> Subscription:
        self._closed_callbacks.append(callback)
        return _CallbackSubscription(self._closed_callbacks, callback)

    @property
    def closed_listener_count(self) -> int:
        return len(self._closed_callbacks)

    async def _notify_closed(self, session_id: str) -> None:
        if not self._closed_callbacks:
            logger.debug(f"No listener for session.closed({session_id}), dropped")
            return
        for callback in list(self._closed_callbacks):
            try:
                result = callback(session_id)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.warning(f"session.closed listener failed for {session_id}: {e}")


async def wait_closed(registry: SessionRegistry, session_id: str) -> None:
    """Block until session_id leaves the registry."""
    if session_id not in registry:
        return
    done = asyncio.get_running_loop().create_future()

    def _on_closed(closed_id: str) -> None:
        if closed_id == session_id and not done.done():
            done.set_result(None)

    sub = registry.subscribe_closed(_on_closed)
    try:
        if session_id in registry:
            await done
    finally:
        sub.unsubscribe()
