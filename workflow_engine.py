"""
Workflow Runner: opens target sessions and executes page workflows in them.

Owns the process-level engine objects (Playwright, partition hardener,
fingerprint injector, session registry, broadcaster). Build one at startup,
start() it, and pass it to whatever drives runs (API server, CLI).
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Callable, Iterable, Optional, Union

from playwright.async_api import Playwright, async_playwright

from engine.broadcaster import ExecutionBroadcaster, ExecutionResult
from engine.fingerprint import AntiFingerprintInjector
from engine.hardening import PartitionHardener
from engine.sessions import ClosedCallback, SessionRegistry, Subscription
from workflow_models import ExecutionRequest, PageWorkflow, Workflow, ensure_binding

logger = logging.getLogger(__name__)


class WorkflowRunner:
    """Runs page workflows across live browser sessions."""

    def __init__(
        self,
        profile_dir: Optional[Path] = None,
        locale: Optional[str] = None,
        open_external: Optional[Callable[[str], object]] = None,
        upload_dir: Optional[Path] = None,
    ):
        self.profile_dir = profile_dir
        self.locale = locale
        self.open_external = open_external
        self.upload_dir = upload_dir

        self._playwright: Optional[Playwright] = None
        self.hardener = PartitionHardener(locale=locale)
        self.injector = AntiFingerprintInjector(locale=locale)
        self.registry: Optional[SessionRegistry] = None
        self.broadcaster: Optional[ExecutionBroadcaster] = None

    @property
    def started(self) -> bool:
        return self.registry is not None

    async def start(self) -> "WorkflowRunner":
        if self.started:
            return self
        self._playwright = await async_playwright().start()
        self.registry = SessionRegistry(
            self._playwright.chromium,
            self.hardener,
            self.injector,
            profile_dir=self.profile_dir,
            open_external=self.open_external,
        )
        self.broadcaster = ExecutionBroadcaster(self.registry, upload_dir=self.upload_dir)
        logger.info("Workflow runner started")
        return self

    async def stop(self) -> None:
        if self.registry is not None:
            await self.registry.close_all()
        if self._playwright is not None:
            try:
                await self._playwright.stop()
            except Exception as e:
                logger.warning(f"Playwright stop failed: {e}")
            self._playwright = None
        self.registry = None
        self.broadcaster = None
        logger.info("Workflow runner stopped")

    async def __aenter__(self) -> "WorkflowRunner":
        return await self.start()

    async def __aexit__(self, *exc) -> None:
        await self.stop()

    def _require_started(self) -> SessionRegistry:
        if self.registry is None:
            raise RuntimeError("Workflow runner is not started")
        return self.registry

    # --- sessions ---

    async def open_session(self, page_workflow: PageWorkflow) -> str:
        registry = self._require_started()
        session_id = await registry.create(page_workflow.url, page_workflow_id=page_workflow.id)
        logger.info(f"Opened {page_workflow.title} ({page_workflow.url}) as session {session_id}")
        return session_id

    async def open_url(self, url: str) -> str:
        return await self._require_started().create(url)

    async def focus_session(self, session_id: str) -> None:
        await self._require_started().focus(session_id)

    async def close_session(self, session_id: str) -> None:
        await self._require_started().remove(session_id)

    def on_session_closed(self, callback: ClosedCallback) -> Subscription:
        return self._require_started().subscribe_closed(callback)

    # --- execution ---

    async def execute(
        self,
        page_workflow: PageWorkflow,
        values: dict[str, Any],
        session_ids: Union[str, Iterable[str], None] = None,
        workflow: Optional[Workflow] = None,
    ) -> ExecutionResult:
        """
        Run page_workflow with values on the given sessions (default: every
        open session bound to it). When workflow is given the binding is
        checked first.
        """
        self._require_started()
        if workflow is not None:
            ensure_binding(page_workflow, workflow)
        return await self.broadcaster.run(session_ids, page_workflow, values)

    async def run_request(
        self,
        request: ExecutionRequest,
        workflow: Optional[Workflow] = None,
    ) -> ExecutionResult:
        """Execute an ExecutionRequest (session_ids None: every bound session)."""
        return await self.execute(
            request.page_workflow, request.values, request.session_ids, workflow=workflow
        )

    async def execute_all(
        self,
        page_workflows: Iterable[PageWorkflow],
        values: dict[str, Any],
    ) -> ExecutionResult:
        """The runner's Execute button: every open session, each with its own page workflow."""
        self._require_started()
        return await self.broadcaster.run_all(page_workflows, values)
