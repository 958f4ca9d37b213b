"""
Execution broadcaster: one run request, many sessions.

A page workflow is compiled once and the resulting script is evaluated in
every targeted session concurrently. Each session reports its own
outcome, so one dead window doesn't hide the others' results.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Iterable, Optional, Union

from pydantic import BaseModel, Field

from engine.compiler import CompiledScript, compile_script, embed_uploads, summarize
from engine.sessions import Session, SessionRegistry, SessionNotFoundError
from workflow_models import PageWorkflow

logger = logging.getLogger(__name__)


class ExecutionError(RuntimeError):
    """Raised by ExecutionResult.raise_for_failures() when any session failed."""

    def __init__(self, failed: list["SessionOutcome"]):
        self.failed = failed
        detail = ", ".join(f"{o.session_id}: {o.error}" for o in failed)
        super().__init__(f"Execution failed on {len(failed)} session(s): {detail}")


class SessionOutcome(BaseModel):
    session_id: str
    page_workflow_id: str
    ok: bool
    report: Optional[dict] = None
    summary: dict[str, int] = Field(default_factory=dict)
    error: Optional[str] = None


class ExecutionResult(BaseModel):
    outcomes: list[SessionOutcome] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return all(o.ok for o in self.outcomes)

    @property
    def failed(self) -> list[SessionOutcome]:
        return [o for o in self.outcomes if not o.ok]

    def raise_for_failures(self) -> "ExecutionResult":
        failed = self.failed
        if failed:
            raise ExecutionError(failed)
        return self

    def merge(self, other: "ExecutionResult") -> "ExecutionResult":
        return ExecutionResult(outcomes=self.outcomes + other.outcomes)


class ExecutionBroadcaster:
    def __init__(self, registry: SessionRegistry, upload_dir: Optional[Path] = None):
        self.registry = registry
        self.upload_dir = upload_dir

    def _resolve_sessions(self, session_ids: Iterable[str]) -> list[Session]:
        # All ids are checked before anything is injected
        sessions = []
        for session_id in session_ids:
            session = self.registry.get(session_id)
            if session is None:
                raise SessionNotFoundError(session_id)
            sessions.append(session)
        return sessions

    async def _inject(self, session: Session, script: CompiledScript, page_workflow_id: str) -> SessionOutcome:
        try:
            report = await session.page.evaluate(script.source, script.payload())
        except Exception as e:
            logger.error(f"Injection into session {session.id} failed: {e}")
            return SessionOutcome(
                session_id=session.id,
                page_workflow_id=page_workflow_id,
                ok=False,
                error=str(e),
            )
        summary = summarize(report)
        logger.info(f"Session {session.id} finished: {summary or 'no actions'}")
        return SessionOutcome(
            session_id=session.id,
            page_workflow_id=page_workflow_id,
            ok=True,
            report=report,
            summary=summary,
        )

    async def execute(
        self,
        page_workflow: PageWorkflow,
        values: dict[str, Any],
        session_ids: Iterable[str],
    ) -> ExecutionResult:
        sessions = self._resolve_sessions(session_ids)
        if not sessions:
            logger.warning(f"No sessions to run {page_workflow.title} on")
            return ExecutionResult()

        script = embed_uploads(compile_script(page_workflow.steps, values), self.upload_dir)
        logger.info(
            f"Running {page_workflow.title} ({len(script.steps)} steps, "
            f"{script.action_count()} actions) on {len(sessions)} session(s)"
        )
        outcomes = await asyncio.gather(
            *(self._inject(s, script, page_workflow.id) for s in sessions)
        )
        return ExecutionResult(outcomes=list(outcomes))

    async def run(
        self,
        target: Union[str, Iterable[str], None],
        page_workflow: PageWorkflow,
        values: dict[str, Any],
    ) -> ExecutionResult:
        """
        Run page_workflow on one session id, several, or (target=None) every
        open session bound to it right now.
        """
        if target is None:
            session_ids = [s.id for s in self.registry.bound_to(page_workflow.id)]
        elif isinstance(target, str):
            session_ids = [target]
        else:
            session_ids = list(target)
        return await self.execute(page_workflow, values, session_ids)

    async def run_all(
        self,
        page_workflows: Iterable[PageWorkflow],
        values: dict[str, Any],
    ) -> ExecutionResult:
        """One script per page workflow, each broadcast to the sessions bound to it."""
        batches = [
            (pw, [s.id for s in self.registry.bound_to(pw.id)])
            for pw in page_workflows
        ]
        results = await asyncio.gather(
            *(self.execute(pw, values, ids) for pw, ids in batches if ids)
        )
        merged = ExecutionResult()
        for result in results:
            merged = merged.merge(result)
        return merged
