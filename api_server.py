"""
Workflow Runner API Server

FastAPI server in front of the runner: CRUD for workflow records (used by
the editor), session open/focus/close for the runner UI, a server-sent
event stream of session closures, and the execution entry point.

Usage:
    python -m uvicorn api_server:app --host 127.0.0.1 --port 8090
    # or: python api_server.py
"""

from __future__ import annotations

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, Awaitable, Callable, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, ConfigDict, Field

import engine_config
from engine.sessions import SessionNotFoundError
from persistence.workflow_store import JSONWorkflowStore, WorkflowStore
from workflow_engine import WorkflowRunner
from workflow_models import (
    BindingError,
    ExecutionRequest,
    PageWorkflow,
    Workflow,
    validate_binding,
)

logger = logging.getLogger(__name__)

SSE_KEEPALIVE = 15  # seconds between keep-alive comments


# --- Request/Response models ---


class SessionCreateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    page_workflow_id: Optional[str] = Field(default=None, alias="pageWorkflowId")
    url: Optional[str] = None


class SessionCreateResponse(BaseModel):
    session_id: str
    url: str
    page_workflow_id: Optional[str] = None


class RunRequest(ExecutionRequest):
    """ExecutionRequest whose page workflow may be given by id instead of inline."""

    page_workflow_id: Optional[str] = Field(default=None, alias="pageWorkflowId")
    page_workflow: Optional[PageWorkflow] = Field(default=None, alias="pageWorkflow")


async def session_closed_events(
    runner: WorkflowRunner,
    is_disconnected: Callable[[], Awaitable[bool]],
    keepalive: float = SSE_KEEPALIVE,
) -> AsyncIterator[str]:
    """Server-sent event frames, one per session closed while the client listens."""
    queue: asyncio.Queue[str] = asyncio.Queue()
    sub = runner.on_session_closed(queue.put_nowait)
    try:
        yield ": connected\n\n"
        while True:
            if await is_disconnected():
                break
            try:
                session_id = await asyncio.wait_for(queue.get(), timeout=keepalive)
            except asyncio.TimeoutError:
                yield ": keep-alive\n\n"
                continue
            data = json.dumps({"session_id": session_id})
            yield f"event: session.closed\ndata: {data}\n\n"
    finally:
        sub.unsubscribe()


def create_app(
    runner: Optional[WorkflowRunner] = None,
    store: Optional[WorkflowStore] = None,
) -> FastAPI:
    runner = runner or WorkflowRunner()
    store = store or JSONWorkflowStore(engine_config.STORE_PATH)

    @asynccontextmanager
    async def lifespan(app):
        await runner.start()
        try:
            yield
        finally:
            await runner.stop()

    app = FastAPI(
        title="Workflow Runner API",
        description="Sessions and broadcast execution of page workflows",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.runner = runner
    app.state.store = store

    def _page_workflow_or_404(page_workflow_id: str) -> PageWorkflow:
        page_workflow = store.get_page_workflow(page_workflow_id)
        if page_workflow is None:
            raise HTTPException(status_code=404, detail="Page workflow not found")
        return page_workflow

    # --- Health ---

    @app.get("/health")
    async def health():
        return {
            "status": "ok",
            "sessions": len(runner.registry) if runner.registry is not None else 0,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    # --- Workflow CRUD ---

    @app.get("/api/workflows")
    async def list_workflows() -> list[Workflow]:
        return store.get_workflows()

    @app.get("/api/workflows/{workflow_id}")
    async def get_workflow(workflow_id: str) -> Workflow:
        workflow = store.get_workflow(workflow_id)
        if workflow is None:
            raise HTTPException(status_code=404, detail="Workflow not found")
        return workflow

    @app.post("/api/workflows")
    async def save_workflow(workflow: Workflow) -> Workflow:
        return store.save_workflow(workflow)

    @app.delete("/api/workflows/{workflow_id}")
    async def delete_workflow(workflow_id: str):
        if not store.delete_workflow(workflow_id):
            raise HTTPException(status_code=404, detail="Workflow not found")
        return {"status": "deleted", "id": workflow_id}

    # --- Page workflow CRUD ---

    @app.get("/api/page-workflows")
    async def list_page_workflows(workflow_id: Optional[str] = None) -> list[PageWorkflow]:
        return store.get_page_workflows(workflow_id)

    @app.get("/api/page-workflows/{page_workflow_id}")
    async def get_page_workflow(page_workflow_id: str) -> PageWorkflow:
        return _page_workflow_or_404(page_workflow_id)

    @app.post("/api/page-workflows")
    async def save_page_workflow(page_workflow: PageWorkflow) -> PageWorkflow:
        workflow = store.get_workflow(page_workflow.workflow_id)
        if workflow is None:
            raise HTTPException(status_code=422, detail=f"Unknown workflow: {page_workflow.workflow_id}")
        problems = validate_binding(page_workflow, workflow)
        if problems:
            raise HTTPException(status_code=422, detail=problems)
        return store.save_page_workflow(page_workflow)

    @app.delete("/api/page-workflows/{page_workflow_id}")
    async def delete_page_workflow(page_workflow_id: str):
        if not store.delete_page_workflow(page_workflow_id):
            raise HTTPException(status_code=404, detail="Page workflow not found")
        return {"status": "deleted", "id": page_workflow_id}

    # --- Sessions ---

    @app.post("/api/sessions", response_model=SessionCreateResponse)
    async def create_session(req: SessionCreateRequest):
        if req.page_workflow_id:
            page_workflow = _page_workflow_or_404(req.page_workflow_id)
            session_id = await runner.open_session(page_workflow)
            return SessionCreateResponse(
                session_id=session_id, url=page_workflow.url, page_workflow_id=page_workflow.id
            )
        if req.url:
            session_id = await runner.open_url(req.url)
            return SessionCreateResponse(session_id=session_id, url=req.url)
        raise HTTPException(status_code=422, detail="pageWorkflowId or url is required")

    @app.get("/api/sessions")
    async def list_sessions():
        return [s.info() for s in runner.registry.list_sessions()]

    @app.get("/api/sessions/events")
    async def session_events(request: Request):
        """Server-sent session.closed events. Closures with no listener are dropped."""
        return StreamingResponse(
            session_closed_events(runner, request.is_disconnected),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
        )

    @app.post("/api/sessions/{session_id}/focus")
    async def focus_session(session_id: str):
        try:
            await runner.focus_session(session_id)
        except SessionNotFoundError:
            raise HTTPException(status_code=404, detail="Session not found")
        return {"status": "focused", "session_id": session_id}

    @app.delete("/api/sessions/{session_id}")
    async def remove_session(session_id: str):
        try:
            await runner.close_session(session_id)
        except SessionNotFoundError:
            raise HTTPException(status_code=404, detail="Session not found")
        return {"status": "closed", "session_id": session_id}

    # --- Execution ---

    @app.post("/api/execution/run")
    async def run_execution(req: RunRequest):
        if req.page_workflow is not None:
            page_workflow = req.page_workflow
        elif req.page_workflow_id:
            page_workflow = _page_workflow_or_404(req.page_workflow_id)
        else:
            raise HTTPException(status_code=422, detail="pageWorkflowId or pageWorkflow is required")

        request = ExecutionRequest(page_workflow=page_workflow, values=req.values, session_ids=req.session_ids)
        workflow = store.get_workflow(page_workflow.workflow_id)
        try:
            result = await runner.run_request(request, workflow=workflow)
        except SessionNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e))
        except BindingError as e:
            raise HTTPException(status_code=422, detail=str(e))

        return {
            "status": "ok" if result.ok else "partial" if len(result.failed) < len(result.outcomes) else "failed",
            "sessions": len(result.outcomes),
            "outcomes": [o.model_dump() for o in result.outcomes],
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(levelname)s - %(name)s - %(message)s'
    )
    uvicorn.run(app, host=engine_config.API_HOST, port=engine_config.API_PORT)
