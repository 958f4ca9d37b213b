"""
Compiles page workflow steps plus run-time values into an executable script.

The result is a CompiledScript: typed step/action descriptors that the
fixed in-page interpreter (page_runtime.PAGE_RUNTIME_JS) walks through.
Compilation itself is pure; embed_uploads() is the one place that reads
files, and it runs right before injection.
"""

from __future__ import annotations

import base64
import logging
import mimetypes
from collections import Counter
from pathlib import Path
from typing import Any, Iterable, Optional

from pydantic import BaseModel, Field

import engine_config
from engine.page_runtime import PAGE_RUNTIME_JS
from workflow_models import PageWorkflowStep

logger = logging.getLogger(__name__)


class Timing(BaseModel):
    poll_ms: int = Field(default_factory=lambda: engine_config.SELECTOR_POLL_INTERVAL)
    timeout_ms: int = Field(default_factory=lambda: engine_config.SELECTOR_TIMEOUT)
    type_delay_ms: int = Field(default_factory=lambda: engine_config.TYPE_DELAY)


class UploadFile(BaseModel):
    name: str
    mime: str
    data: str  # base64


class CompiledAction(BaseModel):
    type: str
    selector: str
    delay: int = 0
    mode: Optional[str] = None
    files: Optional[list[UploadFile]] = None


class CompiledStep(BaseModel):
    id: str
    value: Any = None
    actions: list[CompiledAction] = Field(default_factory=list)


class CompiledScript(BaseModel):
    steps: list[CompiledStep] = Field(default_factory=list)
    timing: Timing = Field(default_factory=Timing)

    source: str = PAGE_RUNTIME_JS

    def payload(self) -> dict:
        """JSON-safe argument for page.evaluate(self.source, payload)."""
        return self.model_dump(exclude={"source"}, exclude_none=True)

    def action_count(self) -> int:
        return sum(len(s.actions) for s in self.steps)


def resolve_value(step: PageWorkflowStep, values: dict[str, Any]) -> Any:
    """Value for step: the supplied one, else the step's recorded default."""
    value = values.get(step.id)
    return step.value if value is None else value


def compile_script(
    steps: Iterable[PageWorkflowStep],
    values: Optional[dict[str, Any]] = None,
    timing: Optional[Timing] = None,
) -> CompiledScript:
    values = values or {}
    compiled = []
    for step in steps:
        compiled.append(CompiledStep(
            id=step.id,
            value=resolve_value(step, values),
            actions=[
                CompiledAction(
                    type=action.type,
                    selector=action.selector,
                    delay=action.delay or 0,
                    mode=action.effective_mode(),
                )
                for action in step.actions
            ],
        ))
    return CompiledScript(steps=compiled, timing=timing or Timing())


def _upload_paths(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value if v]
    return [str(value)] if str(value) else []


def embed_uploads(script: CompiledScript, base_dir: Optional[Path] = None) -> CompiledScript:
    """
    Return a copy of script with upload actions carrying their file contents.

    The step value of an upload step is a path or a list of paths; relative
    paths resolve against base_dir. Unreadable files are logged and left out.
    """
    if not any(a.type == "upload" for s in script.steps for a in s.actions):
        return script

    result = script.model_copy(deep=True)
    for step in result.steps:
        for action in step.actions:
            if action.type != "upload":
                continue
            files = []
            for raw in _upload_paths(step.value):
                path = Path(raw).expanduser()
                if base_dir is not None and not path.is_absolute():
                    path = base_dir / path
                try:
                    data = path.read_bytes()
                except OSError as e:
                    logger.warning(f"Upload file unreadable for step {step.id}: {e}")
                    continue
                mime, _ = mimetypes.guess_type(path.name)
                files.append(UploadFile(
                    name=path.name,
                    mime=mime or "application/octet-stream",
                    data=base64.b64encode(data).decode("ascii"),
                ))
            action.files = files
    return result


def summarize(report: Optional[dict]) -> dict[str, int]:
    """Count action outcomes in a report returned by the page runtime."""
    if not report:
        return {}
    return dict(Counter(a.get("status", "unknown") for a in report.get("actions", [])))
