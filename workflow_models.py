"""
Workflow data models.

Defines the JSON structure of the records the editor persists:
workflows (site-independent step lists) and page workflows (a workflow
bound to one target site, with concrete DOM actions per step).
"""

from __future__ import annotations

import time
import uuid
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

StepType = Literal["input", "click", "select", "upload", "date"]

# Valid action modes per action type; the first entry is the default.
ACTION_MODES: dict[str, tuple[str, ...]] = {
    "input": ("set", "type", "inner_text"),
    "select": ("value", "text", "index"),
}


class BindingError(ValueError):
    """A page workflow does not match the workflow it is bound to."""


def new_id() -> str:
    return uuid.uuid4().hex


def now_ms() -> int:
    return int(time.time() * 1000)


class _Record(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class WorkflowStep(_Record):
    id: str
    type: StepType
    desc: Optional[str] = None


class Workflow(_Record):
    id: str = Field(default_factory=new_id)
    title: str
    desc: Optional[str] = None
    created_at: int = Field(default_factory=now_ms, alias="createdAt")
    updated_at: int = Field(default_factory=now_ms, alias="updatedAt")
    steps: list[WorkflowStep] = Field(default_factory=list)

    @model_validator(mode="after")
    def _unique_step_ids(self) -> "Workflow":
        seen: set[str] = set()
        for step in self.steps:
            if step.id in seen:
                raise ValueError(f"duplicate step id: {step.id}")
            seen.add(step.id)
        return self

    def step_ids(self) -> list[str]:
        return [s.id for s in self.steps]


class Action(_Record):
    type: StepType
    selector: str
    delay: Optional[int] = Field(default=None, ge=0)  # ms, applied before lookup
    mode: Optional[str] = None

    @field_validator("selector")
    @classmethod
    def _selector_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("selector must not be empty")
        return v

    @model_validator(mode="after")
    def _drop_foreign_mode(self) -> "Action":
        # The editor keeps a stale mode when an action's type changes
        if self.mode is not None and self.mode not in ACTION_MODES.get(self.type, ()):
            self.mode = None
        return self

    def effective_mode(self) -> Optional[str]:
        """Mode with the per-type default filled in."""
        if self.mode:
            return self.mode
        allowed = ACTION_MODES.get(self.type)
        return allowed[0] if allowed else None


class PageWorkflowStep(_Record):
    id: str  # matches WorkflowStep.id
    type: str
    desc: Optional[str] = None
    value: Any = None  # recorded default
    actions: list[Action] = Field(default_factory=list)

    @field_validator("actions", mode="before")
    @classmethod
    def _null_actions(cls, v: Any) -> Any:
        return [] if v is None else v


class PageWorkflow(_Record):
    id: str = Field(default_factory=new_id)
    title: str
    url: str
    workflow_id: str = Field(alias="workflowId")
    created_at: int = Field(default_factory=now_ms, alias="createdAt")
    updated_at: int = Field(default_factory=now_ms, alias="updatedAt")
    steps: list[PageWorkflowStep] = Field(default_factory=list)


class ExecutionRequest(_Record):
    """One logical run: a page workflow, values keyed by step id, and targets.

    ``session_ids`` of ``None`` means every open session bound to the page
    workflow when the request is executed.
    """

    page_workflow: PageWorkflow = Field(alias="pageWorkflow")
    values: dict[str, Any] = Field(default_factory=dict)
    session_ids: Optional[list[str]] = Field(default=None, alias="sessionIds")

    @field_validator("session_ids", mode="before")
    @classmethod
    def _single_session_id(cls, v: Any) -> Any:
        return [v] if isinstance(v, str) else v


def validate_binding(page_workflow: PageWorkflow, workflow: Workflow) -> list[str]:
    """
    Check that a page workflow maps onto its workflow.

    Returns a list of problems (empty when the binding is sound).
    """
    problems: list[str] = []
    if page_workflow.workflow_id != workflow.id:
        problems.append(
            f"page workflow {page_workflow.id} is bound to workflow "
            f"{page_workflow.workflow_id}, not {workflow.id}"
        )

    known = set(workflow.step_ids())
    seen: set[str] = set()
    for step in page_workflow.steps:
        if step.id in seen:
            problems.append(f"duplicate page workflow step id: {step.id}")
        seen.add(step.id)
        if step.id not in known:
            problems.append(f"step {step.id} has no matching workflow step")
    return problems


def ensure_binding(page_workflow: PageWorkflow, workflow: Workflow) -> None:
    problems = validate_binding(page_workflow, workflow)
    if problems:
        raise BindingError("; ".join(problems))
