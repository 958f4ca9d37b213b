"""
Storage for workflow and page workflow records.

The editor writes these records; the runner only reads them. Designed
with an abstract interface so the JSON file can be swapped for another
key-value store.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Optional, Protocol

from pydantic import ValidationError

from workflow_models import PageWorkflow, Workflow, now_ms

logger = logging.getLogger(__name__)


class WorkflowStore(Protocol):
    """
    Abstract interface for workflow storage.
    """

    def get_workflows(self) -> list[Workflow]:
        """All workflows, in insertion order."""
        ...

    def get_workflow(self, workflow_id: str) -> Optional[Workflow]:
        ...

    def save_workflow(self, workflow: Workflow) -> Workflow:
        """Insert or replace by id."""
        ...

    def delete_workflow(self, workflow_id: str) -> bool:
        ...

    def get_page_workflows(self, workflow_id: Optional[str] = None) -> list[PageWorkflow]:
        """All page workflows, or only those bound to workflow_id."""
        ...

    def get_page_workflow(self, page_workflow_id: str) -> Optional[PageWorkflow]:
        ...

    def save_page_workflow(self, page_workflow: PageWorkflow) -> PageWorkflow:
        ...

    def delete_page_workflow(self, page_workflow_id: str) -> bool:
        ...


class JSONWorkflowStore:
    """
    JSON-file implementation of WorkflowStore.

    File layout: {"workflows": [...], "pageWorkflows": [...]}, records in
    their camelCase wire shape.
    """

    def __init__(self, path: str | Path = "output/workflows.json"):
        self.path = Path(path)
        self.workflows: list[Workflow] = []
        self.page_workflows: list[PageWorkflow] = []
        self._load()

    def _load(self) -> None:
        if not self.path.exists():
            return
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Could not load workflow store {self.path}: {e}")
            return

        for raw in data.get("workflows") or []:
            try:
                self.workflows.append(Workflow.model_validate(raw))
            except ValidationError as e:
                logger.warning(f"Skipping invalid workflow {raw.get('id')}: {e}")
        for raw in data.get("pageWorkflows") or []:
            try:
                self.page_workflows.append(PageWorkflow.model_validate(raw))
            except ValidationError as e:
                logger.warning(f"Skipping invalid page workflow {raw.get('id')}: {e}")

    def _save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        data = {
            "workflows": [w.model_dump(mode="json", by_alias=True) for w in self.workflows],
            "pageWorkflows": [p.model_dump(mode="json", by_alias=True) for p in self.page_workflows],
        }
        tmp = self.path.with_name(self.path.name + ".tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
        os.replace(tmp, self.path)

    # --- workflows ---

    def get_workflows(self) -> list[Workflow]:
        return list(self.workflows)

    def get_workflow(self, workflow_id: str) -> Optional[Workflow]:
        return next((w for w in self.workflows if w.id == workflow_id), None)

    def save_workflow(self, workflow: Workflow) -> Workflow:
        workflow = workflow.model_copy(update={"updated_at": now_ms()})
        for i, existing in enumerate(self.workflows):
            if existing.id == workflow.id:
                self.workflows[i] = workflow
                break
        else:
            self.workflows.append(workflow)
        self._save()
        return workflow

    def delete_workflow(self, workflow_id: str) -> bool:
        before = len(self.workflows)
        self.workflows = [w for w in self.workflows if w.id != workflow_id]
        if len(self.workflows) == before:
            return False
        self._save()
        return True

    # --- page workflows ---

    def get_page_workflows(self, workflow_id: Optional[str] = None) -> list[PageWorkflow]:
        if workflow_id is None:
            return list(self.page_workflows)
        return [p for p in self.page_workflows if p.workflow_id == workflow_id]

    def get_page_workflow(self, page_workflow_id: str) -> Optional[PageWorkflow]:
        return next((p for p in self.page_workflows if p.id == page_workflow_id), None)

    def save_page_workflow(self, page_workflow: PageWorkflow) -> PageWorkflow:
        page_workflow = page_workflow.model_copy(update={"updated_at": now_ms()})
        for i, existing in enumerate(self.page_workflows):
            if existing.id == page_workflow.id:
                self.page_workflows[i] = page_workflow
                break
        else:
            self.page_workflows.append(page_workflow)
        self._save()
        return page_workflow

    def delete_page_workflow(self, page_workflow_id: str) -> bool:
        before = len(self.page_workflows)
        self.page_workflows = [p for p in self.page_workflows if p.id != page_workflow_id]
        if len(self.page_workflows) == before:
            return False
        self._save()
        return True
