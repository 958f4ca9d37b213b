"""
Persistence layer for workflow records.

This package provides storage for workflows and page workflows,
with a JSON file implementation behind a Protocol.
"""

from .workflow_store import JSONWorkflowStore, WorkflowStore

__all__ = ['JSONWorkflowStore', 'WorkflowStore']
