"""
Simple script to validate the workflow store.

Checks every page workflow against the workflow it is bound to.

Usage:
    python validate_workflow.py output/workflows.json
"""

import sys
import logging

from persistence.workflow_store import JSONWorkflowStore
from workflow_models import validate_binding

logger = logging.getLogger(__name__)


def validate_store(store):
    """Return {page_workflow_id: [problems]} for every page workflow with problems."""
    report = {}
    for page_workflow in store.get_page_workflows():
        workflow = store.get_workflow(page_workflow.workflow_id)
        if workflow is None:
            report[page_workflow.id] = [f"unknown workflow {page_workflow.workflow_id}"]
            continue

        problems = validate_binding(page_workflow, workflow)
        for step in page_workflow.steps:
            if not step.actions:
                logger.debug(f"  {page_workflow.title}: step {step.id} has no actions")
        if not page_workflow.url.startswith(('http://', 'https://')):
            problems.append(f"URL may be invalid (missing http/https): {page_workflow.url}")
        if problems:
            report[page_workflow.id] = problems
    return report


def main():
    logging.basicConfig(level=logging.INFO, format='%(levelname)s: %(message)s')

    if len(sys.argv) < 2:
        print("Usage: python validate_workflow.py <store_file>")
        sys.exit(1)

    store_file = sys.argv[1]

    try:
        logger.info(f"Loading store: {store_file}")
        store = JSONWorkflowStore(store_file)

        workflows = store.get_workflows()
        logger.info(f"  Workflows: {len(workflows)}")
        for workflow in workflows:
            bound = store.get_page_workflows(workflow.id)
            logger.info(f"    - {workflow.title} ({len(workflow.steps)} steps, {len(bound)} page workflows)")
            for page_workflow in bound:
                actions = sum(len(s.actions) for s in page_workflow.steps)
                logger.info(f"        {page_workflow.title}: {page_workflow.url} ({actions} actions)")

        report = validate_store(store)
        if report:
            logger.warning("Validation problems:")
            for page_workflow_id, problems in report.items():
                for problem in problems:
                    logger.warning(f"  - [{page_workflow_id}] {problem}")
            sys.exit(2)

        logger.info("✓ All page workflows match their workflows")

    except Exception as e:
        logger.error(f"Error: {e}")
        sys.exit(1)


if __name__ == '__main__':
    main()
