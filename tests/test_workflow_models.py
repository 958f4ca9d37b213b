"""
Unit tests for the workflow record models and binding checks.
"""

import unittest

from pydantic import ValidationError

from workflow_models import (
    Action,
    BindingError,
    ExecutionRequest,
    PageWorkflow,
    PageWorkflowStep,
    Workflow,
    ensure_binding,
    validate_binding,
)


def make_workflow():
    return Workflow.model_validate({
        "id": "wf1",
        "title": "Sign up",
        "createdAt": 1700000000000,
        "updatedAt": 1700000000000,
        "steps": [
            {"id": "s1", "type": "input", "desc": "Name"},
            {"id": "s2", "type": "select"},
            {"id": "s3", "type": "click"},
        ],
    })


def make_page_workflow(**overrides):
    data = {
        "id": "pw1",
        "title": "Example site",
        "url": "https://example.com/signup",
        "workflowId": "wf1",
        "createdAt": 1700000000000,
        "updatedAt": 1700000000000,
        "steps": [
            {"id": "s1", "type": "input", "actions": [
                {"type": "input", "selector": "#name", "mode": "set"},
            ]},
            {"id": "s2", "type": "select", "value": "CA", "actions": [
                {"type": "select", "selector": "#country"},
            ]},
            {"id": "s3", "type": "click", "actions": [
                {"type": "click", "selector": "button[type=submit]", "delay": 250},
            ]},
        ],
    }
    data.update(overrides)
    return PageWorkflow.model_validate(data)


class TestWorkflow(unittest.TestCase):
    """Workflow parsing."""

    def test_parses_wire_shape(self):
        workflow = make_workflow()
        self.assertEqual(workflow.created_at, 1700000000000)
        self.assertEqual(workflow.step_ids(), ["s1", "s2", "s3"])
        self.assertEqual(workflow.steps[0].desc, "Name")

    def test_duplicate_step_ids_rejected(self):
        with self.assertRaises(ValidationError):
            Workflow(title="dup", steps=[{"id": "a", "type": "input"}, {"id": "a", "type": "click"}])

    def test_unknown_step_type_rejected(self):
        with self.assertRaises(ValidationError):
            Workflow(title="bad", steps=[{"id": "a", "type": "hover"}])

    def test_dump_uses_camel_case(self):
        dumped = make_page_workflow().model_dump(by_alias=True)
        self.assertIn("workflowId", dumped)
        self.assertIn("createdAt", dumped)
        self.assertNotIn("workflow_id", dumped)

    def test_generated_ids_are_unique(self):
        self.assertNotEqual(Workflow(title="a").id, Workflow(title="b").id)


class TestAction(unittest.TestCase):
    """Action mode validation."""

    def test_input_modes(self):
        for mode in ("set", "type", "inner_text"):
            self.assertEqual(Action(type="input", selector="#x", mode=mode).mode, mode)

    def test_select_modes(self):
        for mode in ("value", "text", "index"):
            self.assertEqual(Action(type="select", selector="#x", mode=mode).mode, mode)

    def test_foreign_mode_dropped(self):
        """A mode left over from another action type falls back to the default."""
        action = Action(type="input", selector="#x", mode="text")
        self.assertIsNone(action.mode)
        self.assertEqual(action.effective_mode(), "set")

        click = Action.model_validate({"type": "click", "selector": "#go", "mode": "type"})
        self.assertIsNone(click.mode)
        self.assertIsNone(click.effective_mode())

    def test_effective_mode_defaults(self):
        self.assertEqual(Action(type="input", selector="#x").effective_mode(), "set")
        self.assertEqual(Action(type="select", selector="#x").effective_mode(), "value")
        self.assertIsNone(Action(type="click", selector="#x").effective_mode())

    def test_blank_selector_rejected(self):
        with self.assertRaises(ValidationError):
            Action(type="click", selector="  ")

    def test_negative_delay_rejected(self):
        with self.assertRaises(ValidationError):
            Action(type="click", selector="#x", delay=-1)


class TestPageWorkflowStep(unittest.TestCase):

    def test_null_actions_become_empty(self):
        step = PageWorkflowStep.model_validate({"id": "s1", "type": "input", "actions": None})
        self.assertEqual(step.actions, [])

    def test_default_value_kept(self):
        step = make_page_workflow().steps[1]
        self.assertEqual(step.value, "CA")


class TestBinding(unittest.TestCase):
    """validate_binding / ensure_binding."""

    def test_matching_binding(self):
        self.assertEqual(validate_binding(make_page_workflow(), make_workflow()), [])

    def test_subset_of_steps_is_fine(self):
        page_workflow = make_page_workflow()
        page_workflow.steps = page_workflow.steps[:1]
        self.assertEqual(validate_binding(page_workflow, make_workflow()), [])

    def test_unknown_step(self):
        page_workflow = make_page_workflow()
        page_workflow.steps.append(PageWorkflowStep(id="s9", type="click"))
        problems = validate_binding(page_workflow, make_workflow())
        self.assertEqual(len(problems), 1)
        self.assertIn("s9", problems[0])

    def test_duplicate_step(self):
        page_workflow = make_page_workflow()
        page_workflow.steps.append(PageWorkflowStep(id="s1", type="input"))
        problems = validate_binding(page_workflow, make_workflow())
        self.assertTrue(any("duplicate" in p for p in problems))

    def test_wrong_workflow(self):
        problems = validate_binding(make_page_workflow(workflowId="other"), make_workflow())
        self.assertTrue(any("other" in p for p in problems))

    def test_ensure_binding_raises(self):
        with self.assertRaises(BindingError):
            ensure_binding(make_page_workflow(workflowId="other"), make_workflow())


class TestExecutionRequest(unittest.TestCase):

    def test_defaults_to_all_bound_sessions(self):
        req = ExecutionRequest(pageWorkflow=make_page_workflow(), values={"s1": "Alice"})
        self.assertIsNone(req.session_ids)
        self.assertEqual(req.values["s1"], "Alice")

    def test_single_session_id_wrapped(self):
        req = ExecutionRequest.model_validate({"pageWorkflow": make_page_workflow(), "sessionIds": "abc"})
        self.assertEqual(req.session_ids, ["abc"])


if __name__ == '__main__':
    unittest.main()
