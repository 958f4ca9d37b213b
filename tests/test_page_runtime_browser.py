"""
Runs compiled scripts in a real headless Chromium.

Needs `playwright install chromium`; enable with BROWSER_TESTS=1.
"""

import os
import unittest

from playwright.async_api import async_playwright

from engine.compiler import Timing, compile_script
from engine.fingerprint import AntiFingerprintInjector
from workflow_models import PageWorkflowStep

BROWSER_TESTS = os.environ.get("BROWSER_TESTS") == "1"

FORM = """
<html><body>
  <input id="name">
  <select id="country">
    <option value="us">United States</option>
    <option value="ca">Canada</option>
  </select>
  <input id="born" type="date">
  <div id="bio" contenteditable="true"></div>
  <button id="go" onclick="window.clicks = (window.clicks || []).concat(document.querySelector('#name').value)">Go</button>
  <script>
    window.events = [];
    document.querySelector('#name').addEventListener('input', () => window.events.push('input'));
    document.querySelector('#name').addEventListener('change', () => window.events.push('change'));
  </script>
</body></html>
"""

FAST = Timing(poll_ms=20, timeout_ms=300, type_delay_ms=1)


def step(step_id, actions, value=None):
    return PageWorkflowStep.model_validate({"id": step_id, "type": actions[0]["type"], "value": value, "actions": actions})


@unittest.skipUnless(BROWSER_TESTS, "set BROWSER_TESTS=1 to run browser tests")
class TestPageRuntime(unittest.IsolatedAsyncioTestCase):

    async def asyncSetUp(self):
        self.playwright = await async_playwright().start()
        self.browser = await self.playwright.chromium.launch(headless=True)
        self.page = await self.browser.new_page()
        await self.page.set_content(FORM)

    async def asyncTearDown(self):
        await self.browser.close()
        await self.playwright.stop()

    async def run_steps(self, steps, values=None):
        script = compile_script(steps, values, timing=FAST)
        return await self.page.evaluate(script.source, script.payload())

    async def test_input_set(self):
        report = await self.run_steps(
            [step("s1", [{"type": "input", "selector": "#name", "mode": "set"}])], {"s1": "Alice"}
        )
        self.assertEqual(await self.page.input_value("#name"), "Alice")
        self.assertEqual(await self.page.evaluate("window.events"), ["input", "change"])
        self.assertEqual(report["actions"][0]["status"], "ok")

    async def test_input_type(self):
        await self.run_steps(
            [step("s1", [{"type": "input", "selector": "#name", "mode": "type"}])], {"s1": "Bob"}
        )
        self.assertEqual(await self.page.input_value("#name"), "Bob")
        self.assertEqual((await self.page.evaluate("window.events"))[-1], "change")

    async def test_inner_text(self):
        await self.run_steps(
            [step("bio", [{"type": "input", "selector": "#bio", "mode": "inner_text"}])], {"bio": "Hi"}
        )
        self.assertEqual(await self.page.inner_text("#bio"), "Hi")

    async def test_select_modes(self):
        await self.run_steps(
            [step("c", [{"type": "select", "selector": "#country", "mode": "text"}])], {"c": "Canada"}
        )
        self.assertEqual(await self.page.input_value("#country"), "ca")

        await self.run_steps(
            [step("c", [{"type": "select", "selector": "#country", "mode": "index"}])], {"c": 0}
        )
        self.assertEqual(await self.page.input_value("#country"), "us")

        await self.run_steps(
            [step("c", [{"type": "select", "selector": "#country"}])], {"c": "ca"}
        )
        self.assertEqual(await self.page.input_value("#country"), "ca")

    async def test_date(self):
        await self.run_steps(
            [step("d", [{"type": "date", "selector": "#born"}])], {"d": "1990-05-17"}
        )
        self.assertEqual(await self.page.input_value("#born"), "1990-05-17")

    async def test_missing_element_times_out_and_continues(self):
        report = await self.run_steps([
            step("s1", [{"type": "click", "selector": "#absent"}]),
            step("s2", [{"type": "input", "selector": "#name"}]),
        ], {"s2": "after"})
        self.assertEqual([a["status"] for a in report["actions"]], ["not_found", "ok"])
        self.assertEqual(await self.page.input_value("#name"), "after")

    async def test_actions_run_in_order(self):
        await self.run_steps([
            step("s1", [{"type": "input", "selector": "#name"}]),
            step("s2", [{"type": "click", "selector": "#go"}]),
        ], {"s1": "first"})
        self.assertEqual(await self.page.evaluate("window.clicks"), ["first"])

    async def test_fingerprint_patch(self):
        context = await self.browser.new_context()
        page = await context.new_page()
        injector = AntiFingerprintInjector()
        self.assertTrue(await injector.inject(page))
        await page.goto("data:text/html,<html><body></body></html>")
        self.assertIsNone(await page.evaluate("navigator.webdriver"))
        self.assertGreater(await page.evaluate("navigator.plugins.length"), 0)
        await injector.release(page)
        await context.close()


if __name__ == '__main__':
    unittest.main()
