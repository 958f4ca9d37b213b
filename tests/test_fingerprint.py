"""
Unit tests for the anti-fingerprint injector's attach/inject bookkeeping.
"""

import asyncio
import unittest

from engine.fingerprint import (
    ANTI_DETECTION_SCRIPT,
    DETACHED,
    INJECTED,
    AntiFingerprintInjector,
    anti_detection_script,
)
from engine.hardening import accept_language
from tests._fakes import FakeCDPSession, FakeContext, FakePage


def registrations(context):
    return [
        (method, params)
        for cdp in context.cdp_sessions
        for method, params in cdp.sent
        if method == "Page.addScriptToEvaluateOnNewDocument"
    ]


class TestAntiFingerprintInjector(unittest.IsolatedAsyncioTestCase):

    async def test_inject_registers_script(self):
        context = FakeContext()
        page = FakePage(context)
        injector = AntiFingerprintInjector()

        self.assertTrue(await injector.inject(page))
        methods = [m for m, _ in context.cdp_sessions[0].sent]
        self.assertEqual(methods, ["Page.enable", "Page.addScriptToEvaluateOnNewDocument"])
        self.assertEqual(registrations(context)[0][1], {"source": injector.script})
        self.assertEqual(injector.state(page), INJECTED)

    async def test_second_inject_is_a_no_op(self):
        context = FakeContext()
        page = FakePage(context)
        injector = AntiFingerprintInjector()

        self.assertTrue(await injector.inject(page))
        self.assertTrue(await injector.inject(page))
        self.assertEqual(len(context.cdp_sessions), 1)
        self.assertEqual(len(registrations(context)), 1)

    async def test_concurrent_injects_register_once(self):
        context = FakeContext()
        page = FakePage(context)
        injector = AntiFingerprintInjector()

        results = await asyncio.gather(*(injector.inject(page) for _ in range(5)))
        self.assertEqual(results, [True] * 5)
        self.assertEqual(len(context.cdp_sessions), 1)
        self.assertEqual(len(registrations(context)), 1)

    async def test_attach_failure_is_non_fatal(self):
        context = FakeContext(cdp_error=RuntimeError("DevTools unavailable"))
        page = FakePage(context)
        injector = AntiFingerprintInjector()

        with self.assertLogs("engine.fingerprint", level="WARNING"):
            self.assertFalse(await injector.inject(page))
        self.assertEqual(injector.state(page), DETACHED)

        # Recovers once attaching works again
        context.cdp_error = None
        self.assertTrue(await injector.inject(page))

    async def test_send_failure_is_non_fatal(self):
        context = FakeContext()
        page = FakePage(context)
        injector = AntiFingerprintInjector()

        async def failing_cdp(_page):
            cdp = FakeCDPSession(context.events, fail_send=True)
            context.cdp_sessions.append(cdp)
            return cdp

        context.new_cdp_session = failing_cdp
        with self.assertLogs("engine.fingerprint", level="WARNING"):
            self.assertFalse(await injector.inject(page))
        self.assertNotEqual(injector.state(page), INJECTED)

    async def test_pages_are_tracked_separately(self):
        context = FakeContext()
        injector = AntiFingerprintInjector()
        first, second = FakePage(context), FakePage(context)

        await injector.inject(first)
        await injector.inject(second)
        self.assertEqual(len(registrations(context)), 2)

    async def test_release_detaches(self):
        context = FakeContext()
        page = FakePage(context)
        injector = AntiFingerprintInjector()

        await injector.inject(page)
        await injector.release(page)
        self.assertTrue(context.cdp_sessions[0].detached)
        self.assertEqual(injector.state(page), DETACHED)

    async def test_release_unknown_page(self):
        await AntiFingerprintInjector().release(FakePage(FakeContext()))


class TestAntiDetectionScript(unittest.TestCase):
    """The patch script covers each fingerprint surface, each in its own guard."""

    def test_patches_present(self):
        for needle in (
            "webdriver", "plugins", "languages", "37445", "37446", "WebGL2RenderingContext",
            "window.chrome", "permissions.query", "notifications", "maxTouchPoints",
            "outerWidth", "outerHeight",
        ):
            self.assertIn(needle, ANTI_DETECTION_SCRIPT)

    def test_patches_are_guarded(self):
        self.assertGreaterEqual(ANTI_DETECTION_SCRIPT.count("try"), 9)

    def test_single_effect_marker(self):
        self.assertIn("Symbol.for('workflow-runner.hardened')", ANTI_DETECTION_SCRIPT)

    def test_languages_follow_locale(self):
        script = anti_detection_script("de-DE")
        self.assertIn('get: () => ["de-DE", "en"],', script)
        self.assertNotIn("en-US", script)
        self.assertEqual(accept_language("de-DE"), "de-DE,en;q=0.9")
        self.assertIn('get: () => ["en-US", "en"],', ANTI_DETECTION_SCRIPT)

    def test_injector_uses_locale(self):
        self.assertEqual(AntiFingerprintInjector(locale="fr-FR").script, anti_detection_script("fr-FR"))
        self.assertEqual(AntiFingerprintInjector(script="1").script, "1")


if __name__ == '__main__':
    unittest.main()
