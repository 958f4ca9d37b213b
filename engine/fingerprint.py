"""
Anti-fingerprint injection over the Chrome DevTools Protocol.

The patch script is registered with Page.addScriptToEvaluateOnNewDocument,
so Chromium evaluates it in every new document of the page before any of
the document's own scripts run.
"""

from __future__ import annotations

import asyncio
import json
import logging
from contextlib import suppress
from typing import Optional

from playwright.async_api import CDPSession, Page

from engine.hardening import preferred_languages

logger = logging.getLogger(__name__)

_SCRIPT_TEMPLATE = r"""
(() => {
  const marker = Symbol.for('workflow-runner.hardened');
  if (window[marker]) return;
  try {
    Object.defineProperty(window, marker, { value: true, enumerable: false });
  } catch {}

  // navigator.webdriver
  try {
    Object.defineProperty(Navigator.prototype, 'webdriver', {
      get: () => undefined,
      configurable: true
    });
  } catch {}

  // An empty plugin list is an automation tell
  try {
    const mockPlugins = [
      { name: 'PDF Viewer', filename: 'internal-pdf-viewer', description: 'Portable Document Format' },
      { name: 'Chrome PDF Viewer', filename: 'internal-pdf-viewer', description: 'Portable Document Format' },
      { name: 'Chromium PDF Viewer', filename: 'internal-pdf-viewer', description: 'Portable Document Format' },
      { name: 'Microsoft Edge PDF Viewer', filename: 'internal-pdf-viewer', description: 'Portable Document Format' },
      { name: 'WebKit built-in PDF', filename: 'internal-pdf-viewer', description: 'Portable Document Format' }
    ];
    Object.defineProperty(navigator, 'plugins', {
      get: () => mockPlugins,
      configurable: true
    });
  } catch {}

  try {
    Object.defineProperty(navigator, 'languages', {
      get: () => __LANGUAGES__,
      configurable: true
    });
  } catch {}

  // WebGL vendor / renderer (UNMASKED_VENDOR_WEBGL, UNMASKED_RENDERER_WEBGL)
  const patchGetParameter = (proto) => {
    const original = proto.getParameter;
    proto.getParameter = function (parameter) {
      if (parameter === 37445) return 'Intel Inc.';
      if (parameter === 37446) return 'Intel Iris OpenGL Engine';
      return original.apply(this, arguments);
    };
  };
  try { patchGetParameter(WebGLRenderingContext.prototype); } catch {}
  try { patchGetParameter(WebGL2RenderingContext.prototype); } catch {}

  try {
    if (!window.chrome) {
      window.chrome = {
        runtime: {},
        loadTimes: function () {},
        csi: function () {},
        app: {}
      };
    }
  } catch {}

  try {
    const permissions = window.navigator.permissions;
    const originalQuery = permissions.query.bind(permissions);
    permissions.query = (parameters) => (
      parameters && parameters.name === 'notifications'
        ? Promise.resolve({ state: Notification.permission, onchange: null })
        : originalQuery(parameters)
    );
  } catch {}

  try {
    Object.defineProperty(navigator, 'maxTouchPoints', {
      get: () => 1,
      configurable: true
    });
  } catch {}

  // Headless tell: outer size missing or identical to the inner size
  try {
    const degenerate = window.outerWidth === 0 || window.outerHeight === 0 ||
      (window.outerWidth === window.innerWidth && window.outerHeight === window.innerHeight);
    if (degenerate) {
      Object.defineProperty(window, 'outerWidth', {
        get: () => window.innerWidth,
        configurable: true
      });
      Object.defineProperty(window, 'outerHeight', {
        get: () => window.innerHeight + 85,
        configurable: true
      });
    }
  } catch {}
})();
"""


def anti_detection_script(locale: Optional[str] = None) -> str:
    """The patch script with navigator.languages matching the Accept-Language header."""
    return _SCRIPT_TEMPLATE.replace("__LANGUAGES__", json.dumps(preferred_languages(locale)))


ANTI_DETECTION_SCRIPT = anti_detection_script("en-US")

DETACHED = "detached"
ATTACHING = "attaching"
ATTACHED = "attached"
INJECTED = "injected"


class _PageState:
    __slots__ = ("state", "cdp", "lock")

    def __init__(self):
        self.state = DETACHED
        self.cdp: Optional[CDPSession] = None
        self.lock = asyncio.Lock()


class AntiFingerprintInjector:
    """
    Registers the anti-detection script on pages through a CDP session.

    Keeps one state entry per page (detached -> attaching -> attached ->
    injected). Calls for the same page are serialized, and a page that is
    already injected is left alone.

    Chromium forgets scripts added by a DevTools client once that client
    detaches, so the CDP session is kept until release() is called for the
    page.
    """

    def __init__(self, script: Optional[str] = None, locale: Optional[str] = None):
        self.script = script or anti_detection_script(locale)
        self._pages: dict[Page, _PageState] = {}

    def state(self, page: Page) -> str:
        entry = self._pages.get(page)
        return entry.state if entry else DETACHED

    async def inject(self, page: Page) -> bool:
        """
        Register the anti-detection script on page.

        Returns True when the script is registered (now or earlier), False
        when the DevTools attach or the registration failed. Failures are
        logged, never raised.
        """
        entry = self._pages.setdefault(page, _PageState())
        async with entry.lock:
            if entry.state == INJECTED:
                return True

            if entry.cdp is None:
                entry.state = ATTACHING
                try:
                    entry.cdp = await page.context.new_cdp_session(page)
                except Exception as e:
                    entry.state = DETACHED
                    logger.warning(f"[anti-detection] DevTools attach failed: {e}")
                    return False
            entry.state = ATTACHED

            try:
                await entry.cdp.send("Page.enable")
                await entry.cdp.send(
                    "Page.addScriptToEvaluateOnNewDocument", {"source": self.script}
                )
            except Exception as e:
                logger.warning(f"[anti-detection] injection failed: {e}")
                return False

            entry.state = INJECTED
            logger.info("[anti-detection] CDP script injected")
            return True

    async def release(self, page: Page) -> None:
        """Detach the page's CDP session, if any. Safe on closed pages."""
        entry = self._pages.pop(page, None)
        if entry is None or entry.cdp is None:
            return
        with suppress(Exception):
            await entry.cdp.detach()
        entry.cdp = None
        entry.state = DETACHED
