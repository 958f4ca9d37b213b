"""
Configuration settings for the workflow runner.

Every value can be overridden through the environment, or in bulk from a
YAML file via load_overrides().
"""

import logging
import os
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)

# Where per-partition browser profiles (cookies, storage) live.
# Each session gets its own directory derived from its partition name.
PROFILE_DIR = Path(os.environ.get("RUNNER_PROFILE_DIR", "output/profiles"))

# Workflow / page workflow records written by the editor
STORE_PATH = Path(os.environ.get("RUNNER_STORE", "output/workflows.json"))

# Active UI locale, sent first in Accept-Language (English is the fallback weight)
UI_LOCALE = os.environ.get("RUNNER_LOCALE", "en-US")

# Desktop browser UA used for every request...
DESKTOP_USER_AGENT = os.environ.get(
    "RUNNER_USER_AGENT",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36",
)

# ...except identity-provider hosts, which get a WebKit-only UA
IDENTITY_USER_AGENT = os.environ.get(
    "RUNNER_IDENTITY_USER_AGENT",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Safari/537.36",
)

# Hosts treated as federated-login providers (suffix match on the hostname)
IDENTITY_PROVIDER_HOSTS = [
    h.strip()
    for h in os.environ.get(
        "RUNNER_IDENTITY_HOSTS", "accounts.google.com,id.google.com"
    ).split(",")
    if h.strip()
]

BROWSER_ARGS = [
    "--disable-blink-features=AutomationControlled",
    "--disable-dev-shm-usage",
    "--no-first-run",
    "--no-default-browser-check",
]

# Shell window size for new sessions
WINDOW_WIDTH = int(os.environ.get("RUNNER_WINDOW_WIDTH", "1024"))
WINDOW_HEIGHT = int(os.environ.get("RUNNER_WINDOW_HEIGHT", "768"))

# Navigation timeout for the first load of a session (ms)
NAVIGATION_TIMEOUT = int(os.environ.get("RUNNER_NAVIGATION_TIMEOUT", "60000"))

# In-page action timing (ms)
SELECTOR_POLL_INTERVAL = 100
SELECTOR_TIMEOUT = 5000
TYPE_DELAY = 50

# How long a login popup may stay on about:blank before it is given up on (ms)
POPUP_URL_TIMEOUT = 10000

API_HOST = os.environ.get("RUNNER_API_HOST", "127.0.0.1")
API_PORT = int(os.environ.get("RUNNER_API_PORT", "8090"))


def load_overrides(path) -> dict:
    """
    Apply upper-case keys from a YAML file on top of this module's settings.

    Returns the dict of values that were applied. Unknown keys are ignored
    with a warning.
    """
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Config file must contain a mapping: {path}")

    applied = {}
    module_globals = globals()
    for key, value in data.items():
        name = str(key).upper()
        if name not in module_globals or name.startswith("_") or callable(module_globals[name]):
            logger.warning(f"Ignoring unknown config key: {key}")
            continue
        if isinstance(module_globals[name], Path):
            value = Path(value)
        module_globals[name] = value
        applied[name] = value
    return applied
