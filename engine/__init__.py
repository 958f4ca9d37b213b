"""
Session and execution engine.

Opens isolated browser sessions, hardens them against automation
fingerprinting, handles federated-login popups, and runs compiled page
workflows across many sessions at once.
"""

from .broadcaster import ExecutionBroadcaster, ExecutionError, ExecutionResult, SessionOutcome
from .compiler import CompiledScript, compile_script, embed_uploads
from .fingerprint import AntiFingerprintInjector
from .hardening import PartitionHardener
from .login import LoginRedirector
from .sessions import Session, SessionNotFoundError, SessionRegistry, Subscription

__all__ = [
    'AntiFingerprintInjector',
    'CompiledScript',
    'ExecutionBroadcaster',
    'ExecutionError',
    'ExecutionResult',
    'LoginRedirector',
    'PartitionHardener',
    'Session',
    'SessionNotFoundError',
    'SessionOutcome',
    'SessionRegistry',
    'Subscription',
    'compile_script',
    'embed_uploads',
]
