"""Error taxonomy for the bridge.

Adapter close codes are translated into these types at the supervisor
boundary; nothing downstream sees adapter-specific error shapes.
"""

from __future__ import annotations

# Close codes used by the multi-device protocol client family.
CODE_LOGGED_OUT = 401
CODE_TIMED_OUT = 408
CODE_CONFLICT = 440
CODE_BAD_SESSION = 500
CODE_RESTART_REQUIRED = 515


class BridgeError(Exception):
    """Base class for all bridge errors."""

    recoverable: bool = False


class ConfigError(BridgeError):
    """The local config file is missing required values or is malformed."""


class ConfigTemplateCreated(BridgeError):
    """No config existed; a template was written for the operator to edit."""

    def __init__(self, path: object):
        super().__init__(f"Created {path} — edit it with your API key and dashboard URL, then run again.")
        self.path = path


class PairingExpired(BridgeError):
    """Too many pairing challenges went unanswered in one attempt."""


class AuthError(BridgeError):
    """The linked session is no longer valid; a new pairing is required."""


class LoggedOut(AuthError):
    pass


class BadSession(AuthError):
    pass


class SessionConflict(BridgeError):
    """Another client pre-empted this session."""


class TransientNetworkError(BridgeError):
    recoverable = True


class RestartRequired(BridgeError):
    """Protocol-mandated reconnect; not a failure."""

    recoverable = True


class ConnectionDead(BridgeError):
    recoverable = True


class StartTimeout(BridgeError):
    recoverable = True


class BackendUnavailable(BridgeError):
    """The AI backend failed or timed out; callers substitute a fallback reply."""


def classify_close(code: int | None, message: str = "") -> BridgeError:
    """Translate an adapter close code/message into the bridge taxonomy."""
    text = message or "unknown"
    if code == CODE_CONFLICT or "conflict" in text.lower():
        return SessionConflict(text)
    if code == CODE_LOGGED_OUT:
        return LoggedOut(text)
    if code == CODE_BAD_SESSION:
        return BadSession(text)
    if code == CODE_RESTART_REQUIRED:
        return RestartRequired(text)
    return TransientNetworkError(f"status {code}: {text}")


def describe_close(error: BridgeError) -> str:
    """Short reason string used in reconnect status messages."""
    if isinstance(error, RestartRequired):
        return "restart required"
    if isinstance(error, ConnectionDead):
        return "connection dead"
    if isinstance(error, StartTimeout):
        return "start timed out"
    return str(error)
