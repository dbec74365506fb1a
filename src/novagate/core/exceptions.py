"""
Novagate exception hierarchy.

All novagate exceptions inherit from NovagateError, making it easy for callers
to catch library-level errors while still distinguishing specific failure modes.
"""


class NovagateError(Exception):
    """Base exception class for all novagate errors."""


class ConfigurationError(NovagateError):
    """Raised for configuration errors (missing keys, invalid values)."""


class SessionError(NovagateError):
    """Raised for errors reported by the underlying session transport."""


class ConnectError(SessionError):
    """Raised when a connect attempt fails before the session opens."""


class SendError(SessionError):
    """Raised when a payload cannot be delivered to a target."""


class AlreadyRunning(NovagateError):
    """Raised when starting a supervisor that is not idle."""


class MetadataUnavailable(NovagateError):
    """Raised when group metadata cannot be fetched and nothing is cached."""


class PluginLoadError(NovagateError):
    """Raised when a plugin file or entry point cannot be loaded."""


class TerminalLogout(NovagateError):
    """Raised when the session was logged out and needs re-pairing."""


class RestartStormAbort(NovagateError):
    """Raised when reconnects exceeded the restart budget."""
