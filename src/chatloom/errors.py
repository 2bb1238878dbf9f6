"""Error taxonomy shared by adapters, the accumulator and the orchestrator."""

from __future__ import annotations

from typing import Any, Optional


class ChatloomError(Exception):
    """Base class for all chatloom errors."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class TransportError(ChatloomError):
    """The vendor answered with a non-success status (or an in-stream error event)."""

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        body: Any = None,
        provider: Optional[str] = None,
    ):
        super().__init__(message, details={"status": status, "provider": provider})
        self.status = status
        self.body = body
        self.provider = provider


class MalformedResponseError(ChatloomError):
    """Success status, but the body is not JSON or lacks the expected shape."""

    def __init__(self, message: str, provider: Optional[str] = None, body: Any = None):
        super().__init__(message, details={"provider": provider})
        self.provider = provider
        self.body = body


class StreamParseError(ChatloomError):
    """A streamed event that cannot be safely skipped."""


class PluginError(ChatloomError):
    """A plugin hook raised. Always caught and downgraded to a warning."""

    def __init__(self, message: str, plugin: str, hook: str):
        super().__init__(message, details={"plugin": plugin, "hook": hook})
        self.plugin = plugin
        self.hook = hook


class CancellationError(ChatloomError):
    """A request was deliberately cancelled. Not a defect."""


class ProviderNotFoundError(ChatloomError):
    """No adapter is registered under the requested name."""

    def __init__(self, name: str, available: list[str]):
        super().__init__(
            f'Provider "{name}" not found. Available: {", ".join(available)}',
            details={"requested": name, "available": available},
        )
        self.name = name
        self.available = available


class TurnInProgressError(ChatloomError):
    """A turn was submitted while another one is still in flight."""


class ConfigError(ChatloomError):
    """Configuration is present but cannot be used."""


class SessionNotFoundError(ChatloomError):
    """No persisted session exists under the requested id."""

    def __init__(self, session_id: str):
        super().__init__(f'Session "{session_id}" not found', details={"session_id": session_id})
        self.session_id = session_id
