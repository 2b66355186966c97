"""Error taxonomy shared by the calendar and prayer plugins."""
from typing import Dict, Optional


class AgendaError(RuntimeError):
    """Base class for every error raised by the agenda services."""


class ConfigError(AgendaError):
    """Raised when the configuration is missing or invalid."""


class SourceUnavailable(AgendaError):
    """A calendar source cannot be queried at all (permission denied, not signed in, unreachable)."""

    def __init__(self, source: str, message: str):
        super().__init__(f"{source} unavailable: {message}")
        self.source = source
        self.message = message


class ProviderError(AgendaError):
    """A provider responded with a failure. Carries status and message for logging."""

    def __init__(self, provider: str, message: str, status: Optional[int] = None):
        detail = f"{provider} error ({status}): {message}" if status is not None else f"{provider} error: {message}"
        super().__init__(detail)
        self.provider = provider
        self.status = status
        self.message = message


class DecodeError(ProviderError):
    """A provider response could not be parsed into the expected shape."""


class AggregateSourceError(AgendaError):
    """Every calendar source failed. failures maps source name -> exception."""

    def __init__(self, failures: Dict[str, BaseException]):
        summary = "; ".join(f"{name}: {exc}" for name, exc in failures.items())
        super().__init__(f"All calendar sources failed: {summary}")
        self.failures = dict(failures)
