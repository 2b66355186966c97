from datetime import tzinfo
from typing import Any, Dict, Optional

from agenda.core.errors import ConfigError
from agenda.plugins.calendar.identity import GoogleCredentialsTokenProvider, StaticTokenProvider

from .base import CalendarBackend
from .google import GoogleCalendarBackend
from .local import AuthorizationStatus, IcsEventStore, LocalCalendarBackend, LocalEventStore

__all__ = [
    "CalendarBackend", "GoogleCalendarBackend", "AuthorizationStatus",
    "IcsEventStore", "LocalCalendarBackend", "LocalEventStore", "get_backend",
]


def _local_backend(config: Dict[str, Any], tz: tzinfo) -> LocalCalendarBackend:
    path = config.get("path")
    if not path:
        raise ConfigError("calendar.local.path is required when the local calendar is enabled")
    store = IcsEventStore(path, tz, allow_access=bool(config.get("allow_access", True)))
    return LocalCalendarBackend(store, tz)


def _google_backend(config: Dict[str, Any], tz: tzinfo) -> GoogleCalendarBackend:
    if config.get("access_token"):
        token_provider = StaticTokenProvider(config["access_token"])
    else:
        token_provider = GoogleCredentialsTokenProvider(config.get("token_file") or "~/.personal_agenda/google_token.json")
    return GoogleCalendarBackend(
        token_provider,
        tz,
        calendar_id=config.get("calendar_id") or "primary",
        timeout=float(config.get("timeout", 30)),
    )


_BACKENDS = {
    "local": _local_backend,
    "google": _google_backend,
}


def get_backend(backend_type: str, config: Dict[str, Any], tz: tzinfo) -> Optional[CalendarBackend]:
    """Factory: return backend instance for given type."""
    factory = _BACKENDS.get((backend_type or "").lower())
    if not factory:
        return None
    return factory(config, tz)
