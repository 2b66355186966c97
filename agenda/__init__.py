"""Personal agenda: merged calendars and cached prayer times."""

__version__ = "0.1.0"
