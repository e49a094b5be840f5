"""Single source of truth for the application version."""

__version__ = "0.4.0"
