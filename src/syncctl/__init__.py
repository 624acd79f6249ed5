"""syncctl: operational CLI for composite structure sync."""

__version__ = "1.0.0"
