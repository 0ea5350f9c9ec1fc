"""Anthropometric screening kiosk core."""

__version__ = "0.1.0"
