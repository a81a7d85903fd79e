"""spine — local package link manager."""

__version__ = "0.3.0"
