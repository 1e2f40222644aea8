"""Multi-source citation matching."""

__version__ = "0.1.0"
