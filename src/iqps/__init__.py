"""IQPS: search and moderation of university question papers."""

__version__ = "0.1.0"
