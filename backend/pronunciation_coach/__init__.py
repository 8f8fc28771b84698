"""Pronunciation scoring and voice practice service."""

__version__ = "1.0.0"
