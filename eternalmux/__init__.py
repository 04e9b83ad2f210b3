"""Headless terminal multiplexer daemon and client, with helpers for remote shells over ssh."""

__version__ = "0.1.0"