"""Gatehouse: sign-in session and profile sync, with or without a backend."""

__version__ = "0.1.0"
