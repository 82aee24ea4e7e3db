"""Streaming chat client with token-budgeted document context."""

__version__ = "0.1.0"
