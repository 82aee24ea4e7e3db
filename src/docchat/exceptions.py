"""Exceptions raised by DocChat."""

from __future__ import annotations

from typing import Optional


class DocChatError(Exception):
    """Base class for all DocChat errors."""


class ValidationError(DocChatError):
    """Input rejected before any request is sent."""


class TransportError(DocChatError):
    """The chat endpoint could not be reached or did not return a usable stream."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class DecodeError(DocChatError):
    """A stream line could not be parsed as a chat event."""

    def __init__(self, line: str, reason: str = "invalid chat event") -> None:
        super().__init__(f"{reason}: {line[:80]!r}")
        self.line = line
        self.reason = reason


class SessionStateError(DocChatError):
    """Operation not allowed in the session's current state."""

    def __init__(self, operation: str, state: str) -> None:
        super().__init__(f"cannot {operation} while session is {state}")
        self.operation = operation
        self.state = state
