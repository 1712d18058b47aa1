"""Exception hierarchy for the session layer.

Validation errors carry a stable wire ``code`` so the registry can
report them to the originating connection.
"""
from __future__ import annotations


class AgentKitError(Exception):
    """Base exception for all session layer errors."""


class ValidationError(AgentKitError):
    """Caller input rejected before touching session state."""
    code = "invalid_request"

    def __init__(self, message: str, code: str | None = None):
        if code is not None:
            self.code = code
        self.message = message
        super().__init__(message)


class EmptyMessageError(ValidationError):
    """Chat content is empty or whitespace-only."""
    code = "empty_message"

    def __init__(self, message: str = "Message content must not be empty"):
        super().__init__(message)


class InvalidAttachmentError(ValidationError):
    """Attachment payload is malformed or of an unsupported type."""
    code = "invalid_attachment"

    def __init__(self, name: str, reason: str):
        self.name = name
        self.reason = reason
        super().__init__(f"Invalid attachment '{name}': {reason}")


class InvalidMessageError(ValidationError):
    """Inbound message is structurally invalid."""
    code = "invalid_message"


class UnknownMessageTypeError(ValidationError):
    """Inbound message type is not routed by the registry."""
    code = "unknown_message_type"

    def __init__(self, message_type: str):
        self.message_type = message_type
        super().__init__(f"Unknown message type: {message_type!r}")


class InvalidTransitionError(AgentKitError, ValueError):
    """Session state machine rejected a transition."""


class EventParseError(AgentKitError):
    """A backend record claims a known type but cannot be parsed."""
    def __init__(self, record_type: str, reason: str):
        self.record_type = record_type
        self.reason = reason
        super().__init__(f"Cannot parse {record_type} record: {reason}")


class StreamError(AgentKitError):
    """The backend stream failed at the transport level."""
    def __init__(self, session_id: str | None, reason: str):
        self.session_id = session_id
        self.reason = reason
        super().__init__(
            f"Stream failed for session {session_id or '<new>'}: {reason}"
        )


class SessionClosedError(AgentKitError):
    """Operation on a session that has been destroyed."""
    def __init__(self, session_id: str | None):
        self.session_id = session_id
        super().__init__(f"Session is closed: {session_id or '<new>'}")
