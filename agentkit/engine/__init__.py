"""agentkit engine: sessions over a single long-lived agent stream."""
from .models import (
    PermissionMode,
    SessionOptions,
    SessionState,
    ThinkingLevel,
)
from .errors import (
    AgentKitError,
    EmptyMessageError,
    EventParseError,
    InvalidAttachmentError,
    InvalidMessageError,
    InvalidTransitionError,
    SessionClosedError,
    StreamError,
    UnknownMessageTypeError,
    ValidationError,
)

__all__ = [
    # Core (lazy import to avoid circular deps)
    "Session",
    "SessionManager",
    "Connection",
    "InputChannel",
    # Models
    "PermissionMode",
    "SessionOptions",
    "SessionState",
    "ThinkingLevel",
    # Config (lazy import)
    "ServerConfig",
    "load_yaml_config",
    # Providers (lazy import)
    "AgentClient",
    "ClaudeAgentClient",
    # Errors
    "AgentKitError",
    "EmptyMessageError",
    "EventParseError",
    "InvalidAttachmentError",
    "InvalidMessageError",
    "InvalidTransitionError",
    "SessionClosedError",
    "StreamError",
    "UnknownMessageTypeError",
    "ValidationError",
]


def __getattr__(name: str):
    if name == "Session":
        from .session import Session
        return Session
    if name == "SessionManager":
        from .session_manager import SessionManager
        return SessionManager
    if name == "Connection":
        from .session_manager import Connection
        return Connection
    if name == "InputChannel":
        from .input_channel import InputChannel
        return InputChannel
    if name == "ServerConfig":
        from .config import ServerConfig
        return ServerConfig
    if name == "load_yaml_config":
        from .yaml_config import load_yaml_config
        return load_yaml_config
    if name == "AgentClient":
        from .providers.base import AgentClient
        return AgentClient
    if name == "ClaudeAgentClient":
        from .providers.claude_provider import ClaudeAgentClient
        return ClaudeAgentClient
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
