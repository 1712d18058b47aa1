"""Agent backend abstraction."""
from .base import AgentClient
from .claude_provider import ClaudeAgentClient, ClientConfig

__all__ = [
    "AgentClient",
    "ClaudeAgentClient",
    "ClientConfig",
]
