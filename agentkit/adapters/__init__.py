"""Adapters package - Bridge between the backend stream and transports.

Typed backend events, the history coalescer, the wire protocol and
the queue-backed listeners transports drain.
"""
from __future__ import annotations

__all__ = [
    "AgentEvent",
    "WireEventParser",
    "fold",
    "build_history",
    "parse_inbound",
    "QueueListener",
]

from agentkit.adapters.events import AgentEvent, WireEventParser
from agentkit.adapters.coalescer import build_history, fold
from agentkit.adapters.protocol import parse_inbound
from agentkit.adapters.subscribers import QueueListener
