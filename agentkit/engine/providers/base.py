"""Abstract base for agent backends.

A backend exposes one continuous bidirectional stream per session:
``stream()`` accepts either a single prompt or a live producer of user
inputs and yields typed events until the producer ends or the caller
stops iterating. ``load_history()`` returns the stored events of a
previous session for cold-start resume.
"""
from __future__ import annotations

import abc
import logging
from typing import Any, AsyncIterable, AsyncIterator

from agentkit.adapters.events import AgentEvent
from agentkit.shared.models.message import UserInput

logger = logging.getLogger(__name__)


class AgentClient(abc.ABC):
    """Abstract backend interface.

    Implementations:
    - ClaudeAgentClient: Claude Agent SDK (query())
    """

    @property
    @abc.abstractmethod
    def name(self) -> str:
        """Short backend name (e.g. 'claude')."""

    @abc.abstractmethod
    def stream(
        self,
        prompt: str | AsyncIterable[UserInput],
        **options: Any,
    ) -> AsyncIterator[AgentEvent]:
        """Open a stream and yield events in the order the backend emits them.

        When ``prompt`` is a producer it is pulled lazily: the next input
        is requested only when the backend is ready to read it.
        """

    @abc.abstractmethod
    async def load_history(self, session_id: str) -> list[AgentEvent] | None:
        """Stored events for ``session_id``, or None if there is no transcript."""
