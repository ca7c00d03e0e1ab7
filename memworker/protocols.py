"""Contracts for the collaborators the session agent drives but does not own."""

from __future__ import annotations

from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any, Protocol

from .items import PendingItem
from .session import Session


@dataclass(frozen=True, slots=True)
class ObservationPromptContext:
    tool_name: str
    tool_input: str
    tool_output: str
    created_at_epoch: int
    cwd: str | None = None


class PendingItemSource(Protocol):
    def iter_pending(self, session_db_id: int) -> AsyncIterator[PendingItem]:
        """Yield pending items for a session until the queue is closed."""
        ...


class PromptBuilders(Protocol):
    def init(
        self, project: str | None, content_session_id: str, user_prompt: str, mode: Any
    ) -> str: ...

    def continuation(
        self, user_prompt: str, prompt_number: int, content_session_id: str, mode: Any
    ) -> str: ...

    def observation(self, context: ObservationPromptContext) -> str: ...

    def summary(self, project: str | None, mode: Any, last_assistant_message: str | None) -> str: ...


class ResponseProcessor(Protocol):
    async def process(
        self,
        reply_text: str,
        session: Session,
        tokens_used: int,
        original_timestamp: int | None,
        provider_label: str,
        cwd: str | None,
    ) -> None: ...


class SessionStore(Protocol):
    def get_memory_session_id(self, session_db_id: int) -> str | None: ...

    def update_memory_session_id(self, session_db_id: int, memory_session_id: str) -> None: ...


class FallbackAgent(Protocol):
    async def start_session(self, session: Session, worker: Any = None) -> Any: ...
