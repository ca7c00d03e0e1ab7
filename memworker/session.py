from __future__ import annotations

import asyncio
import threading
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from typing import Literal

Role = Literal["user", "assistant"]


@dataclass(frozen=True, slots=True)
class Turn:
    role: Role
    text: str

    def __post_init__(self) -> None:
        if self.role not in ("user", "assistant"):
            raise ValueError(f"invalid turn role: {self.role!r}")

    @classmethod
    def user(cls, text: str) -> Turn:
        return cls("user", text)

    @classmethod
    def assistant(cls, text: str) -> Turn:
        return cls("assistant", text)


class Transcript:
    """Append-only record of prompt/reply turns shared by a session's calls.

    Every write goes through the lock; reads hand out copies so callers never
    observe a list that another task is extending.
    """

    def __init__(self, turns: Iterable[Turn] = ()) -> None:
        self._turns: list[Turn] = list(turns)
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._turns)

    def __iter__(self) -> Iterator[Turn]:
        return iter(self.snapshot())

    def append(self, turn: Turn) -> None:
        with self._lock:
            self._turns.append(turn)

    def append_exchange(self, prompt: str, reply: str) -> None:
        with self._lock:
            self._turns.append(Turn.user(prompt))
            self._turns.append(Turn.assistant(reply))

    def snapshot(self) -> list[Turn]:
        with self._lock:
            return list(self._turns)

    def head(self, count: int) -> list[Turn]:
        with self._lock:
            return list(self._turns[:count])


@dataclass
class Session:
    session_db_id: int
    content_session_id: str
    project: str | None = None
    user_prompt: str = ""
    last_prompt_number: int = 1
    memory_session_id: str | None = None
    transcript: Transcript = field(default_factory=Transcript)
    cumulative_input_tokens: int = 0
    cumulative_output_tokens: int = 0
    earliest_pending_timestamp: int | None = None
    abort: asyncio.Event = field(default_factory=asyncio.Event)
    _usage_lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def record_usage(self, input_tokens: int, output_tokens: int) -> None:
        with self._usage_lock:
            self.cumulative_input_tokens += input_tokens
            self.cumulative_output_tokens += output_tokens

    def advance_prompt_number(self, prompt_number: int) -> None:
        with self._usage_lock:
            if prompt_number > self.last_prompt_number:
                self.last_prompt_number = prompt_number
