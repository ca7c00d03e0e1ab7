from __future__ import annotations

import logging
import math
from collections.abc import Sequence
from dataclasses import dataclass

from .config import DEFAULT_MAX_CONTEXT_MESSAGES, DEFAULT_MAX_ESTIMATED_TOKENS, MemWorkerConfig
from .session import Turn

logger = logging.getLogger(__name__)

CHARS_PER_TOKEN_ESTIMATE = 4


def estimate_tokens(text: str) -> int:
    return math.ceil(len(text) / CHARS_PER_TOKEN_ESTIMATE)


def estimate_turns_tokens(turns: Sequence[Turn]) -> int:
    return estimate_tokens("".join(turn.text for turn in turns))


def truncate_transcript(
    turns: Sequence[Turn],
    max_messages: int = DEFAULT_MAX_CONTEXT_MESSAGES,
    max_tokens: int = DEFAULT_MAX_ESTIMATED_TOKENS,
) -> list[Turn]:
    """Fit a transcript into the message and estimated-token budgets.

    The first turn carries the session's standing instructions and is always
    kept. The remaining room goes to the newest turns, walking backwards until
    the next older turn would push the estimate past ``max_tokens``.
    """

    if len(turns) <= max_messages:
        return list(turns)

    first = turns[0]
    tail_size = max(max_messages - 1, 0)
    recent = turns[len(turns) - tail_size :] if tail_size else []

    kept: list[Turn] = []
    token_count = estimate_tokens(first.text)
    for turn in reversed(recent):
        turn_tokens = estimate_tokens(turn.text)
        if token_count + turn_tokens > max_tokens:
            break
        kept.append(turn)
        token_count += turn_tokens
    kept.reverse()
    truncated = [first, *kept]

    logger.warning(
        "context window truncated",
        extra={
            "original_messages": len(turns),
            "kept_messages": len(truncated),
            "dropped_messages": len(turns) - len(truncated),
            "estimated_tokens": token_count,
            "token_limit": max_tokens,
        },
    )
    return truncated


@dataclass(frozen=True)
class ContextWindow:
    max_messages: int = DEFAULT_MAX_CONTEXT_MESSAGES
    max_tokens: int = DEFAULT_MAX_ESTIMATED_TOKENS

    @classmethod
    def from_config(cls, cfg: MemWorkerConfig) -> ContextWindow:
        return cls(max_messages=cfg.max_context_messages, max_tokens=cfg.max_estimated_tokens)

    def truncate(self, turns: Sequence[Turn]) -> list[Turn]:
        return truncate_transcript(turns, self.max_messages, self.max_tokens)
