from __future__ import annotations

import json
import logging
import time
from typing import Any

from .items import ObservationItem, SummarizeItem, item_kind
from .protocols import ObservationPromptContext, PromptBuilders
from .session import Session

logger = logging.getLogger(__name__)


def _format_json(value: Any) -> str:
    try:
        return json.dumps(value, ensure_ascii=False)
    except (TypeError, ValueError):
        return json.dumps(str(value), ensure_ascii=False)


def _now_ms() -> int:
    return int(time.time() * 1000)


class DispatchPolicy:
    """Turns pending items into prompt text, or decides to skip them.

    Rendering is delegated to the prompt builders; this class only picks the
    builder and keeps the session's prompt numbering moving forward.
    """

    def __init__(self, prompts: PromptBuilders) -> None:
        self.prompts = prompts

    def opening_prompt(self, session: Session, mode: Any) -> str:
        if session.last_prompt_number == 1:
            return self.prompts.init(
                session.project, session.content_session_id, session.user_prompt, mode
            )
        return self.prompts.continuation(
            session.user_prompt, session.last_prompt_number, session.content_session_id, mode
        )

    def render(
        self,
        item: object,
        session: Session,
        mode: Any,
        original_timestamp: int | None,
    ) -> str | None:
        if isinstance(item, ObservationItem):
            if item.prompt_number is not None:
                session.advance_prompt_number(item.prompt_number)
            created_at = item.created_at_epoch
            if created_at is None:
                created_at = original_timestamp if original_timestamp is not None else _now_ms()
            return self.prompts.observation(
                ObservationPromptContext(
                    tool_name=item.tool_name,
                    tool_input=_format_json(item.tool_input),
                    tool_output=_format_json(item.tool_output),
                    created_at_epoch=created_at,
                    cwd=item.cwd,
                )
            )
        if isinstance(item, SummarizeItem):
            return self.prompts.summary(session.project, mode, item.last_assistant_message)
        logger.debug(
            "skipping pending item",
            extra={"session_id": session.session_db_id, "item_type": item_kind(item)},
        )
        return None
