from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, TypeAlias

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ObservationItem:
    tool_name: str
    tool_input: Any
    tool_output: Any
    created_at_epoch: int | None = None
    cwd: str | None = None
    prompt_number: int | None = None

    kind = "observation"


@dataclass(frozen=True, slots=True)
class SummarizeItem:
    last_assistant_message: str | None = None

    kind = "summarize"


PendingItem: TypeAlias = ObservationItem | SummarizeItem


def item_kind(item: object) -> str:
    kind = getattr(item, "kind", None)
    return kind if isinstance(kind, str) else type(item).__name__


def _opt_int(value: Any) -> int | None:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _opt_str(value: Any) -> str | None:
    if isinstance(value, str) and value:
        return value
    return None


def decode_pending_item(row: Mapping[str, Any]) -> PendingItem | None:
    """Build a pending item from a raw queue row.

    Rows with an unrecognised ``type`` decode to ``None`` so callers can skip
    them.
    """

    kind = row.get("type")
    if kind == "observation":
        output = row.get("tool_output", row.get("tool_response"))
        return ObservationItem(
            tool_name=str(row.get("tool_name") or ""),
            tool_input=row.get("tool_input"),
            tool_output=output,
            created_at_epoch=_opt_int(row.get("created_at_epoch")),
            cwd=_opt_str(row.get("cwd")),
            prompt_number=_opt_int(row.get("prompt_number")),
        )
    if kind == "summarize":
        return SummarizeItem(last_assistant_message=_opt_str(row.get("last_assistant_message")))
    logger.debug("unknown pending item type", extra={"item_type": kind})
    return None
