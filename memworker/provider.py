from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

import httpx

from .context_window import estimate_turns_tokens
from .errors import ProviderError, TransportError
from .redaction import redact_snippet
from .session import Turn

logger = logging.getLogger(__name__)

ANTHROPIC_VERSION = "2023-06-01"
DEFAULT_MAX_TOKENS = 4096
HIGH_USAGE_WARNING_TOKENS = 50000


@dataclass(frozen=True)
class ProviderReply:
    text: str
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def tokens_used(self) -> int:
        return self.input_tokens + self.output_tokens


def to_messages(turns: Sequence[Turn]) -> list[dict[str, str]]:
    return [
        {"role": "assistant" if turn.role == "assistant" else "user", "content": turn.text}
        for turn in turns
    ]


def _extract_text(data: dict[str, Any]) -> str:
    content = data.get("content")
    if not isinstance(content, list):
        return ""
    for block in content:
        if not isinstance(block, dict) or block.get("type") != "text":
            continue
        text = block.get("text")
        return text if isinstance(text, str) else ""
    return ""


def _usage_count(usage: Any, key: str) -> int:
    if not isinstance(usage, dict):
        return 0
    value = usage.get(key)
    try:
        return int(value) if value is not None else 0
    except (TypeError, ValueError):
        return 0


class MessagesClient:
    """One call at a time to an Anthropic Messages API compatible endpoint."""

    def __init__(
        self,
        api_key: str,
        *,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        timeout_s: float = 60.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_key = api_key
        self.max_tokens = max_tokens
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=timeout_s)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    def build_payload(self, turns: Sequence[Turn], model: str) -> dict[str, Any]:
        return {
            "model": model,
            "max_tokens": self.max_tokens,
            "messages": to_messages(turns),
        }

    def _headers(self) -> dict[str, str]:
        return {
            "x-api-key": self.api_key,
            "anthropic-version": ANTHROPIC_VERSION,
            "content-type": "application/json",
        }

    async def send(self, turns: Sequence[Turn], model: str, base_url: str) -> ProviderReply:
        endpoint = f"{base_url.rstrip('/')}/v1/messages"
        logger.debug(
            "querying anthropic api",
            extra={
                "model": model,
                "turns": len(turns),
                "total_chars": sum(len(turn.text) for turn in turns),
                "estimated_tokens": estimate_turns_tokens(turns),
                "base_url": base_url,
            },
        )
        try:
            response = await self._http.post(
                endpoint,
                json=self.build_payload(turns, model),
                headers=self._headers(),
            )
        except httpx.HTTPError as exc:
            raise TransportError(None, f"{exc.__class__.__name__}: {exc}") from exc

        if not response.is_success:
            error_summary = redact_snippet(response.text or "")
            logger.error(
                "anthropic api call failed",
                extra={
                    "model": model,
                    "endpoint": endpoint,
                    "status": response.status_code,
                    "error": error_summary,
                    "request_id": response.headers.get("request-id"),
                },
            )
            raise TransportError(response.status_code, error_summary)

        try:
            data = response.json()
        except ValueError as exc:
            raise ProviderError("invalid_response", redact_snippet(response.text or "")) from exc
        if not isinstance(data, dict):
            raise ProviderError("invalid_response", "response body is not an object")

        error = data.get("error")
        if error:
            details = error if isinstance(error, dict) else {"message": str(error)}
            raise ProviderError(details.get("type"), details.get("message"))

        text = _extract_text(data)
        if not text:
            logger.error("empty response from anthropic api", extra={"model": model})
            return ProviderReply(text="")

        usage = data.get("usage")
        reply = ProviderReply(
            text=text,
            input_tokens=_usage_count(usage, "input_tokens"),
            output_tokens=_usage_count(usage, "output_tokens"),
        )
        logger.info(
            "anthropic api usage",
            extra={
                "model": model,
                "input_tokens": reply.input_tokens,
                "output_tokens": reply.output_tokens,
                "total_tokens": reply.tokens_used,
                "messages_in_context": len(turns),
            },
        )
        if reply.tokens_used > HIGH_USAGE_WARNING_TOKENS:
            logger.warning(
                "high token usage in single request",
                extra={
                    "tokens_used": reply.tokens_used,
                    "model": model,
                    "warning_threshold": HIGH_USAGE_WARNING_TOKENS,
                },
            )
        return reply
