from __future__ import annotations

import asyncio
import dataclasses
import enum
import functools
import logging
from collections.abc import AsyncIterator, Callable, Sequence
from typing import Any

from .config import ConfigProvider, MemWorkerConfig
from .context_window import ContextWindow
from .dispatch import DispatchPolicy
from .errors import ConfigurationError, SessionAborted, is_abort_error, should_fallback
from .inflight import InFlightTaskSet
from .items import ObservationItem, item_kind
from .limiter import AdmissionLimiter
from .protocols import (
    FallbackAgent,
    PendingItemSource,
    PromptBuilders,
    ResponseProcessor,
    SessionStore,
)
from .provider import MessagesClient, ProviderReply
from .session import Session, Turn
from .session_store import resolve_memory_session_id

logger = logging.getLogger(__name__)

PROVIDER_LABEL = "Anthropic API"

# Number of leading transcript turns (opening prompt and its reply) that every
# concurrent item call sees as shared context.
SHARED_CONTEXT_TURNS = 2


class SessionState(enum.Enum):
    INITIALIZING = "initializing"
    INITIAL_TURN = "initial_turn"
    STREAMING_ITEMS = "streaming_items"
    DRAINING = "draining"
    COMPLETED = "completed"
    ABORTED = "aborted"
    ESCALATED = "escalated"


_END = object()
_ABORTED = object()


async def _pull(iterator: AsyncIterator[Any]) -> Any:
    try:
        return await anext(iterator)
    except StopAsyncIteration:
        return _END


def _report_failure(failure: asyncio.Future[BaseException], task: asyncio.Task[None]) -> None:
    if failure.done() or task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        failure.set_result(exc)


class MessagesApiAgent:
    """Drains a session's pending items into Anthropic Messages API calls.

    The opening turn runs on its own; every later item is rendered, sent, and
    recorded concurrently, bounded by the configured concurrency limit.
    """

    def __init__(
        self,
        session_store: SessionStore,
        item_source: PendingItemSource,
        processor: ResponseProcessor,
        prompts: PromptBuilders,
        *,
        config: ConfigProvider | None = None,
        client_factory: Callable[[MemWorkerConfig], MessagesClient] | None = None,
        fallback: FallbackAgent | None = None,
        fallback_predicate: Callable[[BaseException], bool] = should_fallback,
        active_mode: Callable[[], Any] | None = None,
    ) -> None:
        self.session_store = session_store
        self.item_source = item_source
        self.processor = processor
        self.dispatch = DispatchPolicy(prompts)
        self.config = config or ConfigProvider()
        self.client_factory = client_factory or _default_client
        self.fallback = fallback
        self.fallback_predicate = fallback_predicate
        self.active_mode = active_mode or (lambda: None)

    def set_fallback_agent(self, agent: FallbackAgent) -> None:
        self.fallback = agent

    async def start_session(self, session: Session, worker: Any = None) -> SessionState:
        state = SessionState.INITIALIZING
        inflight: InFlightTaskSet | None = None
        client: MessagesClient | None = None
        try:
            settings = self.config.get()
            if not settings.anthropic_api_key:
                raise ConfigurationError(
                    "Anthropic API key not configured. "
                    "Set anthropic_api_key in the memworker config or ANTHROPIC_API_KEY."
                )
            self._ensure_memory_session_id(session)
            client = self.client_factory(settings)
            mode = self.active_mode()

            state = SessionState.INITIAL_TURN
            await self._initial_turn(session, client, settings, mode)

            state = SessionState.STREAMING_ITEMS
            limiter = AdmissionLimiter(settings.anthropic_concurrency)
            inflight = InFlightTaskSet(limiter.limit)
            logger.info(
                "anthropic api concurrent processing enabled",
                extra={"session_id": session.session_db_id, "concurrency": limiter.limit},
            )
            aborted = await self._stream_items(session, client, settings, mode, limiter, inflight)

            state = SessionState.DRAINING
            await inflight.drain()
            if aborted:
                logger.info("anthropic api agent aborted", extra={"session_id": session.session_db_id})
                return SessionState.ABORTED
            return SessionState.COMPLETED
        except Exception as exc:
            if inflight is not None:
                await inflight.cancel()
                inflight = None
            if is_abort_error(exc):
                logger.info("anthropic api agent aborted", extra={"session_id": session.session_db_id})
                return SessionState.ABORTED
            logger.error(
                "anthropic api agent error",
                extra={
                    "session_id": session.session_db_id,
                    "state": state.value,
                    "error_type": exc.__class__.__name__,
                    "error": str(exc),
                },
                exc_info=exc,
            )
            if not isinstance(exc, ConfigurationError) and self.fallback_predicate(exc):
                if self.fallback is not None:
                    logger.info(
                        "falling back to alternate agent",
                        extra={"session_id": session.session_db_id},
                    )
                    await self.fallback.start_session(session, worker)
                    return SessionState.ESCALATED
            raise
        finally:
            if inflight is not None:
                await inflight.cancel()
            if client is not None:
                await client.aclose()

    def _ensure_memory_session_id(self, session: Session) -> None:
        if session.memory_session_id:
            return
        memory_session_id, minted = resolve_memory_session_id(
            self.session_store, session.session_db_id
        )
        session.memory_session_id = memory_session_id
        logger.info(
            "memory session id generated" if minted else "memory session id restored",
            extra={"session_id": session.session_db_id, "memory_session_id": memory_session_id},
        )

    async def _initial_turn(
        self,
        session: Session,
        client: MessagesClient,
        settings: MemWorkerConfig,
        mode: Any,
    ) -> None:
        prompt = self.dispatch.opening_prompt(session, mode)
        session.transcript.append(Turn.user(prompt))
        reply = await self._query(client, session.transcript.snapshot(), settings)
        if not reply.text:
            logger.error(
                "empty anthropic api init response",
                extra={"session_id": session.session_db_id, "model": settings.anthropic_model},
            )
            return
        session.transcript.append(Turn.assistant(reply.text))
        session.record_usage(reply.input_tokens, reply.output_tokens)
        await self.processor.process(
            reply.text, session, reply.tokens_used, None, PROVIDER_LABEL, None
        )

    async def _stream_items(
        self,
        session: Session,
        client: MessagesClient,
        settings: MemWorkerConfig,
        mode: Any,
        limiter: AdmissionLimiter,
        inflight: InFlightTaskSet,
    ) -> bool:
        """Submit items until the source ends; returns True if aborted.

        An escalation-class failure in any submitted item is raised here as
        soon as it happens, even while the source is idle.
        """

        last_cwd: str | None = None
        failure: asyncio.Future[BaseException] = asyncio.get_running_loop().create_future()
        iterator = aiter(self.item_source.iter_pending(session.session_db_id))
        try:
            while True:
                item = await self._next_item(iterator, session.abort, failure)
                if item is _END:
                    return False
                if item is _ABORTED:
                    return True
                if isinstance(item, ObservationItem):
                    if item.cwd:
                        last_cwd = item.cwd
                    elif last_cwd:
                        item = dataclasses.replace(item, cwd=last_cwd)
                item_cwd = getattr(item, "cwd", None) or last_cwd
                task = asyncio.create_task(
                    self._process_item(
                        item,
                        session,
                        client,
                        settings,
                        mode,
                        limiter,
                        session.earliest_pending_timestamp,
                        item_cwd,
                    )
                )
                task.add_done_callback(functools.partial(_report_failure, failure))
                await inflight.add(task)
        finally:
            aclose = getattr(iterator, "aclose", None)
            if aclose is not None:
                await aclose()

    async def _next_item(
        self,
        iterator: AsyncIterator[Any],
        abort: asyncio.Event,
        failure: asyncio.Future[BaseException],
    ) -> Any:
        """Next item, ``_END`` when exhausted, or ``_ABORTED`` once aborted.

        Raises the first escalation-class item failure instead of waiting on
        the source.
        """

        if failure.done():
            raise failure.result()
        if abort.is_set():
            return _ABORTED
        next_task = asyncio.ensure_future(_pull(iterator))
        abort_task = asyncio.ensure_future(abort.wait())
        try:
            await asyncio.wait(
                {next_task, abort_task, failure}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            abort_task.cancel()
            # The generator must be idle before anyone calls aclose() on it.
            if not next_task.done():
                next_task.cancel()
                await asyncio.wait({next_task})
        if failure.done():
            raise failure.result()
        if abort.is_set():
            return _ABORTED
        try:
            return next_task.result()
        except SessionAborted:
            return _ABORTED

    async def _process_item(
        self,
        item: Any,
        session: Session,
        client: MessagesClient,
        settings: MemWorkerConfig,
        mode: Any,
        limiter: AdmissionLimiter,
        original_timestamp: int | None,
        cwd: str | None,
    ) -> None:
        async with limiter.slot():
            tokens_used = 0
            try:
                prompt = self.dispatch.render(item, session, mode, original_timestamp)
                if prompt is None:
                    return
                logger.info(
                    "processing pending item",
                    extra={
                        "session_id": session.session_db_id,
                        "item_type": item_kind(item),
                        "tool_name": getattr(item, "tool_name", None),
                    },
                )
                # Each item sees the shared opening context plus its own prompt,
                # never the turns other in-flight items are appending.
                context = [
                    *session.transcript.head(SHARED_CONTEXT_TURNS),
                    Turn.user(prompt),
                ]
                reply = await self._query(client, context, settings)
                tokens_used = reply.tokens_used
                if reply.text:
                    session.transcript.append_exchange(prompt, reply.text)
                    session.record_usage(reply.input_tokens, reply.output_tokens)
                    await self.processor.process(
                        reply.text,
                        session,
                        reply.tokens_used,
                        original_timestamp,
                        PROVIDER_LABEL,
                        cwd,
                    )
                    logger.info(
                        "pending item processed",
                        extra={
                            "session_id": session.session_db_id,
                            "item_type": item_kind(item),
                            "tokens_used": reply.tokens_used,
                        },
                    )
                session.earliest_pending_timestamp = None
            except Exception as exc:
                if self.fallback_predicate(exc):
                    raise
                logger.error(
                    "pending item processing failed",
                    extra={
                        "session_id": session.session_db_id,
                        "item_type": item_kind(item),
                        "tool_name": getattr(item, "tool_name", None),
                        "tokens_used": tokens_used,
                        "error": str(exc),
                    },
                )

    async def _query(
        self, client: MessagesClient, turns: Sequence[Turn], settings: MemWorkerConfig
    ) -> ProviderReply:
        window = ContextWindow.from_config(self.config.get())
        return await client.send(
            window.truncate(turns), settings.anthropic_model, settings.anthropic_base_url
        )


def _default_client(settings: MemWorkerConfig) -> MessagesClient:
    return MessagesClient(
        settings.anthropic_api_key or "",
        max_tokens=settings.anthropic_max_tokens,
        timeout_s=settings.request_timeout_s,
    )
