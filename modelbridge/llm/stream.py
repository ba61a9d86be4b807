"""
Async event stream handle with cooperative cancellation.

``EventStream`` wraps the async generator a provider produces for one chat
call.  It is the only thing callers iterate, and it guarantees the ordering
rules of the canonical event model no matter what the provider yields:

  - ``tool_use_start`` / ``tool_use_end`` for one id occur at most once each,
    start strictly before end.
  - Exactly one terminal event (``message_end`` or ``error``) and nothing
    after it.  A source that ends without one, or raises, is reported as an
    ``error`` event.
  - After ``cancel()`` no further events are delivered and the source
    generator is closed, which releases the underlying HTTP response.
    Cancellation is not an error: no terminal event is emitted for it.
"""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator

from modelbridge.llm.types import (
    StreamError,
    StreamEvent,
    ToolUseEnd,
    ToolUseStart,
    is_terminal,
)

logger = logging.getLogger(__name__)

_EXHAUSTED = object()
_CANCELLED = object()


class CancellationToken:
    """Idempotent, awaitable cancel flag shared between caller and provider."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    async def wait(self) -> None:
        await self._event.wait()


class EventStream:
    """
    Async iterator over ``StreamEvent`` for one chat call.

    Usage::

        stream = provider.chat_stream(request)
        async for event in stream:
            ...
        # or, from anywhere:
        stream.cancel()
    """

    def __init__(
        self,
        source: AsyncIterator[StreamEvent],
        token: CancellationToken | None = None,
        label: str = "stream",
    ) -> None:
        self._source = source
        self._token = token or CancellationToken()
        self._label = label
        self._started: set[str] = set()
        self._open: set[str] = set()
        self._finished = False
        self._source_closed = False
        self._iterating = False
        self._cancel_waiter: asyncio.Future | None = None
        self._shutdown_task: asyncio.Task | None = None
        self.terminal_event: StreamEvent | None = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def token(self) -> CancellationToken:
        return self._token

    @property
    def cancelled(self) -> bool:
        return self._token.cancelled

    @property
    def finished(self) -> bool:
        return self._finished

    def cancel(self) -> None:
        """Stop event delivery and release the connection.  Safe to repeat."""
        if self._token.cancelled and self._finished:
            return
        self._token.cancel()
        if self._iterating or self._source_closed:
            # The pending __anext__ notices the token and shuts down.
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        if self._shutdown_task is None:
            self._shutdown_task = loop.create_task(self._shutdown())

    async def aclose(self) -> None:
        self._token.cancel()
        await self._shutdown()

    async def collect(self) -> list[StreamEvent]:
        """Drain the stream into a list."""
        return [event async for event in self]

    def __aiter__(self) -> EventStream:
        return self

    async def __anext__(self) -> StreamEvent:
        while True:
            if self._finished:
                raise StopAsyncIteration
            if self._token.cancelled:
                await self._shutdown()
                raise StopAsyncIteration

            self._iterating = True
            try:
                item = await self._next_or_cancel()
            except Exception as exc:  # source failed outside the decoder
                logger.error("%s: source raised %s", self._label, exc)
                item = StreamError(message=f"{self._label} stream failed: {exc}")
            finally:
                self._iterating = False

            if item is _CANCELLED:
                await self._shutdown()
                raise StopAsyncIteration
            if item is _EXHAUSTED:
                item = StreamError(
                    message=f"{self._label} stream ended without a completion event"
                )

            event = self._admit(item)  # type: ignore[arg-type]
            if event is None:
                continue
            if is_terminal(event):
                self.terminal_event = event
                self._finished = True
                self._drop_cancel_waiter()
                await self._close_source()
            return event

    async def __aenter__(self) -> EventStream:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _admit(self, event: StreamEvent) -> StreamEvent | None:
        """Enforce the ordering invariants.  Returns ``None`` to drop."""
        if isinstance(event, ToolUseStart):
            if event.id in self._started:
                logger.warning("%s: duplicate tool_use_start id=%s dropped", self._label, event.id)
                return None
            self._started.add(event.id)
            self._open.add(event.id)
            return event
        if isinstance(event, ToolUseEnd):
            if event.id not in self._open:
                logger.warning("%s: unmatched tool_use_end id=%s dropped", self._label, event.id)
                return None
            self._open.discard(event.id)
            return event
        return event

    async def _next_or_cancel(self) -> object:
        next_task = asyncio.ensure_future(self._source.__anext__())
        if self._cancel_waiter is None:
            self._cancel_waiter = asyncio.ensure_future(self._token.wait())
        try:
            done, _ = await asyncio.wait(
                {next_task, self._cancel_waiter},
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            next_task.cancel()
            raise

        if next_task in done:
            try:
                return next_task.result()
            except StopAsyncIteration:
                self._source_closed = True
                return _EXHAUSTED

        next_task.cancel()
        try:
            await next_task
        except (asyncio.CancelledError, StopAsyncIteration):
            pass
        except Exception as exc:
            logger.debug("%s: source error during cancel: %s", self._label, exc)
        self._source_closed = True
        return _CANCELLED

    def _drop_cancel_waiter(self) -> None:
        if self._cancel_waiter is not None and not self._cancel_waiter.done():
            self._cancel_waiter.cancel()
        self._cancel_waiter = None

    async def _close_source(self) -> None:
        if self._source_closed:
            return
        self._source_closed = True
        aclose = getattr(self._source, "aclose", None)
        if aclose is not None:
            try:
                await aclose()
            except Exception as exc:
                logger.debug("%s: error closing source: %s", self._label, exc)

    async def _shutdown(self) -> None:
        self._finished = True
        self._drop_cancel_waiter()
        await self._close_source()
        logger.debug("%s: stream closed (cancelled=%s)", self._label, self._token.cancelled)
