"""Callback system for run observability.

Observers either register callbacks (sync or async) or subscribe to a
bounded queue of events. Both channels are best effort: a failing
callback is logged and skipped, a full subscription queue drops the event.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable

logger = logging.getLogger(__name__)


class CallbackEvent(str, Enum):
    """Events that can trigger callbacks."""

    # Run lifecycle
    RUN_START = "run_start"
    RUN_END = "run_end"

    # Stages
    STAGE_START = "stage_start"
    STAGE_END = "stage_end"

    # Node execution
    NODE_START = "node_start"
    NODE_END = "node_end"
    NODE_ERROR = "node_error"

    # Loops
    LOOP_START = "loop_start"
    LOOP_ITERATION = "loop_iteration"
    LOOP_END = "loop_end"

    # Log stream
    LOG = "log"


@dataclass
class CallbackContext:
    """Context passed to callbacks and subscribers."""

    event: CallbackEvent
    timestamp: datetime = field(default_factory=datetime.now)
    node_id: str | None = None
    loop_id: str | None = None
    data: dict[str, Any] = field(default_factory=dict)


# Type aliases
SyncCallback = Callable[[CallbackContext], None]
AsyncCallback = Callable[[CallbackContext], Awaitable[None]]
AnyCallback = SyncCallback | AsyncCallback


class Subscription:
    """Bounded queue of events for a single observer.

    Iterate with ``async for``; iteration ends once the manager closes
    its subscriptions (at the end of a run) and the queue is drained.

    Example:
        >>> sub = manager.subscribe(maxsize=50)
        >>> async for ctx in sub:
        ...     render(ctx)
    """

    _CLOSED = object()

    def __init__(self, maxsize: int = 1000) -> None:
        self._queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=maxsize)
        self._dropped = 0
        self._closed = False

    @property
    def dropped(self) -> int:
        """Number of events dropped because the queue was full."""
        return self._dropped

    @property
    def closed(self) -> bool:
        return self._closed

    def pending(self) -> int:
        """Number of events waiting to be consumed."""
        return self._queue.qsize()

    def offer(self, context: CallbackContext) -> bool:
        """Enqueue an event without waiting.

        Returns:
            False if the subscription is closed or full.
        """
        if self._closed:
            return False
        try:
            self._queue.put_nowait(context)
        except asyncio.QueueFull:
            self._dropped += 1
            return False
        return True

    def close(self) -> None:
        """Mark the end of the stream."""
        if self._closed:
            return
        self._closed = True
        # Evict one event if needed so the end marker always fits.
        if self._queue.full():
            try:
                self._queue.get_nowait()
                self._dropped += 1
            except asyncio.QueueEmpty:
                pass
        self._queue.put_nowait(self._CLOSED)

    async def get(self, timeout: float | None = None) -> CallbackContext | None:
        """Receive the next event.

        Returns:
            The next event, or None when the stream ended or the timeout expired.
        """
        try:
            if timeout is not None:
                item = await asyncio.wait_for(self._queue.get(), timeout=timeout)
            else:
                item = await self._queue.get()
        except TimeoutError:
            return None
        if item is self._CLOSED:
            # Keep the marker for any later reader.
            self._queue.put_nowait(self._CLOSED)
            return None
        return item

    def __aiter__(self) -> AsyncIterator[CallbackContext]:
        return self

    async def __anext__(self) -> CallbackContext:
        item = await self.get()
        if item is None:
            raise StopAsyncIteration
        return item


class CallbackManager:
    """Manager for event callbacks and subscriptions.

    Supports both sync and async callbacks.
    Callbacks are called in registration order, global callbacks first.
    Async callbacks that run past ``callback_timeout`` seconds are cancelled
    and logged. Sync callbacks run inline and must return quickly; slow
    consumers should read from ``subscribe()`` instead.

    Example:
        >>> manager = CallbackManager()
        >>>
        >>> def on_loop_end(ctx: CallbackContext) -> None:
        ...     print(f"{ctx.loop_id} stopped: {ctx.data['status']}")
        >>>
        >>> manager.register(CallbackEvent.LOOP_END, on_loop_end)
        >>> await manager.emit(CallbackEvent.LOOP_END, loop_id="loop-a", status="converged")
    """

    def __init__(self, callback_timeout: float | None = 5.0) -> None:
        if callback_timeout is not None and callback_timeout <= 0:
            raise ValueError("callback_timeout must be positive")
        self._callback_timeout = callback_timeout
        self._callbacks: dict[CallbackEvent, list[AnyCallback]] = {}
        self._global_callbacks: list[AnyCallback] = []
        self._subscriptions: list[Subscription] = []

    def register(
        self,
        event: CallbackEvent,
        callback: AnyCallback,
    ) -> None:
        """Register a callback for an event.

        Args:
            event: Event to listen for.
            callback: Callback function (sync or async).
        """
        self._callbacks.setdefault(event, []).append(callback)

    def register_global(self, callback: AnyCallback) -> None:
        """Register a callback for all events."""
        self._global_callbacks.append(callback)

    def unregister(
        self,
        event: CallbackEvent,
        callback: AnyCallback,
    ) -> bool:
        """Unregister a callback.

        Returns:
            True if callback was found and removed.
        """
        if event in self._callbacks:
            try:
                self._callbacks[event].remove(callback)
                return True
            except ValueError:
                pass
        return False

    def unregister_global(self, callback: AnyCallback) -> bool:
        """Unregister a global callback.

        Returns:
            True if callback was found and removed.
        """
        try:
            self._global_callbacks.remove(callback)
            return True
        except ValueError:
            return False

    def subscribe(self, maxsize: int = 1000) -> Subscription:
        """Open a bounded event queue receiving every emitted event.

        Args:
            maxsize: Queue capacity; events beyond it are dropped.
        """
        if maxsize <= 0:
            raise ValueError("maxsize must be positive")
        subscription = Subscription(maxsize=maxsize)
        self._subscriptions.append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> bool:
        try:
            self._subscriptions.remove(subscription)
        except ValueError:
            return False
        subscription.close()
        return True

    def close_subscriptions(self) -> None:
        """End every open subscription stream."""
        for subscription in self._subscriptions:
            subscription.close()
        self._subscriptions.clear()

    async def emit(
        self,
        event: CallbackEvent,
        node_id: str | None = None,
        loop_id: str | None = None,
        **data: Any,
    ) -> None:
        """Emit an event to all registered callbacks and subscribers.

        Args:
            event: Event to emit.
            node_id: Optional node id for context.
            loop_id: Optional loop id for context.
            **data: Additional data to include in context.
        """
        context = CallbackContext(
            event=event,
            node_id=node_id,
            loop_id=loop_id,
            data=data,
        )

        for subscription in self._subscriptions:
            subscription.offer(context)

        callbacks: list[AnyCallback] = []
        callbacks.extend(self._global_callbacks)
        callbacks.extend(self._callbacks.get(event, []))

        for callback in callbacks:
            await self._execute_callback(callback, context)

    async def _execute_callback(
        self,
        callback: AnyCallback,
        context: CallbackContext,
    ) -> None:
        try:
            if inspect.iscoroutinefunction(callback):
                await asyncio.wait_for(callback(context), self._callback_timeout)
            else:
                callback(context)
        except asyncio.TimeoutError:
            logger.warning(
                "Callback %r timed out after %ss for event %s",
                callback,
                self._callback_timeout,
                context.event.value,
            )
        except Exception:
            logger.warning(
                "Callback %r failed for event %s",
                callback,
                context.event.value,
                exc_info=True,
            )

    def clear(self, event: CallbackEvent | None = None) -> None:
        """Clear callbacks.

        Args:
            event: Specific event to clear, or None to clear all.
        """
        if event is None:
            self._callbacks.clear()
            self._global_callbacks.clear()
        elif event in self._callbacks:
            self._callbacks[event].clear()
