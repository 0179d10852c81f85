"""Single-writer, multi-reader incremental value channels.

A channel is opened, receives any number of updates from its one writer and
settles exactly once, either with ``done`` or with ``error``. Text channels
accumulate deltas into a growing prefix; value channels replace the current
value on every update.

Settle hooks registered with ``on_done`` run before any reader sees the
terminal event. This is how the orchestrator couples "the stream finished"
with "the final value is in the conversation log": if the hook fails, the
channel settles as an error instead.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from chatstream.errors import AlreadySettledError, ChannelClosedError
from chatstream.utils.logging import get_logger

logger = get_logger(__name__)


class ChannelState(StrEnum):
    OPEN = "open"
    DONE = "done"
    ERROR = "error"


@dataclass(frozen=True)
class ChannelUpdate[T]:
    value: T
    delta: Any


@dataclass(frozen=True)
class ChannelDone[T]:
    value: T


@dataclass(frozen=True)
class ChannelError:
    cause: BaseException


type ChannelEvent[T] = ChannelUpdate[T] | ChannelDone[T] | ChannelError


class ChannelSubscription[T]:
    """One reader's view of a channel, in emission order, terminal event last."""

    def __init__(self, channel: "StreamChannel[T]"):
        self._channel = channel
        self._queue: asyncio.Queue[ChannelEvent[T]] = asyncio.Queue()
        self._finished = False

    def _deliver(self, event: ChannelEvent[T]) -> None:
        self._queue.put_nowait(event)

    def __aiter__(self) -> "ChannelSubscription[T]":
        return self

    async def __anext__(self) -> ChannelEvent[T]:
        if self._finished:
            raise StopAsyncIteration
        event = await self._queue.get()
        if not isinstance(event, ChannelUpdate):
            self._finished = True
            self._channel._detach(self)
        return event


class StreamChannel[T]:
    """Write-once-settled incremental value."""

    def __init__(self, initial: T, *, append: bool = True, name: str = "stream"):
        self.name = name
        self._append = append
        self._value = initial
        self._state = ChannelState.OPEN
        self._settling = False
        self._terminal: ChannelDone[T] | ChannelError | None = None
        self._readers: list[ChannelSubscription[T]] = []
        self._done_hooks: list[Callable[[T], Awaitable[None]]] = []

    @property
    def state(self) -> ChannelState:
        return self._state

    @property
    def value(self) -> T:
        return self._value

    @property
    def settled(self) -> bool:
        return self._state is not ChannelState.OPEN

    def on_done(self, hook: Callable[[T], Awaitable[None]]) -> None:
        """Run ``hook(final_value)`` as part of settling with ``done``."""
        self._done_hooks.append(hook)

    def subscribe(self) -> ChannelSubscription[T]:
        """Attach a reader. A reader attaching after settlement gets the terminal event only."""
        subscription = ChannelSubscription(self)
        if self._terminal is not None:
            subscription._deliver(self._terminal)
        else:
            self._readers.append(subscription)
        return subscription

    def update(self, delta: Any) -> None:
        """Append (text mode) or replace (value mode) the current value."""
        if self._state is not ChannelState.OPEN or self._settling:
            raise ChannelClosedError()

        self._value = self._value + delta if self._append else delta
        self._broadcast(ChannelUpdate(value=self._value, delta=delta))

    async def done(self, final: T | None = None) -> T:
        """Settle successfully. Settle hooks run first; if one raises, the channel errors."""
        self._ensure_can_settle()
        self._settling = True

        value = self._value if final is None else final
        try:
            for hook in self._done_hooks:
                await hook(value)
        except Exception as e:
            logger.error(f"Settle hook failed for channel {self.name}: {e}")
            self._settle(ChannelState.ERROR, ChannelError(cause=e))
            raise

        self._value = value
        self._settle(ChannelState.DONE, ChannelDone(value=value))
        return value

    def error(self, cause: BaseException) -> None:
        """Settle with an error instead of a value."""
        self._ensure_can_settle()
        self._settle(ChannelState.ERROR, ChannelError(cause=cause))

    async def result(self) -> T:
        """Wait for settlement and return the final value, raising the error cause."""
        async for event in self.subscribe():
            if isinstance(event, ChannelDone):
                return event.value
            if isinstance(event, ChannelError):
                raise event.cause
        raise AssertionError("channel subscription ended without a terminal event")

    def _ensure_can_settle(self) -> None:
        if self._state is not ChannelState.OPEN or self._settling:
            raise AlreadySettledError(self._state.value if self.settled else "settling")

    def _settle(self, state: ChannelState, terminal: ChannelDone[T] | ChannelError) -> None:
        self._state = state
        self._settling = False
        self._terminal = terminal
        self._broadcast(terminal)
        self._readers.clear()
        logger.debug(f"Channel {self.name} settled: {state}")

    def _broadcast(self, event: ChannelEvent[T]) -> None:
        for reader in self._readers:
            reader._deliver(event)

    def _detach(self, subscription: ChannelSubscription[T]) -> None:
        if subscription in self._readers:
            self._readers.remove(subscription)
