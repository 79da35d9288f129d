"""
Test fixtures for bloc lifecycle tests.
"""

import asyncio
from typing import Any, Callable, Optional

import pytest


class RecordingSink:
    """Sink that records added events and when it was closed."""

    def __init__(self, log: Optional[list] = None) -> None:
        self.events: list[Any] = []
        self.closed = False
        self.log = log if log is not None else []

    def add(self, event: Any) -> None:
        self.events.append(event)

    async def close(self) -> None:
        self.closed = True
        self.log.append("sink.close")


class FakeSubscription:
    """Subscription that records its cancellation in a shared log."""

    def __init__(
        self,
        name: str,
        log: list,
        delay: float = 0.0,
        error: Optional[Exception] = None,
    ) -> None:
        self.name = name
        self.log = log
        self.delay = delay
        self.error = error
        self.cancel_calls = 0

    async def cancel(self) -> None:
        self.cancel_calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        self.log.append(f"cancel:{self.name}")


class FakeStream:
    """Stream that emits its values synchronously as soon as it is listened to."""

    def __init__(
        self,
        name: str,
        values: list,
        log: list,
        error: Optional[Exception] = None,
        complete: bool = True,
        **subscription_kwargs: Any,
    ) -> None:
        self.name = name
        self.values = values
        self.log = log
        self.error = error
        self.complete = complete
        self.subscription_kwargs = subscription_kwargs
        self.subscription: Optional[FakeSubscription] = None

    def listen(
        self,
        on_data: Callable[[Any], None],
        on_error: Optional[Callable[[Exception], None]] = None,
        on_done: Optional[Callable[[], None]] = None,
    ) -> FakeSubscription:
        for value in self.values:
            on_data(value)
        if self.error is not None and on_error is not None:
            on_error(self.error)
        if self.complete and on_done is not None:
            on_done()
        self.subscription = FakeSubscription(self.name, self.log, **self.subscription_kwargs)
        return self.subscription


class BroadcastSubscription:
    """Handle returned by Broadcast.listen; cancel removes the listener."""

    def __init__(self, listeners: list, listener: Callable[[Any], None]) -> None:
        self._listeners = listeners
        self._listener = listener

    async def cancel(self) -> None:
        if self._listener in self._listeners:
            self._listeners.remove(self._listener)


class Broadcast:
    """Synchronous broadcast stream: publish() reaches every current listener."""

    def __init__(self) -> None:
        self._listeners: list[Callable[[Any], None]] = []

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def listen(self, on_data, on_error=None, on_done=None) -> BroadcastSubscription:
        self._listeners.append(on_data)
        return BroadcastSubscription(self._listeners, on_data)

    def publish(self, value: Any) -> None:
        for listener in list(self._listeners):
            listener(value)


class Repository:
    """Streamable that owns a broadcast stream."""

    def __init__(self) -> None:
        self._bus = Broadcast()

    @property
    def stream(self) -> Broadcast:
        return self._bus

    def publish(self, value: Any) -> None:
        self._bus.publish(value)


@pytest.fixture
def log() -> list:
    """Shared ordered log of cancellations and sink closes."""
    return []


@pytest.fixture
def sink(log) -> RecordingSink:
    """Fixture providing a recording sink."""
    return RecordingSink(log)


@pytest.fixture
def make_stream(log) -> Callable[..., FakeStream]:
    """Factory for fake streams sharing the test's log."""

    def factory(name: str, values: Optional[list] = None, **kwargs: Any) -> FakeStream:
        return FakeStream(name, values or [], log, **kwargs)

    return factory


@pytest.fixture
def repository() -> Repository:
    """Fixture providing a streamable repository."""
    return Repository()


@pytest.fixture
def bus() -> Broadcast:
    """Fixture providing a synchronous broadcast stream."""
    return Broadcast()
