"""
Ties stream subscriptions to the lifecycle of an event sink (a "bloc").
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Callable, Generic, Optional, TypeVar

from ..utils.logging import get_sink_logger, log_lifecycle_event
from .config import DEFAULT_CONFIG, LifecycleConfig
from .stream import (
    DoneCallback,
    ErrorCallback,
    EventSink,
    Streamable,
    Subscription,
    as_stream,
)

E = TypeVar("E")
T = TypeVar("T")


@dataclass(frozen=True)
class Reaction(Generic[E]):
    """
    Optional translation of a source's error and completion signals into events.

    Attributes:
        on_error: Present -> called with the source's exception (its traceback
            is on ``error.__traceback__``); the returned event is added to the
            sink unless it is None. Absent -> the error is absorbed and no
            event is added.
        on_done: Present -> called when the source completes; the returned
            event is added unless it is None. Absent -> no event is added.
    """

    on_error: Optional[Callable[[Exception], Optional[E]]] = None
    on_done: Optional[Callable[[], Optional[E]]] = None


class BlocLifecycle(Generic[E]):
    """
    Wraps an event sink and cancels every subscription made through it
    when the sink is closed.

    add() is forwarded to the sink untouched. close() first cancels the
    tracked subscriptions, then closes the sink itself.
    """

    def __init__(
        self, sink: EventSink[E], config: Optional[LifecycleConfig] = None
    ) -> None:
        """
        Args:
            sink: The sink whose lifetime bounds the subscriptions.
            config: Close policy; defaults to sequential, continue-on-error.
        """
        self.sink = sink
        self.config = config or DEFAULT_CONFIG
        self._subscriptions: list[Subscription] = []
        self._logger = get_sink_logger(sink)

    @property
    def subscriptions(self) -> tuple[Subscription, ...]:
        """Snapshot of the tracked subscriptions, in attachment order."""
        return tuple(self._subscriptions)

    def add(self, event: E) -> None:
        self.sink.add(event)

    def listen_to_stream(
        self,
        stream: Any,
        on_data: Callable[[T], None],
        on_error: Optional[ErrorCallback] = None,
        on_done: Optional[DoneCallback] = None,
    ) -> Subscription:
        """
        Listen to a stream and track the subscription until close.

        Args:
            stream: A listenable stream or a plain async iterable.
            on_data: Called for every value.
            on_error: Called for errors raised by the source.
            on_done: Called when the source completes.

        Returns:
            The subscription, which is also cancelled on close().
        """
        subscription = as_stream(stream).listen(
            on_data, on_error=on_error, on_done=on_done
        )
        self._subscriptions.append(subscription)
        log_lifecycle_event(
            self._logger,
            logging.DEBUG,
            "Tracking subscription",
            subscriptions=len(self._subscriptions),
        )
        return subscription

    def listen_to_streamable(
        self,
        streamable: Streamable[T],
        on_data: Callable[[T], None],
        on_error: Optional[ErrorCallback] = None,
        on_done: Optional[DoneCallback] = None,
    ) -> Subscription:
        """Like listen_to_stream, for an object exposing `.stream`."""
        return self.listen_to_stream(streamable.stream, on_data, on_error, on_done)

    def react_to_stream(
        self,
        stream: Any,
        on_data: Callable[[T], E],
        reaction: Optional[Reaction[E]] = None,
    ) -> Subscription:
        """
        Map every value of a stream to an event and add it to the sink.

        Events are added synchronously from the delivery callback, so they
        reach the sink in the order the stream produced the values.

        Args:
            stream: A listenable stream or a plain async iterable.
            on_data: Maps a value to the event to add.
            reaction: Optional error/done translations.

        Returns:
            The tracked subscription.
        """
        reaction = reaction or Reaction()

        def handle_data(value: T) -> None:
            self.add(on_data(value))

        def handle_error(error: Exception) -> None:
            if reaction.on_error is not None:
                self._add_if_present(reaction.on_error(error))

        def handle_done() -> None:
            if reaction.on_done is not None:
                self._add_if_present(reaction.on_done())

        return self.listen_to_stream(stream, handle_data, handle_error, handle_done)

    def react_to_streamable(
        self,
        streamable: Streamable[T],
        on_data: Callable[[T], E],
        reaction: Optional[Reaction[E]] = None,
    ) -> Subscription:
        """Like react_to_stream, for an object exposing `.stream`."""
        return self.react_to_stream(streamable.stream, on_data, reaction)

    async def close(self) -> None:
        """
        Cancel all tracked subscriptions, then close the sink.

        A subscription leaves the tracked set once its cancellation has been
        attempted, so whatever was not reached stays in `subscriptions`.

        Raises:
            CancellationError: One or more cancellations failed (the sink is
                still closed first). Only with continue_on_cancel_error.
            Exception: The first cancellation failure, unchanged, when
                continue_on_cancel_error is off; the sink is left open.
        """
        log_lifecycle_event(
            self._logger,
            logging.DEBUG,
            "Cancelling tracked subscriptions",
            subscriptions=len(self._subscriptions),
        )

        if self.config.cancel_concurrently:
            failures = await self._cancel_concurrently()
        else:
            failures = await self._cancel_sequentially()

        result = self.sink.close()
        if inspect.isawaitable(result):
            await result

        log_lifecycle_event(
            self._logger,
            logging.DEBUG,
            "Sink closed",
            subscriptions=len(self._subscriptions),
            failures=len(failures),
        )
        if failures:
            raise CancellationError(failures) from failures[0]

    async def __aenter__(self) -> "BlocLifecycle[E]":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> bool:
        await self.close()
        return False

    def _add_if_present(self, event: Optional[E]) -> None:
        if event is not None:
            self.add(event)

    async def _cancel(self, subscription: Subscription) -> None:
        if self.config.cancel_timeout is None:
            await subscription.cancel()
        else:
            await asyncio.wait_for(subscription.cancel(), self.config.cancel_timeout)

    def _report_failure(self, index: int, error: BaseException) -> None:
        self._logger.error(
            "Failed to cancel subscription #%d: %s", index, error, exc_info=error
        )

    async def _cancel_sequentially(self) -> list[BaseException]:
        failures: list[BaseException] = []
        index = 0
        while self._subscriptions:
            subscription = self._subscriptions.pop(0)
            index += 1
            try:
                await self._cancel(subscription)
            except Exception as error:
                if not self.config.continue_on_cancel_error:
                    raise
                self._report_failure(index, error)
                failures.append(error)
        return failures

    async def _cancel_concurrently(self) -> list[BaseException]:
        subscriptions = list(self._subscriptions)
        results = await asyncio.gather(
            *(self._cancel(subscription) for subscription in subscriptions),
            return_exceptions=True,
        )
        del self._subscriptions[: len(subscriptions)]

        failures: list[BaseException] = []
        for index, result in enumerate(results, start=1):
            # A subscription whose cancel() was itself cancelled shows up
            # as a CancelledError result and counts as a failure
            if isinstance(result, BaseException):
                self._report_failure(index, result)
                failures.append(result)
        if failures and not self.config.continue_on_cancel_error:
            raise failures[0]
        return failures


class CancellationError(Exception):
    """Raised by close() when one or more subscriptions failed to cancel."""

    def __init__(self, failures: list[BaseException]) -> None:
        super().__init__(f"{len(failures)} subscription(s) failed to cancel")
        self.failures = failures
