"""
Source, subscription and sink abstractions plus an async-iterable bridge.
"""

import asyncio
import logging
from typing import (
    Any,
    AsyncIterable,
    Callable,
    Generic,
    Optional,
    Protocol,
    TypeVar,
    runtime_checkable,
)

T = TypeVar("T")
T_co = TypeVar("T_co", covariant=True)
E_contra = TypeVar("E_contra", contravariant=True)

DataCallback = Callable[[T], None]
ErrorCallback = Callable[[Exception], None]
DoneCallback = Callable[[], None]

logger = logging.getLogger(__name__)


@runtime_checkable
class Subscription(Protocol):
    """Cancellable handle for an active listen relationship."""

    async def cancel(self) -> None:
        ...


@runtime_checkable
class Stream(Protocol[T_co]):
    """Anything that can be listened to with data/error/done callbacks."""

    def listen(
        self,
        on_data: Callable[[T_co], None],
        on_error: Optional[ErrorCallback] = None,
        on_done: Optional[DoneCallback] = None,
    ) -> Subscription:
        ...


@runtime_checkable
class Streamable(Protocol[T_co]):
    """An object that owns an underlying stream rather than being one."""

    @property
    def stream(self) -> Stream[T_co]:
        ...


@runtime_checkable
class EventSink(Protocol[E_contra]):
    """Host sink: accepts events and can be closed."""

    def add(self, event: E_contra) -> None:
        ...

    def close(self) -> Any:
        ...


class TaskSubscription:
    """Subscription backed by the asyncio task that pumps a source."""

    def __init__(self, task: "asyncio.Task[None]") -> None:
        self._task = task

    @property
    def is_active(self) -> bool:
        return not self._task.done()

    async def cancel(self) -> None:
        """
        Cancel the pump task and wait until it has finished.

        Cancelling the caller while it waits propagates to the caller only;
        the pump task keeps running its cleanup.
        """
        if self._task.done():
            return
        self._task.cancel()
        await asyncio.wait({self._task})


class AsyncIterableStream(Generic[T]):
    """
    Adapts a Python async iterable to the listenable Stream interface.

    Listening starts a task on the running event loop that iterates the
    source. An exception raised by the source is reported once and ends the
    stream, after which the done callback fires. Exceptions raised by the
    callbacks are logged and the stream keeps running.
    """

    def __init__(self, source: AsyncIterable[T]) -> None:
        self._source = source

    def listen(
        self,
        on_data: DataCallback[T],
        on_error: Optional[ErrorCallback] = None,
        on_done: Optional[DoneCallback] = None,
    ) -> TaskSubscription:
        """
        Start iterating the source.

        Args:
            on_data: Called with every value, in emission order.
            on_error: Called with an exception raised while iterating.
            on_done: Called once the source is exhausted or has failed.

        Returns:
            A TaskSubscription whose cancel() stops delivery.
        """
        task = asyncio.get_running_loop().create_task(
            self._pump(on_data, on_error, on_done)
        )
        return TaskSubscription(task)

    async def _pump(
        self,
        on_data: DataCallback[T],
        on_error: Optional[ErrorCallback],
        on_done: Optional[DoneCallback],
    ) -> None:
        iterator = self._source.__aiter__()
        while True:
            # Only errors raised by the source itself end the stream
            try:
                value = await iterator.__anext__()
            except StopAsyncIteration:
                break
            except Exception as error:
                if on_error is None:
                    logger.error("Unhandled error from stream: %s", error, exc_info=error)
                else:
                    _run_callback(on_error, error)
                break
            _run_callback(on_data, value)
        if on_done is not None:
            _run_callback(on_done)


def _run_callback(callback: Callable[..., None], *args: Any) -> None:
    """Invoke a listener callback; its exceptions are logged, not delivered."""
    try:
        callback(*args)
    except Exception:
        logger.exception("Error in stream listener callback")


def as_stream(source: Any) -> Stream:
    """
    Return `source` as a listenable stream.

    Objects exposing `listen` are returned unchanged; async iterables are
    wrapped in an AsyncIterableStream.

    Raises:
        TypeError: If the source is neither.
    """
    if callable(getattr(source, "listen", None)):
        return source
    if hasattr(source, "__aiter__"):
        return AsyncIterableStream(source)
    raise TypeError(f"Cannot listen to object of type {type(source).__name__}")
