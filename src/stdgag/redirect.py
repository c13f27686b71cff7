from typing import Generic, Optional, TypeVar

from stdgag.errors import StreamRedirectError, RedirectError
from stdgag.guard import StreamGuard
from stdgag.streams import RedirectionRegistry, StreamId

Sink = TypeVar("Sink")


class Redirect(Generic[Sink]):
    """
    Redirect stdout or stderr to a sink (a file, a pipe end, a null device...).

    The Redirect owns the sink for as long as the redirection is active:
    close() restores the stream and closes the sink, into_inner() restores the
    stream and hands the still-open sink back.

    Example:
        with Redirect.stdout(open("run.log", "wb")):
            subprocess.call(["make"])
    """

    def __init__(self, guard: StreamGuard, sink: Sink) -> None:
        self._guard = guard
        self._sink = sink
        self._owns_sink = True

    @classmethod
    def for_stream(
        cls,
        stream: StreamId,
        sink: Sink,
        registry: Optional[RedirectionRegistry],
    ) -> "Redirect[Sink]":
        try:
            guard = StreamGuard.claim(stream, sink, registry=registry)
        except StreamRedirectError as e:
            raise RedirectError(e, sink) from e
        return cls(guard, sink)

    @classmethod
    def stdout(
        cls, sink: Sink, registry: Optional[RedirectionRegistry] = None
    ) -> "Redirect[Sink]":
        """Redirect stdout to `sink`."""
        return cls.for_stream(StreamId.STDOUT, sink, registry)

    @classmethod
    def stderr(
        cls, sink: Sink, registry: Optional[RedirectionRegistry] = None
    ) -> "Redirect[Sink]":
        """Redirect stderr to `sink`."""
        return cls.for_stream(StreamId.STDERR, sink, registry)

    @property
    def sink(self) -> Sink:
        return self._sink

    @property
    def stream(self) -> StreamId:
        return self._guard.stream

    @property
    def active(self) -> bool:
        return self._guard.active

    def into_inner(self) -> Sink:
        """Stop redirecting and return the sink, still open."""
        self._guard.release()
        self._owns_sink = False
        return self._sink

    def close(self) -> None:
        try:
            self._guard.release()
        finally:
            if self._owns_sink:
                self._owns_sink = False
                close = getattr(self._sink, "close", None)
                if close is not None:
                    close()

    def __enter__(self) -> "Redirect[Sink]":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
