import os
from typing import BinaryIO, Optional

from stdgag.errors import RedirectError
from stdgag.redirect import Redirect
from stdgag.streams import RedirectionRegistry, StreamId


def null_sink() -> BinaryIO:
    """The platform null device, opened write-only."""
    return open(os.devnull, "wb", buffering=0)


class Gag:
    """
    Discard stdout or stderr until released.

    Example:
        with Gag.stderr():
            chatty_library.init()
    """

    def __init__(self, redirect: Redirect[BinaryIO]):
        self._redirect = redirect

    @classmethod
    def _make(
        cls, stream: StreamId, registry: Optional[RedirectionRegistry]
    ) -> "Gag":
        sink = null_sink()
        try:
            redirect = Redirect.for_stream(stream, sink, registry)
        except RedirectError as e:
            sink.close()
            raise e.error
        return cls(redirect)

    @classmethod
    def stdout(cls, registry: Optional[RedirectionRegistry] = None) -> "Gag":
        return cls._make(StreamId.STDOUT, registry)

    @classmethod
    def stderr(cls, registry: Optional[RedirectionRegistry] = None) -> "Gag":
        return cls._make(StreamId.STDERR, registry)

    @property
    def active(self) -> bool:
        return self._redirect.active

    def release(self) -> None:
        self._redirect.close()

    def __enter__(self) -> "Gag":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.release()
