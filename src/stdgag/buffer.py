from typing import Optional

from stdgag.backing import (
    AnyReadSide,
    BackingStrategy,
    WriteSide,
    allocate_backing_store,
)
from stdgag.errors import RedirectError
from stdgag.redirect import Redirect
from stdgag.settings import StdGagSettings
from stdgag.streams import RedirectionRegistry, StreamId


class CaptureBuffer:
    """
    Capture stdout or stderr into an in-memory backing store.

    Everything written to the stream, by Python code, C extensions or child
    processes, lands in the store and can be read back with read().

    Example:
        with CaptureBuffer.stderr() as buf:
            noisy_native_call()
            output = buf.read()
    """

    def __init__(self, redirect: Redirect[WriteSide], read_side: AnyReadSide, strategy: BackingStrategy):
        self._redirect: Optional[Redirect[WriteSide]] = redirect
        self._read_side = read_side
        self.strategy = strategy

    @classmethod
    def _make(
        cls,
        stream: StreamId,
        strategy: Optional[BackingStrategy],
        registry: Optional[RedirectionRegistry],
        settings: Optional[StdGagSettings],
    ) -> "CaptureBuffer":
        store = allocate_backing_store(strategy, settings)
        try:
            redirect = Redirect.for_stream(stream, store.write_side, registry)
        except RedirectError as e:
            store.close()
            raise e.error
        return cls(redirect, store.read_side, store.strategy)

    @classmethod
    def stdout(
        cls,
        strategy: Optional[BackingStrategy] = None,
        registry: Optional[RedirectionRegistry] = None,
        settings: Optional[StdGagSettings] = None,
    ) -> "CaptureBuffer":
        """Capture stdout."""
        return cls._make(StreamId.STDOUT, strategy, registry, settings)

    @classmethod
    def stderr(
        cls,
        strategy: Optional[BackingStrategy] = None,
        registry: Optional[RedirectionRegistry] = None,
        settings: Optional[StdGagSettings] = None,
    ) -> "CaptureBuffer":
        """Capture stderr."""
        return cls._make(StreamId.STDERR, strategy, registry, settings)

    @property
    def stream(self) -> Optional[StreamId]:
        return self._redirect.stream if self._redirect is not None else None

    @property
    def active(self) -> bool:
        return self._redirect is not None and self._redirect.active

    def read(self, size: int = -1) -> bytes:
        """
        Read captured bytes. Returns b"" when nothing new has been captured yet.

        Python-level buffered text is flushed first so print() output is visible.
        """
        if self._redirect is not None:
            self._redirect.stream.flush()
        return self._read_side.read(size) or b""

    def read_text(self, encoding: str = "utf-8", errors: str = "replace") -> str:
        return self.read().decode(encoding, errors)

    def fileno(self) -> int:
        return self._read_side.fileno()

    def into_inner(self) -> AnyReadSide:
        """
        Stop capturing and return the read side.

        Bytes captured so far stay readable; anything written to the stream
        from now on goes to its original destination.
        """
        if self._redirect is not None:
            redirect, self._redirect = self._redirect, None
            redirect.close()
        return self._read_side

    def close(self) -> None:
        self.into_inner().close()

    def __enter__(self) -> "CaptureBuffer":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
