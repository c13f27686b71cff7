from typing import Optional

from stdgag.backing import BackingStrategy
from stdgag.buffer import CaptureBuffer
from stdgag.loggers.error_log import get_error_logger
from stdgag.settings import StdGagSettings, get_settings
from stdgag.streams import RedirectionRegistry, StreamId


logger = get_error_logger("hold")


class Hold:
    """
    Hold output until released, then send it to the original stream.

    I/O errors while printing the held output are logged, not raised.
    """

    def __init__(self, buffer: CaptureBuffer, stream: StreamId, chunk_size: int):
        self._buffer: Optional[CaptureBuffer] = buffer
        self._stream = stream
        self._chunk_size = chunk_size

    @classmethod
    def _make(
        cls,
        stream: StreamId,
        strategy: Optional[BackingStrategy],
        registry: Optional[RedirectionRegistry],
        settings: Optional[StdGagSettings],
    ) -> "Hold":
        settings = settings or get_settings()
        if stream is StreamId.STDOUT:
            buffer = CaptureBuffer.stdout(strategy, registry, settings)
        else:
            buffer = CaptureBuffer.stderr(strategy, registry, settings)
        return cls(buffer, stream, settings.hold_chunk_size)

    @classmethod
    def stdout(
        cls,
        strategy: Optional[BackingStrategy] = None,
        registry: Optional[RedirectionRegistry] = None,
        settings: Optional[StdGagSettings] = None,
    ) -> "Hold":
        """Hold stdout output."""
        return cls._make(StreamId.STDOUT, strategy, registry, settings)

    @classmethod
    def stderr(
        cls,
        strategy: Optional[BackingStrategy] = None,
        registry: Optional[RedirectionRegistry] = None,
        settings: Optional[StdGagSettings] = None,
    ) -> "Hold":
        """Hold stderr output."""
        return cls._make(StreamId.STDERR, strategy, registry, settings)

    @property
    def active(self) -> bool:
        return self._buffer is not None

    def release(self) -> None:
        """Stop holding and print everything held so far. Later calls do nothing."""
        if self._buffer is None:
            return
        buffer, self._buffer = self._buffer, None

        source = None
        try:
            source = buffer.into_inner()
            self._drain(source)
        except (OSError, ValueError, RuntimeError) as e:
            logger.debug(f"[stdgag] Dropped held {self._stream.label} output: {e}")
        finally:
            if source is None:
                # the redirect is already detached, so this only closes the read side
                source = buffer.into_inner()
            source.close()

    def _drain(self, source) -> None:
        dest = self._stream.text_stream()
        if dest is None:
            logger.debug(f"[stdgag] No sys.{self._stream.label} to release held output to")
            return
        dest.flush()
        # text streams without a binary buffer (e.g. StringIO) get decoded text
        raw = getattr(dest, "buffer", None)
        while True:
            chunk = source.read(self._chunk_size)
            if not chunk:
                break
            if raw is not None:
                raw.write(chunk)
            else:
                dest.write(chunk.decode(getattr(dest, "encoding", None) or "utf-8", "replace"))
        if raw is not None:
            raw.flush()
        dest.flush()

    def __enter__(self) -> "Hold":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.release()

    def __del__(self) -> None:
        if getattr(self, "_buffer", None) is not None:
            self.release()
