import errno
from typing import Any


class StreamRedirectError(OSError):
    """Base class for every failure to redirect a standard stream."""


class AlreadyRedirected(StreamRedirectError):
    def __init__(self, stream_label: str):
        super().__init__(errno.EBUSY, f"{stream_label} is already redirected")
        self.stream_label = stream_label


class ResourceExhausted(StreamRedirectError):
    """An OS-level duplicate, open or pipe call failed."""

    @classmethod
    def from_os_error(cls, what: str, err: OSError) -> "ResourceExhausted":
        exc = cls(err.errno, f"{what}: {err.strerror or err}")
        exc.__cause__ = err
        return exc


class DuplicateFailed(ResourceExhausted):
    """Backing up the current stream target failed; nothing was touched."""


class InstallFailed(StreamRedirectError):
    """
    Swapping in the new target failed after the slot was won.

    By the time this is raised the backup has been closed and the slot
    released again.
    """

    @classmethod
    def from_os_error(cls, stream_label: str, err: OSError) -> "InstallFailed":
        exc = cls(err.errno, f"could not install new {stream_label} target: {err.strerror or err}")
        exc.__cause__ = err
        return exc


class RedirectError(StreamRedirectError):
    """
    Raised by Redirect when a claim fails.

    Carries the caller's sink back, unconsumed and still open, together with
    the underlying error.
    """

    def __init__(self, error: StreamRedirectError, sink: Any):
        super().__init__(error.errno, error.strerror or str(error))
        self.error = error
        self.sink = sink

    def into_sink(self) -> Any:
        return self.sink

    def __str__(self) -> str:
        return str(self.error)
