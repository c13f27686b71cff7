"""
Transient byte storage with an independent write side and read side.

Captured output is written through one descriptor and read back through
another. The two descriptors must not share a file offset, which rules out a
plain os.dup(): reading would move the cursor the stream writes at. The
strategies below each produce such a pair:

MEMORY   Linux. An unnamed O_TMPFILE on a memory-backed filesystem (/dev/shm),
         re-opened read-only through /proc/self/fd. The file never has a name.
TEMPDIR  POSIX. A file inside a fresh private directory, opened once for
         writing and once for reading, after which the directory is removed.
         The data lives on only through the two open descriptors.
PIPE     Everywhere. A kernel pipe. Capacity is the OS pipe buffer: once it
         is full, writers to the redirected stream block until the read side
         is drained.

In automatic mode the strategies are tried in the order above (only PIPE on
Windows). A strategy is skipped only when it fails with an errno that means
"not supported here"; any other failure is raised.

Pipe end-of-stream policy: a pipe read never blocks. When no bytes are
available it returns b"", which means "nothing yet" for as long as the paired
WriteSide is open. After the WriteSide has been closed, a read that finds no
bytes available is end-of-stream and sets `at_eof`.
"""

import errno
import io
import os
import shutil
import struct
import sys
import tempfile
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Optional, Sequence, Tuple, Union

from stdgag.errors import ResourceExhausted
from stdgag.loggers.error_log import get_error_logger
from stdgag.settings import StdGagSettings, get_settings


logger = get_error_logger("backing")


class BackingStrategy(Enum):
    MEMORY = "memory"
    TEMPDIR = "tempdir"
    PIPE = "pipe"


UNSUPPORTED_ERRNOS = frozenset(
    code
    for code in (
        getattr(errno, "EOPNOTSUPP", None),
        getattr(errno, "ENOTSUP", None),
        errno.EISDIR,
        errno.EINVAL,
        errno.ENOENT,
        errno.ENOTDIR,
        errno.EACCES,
        errno.EPERM,
        errno.EROFS,
    )
    if code is not None
)


class WriteSide(io.FileIO):
    """Write end of a backing store; handed to a Redirect as its sink."""

    def __init__(self, fd: int, on_close: Optional[Callable[[], None]] = None):
        super().__init__(fd, "wb", closefd=True)
        self._on_close = on_close

    def close(self) -> None:
        if self.closed:
            return
        try:
            super().close()
        finally:
            if self._on_close is not None:
                self._on_close()
                self._on_close = None


class ReadSide(io.FileIO):
    """
    Read end of a file-backed store.

    Has its own cursor starting at offset 0. read() returns what has been
    written so far and b"" once it has caught up with the writer.
    """

    def __init__(self, fd: int):
        super().__init__(fd, "rb", closefd=True)


class _PipeState:
    def __init__(self) -> None:
        self.writer_closed = False

    def mark_writer_closed(self) -> None:
        self.writer_closed = True


if os.name == "nt":
    import ctypes
    import msvcrt
    from ctypes import wintypes

    _kernel32 = ctypes.WinDLL("kernel32", use_last_error=True)
    _ERROR_BROKEN_PIPE = 109

    def _bytes_available(fd: int) -> int:
        avail = wintypes.DWORD(0)
        handle = wintypes.HANDLE(msvcrt.get_osfhandle(fd))
        if not _kernel32.PeekNamedPipe(handle, None, 0, None, ctypes.byref(avail), None):
            code = ctypes.get_last_error()
            if code == _ERROR_BROKEN_PIPE:
                # every writer is gone and the pipe is drained
                return 0
            raise ctypes.WinError(code)
        return avail.value

else:
    import fcntl
    import termios

    def _bytes_available(fd: int) -> int:
        raw = fcntl.ioctl(fd, termios.FIONREAD, struct.pack("i", 0))
        return struct.unpack("i", raw)[0]


class PipeReadSide(io.RawIOBase):
    """Non-blocking read end of a pipe-backed store."""

    def __init__(self, fd: int, state: _PipeState):
        super().__init__()
        self._fd = fd
        self._state = state
        self.at_eof = False

    def fileno(self) -> int:
        if self.closed:
            raise ValueError("I/O operation on closed pipe")
        return self._fd

    def readable(self) -> bool:
        return True

    def available(self) -> int:
        """Bytes that can be read right now without blocking."""
        return _bytes_available(self.fileno())

    def readinto(self, b) -> int:
        # read the flag first: bytes written before the close must still be seen
        writer_closed = self._state.writer_closed
        n = self.available()
        if n == 0:
            if writer_closed:
                self.at_eof = True
            return 0
        view = memoryview(b).cast("B")
        data = os.read(self._fd, min(len(view), n))
        view[: len(data)] = data
        return len(data)

    def close(self) -> None:
        if self.closed:
            return
        try:
            os.close(self._fd)
        finally:
            super().close()


AnyReadSide = Union[ReadSide, PipeReadSide]


@dataclass
class BackingStore:
    write_side: WriteSide
    read_side: AnyReadSide
    strategy: BackingStrategy

    def close(self) -> None:
        try:
            self.write_side.close()
        finally:
            self.read_side.close()


def _wrap_files(write_fd: int, read_fd: int) -> Tuple[WriteSide, ReadSide]:
    try:
        write_side = WriteSide(write_fd)
    except BaseException:
        os.close(write_fd)
        os.close(read_fd)
        raise
    try:
        read_side = ReadSide(read_fd)
    except BaseException:
        write_side.close()
        os.close(read_fd)
        raise
    return write_side, read_side


def _memory_pair(settings: StdGagSettings) -> Tuple[WriteSide, AnyReadSide]:
    o_tmpfile = getattr(os, "O_TMPFILE", None)
    if o_tmpfile is None or not sys.platform.startswith("linux"):
        raise OSError(errno.EOPNOTSUPP, "O_TMPFILE is not available on this platform")

    write_fd = os.open(settings.shm_dir, o_tmpfile | os.O_RDWR | os.O_EXCL, 0o600)
    try:
        read_fd = os.open(f"/proc/self/fd/{write_fd}", os.O_RDONLY)
    except BaseException:
        os.close(write_fd)
        raise
    return _wrap_files(write_fd, read_fd)


def _tempdir_pair(settings: StdGagSettings) -> Tuple[WriteSide, AnyReadSide]:
    if os.name == "nt":
        raise OSError(errno.EOPNOTSUPP, "open files cannot be unlinked on Windows")

    path = tempfile.mkdtemp(prefix="stdgag-", dir=settings.temp_dir)
    try:
        target = os.path.join(path, "capture")
        write_fd = os.open(target, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        try:
            read_fd = os.open(target, os.O_RDONLY)
        except BaseException:
            os.close(write_fd)
            raise
    finally:
        try:
            shutil.rmtree(path)
        except OSError as e:
            logger.warning(f"[stdgag] Failed to remove capture directory {path}: {e}")
    return _wrap_files(write_fd, read_fd)


def _pipe_pair(settings: StdGagSettings) -> Tuple[WriteSide, AnyReadSide]:
    read_fd, write_fd = os.pipe()
    state = _PipeState()
    try:
        write_side = WriteSide(write_fd, on_close=state.mark_writer_closed)
    except BaseException:
        os.close(write_fd)
        os.close(read_fd)
        raise
    return write_side, PipeReadSide(read_fd, state)


_STRATEGIES: Dict[
    BackingStrategy, Callable[[StdGagSettings], Tuple[WriteSide, AnyReadSide]]
] = {
    BackingStrategy.MEMORY: _memory_pair,
    BackingStrategy.TEMPDIR: _tempdir_pair,
    BackingStrategy.PIPE: _pipe_pair,
}


def default_strategies() -> Sequence[BackingStrategy]:
    if sys.platform.startswith("linux"):
        return (BackingStrategy.MEMORY, BackingStrategy.TEMPDIR, BackingStrategy.PIPE)
    if os.name == "nt":
        return (BackingStrategy.PIPE,)
    return (BackingStrategy.TEMPDIR, BackingStrategy.PIPE)


def _candidates(
    strategy: Optional[BackingStrategy], settings: StdGagSettings
) -> Sequence[BackingStrategy]:
    if strategy is not None:
        return (strategy,)
    if settings.backing_strategy != "auto":
        return (BackingStrategy(settings.backing_strategy),)
    return default_strategies()


def allocate_backing_store(
    strategy: Optional[BackingStrategy] = None,
    settings: Optional[StdGagSettings] = None,
) -> BackingStore:
    """
    Create a write side and a read side over one transient store.

    Either both sides are returned or, on failure, everything opened along
    the way has been closed again.
    """
    settings = settings or get_settings()
    candidates = _candidates(strategy, settings)

    for i, candidate in enumerate(candidates):
        try:
            write_side, read_side = _STRATEGIES[candidate](settings)
        except OSError as e:
            is_last = i == len(candidates) - 1
            if not is_last and e.errno in UNSUPPORTED_ERRNOS:
                logger.debug(
                    f"[stdgag] {candidate.value} backing store unsupported here ({e}), falling back"
                )
                continue
            raise ResourceExhausted.from_os_error(
                f"could not allocate {candidate.value} backing store", e
            )
        return BackingStore(write_side, read_side, candidate)

    raise RuntimeError("no backing strategy candidates")


def allocate_pair(
    strategy: Optional[BackingStrategy] = None,
    settings: Optional[StdGagSettings] = None,
) -> Tuple[WriteSide, AnyReadSide]:
    store = allocate_backing_store(strategy, settings)
    return store.write_side, store.read_side
