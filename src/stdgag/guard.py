"""
StreamGuard: exclusive, restorable swap of a standard stream's OS target.

Claiming a stream happens in three steps:

1. Duplicate the descriptor currently installed for the stream. This backup is
   what gets reinstalled later; it is taken before any shared state changes.
   Buffered Python-level text is flushed to the current target here too.
2. Win the stream's flag in the RedirectionRegistry. Losing means another
   guard holds the stream: the backup is closed and AlreadyRedirected raised.
3. Install the caller's target on the stream descriptor (dup2). If that fails
   the backup is closed and the flag cleared before InstallFailed is raised,
   so no caller ever sees a half-installed guard.

Releasing reinstalls the backup, closes it and clears the flag. Restoration is
best-effort: failures are logged, never raised, and cannot be checked later.

Windows uses the same calls; the C runtime's _dup2 keeps the process handle
table (SetStdHandle) in step with descriptors 0-2.

Limitation: nothing orders the swap against a thread that writes to the raw
descriptor without going through a guard. Such a write may land on either side
of the swap.
"""

import os
from typing import Optional, Protocol, Union

from stdgag.errors import AlreadyRedirected, DuplicateFailed, InstallFailed
from stdgag.loggers.error_log import get_error_logger
from stdgag.streams import RedirectionRegistry, StreamId, get_registry


logger = get_error_logger("guard")


class HasFileno(Protocol):
    def fileno(self) -> int: ...


RawTarget = Union[int, HasFileno]


def _duplicate(fd: int) -> int:
    return os.dup(fd)


def _install(target_fd: int, std_fd: int) -> None:
    os.dup2(target_fd, std_fd)


def _close_quietly(fd: int) -> None:
    try:
        os.close(fd)
    except OSError as e:
        logger.warning(f"[stdgag] Failed to close backup descriptor {fd}: {e}")


def as_raw_fd(target: RawTarget) -> int:
    """Descriptor behind `target`: an int, or anything with fileno()."""
    if isinstance(target, int):
        return target
    fileno = getattr(target, "fileno", None)
    if fileno is None:
        raise TypeError(
            f"redirect target must be a descriptor or expose fileno(), got {type(target).__name__}"
        )
    return fileno()


class StreamGuard:
    """
    An active redirection of one standard stream.

    Create with StreamGuard.claim(); release with release() or by using the
    guard as a context manager. An unreleased guard restores the stream when
    it is garbage-collected.
    """

    def __init__(
        self,
        stream: StreamId,
        backup_fd: int,
        registry: RedirectionRegistry,
    ) -> None:
        self.stream = stream
        self._backup_fd = backup_fd
        self._registry = registry
        self._released = False

    @classmethod
    def claim(
        cls,
        stream: StreamId,
        target: RawTarget,
        registry: Optional[RedirectionRegistry] = None,
    ) -> "StreamGuard":
        registry = registry if registry is not None else get_registry()
        target_fd = as_raw_fd(target)
        std_fd = stream.fileno

        try:
            backup_fd = _duplicate(std_fd)
        except OSError as e:
            raise DuplicateFailed.from_os_error(f"could not back up {stream.label}", e)

        # text printed before the claim belongs to the original target
        stream.flush()

        if not registry.try_claim(stream):
            _close_quietly(backup_fd)
            raise AlreadyRedirected(stream.label)

        try:
            _install(target_fd, std_fd)
        except OSError as e:
            try:
                _install(backup_fd, std_fd)
            except OSError as restore_err:
                logger.warning(
                    f"[stdgag] Could not reinstate {stream.label} after failed install: {restore_err}"
                )
            _close_quietly(backup_fd)
            registry.release(stream)
            raise InstallFailed.from_os_error(stream.label, e)

        logger.debug(f"[stdgag] Redirected {stream.label} to descriptor {target_fd}")
        return cls(stream, backup_fd, registry)

    @property
    def active(self) -> bool:
        return not self._released

    def release(self) -> None:
        """Reinstall the original target and free the stream. Later calls do nothing."""
        if self._released:
            return
        self._released = True

        try:
            # text printed during the redirection belongs to the sink
            self.stream.flush()
            try:
                _install(self._backup_fd, self.stream.fileno)
            except OSError as e:
                logger.warning(f"[stdgag] Failed to restore {self.stream.label}: {e}")
        finally:
            _close_quietly(self._backup_fd)
            self._registry.release(self.stream)
        logger.debug(f"[stdgag] Restored {self.stream.label}")

    def __enter__(self) -> "StreamGuard":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.release()

    def __del__(self) -> None:
        if not getattr(self, "_released", True):
            self.release()

    def __copy__(self):
        raise TypeError("StreamGuard cannot be copied")

    def __deepcopy__(self, memo):
        raise TypeError("StreamGuard cannot be copied")

    def __repr__(self) -> str:
        state = "active" if self.active else "released"
        return f"<StreamGuard {self.stream.label} {state}>"
