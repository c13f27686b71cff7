"""
Process-wide stream slots and the registry that arbitrates them.

There are exactly two slots (stdout, stderr). A slot is held by at most one
StreamGuard at a time; the registry flag is the only thing that decides who
holds it. Contested claims fail fast instead of waiting.
"""

import sys
import threading
from enum import Enum
from typing import Dict, TextIO

from stdgag.loggers.error_log import get_error_logger


logger = get_error_logger("streams")


class StreamId(Enum):
    STDOUT = 1
    STDERR = 2

    @property
    def fileno(self) -> int:
        return self.value

    @property
    def label(self) -> str:
        return self.name.lower()

    def text_stream(self) -> TextIO:
        """Current Python-level stream for this slot (may be replaced by user code)."""
        return sys.stdout if self is StreamId.STDOUT else sys.stderr

    def flush(self) -> None:
        """Push Python-level buffered text down to the descriptor."""
        stream = self.text_stream()
        if stream is None:
            return
        try:
            stream.flush()
        except Exception as e:
            # closed, detached or write-only stream; nothing buffered can be recovered
            logger.debug(f"[stdgag] Could not flush sys.{self.label}: {e}")


class RedirectionRegistry:
    """
    One exclusivity flag per StreamId.

    The lock only protects the test-and-set / clear of a flag. It is never
    held across an OS call, so no claim ever blocks on another guard.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._flags: Dict[StreamId, bool] = {s: False for s in StreamId}

    def try_claim(self, stream: StreamId) -> bool:
        """Set the flag for `stream`. Returns False if it was already set."""
        with self._lock:
            if self._flags[stream]:
                return False
            self._flags[stream] = True
            return True

    def release(self, stream: StreamId) -> None:
        with self._lock:
            if not self._flags[stream]:
                raise RuntimeError(
                    f"Redirection flag for {stream.label} released while not held"
                )
            self._flags[stream] = False

    def is_claimed(self, stream: StreamId) -> bool:
        with self._lock:
            return self._flags[stream]

    def reset(self) -> None:
        """Clear every flag. Only meant for test isolation."""
        with self._lock:
            for s in self._flags:
                self._flags[s] = False


REGISTRY = RedirectionRegistry()


def get_registry() -> RedirectionRegistry:
    return REGISTRY
