"""
stdgag settings.

Configuration is read from environment variables so that a process can tune
capture behavior without touching the code that redirects its streams:

- STDGAG_BACKING_STRATEGY   auto | memory | tempdir | pipe
- STDGAG_SHM_DIR            memory-backed filesystem used by the memory strategy
- STDGAG_TEMP_DIR           parent directory for the tempdir strategy
- STDGAG_HOLD_CHUNK_SIZE    copy size used when held output is released
- STDGAG_ENABLE_LOGGING     "1" to also log errors to a rotating file
- STDGAG_LOGS_DIR           directory for that file
"""

import os
from dataclasses import dataclass
from typing import Mapping, Optional

BACKING_STRATEGY_CHOICES = ("auto", "memory", "tempdir", "pipe")


@dataclass(frozen=True)
class StdGagSettings:
    """
    Notes:
    - `backing_strategy` other than "auto" forces a single strategy with no fallback.
    - `temp_dir` of None means the platform default temporary directory.
    """

    backing_strategy: str = "auto"
    shm_dir: str = "/dev/shm"
    temp_dir: Optional[str] = None
    hold_chunk_size: int = 4096
    enable_logging: bool = False
    logs_dir: str = "./logs"


def _read_int(env: Mapping[str, str], key: str, default: int) -> int:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{key} must be an integer, got {raw!r}") from None
    if value <= 0:
        raise ValueError(f"{key} must be positive, got {value}")
    return value


def read_stdgag_env(env: Optional[Mapping[str, str]] = None) -> StdGagSettings:
    """Build settings from STDGAG_* environment variables."""
    env = os.environ if env is None else env

    strategy = env.get("STDGAG_BACKING_STRATEGY", "auto").strip().lower() or "auto"
    if strategy not in BACKING_STRATEGY_CHOICES:
        raise ValueError(
            f"STDGAG_BACKING_STRATEGY must be one of {', '.join(BACKING_STRATEGY_CHOICES)}, "
            f"got {strategy!r}"
        )

    return StdGagSettings(
        backing_strategy=strategy,
        shm_dir=env.get("STDGAG_SHM_DIR", "/dev/shm"),
        temp_dir=env.get("STDGAG_TEMP_DIR") or None,
        hold_chunk_size=_read_int(env, "STDGAG_HOLD_CHUNK_SIZE", 4096),
        enable_logging=env.get("STDGAG_ENABLE_LOGGING", "") == "1",
        logs_dir=env.get("STDGAG_LOGS_DIR", "./logs"),
    )


_SETTINGS: Optional[StdGagSettings] = None


def get_settings() -> StdGagSettings:
    global _SETTINGS
    if _SETTINGS is None:
        _SETTINGS = read_stdgag_env()
    return _SETTINGS


def reset_settings() -> None:
    """Forget cached settings; the next get_settings() re-reads the environment."""
    global _SETTINGS
    _SETTINGS = None
