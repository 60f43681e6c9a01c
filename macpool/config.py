"""
macpool.config
--------------
Environment driven settings. Every knob has a default matching the
behaviour operators already know (3 write attempts 1s apart, 3 network
restore attempts 500ms apart); the environment only overrides.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Mapping, Optional, Tuple
import os

from .constants import (
    CONFLICTING_MODULES,
    DEFAULT_DRIVER_DIR,
    DEFAULT_LOG_DIR,
    DEFAULT_POOL_FILE,
    MAX_WRITE_ATTEMPTS,
    PROGRAMMING_MODULE,
    RESTORE_ATTEMPTS,
    RESTORE_BACKOFF_SECONDS,
    WRITE_BACKOFF_SECONDS,
)

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def env_flag(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    value = raw.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ValueError(f"{name} must be a boolean flag, got {raw!r}")


def env_int(env: Mapping[str, str], name: str, default: int, minimum: int = 1) -> int:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got {value}")
    return value


def env_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None
    if value < 0:
        raise ValueError(f"{name} must not be negative, got {value}")
    return value


@dataclass
class PoolSettings:
    pool_file: str = DEFAULT_POOL_FILE
    provider: str = "file"
    require_signature: bool = False
    backup: bool = True
    log_dir: str = DEFAULT_LOG_DIR
    log_url: Optional[str] = None

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "PoolSettings":
        env = os.environ if env is None else env
        return cls(
            pool_file=env.get("MACPOOL_POOL_FILE") or DEFAULT_POOL_FILE,
            provider=(env.get("MACPOOL_STORAGE_PROVIDER") or "file").lower(),
            require_signature=env_flag(env, "MACPOOL_REQUIRE_SIGNATURE", False),
            backup=env_flag(env, "MACPOOL_BACKUP", True),
            log_dir=env.get("MACPOOL_LOG_DIR") or DEFAULT_LOG_DIR,
            log_url=env.get("MACPOOL_LOG_URL") or None,
        )

    def storage_config(self) -> dict:
        return {
            "provider": self.provider,
            "require_signature": self.require_signature,
            "backup": self.backup,
        }


@dataclass
class ProvisioningSettings:
    max_write_attempts: int = MAX_WRITE_ATTEMPTS
    write_backoff: float = WRITE_BACKOFF_SECONDS
    restore_attempts: int = RESTORE_ATTEMPTS
    restore_backoff: float = RESTORE_BACKOFF_SECONDS
    driver_dir: str = DEFAULT_DRIVER_DIR
    programming_module: str = PROGRAMMING_MODULE
    conflicting_modules: Tuple[str, ...] = field(default=CONFLICTING_MODULES)

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None, base_dir: Optional[str] = None) -> "ProvisioningSettings":
        env = os.environ if env is None else env
        driver_dir = env.get("MACPOOL_DRIVER_DIR") or os.path.join(base_dir or os.getcwd(), DEFAULT_DRIVER_DIR)
        return cls(
            max_write_attempts=env_int(env, "MACPOOL_WRITE_ATTEMPTS", MAX_WRITE_ATTEMPTS),
            write_backoff=env_float(env, "MACPOOL_WRITE_BACKOFF", WRITE_BACKOFF_SECONDS),
            restore_attempts=env_int(env, "MACPOOL_RESTORE_ATTEMPTS", RESTORE_ATTEMPTS),
            restore_backoff=env_float(env, "MACPOOL_RESTORE_BACKOFF", RESTORE_BACKOFF_SECONDS),
            driver_dir=driver_dir,
        )
