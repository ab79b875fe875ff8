"""Runtime settings, driven by ``VAULTSHARE_*`` environment variables."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional

from vaultshare.security.session import DEFAULT_KEYRING_SERVICE, DEFAULT_TTL_SECONDS

ENV_PREFIX = "VAULTSHARE_"


def _int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(ENV_PREFIX + name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ValueError(f"{ENV_PREFIX}{name} must be an integer, got {raw!r}") from e


@dataclass(frozen=True)
class Settings:
    """Knobs of the identity session and logging."""

    log_level: int = logging.INFO
    session_ttl: int = DEFAULT_TTL_SECONDS
    keyring_service: str = DEFAULT_KEYRING_SERVICE

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if env is None else env
        level_name = env.get(ENV_PREFIX + "LOG_LEVEL", "INFO").upper()
        level = logging.getLevelName(level_name)
        if not isinstance(level, int):
            raise ValueError(f"{ENV_PREFIX}LOG_LEVEL has unknown level {level_name!r}")
        return cls(
            log_level=level,
            session_ttl=_int(env, "SESSION_TTL", DEFAULT_TTL_SECONDS),
            keyring_service=env.get(ENV_PREFIX + "KEYRING_SERVICE") or DEFAULT_KEYRING_SERVICE,
        )
