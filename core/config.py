# =============================================================================
# core/config.py  —  Environment-driven settings
# =============================================================================
#
# WHAT THIS MODULE DOES:
#   Reads the VRM connection settings from environment variables (a .env
#   file is loaded by the entry points via python-dotenv) and validates them.
#
#   VRM_API_TOKEN        required   personal access token
#   VRM_SITE_ID          required   numeric installation id
#   VRM_AUTH_HEADER      optional   header carrying "Token <token>"
#   VRM_BASE_URL         optional   API root
#   VRM_TIMEOUT_S        optional   per-request timeout in seconds
#   VRM_MAX_CHUNK_BYTES  optional   default envelope budget
#   VRM_AGENT_MODEL      optional   LiteLlm model string for the agent console
#
# Settings are read on every call; nothing is cached at import time, so a
# test can monkeypatch the environment freely.
# =============================================================================

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from core.errors import ConfigError

DEFAULT_BASE_URL = "https://vrmapi.victronenergy.com/v2"
DEFAULT_AUTH_HEADER = "X-Authorization"
DEFAULT_TIMEOUT_S = 15.0
DEFAULT_MAX_CHUNK_BYTES = 128_000
DEFAULT_AGENT_MODEL = "openrouter/openai/gpt-4o"


@dataclass(frozen=True)
class Settings:
    """Validated connection settings for one installation."""

    token: str
    site_id: str                       # digits only
    auth_header: str = DEFAULT_AUTH_HEADER
    base_url: str = DEFAULT_BASE_URL
    timeout_s: float = DEFAULT_TIMEOUT_S
    max_chunk_bytes: int = DEFAULT_MAX_CHUNK_BYTES
    agent_model: str = DEFAULT_AGENT_MODEL

    @property
    def site_id_number(self) -> int:
        return int(self.site_id)


def _clean(env: Mapping[str, str], key: str) -> Optional[str]:
    value = env.get(key)
    if value is None:
        return None
    value = value.strip()
    return value or None


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    """Build Settings from the environment, reporting every problem at once.

    Raises:
        ConfigError: listing each missing or malformed variable.
    """
    env = os.environ if env is None else env
    problems = []

    token = _clean(env, "VRM_API_TOKEN")
    if not token:
        problems.append("VRM_API_TOKEN is required.")

    site_id = _clean(env, "VRM_SITE_ID")
    if not site_id or not site_id.isdigit():
        problems.append("VRM_SITE_ID is required and must be numeric.")

    auth_header = _clean(env, "VRM_AUTH_HEADER") or DEFAULT_AUTH_HEADER
    base_url = (_clean(env, "VRM_BASE_URL") or DEFAULT_BASE_URL).rstrip("/")

    timeout_s = DEFAULT_TIMEOUT_S
    raw_timeout = _clean(env, "VRM_TIMEOUT_S")
    if raw_timeout is not None:
        try:
            timeout_s = float(raw_timeout)
        except ValueError:
            problems.append("VRM_TIMEOUT_S must be a number of seconds.")
        else:
            if timeout_s <= 0:
                problems.append("VRM_TIMEOUT_S must be positive.")

    max_chunk_bytes = DEFAULT_MAX_CHUNK_BYTES
    raw_chunk = _clean(env, "VRM_MAX_CHUNK_BYTES")
    if raw_chunk is not None:
        if raw_chunk.isdigit() and int(raw_chunk) > 0:
            max_chunk_bytes = int(raw_chunk)
        else:
            problems.append("VRM_MAX_CHUNK_BYTES must be a positive integer.")

    if problems:
        raise ConfigError(problems)

    return Settings(
        token=token,
        site_id=site_id,
        auth_header=auth_header,
        base_url=base_url,
        timeout_s=timeout_s,
        max_chunk_bytes=max_chunk_bytes,
        agent_model=_clean(env, "VRM_AGENT_MODEL") or DEFAULT_AGENT_MODEL,
    )
