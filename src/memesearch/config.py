"""Environment variable configuration for the meme search client.

Settings are loaded in priority order:
  1. Shell environment variables (highest priority)
  2. .env file in current directory
  3. ~/.memesearch/.env (persistent config, set via `memesearch env set`)

Run `memesearch env` to see which settings are configured.
Run `memesearch env set KEY value` to save a setting persistently.

Settings:
    MEMESEARCH_API_BASE   ->  search service base URL (default http://localhost:8080/api/v1)
    MEMESEARCH_API_TOKEN  ->  bearer token (optional, only for protected deployments)
    API_TIMEOUT           ->  request timeout in seconds
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

CONFIG_DIR = Path.home() / ".memesearch"
PERSISTENT_ENV = CONFIG_DIR / ".env"

DEFAULT_API_BASE = "http://localhost:8080/api/v1"
DEFAULT_TIMEOUT = 15.0
DEFAULT_STREAM_TIMEOUT = 30.0

# Load in reverse priority order (later loads don't overwrite existing)
# 1. ~/.memesearch/.env (lowest priority)
if PERSISTENT_ENV.exists():
    load_dotenv(PERSISTENT_ENV)

# 2. .env in current directory
load_dotenv()

# 3. Shell env vars already set (dotenv won't overwrite)


# --- Persistent config ---

def save_key(name: str, value: str) -> Path:
    """Save a setting to ~/.memesearch/.env for persistent use."""
    CONFIG_DIR.mkdir(parents=True, exist_ok=True)

    lines: list[str] = []
    replaced = False
    if PERSISTENT_ENV.exists():
        for line in PERSISTENT_ENV.read_text().splitlines():
            if line.startswith(f"{name}="):
                lines.append(f"{name}={value}")
                replaced = True
            else:
                lines.append(line)

    if not replaced:
        lines.append(f"{name}={value}")

    PERSISTENT_ENV.write_text("\n".join(lines) + "\n")

    # Also set in current process
    os.environ[name] = value

    return PERSISTENT_ENV


# --- Accessors ---

def get_api_base() -> str:
    return os.getenv("MEMESEARCH_API_BASE", "").rstrip("/") or DEFAULT_API_BASE


def get_api_token() -> str | None:
    """Token is optional; returns None if not set."""
    return os.getenv("MEMESEARCH_API_TOKEN") or None


def get_timeout(default: float = DEFAULT_TIMEOUT) -> float:
    raw = os.getenv("API_TIMEOUT", "")
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"API_TIMEOUT must be a number of seconds, got {raw!r}")


def auth_headers(content_type: str | None = None) -> dict[str, str]:
    """Request headers, with the bearer token when one is configured."""
    headers: dict[str, str] = {}
    if content_type:
        headers["Content-Type"] = content_type
    token = get_api_token()
    if token:
        headers["Authorization"] = f"Bearer {token}"
    return headers


# --- Status check ---

VALID_KEYS = {"MEMESEARCH_API_BASE", "MEMESEARCH_API_TOKEN", "API_TIMEOUT"}

ENV_VARS = {
    "MEMESEARCH_API_BASE": {
        "used_by": ["memesearch search", "memesearch list", "memesearch categories", "memesearch show"],
        "description": f"Search service base URL (default {DEFAULT_API_BASE})",
    },
    "MEMESEARCH_API_TOKEN": {
        "used_by": ["all remote commands (optional)"],
        "description": "Bearer token sent as the Authorization header",
    },
    "API_TIMEOUT": {
        "used_by": ["all remote commands (optional)"],
        "description": "Request timeout in seconds",
    },
}


def check_env() -> list[tuple[str, bool, dict]]:
    """Return list of (var_name, is_set, info) for all known env vars."""
    result = []
    for var, info in ENV_VARS.items():
        is_set = bool(os.getenv(var))
        result.append((var, is_set, info))
    return result
