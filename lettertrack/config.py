"""Single source of truth for all configuration and secrets.

All modules import from here, never from os.environ directly.

Values are read from secrets/internal.env (or the SOPS-encrypted
secrets/internal.env.enc when LETTERTRACK_USE_SOPS=true). Any LETTERS_* or
LETTERTRACK_* environment variable overrides the file.
"""

import os
from pathlib import Path

from lettertrack.secrets import load_env_file, load_secrets, overlay_environment

PROJECT_ROOT = Path(__file__).resolve().parent.parent

USE_SOPS = os.environ.get("LETTERTRACK_USE_SOPS", "false").lower() == "true"

_ENV_PREFIXES = ("LETTERS_", "LETTERTRACK_")


def _load(scope: str) -> dict[str, str | None]:
    """Load settings for a given scope, with environment overrides applied."""
    if USE_SOPS:
        values = load_secrets(PROJECT_ROOT / f"secrets/{scope}.env.enc")
    else:
        values = load_env_file(PROJECT_ROOT / f"secrets/{scope}.env")
    return overlay_environment(values, _ENV_PREFIXES)


def _get(key: str, default: str) -> str:
    value = _internal.get(key)
    return default if value is None or value == "" else value


_internal = _load("internal")

# --- REST API ---
LETTERS_BASE_URL: str = _get("LETTERS_BASE_URL", "http://localhost:3000")
LETTERS_API_TOKEN: str = _get("LETTERS_API_TOKEN", "")
LETTERS_PORTAL_BASE_URL: str = _get("LETTERS_PORTAL_BASE_URL", LETTERS_BASE_URL)

# --- Local state ---
PREFERENCES_DB_PATH: str = _get(
    "LETTERS_PREFERENCES_DB_PATH", str(PROJECT_ROOT / "data" / "preferences.db")
)
IMPORT_LOG_PATH: str = _get(
    "LETTERS_IMPORT_LOG_PATH", str(PROJECT_ROOT / "data" / "imports.log")
)
ASSET_CACHE_DB_PATH: str = _get(
    "LETTERS_ASSET_CACHE_DB_PATH", str(PROJECT_ROOT / "data" / "assets.db")
)

# --- List view ---
LETTERS_CACHE_TTL: float = float(_get("LETTERS_CACHE_TTL", "30"))
USERS_CACHE_TTL: float = float(_get("LETTERS_USERS_CACHE_TTL", "300"))
DEFAULT_PAGE_SIZE: int = int(_get("LETTERS_DEFAULT_PAGE_SIZE", "50"))

# --- Bulk import ---
DEFAULT_DEADLINE_WORKING_DAYS: int = int(_get("LETTERS_DEADLINE_WORKING_DAYS", "7"))
