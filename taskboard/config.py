"""Configuration loading for the taskboard service."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

DATASTORE_BACKENDS = {"memory", "supabase"}
DEFAULT_ANTHROPIC_MODEL = "claude-sonnet-4-20250514"


class ConfigError(RuntimeError):
    """Raised when required configuration is missing or invalid."""


@dataclass(frozen=True)
class AppConfig:
    datastore_backend: str = "memory"
    supabase_url: str | None = None
    supabase_key: str | None = None
    require_user_header: bool = True
    service_token: str | None = None
    multi_tenancy: bool = True
    state_path: Path | None = None
    log_level: str = "INFO"
    log_file: Path | None = None
    anthropic_api_key: str | None = None
    anthropic_model: str = DEFAULT_ANTHROPIC_MODEL


def _read_dotenv_value(dotenv_path: Path, key: str) -> str | None:
    """Read a single key from a .env file without mutating the environment."""
    if not dotenv_path.is_file():
        return None
    try:
        content = dotenv_path.read_text(encoding="utf-8")
    except OSError:
        return None

    for line in content.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        if stripped.startswith("export "):
            stripped = stripped[len("export ") :].strip()
        if "=" not in stripped:
            continue
        name, value = stripped.split("=", 1)
        name = name.strip()
        if name != key:
            continue
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in {"'", '"'}:
            value = value[1:-1]
        return value or None
    return None


def _read_bool(raw_value: str | None, *, default: bool, key: str) -> bool:
    if raw_value is None:
        return default
    normalized = raw_value.strip().lower()
    if not normalized:
        return default
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ConfigError(f"{key} must be a boolean value.")


def _read_setting(dotenv_path: Path, key: str) -> str | None:
    raw = os.environ.get(key)
    if raw is None:
        raw = _read_dotenv_value(dotenv_path, key)
    if raw is None:
        return None
    raw = raw.strip()
    return raw or None


def load_config() -> AppConfig:
    """Load configuration from the environment, falling back to ./.env."""
    dotenv_path = Path.cwd() / ".env"

    backend_key = "TASKBOARD_DATASTORE"
    backend = (_read_setting(dotenv_path, backend_key) or "memory").lower()
    if backend not in DATASTORE_BACKENDS:
        raise ConfigError(
            f"{backend_key} must be one of: {', '.join(sorted(DATASTORE_BACKENDS))}."
        )

    supabase_url = _read_setting(dotenv_path, "TASKBOARD_SUPABASE_URL")
    supabase_key = _read_setting(dotenv_path, "TASKBOARD_SUPABASE_KEY")
    if backend == "supabase" and not (supabase_url and supabase_key):
        raise ConfigError(
            "TASKBOARD_SUPABASE_URL and TASKBOARD_SUPABASE_KEY are required "
            "when TASKBOARD_DATASTORE=supabase."
        )

    require_user_key = "TASKBOARD_REQUIRE_USER_HEADER"
    require_user_header = _read_bool(
        _read_setting(dotenv_path, require_user_key),
        default=True,
        key=require_user_key,
    )

    multi_tenancy_key = "TASKBOARD_MULTI_TENANCY"
    multi_tenancy = _read_bool(
        _read_setting(dotenv_path, multi_tenancy_key),
        default=True,
        key=multi_tenancy_key,
    )

    state_raw = _read_setting(dotenv_path, "TASKBOARD_STATE_PATH")
    state_path = Path(state_raw).resolve() if state_raw else None

    log_level = (_read_setting(dotenv_path, "TASKBOARD_LOG_LEVEL") or "INFO").upper()
    log_file_raw = _read_setting(dotenv_path, "TASKBOARD_LOG_FILE")

    return AppConfig(
        datastore_backend=backend,
        supabase_url=supabase_url.rstrip("/") if supabase_url else None,
        supabase_key=supabase_key,
        require_user_header=require_user_header,
        service_token=_read_setting(dotenv_path, "TASKBOARD_SERVICE_TOKEN"),
        multi_tenancy=multi_tenancy,
        state_path=state_path,
        log_level=log_level,
        log_file=Path(log_file_raw) if log_file_raw else None,
        anthropic_api_key=_read_setting(dotenv_path, "TASKBOARD_ANTHROPIC_API_KEY"),
        anthropic_model=(
            _read_setting(dotenv_path, "TASKBOARD_ANTHROPIC_MODEL")
            or DEFAULT_ANTHROPIC_MODEL
        ),
    )
