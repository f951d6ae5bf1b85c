"""YAML configuration loader with env var resolution and Pydantic validation.

Loads config from (priority order):
1. --config <path> CLI flag
2. ./cargopulse.yaml (working directory)
3. ~/.cargopulse/config.yaml (user home)

Environment variables override YAML: CARGOPULSE_<SECTION>_<KEY>.
${VAR} references in YAML values resolve from environment at load time.

The server itself is configured by plain environment variables; this
file configures the field client and the ``serve`` command.
"""

import logging
import os
import re
from pathlib import Path
from typing import Any

import keyring
import keyring.errors
import yaml
from pydantic import BaseModel, field_validator

logger = logging.getLogger(__name__)

_ENV_VAR_PATTERN = re.compile(r"\$\{([^}]+)\}")

KEYRING_SERVICE = "com.cargopulse.app"
API_KEY_CREDENTIAL = "CARGOPULSE_API_KEY"


def resolve_env_vars(value: str) -> str:
    """Resolve ${VAR} references in a string from environment variables.

    Args:
        value: String potentially containing ${VAR} references.

    Returns:
        String with all ${VAR} references replaced by their env values.
        Missing env vars resolve to empty string.
    """
    def _replace(match: re.Match) -> str:
        return os.environ.get(match.group(1), "")

    return _ENV_VAR_PATTERN.sub(_replace, value)


def _resolve_env_vars_recursive(data: Any) -> Any:
    if isinstance(data, str):
        return resolve_env_vars(data)
    elif isinstance(data, dict):
        return {k: _resolve_env_vars_recursive(v) for k, v in data.items()}
    elif isinstance(data, list):
        return [_resolve_env_vars_recursive(item) for item in data]
    return data


class ServerConfig(BaseModel):
    """Where the field client sends intakes."""

    url: str = "http://127.0.0.1:8000"
    api_key: str = ""
    timeout_seconds: float = 30.0

    @field_validator("url")
    @classmethod
    def _strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")


class DeviceConfig(BaseModel):
    """Identity of this field device and where its outbox lives."""

    user_id: str = ""
    outbox_path: str | None = None


class SyncConfig(BaseModel):
    """Sync engine timing."""

    auto_sync_delay_seconds: float = 0.4
    reload_debounce_seconds: float = 0.25
    poll_interval_seconds: float = 5.0


class DaemonConfig(BaseModel):
    """Configuration for ``cargopulse serve``."""

    host: str = "127.0.0.1"
    port: int = 8000
    workers: int = 1
    log_level: str = "info"


class CargoPulseConfig(BaseModel):
    """Top-level configuration for the CargoPulse CLI."""

    server: ServerConfig = ServerConfig()
    device: DeviceConfig = DeviceConfig()
    sync: SyncConfig = SyncConfig()
    daemon: DaemonConfig = DaemonConfig()


CONFIG_SEARCH_PATHS = (
    "./cargopulse.yaml",
    "./cargopulse.yml",
    "~/.cargopulse/config.yaml",
    "~/.cargopulse/config.yml",
)


def _find_config_file() -> Path | None:
    """Search for config file in standard locations.

    Returns:
        Path to config file if found, None otherwise.
    """
    for candidate in CONFIG_SEARCH_PATHS:
        path = Path(candidate).expanduser()
        if path.exists():
            return path
    return None


def _apply_env_overrides(data: dict[str, Any]) -> dict[str, Any]:
    """Apply CARGOPULSE_<SECTION>_<KEY> env var overrides to config data.

    For example, ``CARGOPULSE_SERVER_URL`` maps to section ``server``,
    field ``url``. Only fields the section declares are taken, so
    unrelated variables such as ``CARGOPULSE_API_KEY`` or
    ``CARGOPULSE_HOME`` are ignored.

    Args:
        data: Parsed YAML config dict.

    Returns:
        Config dict with env var overrides applied.
    """
    prefix = "CARGOPULSE_"
    sections = CargoPulseConfig.model_fields
    for key, value in os.environ.items():
        if not key.startswith(prefix):
            continue
        suffix = key[len(prefix):].lower()  # e.g. "server_url"
        for section, section_field in sections.items():
            section_prefix = section + "_"
            if not suffix.startswith(section_prefix):
                continue
            field_name = suffix[len(section_prefix):]
            if field_name not in section_field.annotation.model_fields:
                continue
            if not isinstance(data.get(section), dict):
                data[section] = {}
            # Pydantic coerces the string to the field's type
            data[section][field_name] = value
            break
    return data


def load_config(config_path: str | None = None) -> CargoPulseConfig | None:
    """Load CargoPulse configuration from YAML file with env var resolution.

    Args:
        config_path: Explicit path to config file. If None, searches
            standard locations (cwd, then ~/.cargopulse/).

    Returns:
        Parsed and validated CargoPulseConfig, or None if no config found.

    Raises:
        FileNotFoundError: If config_path is given but does not exist.
    """
    if config_path:
        path = Path(config_path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")
    else:
        path = _find_config_file()
        if path is None:
            return None

    logger.info("Loading config from %s", path)

    with open(path) as f:
        raw_data = yaml.safe_load(f) or {}

    data = _resolve_env_vars_recursive(raw_data)
    data = _apply_env_overrides(data)
    return CargoPulseConfig(**data)


def load_config_or_default(config_path: str | None = None) -> CargoPulseConfig:
    """Load config, falling back to defaults (plus env overrides) if none exists."""
    cfg = load_config(config_path=config_path)
    if cfg is not None:
        return cfg
    return CargoPulseConfig(**_apply_env_overrides({}))


def read_keyring_api_key() -> str:
    """Return the API key stored in the OS keychain, or "" if unavailable."""
    try:
        return keyring.get_password(KEYRING_SERVICE, API_KEY_CREDENTIAL) or ""
    except keyring.errors.KeyringError:
        logger.warning("Keyring read failed for %s", API_KEY_CREDENTIAL, exc_info=True)
        return ""


def store_api_key(value: str) -> None:
    """Store the server API key in the OS keychain."""
    keyring.set_password(KEYRING_SERVICE, API_KEY_CREDENTIAL, value)
    logger.info("Stored credential: %s", API_KEY_CREDENTIAL)


def clear_api_key() -> bool:
    """Remove the stored API key. Returns False if none was stored."""
    try:
        keyring.delete_password(KEYRING_SERVICE, API_KEY_CREDENTIAL)
    except keyring.errors.PasswordDeleteError:
        return False
    logger.info("Deleted credential: %s", API_KEY_CREDENTIAL)
    return True


def resolve_api_key(cfg: CargoPulseConfig) -> str:
    """Return the API key from config, CARGOPULSE_API_KEY, or the OS keychain."""
    if cfg.server.api_key:
        return cfg.server.api_key
    env_key = os.environ.get(API_KEY_CREDENTIAL, "").strip()
    if env_key:
        return env_key
    return read_keyring_api_key()
