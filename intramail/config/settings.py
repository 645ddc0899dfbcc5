# =============================================================================
# intramail/config/settings.py
# Sync layer settings: TOML file, then INTRAMAIL_* environment variables
# =============================================================================
"""
Settings for the sync layer.

Expected TOML format (``intramail.toml`` or ``.streamlit/secrets.toml``):

    [intramail]
    api_url = "http://intranet.local/intramail/api/index.php"
    refresh_interval = 10
    mirror_path = "local_data/intramail.db"

Every key can be overridden with an environment variable named
``INTRAMAIL_<KEY>`` (e.g. ``INTRAMAIL_API_URL``). A ``.env`` file in the
working directory is loaded first.
"""

from __future__ import annotations
import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional, Tuple
import logging

import toml
from dotenv import load_dotenv

from intramail.errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_CREDENTIAL = "12345678"

DEFAULT_CONFIG_FILES = (
    Path("intramail.toml"),
    Path(".streamlit") / "secrets.toml",
)

ENV_PREFIX = "INTRAMAIL_"


@dataclass(frozen=True)
class SyncSettings:
    """Configuration for the connectivity probe, gateway, mirror and scheduler."""
    api_url: str = "http://localhost/intramail/api/index.php"

    # Timeouts (seconds)
    probe_timeout: float = 1.0
    read_timeout: float = 2.0
    write_timeout: float = 3.0
    upload_timeout: float = 60.0

    refresh_interval: float = 10.0

    mirror_path: Path = Path("local_data") / "intramail.db"
    preview_dir: Optional[Path] = None

    max_upload_bytes: int = 10 * 1024 * 1024
    allowed_upload_types: Tuple[str, ...] = (
        "application/pdf",
        "application/msword",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        "application/vnd.ms-excel",
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        "image/jpeg",
        "image/png",
        "image/jpg",
    )

    default_credential: str = DEFAULT_CREDENTIAL
    bcrypt_rounds: int = 12
    log_level: str = "INFO"

    def with_overrides(self, **overrides: Any) -> SyncSettings:
        """Return a copy with the given fields replaced (values are coerced)."""
        return replace(self, **_coerce(overrides))


_FIELD_TYPES = {f.name: f.type for f in fields(SyncSettings)}


def _coerce(values: Dict[str, Any]) -> Dict[str, Any]:
    """Convert raw TOML/env values to the types SyncSettings declares."""
    coerced = {}
    for key, value in values.items():
        if key not in _FIELD_TYPES:
            raise ConfigurationError(f"Unknown setting: {key}", config_key=key)

        expected = str(_FIELD_TYPES[key])
        try:
            if "float" in expected:
                value = float(value)
            elif expected == "int":
                value = int(value)
            elif "Path" in expected:
                value = Path(value) if value not in (None, "") else None
            elif "Tuple" in expected:
                if isinstance(value, str):
                    value = tuple(v.strip() for v in value.split(",") if v.strip())
                else:
                    value = tuple(value)
            else:
                value = str(value)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(
                f"Invalid value for {key}: {value!r}",
                config_key=key,
                expected_type=expected,
            ) from e

        coerced[key] = value

    if coerced.get("mirror_path", "unset") is None:
        raise ConfigurationError("mirror_path cannot be empty", config_key="mirror_path")
    for key in ("probe_timeout", "read_timeout", "write_timeout", "upload_timeout", "refresh_interval"):
        if key in coerced and coerced[key] <= 0:
            raise ConfigurationError(f"{key} must be positive", config_key=key)

    return coerced


def _read_toml(path: Path) -> Dict[str, Any]:
    """Read the [intramail] table of a TOML file."""
    try:
        data = toml.load(path)
    except (toml.TomlDecodeError, OSError) as e:
        raise ConfigurationError(f"Cannot read settings file {path}: {e}") from e
    return dict(data.get("intramail", {}))


def _read_env() -> Dict[str, Any]:
    """Collect INTRAMAIL_* environment variables that name a setting."""
    values = {}
    for name, value in os.environ.items():
        if not name.startswith(ENV_PREFIX):
            continue
        key = name[len(ENV_PREFIX):].lower()
        if key in _FIELD_TYPES:
            values[key] = value
    return values


def load_settings(path: Optional[Path] = None, use_env: bool = True) -> SyncSettings:
    """
    Build settings from defaults, a TOML file and the environment.

    Args:
        path: Explicit TOML file. When None, the first existing default file is used.
        use_env: Whether INTRAMAIL_* environment variables override file values

    Returns:
        SyncSettings
    """
    values: Dict[str, Any] = {}

    if path is not None:
        values.update(_read_toml(Path(path)))
    else:
        for candidate in DEFAULT_CONFIG_FILES:
            if candidate.exists():
                values.update(_read_toml(candidate))
                logger.debug(f"Loaded settings from {candidate}")
                break

    if use_env:
        load_dotenv()
        values.update(_read_env())

    settings = SyncSettings(**_coerce(values))
    logger.info(f"Settings loaded. API: {settings.api_url}")
    return settings
