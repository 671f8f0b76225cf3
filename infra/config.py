"""
Export Configuration
--------------------
Settings for one export run.

Sources (lowest to highest priority):
1. Defaults below
2. YAML config file (optional, `config.yaml`)
3. Environment variables, including a `.env` file if present

Rules:
- Secrets come from the environment only, never from the YAML file
- OAUTH_ACCESS_TOKEN selects static mode, otherwise refresh materials are required
"""

from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional
import logging
import os

import yaml
from dotenv import load_dotenv

from api.credentials import Credential, CredentialMode


logger = logging.getLogger("ghl_export.infra.config")

ENV_PREFIX = "GHL_EXPORT_"

# Environment names used by the existing export scripts
SECRET_ENV_VARS: Dict[str, str] = {
    "access_token": "OAUTH_ACCESS_TOKEN",
    "client_id": "OAUTH_CLIENT_ID",
    "client_secret": "OAUTH_CLIENT_SECRET",
    "refresh_token": "OAUTH_REFRESH_TOKEN",
}
LOCATION_ENV_VAR = "LOCATION_ID"


class ConfigError(Exception):
    """Raised when required settings are missing or malformed."""

    def __init__(self, problems: List[str]):
        self.problems = problems
        super().__init__("; ".join(problems))


@dataclass
class ExportSettings:
    """Everything the exporter needs to run."""
    location_id: str = ""

    # Credentials (environment only)
    access_token: Optional[str] = field(default=None, repr=False)
    client_id: Optional[str] = None
    client_secret: Optional[str] = field(default=None, repr=False)
    refresh_token: Optional[str] = field(default=None, repr=False)

    # Endpoints
    api_base_url: str = "https://services.leadconnectorhq.com"
    oauth_base_url: str = "https://services.leadconnectorhq.com"
    api_version: str = "2021-07-28"
    auth_scheme: str = "Bearer"
    token_request_format: str = "form"

    # Token lifecycle
    safety_buffer_seconds: float = 60.0
    min_ttl_seconds: float = 300.0

    # Retry and transport
    max_retry_attempts: int = 5
    backoff_base_seconds: float = 1.0
    backoff_cap_seconds: float = 30.0
    request_timeout_seconds: float = 30.0
    max_pages: int = 1000

    # Output
    output_dir: str = "exports"

    @property
    def credential_mode(self) -> CredentialMode:
        return CredentialMode.STATIC if self.access_token else CredentialMode.REFRESHABLE

    @property
    def token_url(self) -> str:
        return f"{self.oauth_base_url.rstrip('/')}/oauth/token"

    def build_credential(self) -> Credential:
        if self.credential_mode == CredentialMode.STATIC:
            return Credential.static(self.access_token)
        return Credential.refreshable(self.client_id, self.client_secret, self.refresh_token)

    def validate(self) -> None:
        """Raise ConfigError listing every problem found."""
        problems = []
        if not self.location_id:
            problems.append(f"{LOCATION_ENV_VAR} is required")

        if self.credential_mode == CredentialMode.REFRESHABLE:
            missing = [
                SECRET_ENV_VARS[name]
                for name in ("client_id", "client_secret", "refresh_token")
                if not getattr(self, name)
            ]
            if missing:
                problems.append(
                    f"Set {SECRET_ENV_VARS['access_token']} or all of: {', '.join(missing)}"
                )

        if self.token_request_format not in ("form", "json"):
            problems.append("token_request_format must be 'form' or 'json'")
        if self.max_retry_attempts < 0:
            problems.append("max_retry_attempts must not be negative")
        if self.backoff_cap_seconds < self.backoff_base_seconds:
            problems.append("backoff_cap_seconds must be >= backoff_base_seconds")
        if self.request_timeout_seconds <= 0:
            problems.append("request_timeout_seconds must be positive")
        if self.max_pages < 1:
            problems.append("max_pages must be at least 1")

        if problems:
            raise ConfigError(problems)


_SETTING_NAMES = {f.name for f in fields(ExportSettings)}
_NON_FILE_SETTINGS = set(SECRET_ENV_VARS)
_CONVERTERS = {
    "safety_buffer_seconds": float,
    "min_ttl_seconds": float,
    "max_retry_attempts": int,
    "backoff_base_seconds": float,
    "backoff_cap_seconds": float,
    "request_timeout_seconds": float,
    "max_pages": int,
}


def _coerce(name: str, value: Any) -> Any:
    converter = _CONVERTERS.get(name)
    if converter is None or value is None:
        return value
    try:
        return converter(value)
    except (TypeError, ValueError):
        raise ConfigError([f"{name} must be a number, got {value!r}"])


def load_file_config(path: Path) -> Dict[str, Any]:
    """Read settings from a YAML file, ignoring secrets and unknown keys."""
    if not path.exists():
        logger.debug(f"Config file not found: {path}")
        return {}

    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}

    if not isinstance(raw, dict):
        raise ConfigError([f"{path} must contain a mapping"])

    values = {}
    for key, value in raw.items():
        if key in _NON_FILE_SETTINGS:
            logger.warning(f"Ignoring secret '{key}' in {path}; use the environment")
        elif key in _SETTING_NAMES:
            values[key] = value
        else:
            logger.warning(f"Unknown setting '{key}' in {path}")

    logger.info(f"Loaded config from {path}")
    return values


def load_env_config(environ: Mapping[str, str]) -> Dict[str, Any]:
    """Collect settings from environment variables."""
    values: Dict[str, Any] = {}

    for name in _SETTING_NAMES:
        env_value = environ.get(f"{ENV_PREFIX}{name.upper()}")
        if env_value is not None:
            values[name] = env_value

    if environ.get(LOCATION_ENV_VAR):
        values["location_id"] = environ[LOCATION_ENV_VAR]

    for name, env_var in SECRET_ENV_VARS.items():
        if environ.get(env_var):
            values[name] = environ[env_var]

    return values


def load_settings(
    config_path: Optional[str] = "config.yaml",
    env_file: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None,
    **overrides: Any,
) -> ExportSettings:
    """
    Build validated settings from defaults, file, environment and overrides.

    `environ` defaults to os.environ after loading the `.env` file; pass a
    mapping to bypass the process environment entirely.
    """
    if environ is None:
        env_path = Path(env_file) if env_file else Path.cwd() / ".env"
        if env_path.exists():
            load_dotenv(env_path)
            logger.info(f"Loaded environment from {env_path}")
        environ = os.environ

    values: Dict[str, Any] = {}
    if config_path:
        values.update(load_file_config(Path(config_path)))
    values.update(load_env_config(environ))
    values.update({k: v for k, v in overrides.items() if v is not None})

    settings = ExportSettings(**{k: _coerce(k, v) for k, v in values.items()})
    settings.validate()
    return settings
