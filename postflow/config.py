"""
Centralized configuration loader for the postflow scheduling engine.

Loads settings from a YAML file and environment variables, providing
sensible defaults when the configuration file is absent.

Provides:
    - Settings: Engine settings loaded from YAML + env vars
    - get_settings(): Cached accessor for Settings
    - reset_settings(): Drop the cached instance (tests, config reloads)
    - validate_env(): Startup validation of required environment variables
"""

import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

import yaml
from dotenv import load_dotenv

from postflow.exceptions import ConfigurationError

# ---------------------------------------------------------------------------
# Load .env file (no-op if file does not exist)
# ---------------------------------------------------------------------------
load_dotenv()

# ---------------------------------------------------------------------------
# Project root directory (parent of postflow/)
# ---------------------------------------------------------------------------
PROJECT_ROOT = Path(__file__).resolve().parent.parent

logger = logging.getLogger(__name__)

VALID_BACKOFF_STRATEGIES = ("linear", "exponential")
VALID_STORE_BACKENDS = ("memory", "supabase")


def _optional_float(value: str) -> Optional[float]:
    if value.strip().lower() in ("", "none", "null"):
        return None
    return float(value)


# Environment variable -> (Settings attribute, cast)
ENV_OVERRIDES: Dict[str, Tuple[str, Callable[[str], Any]]] = {
    "POSTFLOW_CHECK_INTERVAL_SECONDS": ("check_interval_seconds", int),
    "POSTFLOW_PUBLISH_TIMEOUT_SECONDS": ("publish_timeout_seconds", float),
    "POSTFLOW_MAX_ATTEMPTS": ("max_attempts", int),
    "POSTFLOW_BACKOFF_STRATEGY": ("backoff_strategy", str),
    "POSTFLOW_BACKOFF_BASE_MINUTES": ("backoff_base_minutes", float),
    "POSTFLOW_BACKOFF_MAX_MINUTES": ("backoff_max_minutes", _optional_float),
    "POSTFLOW_MIN_SPACING_MINUTES": ("min_spacing_minutes", float),
    "POSTFLOW_STUCK_TIMEOUT_MINUTES": ("stuck_timeout_minutes", int),
    "POSTFLOW_RECOVERY_INTERVAL_CYCLES": ("recovery_interval_cycles", int),
    "POSTFLOW_LOG_LEVEL": ("log_level", str),
    "POSTFLOW_LOG_DIR": ("log_dir", str),
    "POSTFLOW_STORE_BACKEND": ("store_backend", str),
}


# ===========================================================================
# SETTINGS
# ===========================================================================


@dataclass
class Settings:
    """
    Engine settings.

    Loaded from ``config/settings.yaml`` when available, falling back to
    defaults. ``POSTFLOW_*`` environment variables override YAML values.
    """

    # Scheduler loop
    check_interval_seconds: int = 60
    publish_timeout_seconds: float = 30.0
    recovery_interval_cycles: int = 10
    stuck_timeout_minutes: int = 10

    # Retry policy
    max_attempts: int = 3
    backoff_strategy: str = "linear"
    backoff_base_minutes: float = 5.0
    backoff_max_minutes: Optional[float] = None

    # Conflict detection (0 = only identical timestamps collide)
    min_spacing_minutes: float = 0.0

    # Logging
    log_level: str = "INFO"
    log_dir: str = "logs"

    # Collaborators
    store_backend: str = "memory"
    publisher_endpoints: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        """
        Check value ranges.

        Raises:
            ConfigurationError: On any out-of-range or unknown value.
        """
        if self.check_interval_seconds <= 0:
            raise ConfigurationError(
                f"check_interval_seconds must be positive, got {self.check_interval_seconds}"
            )
        if self.publish_timeout_seconds <= 0:
            raise ConfigurationError(
                f"publish_timeout_seconds must be positive, got {self.publish_timeout_seconds}"
            )
        if self.max_attempts < 1:
            raise ConfigurationError(
                f"max_attempts must be at least 1, got {self.max_attempts}"
            )
        if self.backoff_strategy not in VALID_BACKOFF_STRATEGIES:
            raise ConfigurationError(
                f"Unknown backoff_strategy '{self.backoff_strategy}'. "
                f"Valid strategies: {list(VALID_BACKOFF_STRATEGIES)}"
            )
        if self.backoff_base_minutes <= 0:
            raise ConfigurationError(
                f"backoff_base_minutes must be positive, got {self.backoff_base_minutes}"
            )
        if self.backoff_max_minutes is not None and self.backoff_max_minutes < self.backoff_base_minutes:
            raise ConfigurationError(
                "backoff_max_minutes must not be smaller than backoff_base_minutes"
            )
        if self.min_spacing_minutes < 0:
            raise ConfigurationError(
                f"min_spacing_minutes cannot be negative, got {self.min_spacing_minutes}"
            )
        if self.store_backend not in VALID_STORE_BACKENDS:
            raise ConfigurationError(
                f"Unknown store_backend '{self.store_backend}'. "
                f"Valid backends: {list(VALID_STORE_BACKENDS)}"
            )

    @classmethod
    def from_yaml(cls, path: Optional[Path] = None) -> "Settings":
        """
        Load settings from a YAML file.

        If the file does not exist, returns an instance with all defaults
        (still subject to environment variable overrides).

        Args:
            path: Path to the YAML file. Defaults to
                ``<PROJECT_ROOT>/config/settings.yaml``.

        Returns:
            Populated Settings instance.

        Raises:
            ConfigurationError: If the YAML cannot be parsed or a value
                is invalid.
        """
        path = path or PROJECT_ROOT / "config" / "settings.yaml"

        data: Dict[str, Any] = {}
        if path.exists():
            try:
                with open(path, "r", encoding="utf-8") as fh:
                    data = yaml.safe_load(fh) or {}
            except yaml.YAMLError as exc:
                raise ConfigurationError(
                    f"Failed to parse settings YAML at {path}: {exc}"
                ) from exc

        if not isinstance(data, dict):
            raise ConfigurationError(
                f"Settings YAML at {path} must be a mapping, got {type(data).__name__}"
            )

        # Ignore unknown keys, but tell the operator about them
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            logger.warning("Ignoring unknown settings keys in %s: %s", path, unknown)
        kwargs: Dict[str, Any] = {k: v for k, v in data.items() if k in known}

        # -----------------------------------------------------------------
        # Environment variable overrides
        # -----------------------------------------------------------------
        for env_key, (attr_name, cast_fn) in ENV_OVERRIDES.items():
            env_val = os.environ.get(env_key)
            if env_val is None:
                continue
            try:
                kwargs[attr_name] = cast_fn(env_val)
            except (ValueError, TypeError) as exc:
                raise ConfigurationError(
                    f"Invalid value for env var {env_key}='{env_val}': {exc}"
                ) from exc

        # Per-platform endpoints: POSTFLOW_ENDPOINT_<PLATFORM>=https://...
        endpoints = dict(kwargs.get("publisher_endpoints") or {})
        for env_key, env_val in os.environ.items():
            if env_key.startswith("POSTFLOW_ENDPOINT_") and env_val:
                platform = env_key[len("POSTFLOW_ENDPOINT_"):].lower()
                endpoints[platform] = env_val
        kwargs["publisher_endpoints"] = endpoints

        try:
            return cls(**kwargs)
        except TypeError as exc:
            raise ConfigurationError(f"Invalid settings in {path}: {exc}") from exc


# ===========================================================================
# CACHED SETTINGS ACCESSOR
# ===========================================================================

_settings_instance: Optional[Settings] = None


def get_settings() -> Settings:
    """
    Get the cached Settings instance.

    On first call, loads from ``config/settings.yaml`` (or defaults).
    Subsequent calls return the cached instance.
    """
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = Settings.from_yaml()
    return _settings_instance


def reset_settings() -> None:
    """Reset the cached Settings instance."""
    global _settings_instance
    _settings_instance = None


# ===========================================================================
# ENVIRONMENT VARIABLE VALIDATION
# ===========================================================================

# Required when store_backend == "supabase"
SUPABASE_ENV_VARS: List[str] = [
    "SUPABASE_URL",
    "SUPABASE_SERVICE_KEY",
]

OPTIONAL_ENV_VARS: List[str] = [
    "POSTFLOW_PUBLISHER_TOKEN",
]


def validate_env(settings: Optional[Settings] = None, strict: bool = True) -> Dict[str, bool]:
    """
    Validate that the environment variables the configured backends need are set.

    Args:
        settings: Settings to validate against. Defaults to
            :func:`get_settings`.
        strict: If ``True``, raise ``ConfigurationError`` when any required
            variable is missing.

    Returns:
        Dict mapping variable name to presence status.

    Raises:
        ConfigurationError: If ``strict=True`` and required vars are missing.
    """
    settings = settings or get_settings()
    required = SUPABASE_ENV_VARS if settings.store_backend == "supabase" else []

    status: Dict[str, bool] = {}
    missing: List[str] = []
    for var in required:
        present = bool(os.environ.get(var))
        status[var] = present
        if not present:
            missing.append(var)

    for var in OPTIONAL_ENV_VARS:
        status[var] = bool(os.environ.get(var))

    if strict and missing:
        raise ConfigurationError(
            f"Missing required environment variables: {missing}. "
            f"Copy .env.example to .env and fill in the values."
        )

    return status


__all__ = [
    "Settings",
    "get_settings",
    "reset_settings",
    "validate_env",
    "SUPABASE_ENV_VARS",
    "OPTIONAL_ENV_VARS",
    "ENV_OVERRIDES",
    "PROJECT_ROOT",
]
