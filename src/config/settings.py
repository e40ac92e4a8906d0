"""Application settings with Pydantic Settings validation.

Secrets (OAuth client credentials, database password) are loaded from .env file.
Non-sensitive configuration is loaded from config/main.yaml and config/*.yaml files.
All configs are automatically merged and validated against JSON schemas.
Organization secrets are never inlined in YAML; entries name the environment
variables that hold them.
"""

import json
from pathlib import Path
from typing import Any, Final, Literal, cast

import yaml
from jsonschema import ValidationError as JSONSchemaValidationError
from jsonschema import validate
from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from src.config.logging_config import get_logger
from src.domain.models import OrganizationConfig
from src.domain.notification_constants import (
    DEFAULT_LOOKBACK_MINUTES,
    DEFAULT_NOTIFICATION_GAP_MINUTES,
    DEFAULT_NOTIFIER_USERNAME,
    DEFAULT_POLL_INTERVAL_SECONDS,
    TOKEN_REFRESH_MARGIN_SECONDS,
)

POSTGRES_MIN_CONNECTIONS_DEFAULT: Final[int] = 1
POSTGRES_MAX_CONNECTIONS_DEFAULT: Final[int] = 5
POSTGRES_STATEMENT_TIMEOUT_MS_DEFAULT: Final[int] = 10_000
POSTGRES_CONNECT_TIMEOUT_SECONDS_DEFAULT: Final[int] = 10
POSTGRES_APPLICATION_NAME_DEFAULT: Final[str] = "activity_notifier"

HUBSTAFF_API_BASE_URL_DEFAULT: Final[str] = "https://api.hubstaff.com/v2"
HUBSTAFF_TOKEN_URL_DEFAULT: Final[str] = "https://account.hubstaff.com/access_tokens"

logger = cast(Any, get_logger(__name__))


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Deep merge two dictionaries.

    Args:
        base: Base dictionary
        override: Dictionary to merge into base (takes precedence)

    Returns:
        Merged dictionary
    """
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def load_schema(schema_name: str) -> dict[str, Any]:
    """Load JSON Schema from config/schemas/.

    Args:
        schema_name: Schema name without extension (e.g., "main")

    Returns:
        JSON Schema dictionary or empty dict if not found
    """
    schema_path = Path("config/schemas") / f"{schema_name}.schema.json"
    if not schema_path.exists():
        return {}

    try:
        with open(schema_path, encoding="utf-8") as f:
            return cast(dict[str, Any], json.load(f))
    except (json.JSONDecodeError, OSError) as e:
        logger.warning(
            "config_schema_load_failed",
            schema=schema_name,
            error=str(e),
        )
        return {}


def validate_config_section(
    config: dict[str, Any], schema_name: str, file_path: str = ""
) -> None:
    """Validate config section against JSON Schema.

    Args:
        config: Configuration dictionary to validate
        schema_name: Name of schema to validate against
        file_path: Optional file path for error messages

    Raises:
        ValueError: If validation fails
    """
    schema = load_schema(schema_name)
    if not schema:
        # No schema available, skip validation
        return

    try:
        validate(instance=config, schema=schema)
        logger.debug("config_validation_succeeded", schema=schema_name)
    except JSONSchemaValidationError as e:
        error_msg = f"Config validation failed for {schema_name}"
        if file_path:
            error_msg += f" (file: {file_path})"
        error_msg += f": {e.message}"
        raise ValueError(error_msg) from e


def _load_yaml_file(path: Path, schema_name: str) -> dict[str, Any]:
    with open(path, encoding="utf-8") as f:
        loaded = yaml.safe_load(f) or {}
    if not isinstance(loaded, dict):
        raise ValueError(f"Config file {path} must contain a mapping")
    validate_config_section(loaded, schema_name, str(path))
    logger.debug("config_file_loaded", path=str(path), schema=schema_name)
    return loaded


def load_all_configs() -> dict[str, Any]:
    """Load and merge all YAML configs from config/ directory.

    Loading order (later overrides earlier):
    1. config/main.yaml (main config)
    2. All other config/*.yaml files (sorted alphabetically), e.g.
       config/organizations.yaml

    Each config is validated against its JSON Schema if available.

    Returns:
        Merged configuration dictionary

    Raises:
        ValueError: If a config file fails schema validation
    """
    merged_config: dict[str, Any] = {}

    main_path = Path("config/main.yaml")
    if main_path.exists():
        try:
            merged_config = _load_yaml_file(main_path, "main")
        except (yaml.YAMLError, OSError) as e:
            logger.warning(
                "config_file_load_failed",
                path=str(main_path),
                error=str(e),
            )

    config_dir = Path("config")
    yaml_files: list[Path] = []
    if config_dir.is_dir():
        yaml_files = sorted(
            [f for f in config_dir.glob("*.yaml") if f.name != "main.yaml"]
        )

        for yaml_file in yaml_files:
            try:
                file_config = _load_yaml_file(yaml_file, yaml_file.stem)
            except (yaml.YAMLError, OSError) as e:
                logger.warning(
                    "config_file_load_failed",
                    path=str(yaml_file),
                    error=str(e),
                )
                continue
            except ValueError as e:
                logger.error(
                    "config_validation_failed",
                    path=str(yaml_file),
                    schema=yaml_file.stem,
                    error=str(e),
                )
                raise
            merged_config = deep_merge(merged_config, file_config)

    file_count = (1 if main_path.exists() else 0) + len(yaml_files)
    logger.info("config_load_complete", file_count=file_count)
    return merged_config


class Settings(BaseSettings):
    """Application settings.

    Secrets are loaded from .env file.
    Non-sensitive config is loaded from config/*.yaml with fallback to defaults.
    """

    model_config = SettingsConfigDict(
        env_file=".env" if Path(".env").exists() else None,
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # === SECRETS (from .env) ===

    hubstaff_client_id: SecretStr | None = Field(
        default=None, description="Hubstaff OAuth application id (from .env)"
    )
    hubstaff_client_secret: SecretStr | None = Field(
        default=None, description="Hubstaff OAuth application secret (from .env)"
    )

    # PostgreSQL password (optional, only needed if using PostgreSQL)
    postgres_password: SecretStr | None = Field(
        default=None, description="PostgreSQL password (from .env, optional)"
    )

    # === NON-SENSITIVE CONFIG (from config/*.yaml or defaults) ===

    # Poller
    poll_interval_seconds: int = Field(
        default=DEFAULT_POLL_INTERVAL_SECONDS,
        ge=1,
        description="Seconds between scheduler ticks",
    )
    lookback_minutes: int = Field(
        default=DEFAULT_LOOKBACK_MINUTES,
        ge=1,
        description="Width of the overlapping activity window per tick",
    )

    # Notifications
    default_notification_gap_minutes: int = Field(
        default=DEFAULT_NOTIFICATION_GAP_MINUTES,
        ge=1,
        description="Gap used for organizations that do not set their own",
    )
    notifier_username: str = Field(
        default=DEFAULT_NOTIFIER_USERNAME,
        description="Bot display name of Slack notifications",
    )
    notifier_icon_url: str | None = Field(
        default=None, description="Optional bot avatar URL"
    )
    notifier_timeout_seconds: int = Field(
        default=10, ge=1, description="Slack webhook timeout"
    )

    # Hubstaff
    hubstaff_api_base_url: str = Field(
        default=HUBSTAFF_API_BASE_URL_DEFAULT, description="Hubstaff API v2 base URL"
    )
    hubstaff_token_url: str = Field(
        default=HUBSTAFF_TOKEN_URL_DEFAULT, description="Hubstaff OAuth token endpoint"
    )
    hubstaff_token_refresh_margin_seconds: int = Field(
        default=TOKEN_REFRESH_MARGIN_SECONDS,
        ge=0,
        description="Refresh access tokens expiring within this margin",
    )
    hubstaff_request_timeout_seconds: float = Field(
        default=30.0, gt=0, description="Hubstaff request timeout"
    )
    hubstaff_max_retries: int = Field(
        default=3, ge=1, description="Attempts on Hubstaff rate limits"
    )
    hubstaff_cache_ttl_seconds: float = Field(
        default=3600.0, gt=0, description="Lifetime of cached users and tasks"
    )
    hubstaff_cache_max_entries: int = Field(
        default=1000, ge=1, description="Upper bound of each Hubstaff lookup cache"
    )

    # Ticket backends
    ticket_request_timeout_seconds: float = Field(
        default=15.0, gt=0, description="GitLab and Freshdesk request timeout"
    )

    # Database configuration
    database_type: Literal["sqlite", "postgres"] = Field(
        default="sqlite", description="Database type: sqlite or postgres"
    )
    db_path: str = Field(
        default="data/activity_notifier.db", description="SQLite database path"
    )
    postgres_host: str = Field(default="localhost", description="PostgreSQL host")
    postgres_port: int = Field(default=5432, description="PostgreSQL port")
    postgres_database: str = Field(
        default="activity_notifier", description="PostgreSQL database name"
    )
    postgres_user: str = Field(default="postgres", description="PostgreSQL user")
    postgres_min_connections: int = Field(
        default=POSTGRES_MIN_CONNECTIONS_DEFAULT,
        description="Minimum number of connections in PostgreSQL pool",
    )
    postgres_max_connections: int = Field(
        default=POSTGRES_MAX_CONNECTIONS_DEFAULT,
        description="Maximum number of connections in PostgreSQL pool",
    )
    postgres_statement_timeout_ms: int = Field(
        default=POSTGRES_STATEMENT_TIMEOUT_MS_DEFAULT,
        description="PostgreSQL statement timeout in milliseconds",
    )
    postgres_connect_timeout_seconds: int = Field(
        default=POSTGRES_CONNECT_TIMEOUT_SECONDS_DEFAULT,
        description="PostgreSQL connection timeout in seconds",
    )
    postgres_application_name: str = Field(
        default=POSTGRES_APPLICATION_NAME_DEFAULT,
        description="Application name for PostgreSQL connections",
    )
    postgres_ssl_mode: str | None = Field(
        default=None,
        description="Optional SSL mode for PostgreSQL connections (e.g., require)",
    )

    # Observability
    log_level: str = Field(default="INFO", description="Logging level")

    # Organizations (bootstrapped into storage by sync_organizations)
    organizations: list[OrganizationConfig] = Field(
        default_factory=list,
        description="Organizations declared in config (loaded from YAML)",
    )

    def __init__(self, **data: Any):
        """Initialize settings with auto-loaded configs from all YAML files."""
        config = load_all_configs()

        super().__init__(**data)
        self._apply_yaml_defaults(config)

    def _apply_yaml_defaults(self, config: dict[str, Any]) -> None:
        """Apply YAML-sourced defaults without overriding env-provided values."""

        fields_from_env = set(self.model_fields_set)

        def _assign(field_name: str, value: Any) -> None:
            if value is None:
                return
            if field_name in fields_from_env:
                return

            object.__setattr__(self, field_name, value)
            self.model_fields_set.add(field_name)

        poller_config = config.get("poller") or {}
        _assign("poll_interval_seconds", poller_config.get("interval_seconds"))
        _assign("lookback_minutes", poller_config.get("lookback_minutes"))

        notifications_config = config.get("notifications") or {}
        _assign(
            "default_notification_gap_minutes",
            notifications_config.get("default_gap_minutes"),
        )
        _assign("notifier_username", notifications_config.get("username"))
        _assign("notifier_icon_url", notifications_config.get("icon_url"))
        _assign("notifier_timeout_seconds", notifications_config.get("timeout_seconds"))

        hubstaff_config = config.get("hubstaff") or {}
        _assign("hubstaff_api_base_url", hubstaff_config.get("api_base_url"))
        _assign("hubstaff_token_url", hubstaff_config.get("token_url"))
        _assign(
            "hubstaff_token_refresh_margin_seconds",
            hubstaff_config.get("token_refresh_margin_seconds"),
        )
        _assign(
            "hubstaff_request_timeout_seconds",
            hubstaff_config.get("request_timeout_seconds"),
        )
        _assign("hubstaff_max_retries", hubstaff_config.get("max_retries"))
        _assign("hubstaff_cache_ttl_seconds", hubstaff_config.get("cache_ttl_seconds"))
        _assign(
            "hubstaff_cache_max_entries", hubstaff_config.get("cache_max_entries")
        )

        tickets_config = config.get("tickets") or {}
        _assign(
            "ticket_request_timeout_seconds",
            tickets_config.get("request_timeout_seconds"),
        )

        database_config = config.get("database") or {}
        _assign("database_type", database_config.get("type"))
        _assign("db_path", database_config.get("path"))

        postgres_config = database_config.get("postgres") or {}
        _assign("postgres_host", postgres_config.get("host"))
        _assign("postgres_port", postgres_config.get("port"))
        _assign("postgres_database", postgres_config.get("database"))
        _assign("postgres_user", postgres_config.get("user"))
        _assign("postgres_min_connections", postgres_config.get("min_connections"))
        _assign("postgres_max_connections", postgres_config.get("max_connections"))
        _assign(
            "postgres_statement_timeout_ms",
            postgres_config.get("statement_timeout_ms"),
        )
        _assign("postgres_ssl_mode", postgres_config.get("ssl_mode"))

        logging_config = config.get("logging") or {}
        _assign("log_level", logging_config.get("level"))

        organizations_config = config.get("organizations")
        if isinstance(organizations_config, list):
            default_gap = (
                notifications_config.get("default_gap_minutes")
                or self.default_notification_gap_minutes
            )
            organizations = [
                OrganizationConfig(
                    **{"notification_gap_minutes": default_gap, **entry}
                )
                for entry in organizations_config
            ]
            _assign("organizations", organizations)

    def get_organization_config(self, org_id: str) -> OrganizationConfig | None:
        """Get configuration for a specific organization.

        Args:
            org_id: Internal organization identifier

        Returns:
            Organization config or None if not declared
        """
        for config in self.organizations:
            if config.org_id == org_id:
                return config
        return None


# Global settings instance
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get or create global settings instance.

    Returns:
        Settings instance
    """
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
