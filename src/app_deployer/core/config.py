"""Configuration management for the deployer."""

from typing import List, Optional

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from app_deployer.core.exceptions import ConfigurationError


class Settings(BaseSettings):
    """Deployer configuration settings.

    Every field can be set from the environment with the ``APP_DEPLOYER_``
    prefix (e.g. ``APP_DEPLOYER_DEPLOY_PATH``); CLI flags take precedence.
    """

    model_config = SettingsConfigDict(
        env_prefix="APP_DEPLOYER_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Target
    deploy_path: str = Field("/var/www/app", description="Live deployment directory")
    process_name: str = Field("node-app", description="Logical process name under pm2")
    port: int = Field(4000, description="Local port the service listens on")
    enable_rollback: bool = Field(False, description="Restore the last backup on failure")
    deploy_user: Optional[str] = Field(
        None,
        description="User that should own deployed files (chown skipped when unset)",
    )

    # Artifact layout
    entry_file: str = Field("server.js", description="Entry file expected at the release root")
    manifest_file: str = Field("package.json", description="Dependency manifest expected at the release root")
    staging_root: str = Field("/tmp", description="Where artifacts are extracted")
    staging_prefix: str = Field("app-deployer", description="Prefix of temp extraction directories")
    max_artifact_size_mb: int = Field(200, description="Maximum size of a downloaded artifact")

    # Dependencies
    ci_install_command: List[str] = Field(
        default_factory=lambda: ["npm", "ci", "--omit=dev"],
        description="Clean install used when a lockfile is present",
    )
    install_command: List[str] = Field(
        default_factory=lambda: ["npm", "install", "--omit=dev"],
        description="Install used when no lockfile is present",
    )
    lockfiles: List[str] = Field(
        default_factory=lambda: ["package-lock.json", "npm-shrinkwrap.json"],
    )
    dependency_dir: str = Field("node_modules", description="Installed dependency tree")
    install_timeout_seconds: int = Field(300, description="Dependency install timeout")

    # Process supervisor
    pm2_bin: str = Field("pm2", description="pm2 executable")
    settle_seconds: float = Field(3.0, description="Warm-up delay after start")
    required_commands: List[str] = Field(default_factory=lambda: ["npm", "pm2"])
    reload_proxy: bool = Field(False, description="Reload the reverse proxy after start")
    proxy_reload_command: List[str] = Field(
        default_factory=lambda: ["sudo", "systemctl", "reload", "nginx"],
    )

    # Health check
    health_path: str = Field("/api/health", description="Path polled on localhost")
    health_max_attempts: int = Field(30, description="Attempts before giving up")
    health_interval_seconds: float = Field(2.0, description="Delay between attempts")
    health_timeout_seconds: float = Field(5.0, description="Per-request timeout")

    # Backups
    backup_retention_days: int = Field(7, description="Backups older than this are swept")

    # Observability
    log_level: str = Field("INFO")
    log_format: str = Field("console")

    @field_validator("port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        if v < 1 or v > 65535:
            raise ValueError(f"port must be between 1 and 65535, got: {v}")
        return v

    @field_validator("health_max_attempts")
    @classmethod
    def validate_attempts(cls, v: int) -> int:
        if v < 1:
            raise ValueError("health_max_attempts must be at least 1")
        return v

    @field_validator(
        "health_interval_seconds",
        "health_timeout_seconds",
        "settle_seconds",
        "backup_retention_days",
    )
    @classmethod
    def validate_non_negative(cls, v):
        if v < 0:
            raise ValueError("value cannot be negative")
        return v

    @field_validator("health_path")
    @classmethod
    def validate_health_path(cls, v: str) -> str:
        if not v.startswith("/"):
            return "/" + v
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"log_level must be one of DEBUG, INFO, WARNING, ERROR, CRITICAL, got: {v}")
        return level

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        if v not in ("console", "json"):
            raise ValueError("log_format must be 'console' or 'json'")
        return v

    @property
    def max_artifact_size_bytes(self) -> int:
        return self.max_artifact_size_mb * 1024 * 1024

    @property
    def health_url(self) -> str:
        return f"http://localhost:{self.port}{self.health_path}"


def load_settings(**overrides) -> Settings:
    """Build settings from the environment, applying non-None overrides.

    Raises:
        ConfigurationError: If any value fails validation
    """
    overrides = {k: v for k, v in overrides.items() if v is not None}
    try:
        # init kwargs take precedence over environment values
        return Settings(**overrides)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e
