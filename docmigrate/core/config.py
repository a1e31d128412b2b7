import time
from types import MappingProxyType
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ANY_ENVIRONMENT = "any"
DEFAULT_CHANGELOG_COLLECTION = "dbchangelog"
DEFAULT_LOCK_COLLECTION = "docmigratelock"


def default_installation_id() -> str:
    """Installation identifier derived from the current time in epoch milliseconds."""
    return str(int(time.time() * 1000))


class MigrationConfig(BaseModel):
    """
    Immutable configuration for a single migration runner instance.

    Built once before the first run. To change any option, build a new
    config and a new runner. Required values are checked by the runner
    itself so that a bad setup surfaces as a ConfigurationError.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    database: str = ""
    scan_packages: tuple[str, ...] = ()
    enabled: bool = True

    # Lock policy
    lock_wait_enabled: bool = False
    lock_wait_minutes: float = 5
    lock_poll_seconds: float = 10
    throw_if_lock_unavailable: bool = False

    # Collections
    changelog_collection: str = DEFAULT_CHANGELOG_COLLECTION
    lock_collection: str = DEFAULT_LOCK_COLLECTION

    environment: str = ANY_ENVIRONMENT
    change_params: Mapping[Any, Any] = Field(default_factory=dict, validate_default=True)
    installation_id: str = Field(default_factory=default_installation_id)

    @field_validator("change_params", mode="after")
    @classmethod
    def freeze_change_params(cls, value: Mapping[Any, Any]) -> Mapping[Any, Any]:
        """Store a read-only copy so the table cannot change under a live runner."""
        return MappingProxyType(dict(value))


class Settings(BaseSettings):
    """
    Configuration class for environment variables and runner settings.
    """

    # Service settings
    service_name: str = Field(default="docmigrate", description="Name bound to log records")

    # Logging settings
    log_level: str = Field(default="INFO", description="Minimum log level")
    json_logs: bool = Field(default=False, description="Serialize log records as JSON")

    # MongoDB settings
    mongodb: str = Field(default="mongodb://localhost:27017", description="MongoDB URI")
    mongodb_database: str = Field(default="", description="Target database name")

    # MongoDB connection pool settings
    mongo_max_pool_size: int = 10
    mongo_min_pool_size: int = 0
    mongo_connect_timeout_ms: int = 5000
    mongo_server_selection_timeout_ms: int = 5000
    mongo_socket_timeout_ms: int = 30000

    # Migration settings
    scan_packages: str = Field(
        default="", description="Comma separated packages holding change logs"
    )
    environment: str = Field(default=ANY_ENVIRONMENT, description="Active environment tag")
    enabled: bool = True
    lock_wait_enabled: bool = False
    lock_wait_minutes: float = 5
    lock_poll_seconds: float = 10
    throw_if_lock_unavailable: bool = False
    changelog_collection: str = DEFAULT_CHANGELOG_COLLECTION
    lock_collection: str = DEFAULT_LOCK_COLLECTION
    installation_id: str | None = None

    model_config = SettingsConfigDict(env_prefix="DOCMIGRATE_", env_file=".env", extra="ignore")

    @property
    def scan_package_list(self) -> list[str]:
        return [p.strip() for p in self.scan_packages.split(",") if p.strip()]

    @property
    def logging_config(self) -> dict:
        """
        Returns logging configuration for setup_logging.
        """
        return {
            "app_name": self.service_name,
            "log_level": self.log_level,
            "json_logs": self.json_logs,
        }

    def migration_config(self, **overrides: Any) -> MigrationConfig:
        """
        Build the immutable runner configuration from these settings.

        Args:
            **overrides: Values taking precedence over the environment
                (e.g. command line options, change_params).

        Returns:
            A frozen MigrationConfig.
        """
        values: dict[str, Any] = {
            "database": self.mongodb_database,
            "scan_packages": tuple(self.scan_package_list),
            "enabled": self.enabled,
            "lock_wait_enabled": self.lock_wait_enabled,
            "lock_wait_minutes": self.lock_wait_minutes,
            "lock_poll_seconds": self.lock_poll_seconds,
            "throw_if_lock_unavailable": self.throw_if_lock_unavailable,
            "changelog_collection": self.changelog_collection,
            "lock_collection": self.lock_collection,
            "environment": self.environment,
        }
        if self.installation_id:
            values["installation_id"] = self.installation_id
        values.update({k: v for k, v in overrides.items() if v is not None})
        return MigrationConfig(**values)


def get_settings() -> Settings:
    """Load settings from the environment and .env file."""
    return Settings()
