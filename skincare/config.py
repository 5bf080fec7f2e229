"""
Configuration management with environment variable support and validation.

Design principles:
- Environment-specific configs (dev, staging, prod)
- Validation at startup (fail fast)
- Type safety with Pydantic
- Remote credentials come from the environment, never from code
"""

import os
from functools import lru_cache
from typing import Literal, cast
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator, model_validator

# Load environment variables from .env file
load_dotenv()

DEFAULT_STORAGE_KEY = "skin-care-tracker/evaluations"


class RemoteMirrorConfig(BaseModel):
    """Remote document database (Firestore) settings."""

    enabled: bool = Field(default=False, description="Mirror entries to the remote database")
    project_id: str | None = Field(default=None, description="Firebase project identifier")
    api_key: str | None = Field(default=None, description="Firebase web API key")
    collection: str = Field(default="records", min_length=1, description="Document collection")

    endpoint: str = Field(
        default="https://firestore.googleapis.com/v1", description="Firestore REST base URL"
    )
    auth_endpoint: str = Field(
        default="https://identitytoolkit.googleapis.com/v1",
        description="Identity Toolkit base URL used for anonymous sign-in",
    )
    timeout_seconds: float = Field(
        default=10.0, gt=0.0, description="Transport timeout for a single request"
    )

    @field_validator("endpoint", "auth_endpoint")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @model_validator(mode="after")
    def credentials_when_enabled(self) -> "RemoteMirrorConfig":
        """The mirror cannot start without a project and an API key."""
        if self.enabled:
            if not self.project_id:
                raise ValueError("FIREBASE_PROJECT_ID must be set when the remote mirror is enabled")
            if not self.api_key:
                raise ValueError("FIREBASE_API_KEY must be set when the remote mirror is enabled")
        return self


class StorageConfig(BaseModel):
    """Local durable key-value storage."""

    path: str = Field(default="./skin_care_tracker.json", description="Storage file path")
    key: str = Field(default=DEFAULT_STORAGE_KEY, min_length=1, description="Collection key")
    watch_interval_seconds: float = Field(
        default=2.0, gt=0.0, description="Polling interval for changes made by other sessions"
    )


class TrackerConfig(BaseModel):
    """Behaviour of the entry store and dashboard."""

    timezone: str = Field(default="Asia/Tokyo", description="Zone used to derive month keys")
    notification_ttl_seconds: float = Field(
        default=2.5, gt=0.0, description="How long a notification stays active"
    )
    recent_entries_limit: int = Field(default=5, gt=0, description="Entries in the recent list")

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown time zone: {v}") from e
        return v

    @property
    def zone(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )
    format: Literal["json", "console"] = Field(default="json", description="Logging format")


class AppConfig(BaseModel):
    """Main application configuration combining all subsystems."""

    # Environment
    environment: Literal["development", "staging", "production"] = Field(
        default="development", description="Environment"
    )
    debug: bool = Field(default=False, description="Enable debug mode")

    # Component configs
    remote: RemoteMirrorConfig = Field(default_factory=RemoteMirrorConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    tracker: TrackerConfig = Field(default_factory=TrackerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @model_validator(mode="after")
    def debug_only_in_dev(self) -> "AppConfig":
        """Ensure debug mode is only allowed in development environment."""
        if self.debug and self.environment != "development":
            raise ValueError("debug mode is only allowed in development environment")
        return self


def _parse_bool(val: str | None, default: bool) -> bool:
    if val is None:
        return default
    return val.strip().lower() in {"1", "true", "yes", "on"}


def load_config_from_env() -> AppConfig:
    """Load configuration from environment variables with validation."""

    def _env_to_literal(val: str) -> Literal["development", "staging", "production"]:
        v = val.strip().lower()
        if v in {"dev", "development"}:
            return "development"
        if v in {"stage", "staging"}:
            return "staging"
        return "production"

    def _level_to_literal(val: str) -> Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]:
        v = val.strip().upper()
        return cast(
            Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
            v if v in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"} else "INFO",
        )

    # Detect environment
    environment = _env_to_literal(os.getenv("ENVIRONMENT", "development"))
    debug = environment == "development"

    # Remote mirror is on by default only when a project is configured
    project_id = os.getenv("FIREBASE_PROJECT_ID") or None
    remote_config = RemoteMirrorConfig(
        enabled=_parse_bool(os.getenv("REMOTE_MIRROR_ENABLED"), project_id is not None),
        project_id=project_id,
        api_key=os.getenv("FIREBASE_API_KEY") or None,
        collection=os.getenv("FIRESTORE_COLLECTION", "records"),
        endpoint=os.getenv("FIRESTORE_ENDPOINT", "https://firestore.googleapis.com/v1"),
        auth_endpoint=os.getenv(
            "FIREBASE_AUTH_ENDPOINT", "https://identitytoolkit.googleapis.com/v1"
        ),
        timeout_seconds=float(os.getenv("REMOTE_TIMEOUT_SECONDS", "10.0")),
    )

    storage_config = StorageConfig(
        path=os.getenv("STORAGE_PATH", "./skin_care_tracker.json"),
        key=os.getenv("STORAGE_KEY", DEFAULT_STORAGE_KEY),
        watch_interval_seconds=float(os.getenv("STORAGE_WATCH_INTERVAL_SECONDS", "2.0")),
    )

    tracker_config = TrackerConfig(
        timezone=os.getenv("TRACKER_TIMEZONE", "Asia/Tokyo"),
        notification_ttl_seconds=float(os.getenv("NOTIFICATION_TTL_SECONDS", "2.5")),
        recent_entries_limit=int(os.getenv("RECENT_ENTRIES_LIMIT", "5")),
    )

    logging_config = LoggingConfig(
        level=_level_to_literal(os.getenv("LOG_LEVEL", "INFO")),
        format="console" if debug else "json",
    )

    return AppConfig(
        environment=environment,
        debug=debug,
        remote=remote_config,
        storage=storage_config,
        tracker=tracker_config,
        logging=logging_config,
    )


@lru_cache
def get_config() -> AppConfig:
    """Get cached application configuration."""
    return load_config_from_env()


def reset_config_cache() -> None:
    """Drop the cached configuration so the next call re-reads the environment."""
    get_config.cache_clear()


def validate_config() -> None:
    """Validate configuration at startup."""
    try:
        config = get_config()
        print(f"✅ Configuration loaded for {config.environment} environment")

        if config.remote.enabled:
            print(f"✅ Remote mirror configured for project {config.remote.project_id}")
        else:
            print("ℹ️  Remote mirror disabled, entries are stored locally only")

    except Exception as e:
        print(f"❌ Configuration validation failed: {e}")
        raise


def print_config_summary() -> None:
    """Print configuration summary for debugging."""
    config = get_config()

    print("\n🔧 CONFIGURATION SUMMARY")
    print(f"Environment: {config.environment}")
    print(f"Debug Mode: {config.debug}")
    print(f"Log Level: {config.logging.level}")

    print("\n💾 STORAGE")
    print(f"Path: {config.storage.path}")
    print(f"Key: {config.storage.key}")
    print(f"Watch Interval: {config.storage.watch_interval_seconds}s")

    print("\n☁️  REMOTE MIRROR")
    print(f"Enabled: {config.remote.enabled}")
    if config.remote.enabled:
        print(f"Project: {config.remote.project_id}")
        print(f"Collection: {config.remote.collection}")

    print("\n📅 TRACKER")
    print(f"Time Zone: {config.tracker.timezone}")
    print(f"Notification TTL: {config.tracker.notification_ttl_seconds}s")


if __name__ == "__main__":
    # Test configuration loading
    validate_config()
    print_config_summary()
