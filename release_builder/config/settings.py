"""Typed runtime settings with dotenv support and startup validation."""

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from release_builder.domain import Platform

DEFAULT_DATABASE_URL = "sqlite:///./release_builder.db"


class SettingsLoadError(RuntimeError):
    """Raised when runtime settings cannot be loaded or validated."""


class AppSettings(BaseSettings):
    """Application settings for API runtime and build pipeline configuration.

    Environment variable names map directly to field names in uppercase.
    Example: `builder_root_dir` reads from `BUILDER_ROOT_DIR`.

    Attributes:
        environment_name: Runtime environment label.
        application_host: Host interface for web server binding.
        application_port: Web server port.
        database_url: SQLAlchemy URL for build run and log persistence.
        builder_root_dir: Root directory holding every build directory.
        archive_stagger_seconds: Delay multiplier between concurrent platform archives.
        primary_platform: Only platform receiving testing distribution exports.
        build_tool_executable: Build tool binary.
        git_executable: Git binary.
        artifact_upload_url: Optional testing distribution upload endpoint.
        artifact_upload_timeout_seconds: Upload request timeout.
        log_level: Root logging level name.
        api_default_limit: Default list endpoint limit.
        api_max_limit: Maximum allowed list endpoint limit.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    environment_name: str = Field(default="development")
    application_host: str = Field(default="127.0.0.1")
    application_port: int = Field(default=8000, ge=1, le=65535)
    database_url: str = Field(default=DEFAULT_DATABASE_URL)
    builder_root_dir: str = Field(default="~/xcode-builder", min_length=1)
    archive_stagger_seconds: float = Field(default=60 * 0.3, ge=0)
    primary_platform: Platform = Field(default=Platform.IOS)
    build_tool_executable: str = Field(default="xcodebuild", min_length=1)
    git_executable: str = Field(default="git", min_length=1)
    artifact_upload_url: str | None = Field(default=None)
    artifact_upload_timeout_seconds: float = Field(default=300.0, gt=0)
    log_level: str = Field(default="INFO")
    api_default_limit: int = Field(default=50, ge=1)
    api_max_limit: int = Field(default=200, ge=1)

    @field_validator("builder_root_dir", "build_tool_executable", "git_executable")
    @classmethod
    def _validate_non_empty_string(cls, value: str) -> str:
        stripped_value = value.strip()
        if not stripped_value:
            raise ValueError("value must not be blank")
        return stripped_value

    @field_validator("artifact_upload_url")
    @classmethod
    def _validate_optional_url(cls, value: str | None) -> str | None:
        if value is None:
            return None
        stripped_value = value.strip()
        return stripped_value or None

    @field_validator("log_level")
    @classmethod
    def _validate_log_level(cls, value: str) -> str:
        normalized_value = value.strip().upper()
        if normalized_value not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError("log_level must be one of DEBUG, INFO, WARNING, ERROR, CRITICAL")
        return normalized_value

    @field_validator("api_max_limit")
    @classmethod
    def _validate_limit_bounds(cls, value: int, info) -> int:
        default_limit = info.data.get("api_default_limit", 50)
        if value < default_limit:
            raise ValueError("api_max_limit must be greater than or equal to api_default_limit")
        return value


class DatabaseUrlSettings(BaseSettings):
    """Minimal settings model used by migration tooling.

    Attributes:
        database_url: SQLAlchemy URL for schema migrations.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    database_url: str = Field(default=DEFAULT_DATABASE_URL)


def config_load_settings() -> AppSettings:
    """Load and validate runtime settings from environment and dotenv.

    Returns:
        AppSettings: Validated runtime settings object.

    Raises:
        SettingsLoadError: Raised when settings are invalid.
    """

    try:
        return AppSettings()
    except ValidationError as error:
        raise SettingsLoadError(
            f"Startup configuration validation failed. Update .env or environment variables. Details: {error}"
        ) from error


def config_load_database_url() -> str:
    """Load and validate only the database URL setting.

    Returns:
        str: Non-empty database URL for migration and db tooling.

    Raises:
        SettingsLoadError: Raised when database URL cannot be loaded.
    """

    try:
        database_settings = DatabaseUrlSettings()
    except ValidationError as error:
        raise SettingsLoadError(
            f"Database URL configuration validation failed. Update .env or environment variables. Details: {error}"
        ) from error

    database_url = str(database_settings.database_url).strip()
    if not database_url:
        raise SettingsLoadError("Database URL configuration validation failed. DATABASE_URL must not be blank.")
    return database_url
