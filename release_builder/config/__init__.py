"""Configuration package for typed runtime settings."""

from .settings import (
	DEFAULT_DATABASE_URL,
	AppSettings,
	SettingsLoadError,
	config_load_database_url,
	config_load_settings,
)

__all__ = [
	"AppSettings",
	"DEFAULT_DATABASE_URL",
	"SettingsLoadError",
	"config_load_database_url",
	"config_load_settings",
]
