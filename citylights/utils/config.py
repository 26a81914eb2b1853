"""
Configuration management with schema validation.
Single source of truth for City Lights client configuration.
"""

import os
from pathlib import Path
from typing import Any, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError as PydanticValidationError, model_validator

from .exceptions import ConfigError
from .logger import get_logger

logger = get_logger(__name__)

# Load environment variables
load_dotenv()

CONFIG_DIR = Path(os.getenv("CITYLIGHTS_CONFIG_DIR", "config"))
SETTINGS_FILE = CONFIG_DIR / "settings.yaml"


class AppSettings(BaseModel):
    name: str = "City Lights"
    version: str = "1.0.0"
    environment: str = "development"


class ApiSettings(BaseModel):
    base_url: str = "http://localhost:4000/api"
    timeout_seconds: float = 30.0
    user_agent: str = "citylights-client/1.0"


class TwoFactorSettings(BaseModel):
    poll_interval_seconds: float = 2.0
    poll_timeout_seconds: float = 120.0
    resend_cooldown_seconds: int = 60
    # None keeps polling through errors until the deadline
    max_consecutive_errors: Optional[int] = None

    @model_validator(mode="after")
    def check_poll_window(self) -> "TwoFactorSettings":
        if self.poll_interval_seconds <= 0 or self.poll_timeout_seconds <= 0:
            raise ValueError("poll interval and timeout must be positive")
        if self.poll_interval_seconds >= self.poll_timeout_seconds:
            raise ValueError("poll_interval_seconds must be smaller than poll_timeout_seconds")
        return self


class StorageSettings(BaseModel):
    session_file: str = "data/session.json"


class LoggingSettings(BaseModel):
    level: str = "INFO"
    format: str = "console"
    file_path: Optional[str] = None
    max_bytes: int = 10485760
    backup_count: int = 5


class Settings(BaseModel):
    app: AppSettings = Field(default_factory=AppSettings)
    api: ApiSettings = Field(default_factory=ApiSettings)
    two_factor: TwoFactorSettings = Field(default_factory=TwoFactorSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


class ConfigManager:
    """Singleton configuration manager"""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super(ConfigManager, cls).__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        if self._initialized:
            return

        self.settings_path = SETTINGS_FILE
        self._settings: Optional[Settings] = None

        self._initialized = True

    def _substitute_env_vars(self, value: Any) -> Any:
        """Recursively substitute environment variables"""
        if isinstance(value, str):
            if value.startswith("${") and value.endswith("}"):
                var_expr = value[2:-1]
                if ":" in var_expr:
                    var_name, default = var_expr.split(":", 1)
                    return os.getenv(var_name.strip(), default.strip())
                else:
                    env_value = os.getenv(var_expr)
                    if env_value is None:
                        raise ConfigError(f"Environment variable {var_expr} not found")
                    return env_value
        elif isinstance(value, dict):
            return {k: self._substitute_env_vars(v) for k, v in value.items()}
        elif isinstance(value, list):
            return [self._substitute_env_vars(item) for item in value]
        return value

    def load_settings(self, path: Optional[Path] = None) -> Settings:
        """Load and validate settings.yaml; defaults when the file is absent"""
        settings_path = Path(path) if path else self.settings_path

        raw_data = {}
        if settings_path.exists():
            try:
                with open(settings_path, "r", encoding="utf-8") as f:
                    raw_data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigError(f"Invalid YAML in {settings_path}: {e}")
        else:
            logger.debug("Settings file not found, using defaults", path=str(settings_path))

        processed_data = self._substitute_env_vars(raw_data)

        api_url = os.getenv("CITYLIGHTS_API_URL")
        if api_url:
            processed_data.setdefault("api", {})["base_url"] = api_url

        try:
            self._settings = Settings(**processed_data)
        except PydanticValidationError as e:
            raise ConfigError(f"Invalid settings in {settings_path}: {e}")
        return self._settings

    @property
    def settings(self) -> Settings:
        if self._settings is None:
            return self.load_settings()
        return self._settings


# Global instance
config_manager = ConfigManager()
