"""Configuration management for flowsync."""

import os
from typing import Optional, Dict, Any
from pydantic import BaseModel, Field, field_validator
from enum import Enum

from .core.engine_client import EngineCredentials

ENV_PREFIX = "FLOWSYNC_"


class LogLevel(str, Enum):
    """Logging levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class DatabaseType(str, Enum):
    """Supported database types."""
    SQLITE = "sqlite"
    POSTGRESQL = "postgresql"
    MYSQL = "mysql"


class AppConfig(BaseModel):
    """Application configuration settings."""

    # Application settings
    app_name: str = Field(default="FlowSync", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    debug: bool = Field(default=False, description="Enable debug mode")

    # Server settings
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port")
    reload: bool = Field(default=False, description="Enable auto-reload in development")

    # Database settings
    database_url: str = Field(
        default="sqlite:///./flowsync.db",
        description="Database connection URL"
    )
    database_echo: bool = Field(default=False, description="Enable SQLAlchemy query logging")

    # Workflow engine settings
    engine_base_url: str = Field(
        default="http://localhost:5678",
        description="Base URL of the workflow engine"
    )
    engine_api_key: Optional[str] = Field(default=None, description="Engine API key; wins over basic auth")
    engine_username: Optional[str] = Field(default=None, description="Engine basic auth user")
    engine_password: Optional[str] = Field(default=None, description="Engine basic auth password")
    engine_timeout: float = Field(default=30.0, description="Engine request timeout in seconds")

    # Polling settings
    poll_interval: float = Field(default=1.0, description="Seconds between status checks")
    poll_max_attempts: int = Field(default=60, description="Status checks before an execution times out")
    poll_tolerated_errors: int = Field(
        default=0,
        description="Consecutive status check errors skipped before failing the execution"
    )
    execution_max_retries: int = Field(default=3, description="Retries allowed per failed execution")

    # Logging settings
    log_level: LogLevel = Field(default=LogLevel.INFO, description="Logging level")
    log_format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(context)s%(message)s",
        description="Log message format"
    )
    log_file: Optional[str] = Field(default=None, description="Log file path")
    log_structured: bool = Field(default=False, description="Emit JSON log lines")
    log_max_size: int = Field(default=10485760, description="Maximum log file size in bytes")  # 10MB
    log_backup_count: int = Field(default=5, description="Number of log backup files to keep")

    # Request handling
    slow_request_threshold: float = Field(
        default=5.0,
        description="Slow request threshold in seconds"
    )

    # Security settings
    cors_origins: list = Field(
        default=["*"],
        description="CORS allowed origins"
    )
    cors_methods: list = Field(
        default=["GET", "POST", "PUT", "DELETE"],
        description="CORS allowed methods"
    )

    @field_validator('database_url')
    @classmethod
    def validate_database_url(cls, v):
        """Validate database URL format."""
        if not v:
            raise ValueError("Database URL cannot be empty")

        supported_schemes = ['sqlite', 'postgresql', 'mysql']
        scheme = v.split('://')[0].lower().split('+')[0]

        if scheme not in supported_schemes:
            raise ValueError(f"Unsupported database scheme: {scheme}. Supported: {supported_schemes}")

        return v

    @field_validator('engine_base_url')
    @classmethod
    def validate_engine_base_url(cls, v):
        """Engine URL must be absolute http(s)."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("Engine base URL must start with http:// or https://")
        return v.rstrip("/")

    @field_validator('port')
    @classmethod
    def validate_port(cls, v):
        """Validate port number."""
        if not 1 <= v <= 65535:
            raise ValueError("Port must be between 1 and 65535")
        return v

    @field_validator('poll_interval', 'engine_timeout')
    @classmethod
    def validate_positive_seconds(cls, v):
        if v <= 0:
            raise ValueError("Intervals and timeouts must be positive")
        return v

    @field_validator('poll_max_attempts')
    @classmethod
    def validate_poll_max_attempts(cls, v):
        if v < 1:
            raise ValueError("Poll max attempts must be at least 1")
        return v

    @field_validator('poll_tolerated_errors', 'execution_max_retries')
    @classmethod
    def validate_non_negative(cls, v):
        if v < 0:
            raise ValueError("Value cannot be negative")
        return v

    @property
    def database_type(self) -> DatabaseType:
        """Get the database type from the URL."""
        scheme = self.database_url.split('://')[0].lower()
        if scheme == 'sqlite':
            return DatabaseType.SQLITE
        elif scheme.startswith('postgresql'):
            return DatabaseType.POSTGRESQL
        elif scheme.startswith('mysql'):
            return DatabaseType.MYSQL
        else:
            raise ValueError(f"Unknown database type: {scheme}")

    @property
    def is_sqlite(self) -> bool:
        """Check if using SQLite database."""
        return self.database_type == DatabaseType.SQLITE

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return not self.debug and not self.reload

    @property
    def has_engine_credentials(self) -> bool:
        return bool(self.engine_api_key or (self.engine_username and self.engine_password))

    def get_engine_credentials(self) -> EngineCredentials:
        """Connection settings for the engine client."""
        return EngineCredentials(
            base_url=self.engine_base_url,
            api_key=self.engine_api_key,
            username=self.engine_username,
            password=self.engine_password,
            timeout=self.engine_timeout,
        )

    def get_uvicorn_config(self) -> Dict[str, Any]:
        """Get Uvicorn server configuration."""
        return {
            "host": self.host,
            "port": self.port,
            "reload": self.reload,
            "log_level": self.log_level.lower(),
            "access_log": self.debug
        }

    def to_safe_dict(self) -> Dict[str, Any]:
        """Configuration with secrets masked, for display."""
        data = self.model_dump(mode="json")
        for key in ("engine_api_key", "engine_password"):
            if data.get(key):
                data[key] = "***"
        return data

    @classmethod
    def from_env(cls) -> 'AppConfig':
        """Create configuration from environment variables."""
        def get_env(key: str, default=None, type_func=str):
            """Get environment variable with type conversion."""
            value = os.getenv(f"{ENV_PREFIX}{key}")
            if value is None:
                return default
            if type_func == bool:
                return str(value).lower() in ('true', '1', 'yes', 'on')
            elif type_func == list:
                return value.split(',') if value else default
            return type_func(value)

        return cls(
            app_name=get_env("APP_NAME", "FlowSync"),
            app_version=get_env("APP_VERSION", "1.0.0"),
            debug=get_env("DEBUG", False, bool),
            host=get_env("HOST", "0.0.0.0"),
            port=get_env("PORT", 8000, int),
            reload=get_env("RELOAD", False, bool),
            database_url=get_env("DATABASE_URL", "sqlite:///./flowsync.db"),
            database_echo=get_env("DATABASE_ECHO", False, bool),
            engine_base_url=get_env("ENGINE_BASE_URL", "http://localhost:5678"),
            engine_api_key=get_env("ENGINE_API_KEY", None),
            engine_username=get_env("ENGINE_USERNAME", None),
            engine_password=get_env("ENGINE_PASSWORD", None),
            engine_timeout=get_env("ENGINE_TIMEOUT", 30.0, float),
            poll_interval=get_env("POLL_INTERVAL", 1.0, float),
            poll_max_attempts=get_env("POLL_MAX_ATTEMPTS", 60, int),
            poll_tolerated_errors=get_env("POLL_TOLERATED_ERRORS", 0, int),
            execution_max_retries=get_env("EXECUTION_MAX_RETRIES", 3, int),
            log_level=LogLevel(get_env("LOG_LEVEL", "INFO").upper()),
            log_format=get_env("LOG_FORMAT", "%(asctime)s - %(name)s - %(levelname)s - %(context)s%(message)s"),
            log_file=get_env("LOG_FILE", None),
            log_structured=get_env("LOG_STRUCTURED", False, bool),
            log_max_size=get_env("LOG_MAX_SIZE", 10485760, int),
            log_backup_count=get_env("LOG_BACKUP_COUNT", 5, int),
            slow_request_threshold=get_env("SLOW_REQUEST_THRESHOLD", 5.0, float),
            cors_origins=get_env("CORS_ORIGINS", ["*"], list),
            cors_methods=get_env("CORS_METHODS", ["GET", "POST", "PUT", "DELETE"], list),
        )


# Global configuration instance
_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = AppConfig.from_env()
    return _config


def load_config(config_file: Optional[str] = None) -> AppConfig:
    """Load configuration from file or environment variables."""
    global _config

    # Load .env file if it exists
    if config_file and os.path.exists(config_file):
        from dotenv import load_dotenv
        load_dotenv(config_file)
    elif os.path.exists('.env'):
        from dotenv import load_dotenv
        load_dotenv('.env')

    _config = AppConfig.from_env()

    return _config


def reset_config():
    """Reset the global configuration instance (mainly for testing)."""
    global _config
    _config = None


def validate_config(config: AppConfig) -> None:
    """Validate configuration settings."""
    errors = []

    if config.is_sqlite and config.database_url.startswith("sqlite:///"):
        db_path = config.database_url.replace("sqlite:///", "")
        db_dir = os.path.dirname(db_path)
        if db_dir and not os.path.exists(db_dir):
            try:
                os.makedirs(db_dir, exist_ok=True)
            except OSError as e:
                errors.append(f"Cannot create database directory {db_dir}: {e}")

    if config.log_file:
        log_dir = os.path.dirname(config.log_file)
        if log_dir and not os.path.exists(log_dir):
            try:
                os.makedirs(log_dir, exist_ok=True)
            except OSError as e:
                errors.append(f"Cannot create log directory {log_dir}: {e}")

    if not config.has_engine_credentials:
        errors.append("Engine credentials missing: set FLOWSYNC_ENGINE_API_KEY or username and password")

    if errors:
        raise ValueError(f"Configuration validation failed: {'; '.join(errors)}")


# Environment-specific configurations
def get_development_config() -> AppConfig:
    """Development settings on top of the environment (engine credentials come from there)."""
    return AppConfig.from_env().model_copy(update={
        "debug": True,
        "reload": True,
        "log_level": LogLevel.DEBUG,
        "database_echo": True,
    })


def get_production_config() -> AppConfig:
    """Production settings on top of the environment."""
    return AppConfig.from_env().model_copy(update={
        "debug": False,
        "reload": False,
        "log_level": LogLevel.INFO,
        "log_structured": True,
        "database_echo": False,
        "cors_origins": [],  # Restrict CORS in production
    })


def get_testing_config() -> AppConfig:
    """Get testing configuration."""
    return AppConfig(
        debug=True,
        database_url="sqlite://",
        log_level=LogLevel.WARNING,
        engine_base_url="http://engine.test",
        engine_api_key="test-key",
        poll_interval=0.01,
        poll_max_attempts=5,
    )
