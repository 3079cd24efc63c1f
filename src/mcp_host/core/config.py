"""Configuration management for MCP Host."""

from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings for the client-side protocol engine."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Logging
    LOG_LEVEL: str = Field(default="INFO", description="Logging level")
    LOG_FORMAT: str = Field(default="json", description="Logging format: json or text")

    # Client identity sent during the initialize handshake
    PROTOCOL_VERSION: str = Field(default="2024-11-05", description="MCP protocol version offered to servers")
    CLIENT_NAME: str = Field(default="mcp-host", description="Client name reported to servers")
    CLIENT_VERSION: str = Field(default="0.1.0", description="Client version reported to servers")

    # Timeouts
    REQUEST_TIMEOUT: float = Field(default=30.0, gt=0, description="Default JSON-RPC request deadline in seconds")
    CONNECT_TIMEOUT: float = Field(default=10.0, gt=0, description="HTTP connect timeout in seconds")
    HEALTH_CHECK_TIMEOUT: float = Field(default=5.0, gt=0, description="HTTP health probe timeout in seconds")
    STDIO_SHUTDOWN_TIMEOUT: float = Field(default=5.0, gt=0, description="Grace period for stdio servers to exit")

    # Server push channel
    SSE_MAX_RETRIES: int = Field(default=3, ge=0, le=100, description="Reconnect attempts for the event stream")
    SSE_BACKOFF_INITIAL: float = Field(default=0.5, gt=0, description="Initial event stream reconnect delay")

    # Server registry
    SERVER_REGISTRY_FILE: str = Field(
        default="config/servers.yaml",
        description="Path to the server registry configuration file"
    )

    # Permissions
    PERMISSION_STORE_FILE: Optional[str] = Field(default=None, description="YAML file used to persist grants")
    PERMISSION_TIMEOUT: float = Field(default=300.0, gt=0, description="Interactive permission timeout in seconds")
    MAX_PERMISSIONS_PER_SERVER: int = Field(default=50, ge=1, description="Maximum stored grants per server")

    # Tool execution
    EXECUTION_HISTORY_LIMIT: int = Field(default=1000, ge=1, description="Retained tool execution results")

    @field_validator('LOG_LEVEL')
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level"""
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of {valid_levels}")
        return v.upper()

    @field_validator('LOG_FORMAT')
    @classmethod
    def validate_log_format(cls, v):
        """Validate log format"""
        valid_formats = ['json', 'text']
        if v.lower() not in valid_formats:
            raise ValueError(f"Log format must be one of {valid_formats}")
        return v.lower()


# Global settings instance
settings = Settings()


def get_settings() -> Settings:
    """Get application settings"""
    return settings
