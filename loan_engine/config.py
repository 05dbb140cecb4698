"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Literal


class LoanEngineConfig(BaseSettings):
    """Loan engine configuration"""

    model_config = SettingsConfigDict(
        env_prefix="LOAN_ENGINE_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Storage configuration
    storage_backend: Literal["sqlite", "memory"] = "sqlite"
    database_path: str = "loan_engine.db"

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8090

    # Security configuration
    jwt_secret: str = "change-me-in-production"
    jwt_algorithm: str = "HS256"
    auth_enabled: bool = True

    # Logging configuration
    log_level: str = "INFO"
    log_format: Literal["json", "text"] = "json"

    # Business rules configuration
    default_currency: str = "USD"
    installment_interval_days: int = 7
    default_page_size: int = 10
    max_page_size: int = 100
    # "permissive": admin may set any status, including backward moves
    # "monotonic": admin overrides may only move a loan forward
    status_override_policy: Literal["permissive", "monotonic"] = "permissive"

    # Feature flags
    enable_audit_logging: bool = True


# Global configuration instance
config = LoanEngineConfig()


def get_config() -> LoanEngineConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> LoanEngineConfig:
    """Reload configuration from environment"""
    global config
    config = LoanEngineConfig()
    return config
