"""
Configuration Module
====================

Application settings and configuration management using Pydantic.
"""

from enum import Enum
from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Uses Pydantic for validation and type safety.
    """

    # ========== Application ==========
    app_name: str = Field(default="helpdesk-sla-engine", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    # ========== Database ==========
    database_url: str = Field(
        default="postgresql+asyncpg://localhost:5432/helpdesk",
        description="Database connection URL (async driver)"
    )
    db_pool_size: int = Field(default=5, description="Database connection pool size", ge=1)
    db_max_overflow: int = Field(default=10, description="Max overflow connections", ge=0)

    # ========== SLA Configuration ==========
    sla_config_path: Path = Field(
        default=Path("sla_config.yaml"),
        description="Path to SLA policy defaults / vendor schedule YAML file"
    )
    breach_scan_interval_seconds: int = Field(
        default=600,
        description="Seconds between breach scanner runs",
        ge=10
    )
    outbox_relay_interval_seconds: int = Field(
        default=30,
        description="Seconds between outbox relay runs",
        ge=1
    )
    outbox_max_attempts: int = Field(
        default=10,
        description="Failed deliveries before an event is dead-lettered",
        ge=1
    )
    outbox_retry_base_seconds: int = Field(
        default=30,
        description="First retry delay; doubles with every failed attempt",
        ge=1
    )
    outbox_retention_days: int = Field(
        default=7,
        description="Days a dispatched event is kept before it is purged",
        ge=1
    )
    outbox_purge_interval_seconds: int = Field(
        default=3600,
        description="Seconds between outbox purge runs",
        ge=60
    )
    vendor_visit_weekday: str = Field(
        default="friday",
        description="Weekday on which the vendor visits (used in vendor-wait notes)"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Ensure environment is one of allowed values."""
        allowed = {"development", "staging", "production", "test"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v

    @field_validator("vendor_visit_weekday")
    @classmethod
    def validate_weekday(cls, v: str) -> str:
        """Ensure the vendor weekday is a real day name."""
        v = v.strip().lower()
        if v not in WEEKDAYS:
            raise ValueError(f"vendor_visit_weekday must be one of {WEEKDAYS}")
        return v


@lru_cache()
def get_settings() -> Settings:
    """Returns cached Settings instance."""
    return Settings()


# ========== Constants ==========

class TicketStatus(str, Enum):
    """Ticket lifecycle statuses."""
    TODO = "TODO"
    IN_PROGRESS = "IN_PROGRESS"
    WAITING_VENDOR = "WAITING_VENDOR"
    RESOLVED = "RESOLVED"
    CANCELLED = "CANCELLED"


class Priority(str, Enum):
    """Ticket priority levels."""
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class UserRole(str, Enum):
    """Roles returned by the identity provider."""
    REQUESTER = "REQUESTER"
    AGENT = "AGENT"
    ADMIN = "ADMIN"


# ========== Lists for validation ==========

VALID_PRIORITIES = [
    Priority.LOW, Priority.MEDIUM,
    Priority.HIGH, Priority.CRITICAL
]
TERMINAL_STATUSES = frozenset({TicketStatus.RESOLVED, TicketStatus.CANCELLED})
# Statuses whose clocks are running (WAITING_VENDOR is frozen)
ACTIVE_CLOCK_STATUSES = [TicketStatus.TODO, TicketStatus.IN_PROGRESS]
STAFF_ROLES = frozenset({UserRole.AGENT, UserRole.ADMIN})
WEEKDAYS = [
    "monday", "tuesday", "wednesday", "thursday",
    "friday", "saturday", "sunday"
]
