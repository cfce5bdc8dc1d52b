"""
Configuration for building column-family managers.

This module provides:
- Pydantic-based configuration validation
- Authentication, pool, retry and metrics settings
- Loading configuration from environment variables (``.env`` aware)
"""

import logging
import os
from typing import Optional

from cassandra import ConsistencyLevel
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from scylla_column.query_builder import validate_identifier

logger = logging.getLogger(__name__)


class AuthConfig(BaseModel):
    """Authentication configuration for the cluster."""

    enabled: bool = Field(
        default=False,
        description="Enable username/password authentication"
    )

    username: Optional[str] = Field(
        default=None,
        description="Database username"
    )

    password: Optional[str] = Field(
        default=None,
        description="Database password"
    )

    @model_validator(mode='after')
    def validate_auth_config(self):
        """Validate authentication configuration."""
        if self.enabled:
            if not self.username:
                raise ValueError("Authentication requires username")
            if not self.password:
                raise ValueError("Authentication requires password")
        return self


class PoolConfig(BaseModel):
    """Callback executor and request settings."""

    executor_threads: int = Field(
        default=4,
        ge=1,
        le=64,
        description="Worker threads delivering async callbacks"
    )

    request_timeout: float = Field(
        default=10.0,
        gt=0.0,
        le=300.0,
        description="Default request timeout in seconds"
    )


class RetryConfig(BaseModel):
    """Retry settings for the initial cluster connection."""

    max_retries: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Maximum number of connection attempts"
    )

    initial_delay: float = Field(
        default=0.5,
        ge=0.1,
        le=5.0,
        description="Initial retry delay in seconds"
    )

    max_delay: float = Field(
        default=10.0,
        ge=1.0,
        le=60.0,
        description="Maximum retry delay in seconds"
    )


class MetricsConfig(BaseModel):
    """Metrics and monitoring configuration."""

    enabled: bool = Field(
        default=True,
        description="Enable metrics collection"
    )

    percentiles: list[float] = Field(
        default=[0.5, 0.95, 0.99],
        description="Latency percentiles to track (p50, p95, p99)"
    )

    @field_validator('percentiles')
    @classmethod
    def validate_percentiles(cls, v):
        for p in v:
            if not 0.0 <= p <= 1.0:
                raise ValueError(f"Percentile must be between 0.0 and 1.0, got {p}")
        return sorted(v)


class ColumnStoreConfig(BaseModel):
    """
    Complete configuration for ``ColumnFamilyManagerFactory``.

    Example usage:
        config = ColumnStoreConfig(
            contact_points=["scylla1.example.com", "scylla2.example.com"],
            keyspace="production",
            default_consistency="LOCAL_QUORUM",
            auth=AuthConfig(enabled=True, username="app", password="..."),
        )

        with ColumnFamilyManagerFactory(config) as factory:
            manager = factory.get()
    """

    contact_points: list[str] = Field(
        description="Contact points (hostnames or IPs)"
    )

    keyspace: str = Field(
        description="Default keyspace for managers"
    )

    port: int = Field(
        default=9042,
        ge=1,
        le=65535,
        description="Native protocol port"
    )

    default_consistency: str = Field(
        default="LOCAL_QUORUM",
        description="Consistency level used when an operation gives no override"
    )

    enable_tracing: bool = Field(
        default=False,
        description="Wrap synchronous operations in OpenTelemetry spans"
    )

    auth: AuthConfig = Field(
        default_factory=AuthConfig,
        description="Authentication configuration"
    )

    pool: PoolConfig = Field(
        default_factory=PoolConfig,
        description="Executor and request configuration"
    )

    retry: RetryConfig = Field(
        default_factory=RetryConfig,
        description="Connection retry configuration"
    )

    metrics: MetricsConfig = Field(
        default_factory=MetricsConfig,
        description="Metrics configuration"
    )

    model_config = ConfigDict(validate_assignment=True)

    @field_validator('contact_points')
    @classmethod
    def validate_contact_points(cls, v):
        if not v:
            raise ValueError("At least one contact point required")
        return v

    @field_validator('keyspace')
    @classmethod
    def validate_keyspace(cls, v):
        # same rules the manager applies, reserved words included
        return validate_identifier(v, "keyspace")

    @field_validator('default_consistency')
    @classmethod
    def validate_default_consistency(cls, v):
        name = v.upper()
        if name not in ConsistencyLevel.name_to_value:
            raise ValueError(f"Unknown consistency level: {v}")
        return name

    @property
    def consistency_level(self) -> int:
        """``default_consistency`` as the driver's integer constant."""
        return ConsistencyLevel.name_to_value[self.default_consistency]


def load_config_from_env() -> ColumnStoreConfig:
    """
    Load configuration from environment variables (and a ``.env`` file if present).

    Environment variables:
        SCYLLA_COLUMN_CONTACT_POINTS: Comma-separated list of contact points
        SCYLLA_COLUMN_KEYSPACE: Keyspace name
        SCYLLA_COLUMN_PORT: Port (default: 9042)
        SCYLLA_COLUMN_CONSISTENCY: Default consistency level (default: LOCAL_QUORUM)
        SCYLLA_COLUMN_AUTH_ENABLED: Enable authentication (true/false)
        SCYLLA_COLUMN_USERNAME: Database username
        SCYLLA_COLUMN_PASSWORD: Database password
        SCYLLA_COLUMN_EXECUTOR_THREADS: Callback worker threads
        SCYLLA_COLUMN_REQUEST_TIMEOUT: Request timeout in seconds
        SCYLLA_COLUMN_TRACING_ENABLED: Enable OpenTelemetry tracing (true/false)

    Returns:
        Validated configuration
    """
    load_dotenv()

    contact_points_str = os.getenv("SCYLLA_COLUMN_CONTACT_POINTS", "127.0.0.1")
    contact_points = [cp.strip() for cp in contact_points_str.split(",") if cp.strip()]

    return ColumnStoreConfig(
        contact_points=contact_points,
        keyspace=os.getenv("SCYLLA_COLUMN_KEYSPACE", "column_store"),
        port=int(os.getenv("SCYLLA_COLUMN_PORT", "9042")),
        default_consistency=os.getenv("SCYLLA_COLUMN_CONSISTENCY", "LOCAL_QUORUM"),
        enable_tracing=os.getenv("SCYLLA_COLUMN_TRACING_ENABLED", "false").lower() == "true",
        auth=AuthConfig(
            enabled=os.getenv("SCYLLA_COLUMN_AUTH_ENABLED", "false").lower() == "true",
            username=os.getenv("SCYLLA_COLUMN_USERNAME"),
            password=os.getenv("SCYLLA_COLUMN_PASSWORD"),
        ),
        pool=PoolConfig(
            executor_threads=int(os.getenv("SCYLLA_COLUMN_EXECUTOR_THREADS", "4")),
            request_timeout=float(os.getenv("SCYLLA_COLUMN_REQUEST_TIMEOUT", "10.0")),
        ),
    )
