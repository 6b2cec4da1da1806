"""Configuration management for the connect client."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal
from urllib.parse import unquote

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_PORT = 15002
DEFAULT_USER_AGENT = "dfconnect"

# Connection string parameters that configure the client rather than
# being forwarded as request headers
_RESERVED_PARAMS = frozenset({"token", "user_id", "user_name", "session_id", "use_ssl", "user_agent"})


class ConnectionConfig(BaseModel):
    """Where the service lives and who is calling it."""

    host: str = Field(default="localhost", description="Service host")
    port: int = Field(default=DEFAULT_PORT, ge=1, le=65535, description="Service port")
    use_ssl: bool = Field(default=False, description="Use a TLS channel")
    token: str | None = Field(default=None, description="Bearer token for every call")
    user_id: str = Field(default="", description="User id sent in the user context")
    user_name: str = Field(default="", description="User name sent in the user context")
    session_id: str | None = Field(
        default=None, description="Reuse an existing session id (uuid4 generated if unset)"
    )
    user_agent: str = Field(default=DEFAULT_USER_AGENT, description="Client user agent")
    headers: dict[str, str] = Field(
        default_factory=dict, description="Extra metadata attached to every call"
    )

    @field_validator("user_agent")
    @classmethod
    def _user_agent_length(cls, value: str) -> str:
        if not value or len(value.encode()) > 2048:
            raise ValueError("user_agent must be 1..2048 bytes")
        return value

    @property
    def target(self) -> str:
        return f"{self.host}:{self.port}"

    @classmethod
    def from_connection_string(cls, url: str) -> ConnectionConfig:
        """Parse ``sc://host[:port]/;key=value;...``.

        Known keys (token, user_id, user_name, session_id, use_ssl,
        user_agent) configure the connection. Any other key becomes a
        request header.

        Raises:
            ValueError: If the string is not a well-formed connection string.
        """
        if not url.startswith("sc://"):
            raise ValueError(f"Connection string must start with 'sc://': {url!r}")
        rest = url[len("sc://"):]
        location, _, params = rest.partition("/")
        if not location:
            raise ValueError(f"Connection string has no host: {url!r}")
        if params and not params.startswith(";"):
            raise ValueError(f"Parameters must follow '/;' in connection string: {url!r}")

        host, sep, port_text = location.partition(":")
        port = DEFAULT_PORT
        if sep:
            if not port_text.isdigit():
                raise ValueError(f"Invalid port in connection string: {port_text!r}")
            port = int(port_text)

        values: dict[str, str] = {}
        for part in params.split(";"):
            if not part:
                continue
            key, eq, value = part.partition("=")
            if not eq or not key:
                raise ValueError(f"Invalid parameter {part!r} in connection string")
            values[key] = unquote(value)

        headers = {k: v for k, v in values.items() if k not in _RESERVED_PARAMS}
        token = values.get("token")
        return cls(
            host=host,
            port=port,
            # A token implies a secure channel unless explicitly disabled
            use_ssl=_parse_bool(values.get("use_ssl"), default=token is not None),
            token=token,
            user_id=values.get("user_id", ""),
            user_name=values.get("user_name", ""),
            session_id=values.get("session_id"),
            user_agent=values.get("user_agent", DEFAULT_USER_AGENT),
            headers=headers,
        )


def _parse_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    lowered = value.lower()
    if lowered in ("true", "1", "yes"):
        return True
    if lowered in ("false", "0", "no"):
        return False
    raise ValueError(f"Invalid boolean value: {value!r}")


class TransportConfig(BaseModel):
    """Per-call limits of the RPC channel."""

    max_message_size: int = Field(
        default=128 * 1024 * 1024, ge=1024, description="Max inbound message size in bytes"
    )
    connect_timeout_seconds: float = Field(
        default=10.0, gt=0, description="Timeout for the channel to become ready"
    )
    read_timeout_seconds: float | None = Field(
        default=None, gt=0, description="Timeout for each stream read (None waits forever)"
    )
    analyze_timeout_seconds: float = Field(
        default=60.0, gt=0, description="Deadline for unary analyze calls"
    )
    control_timeout_seconds: float = Field(
        default=30.0, gt=0, description="Deadline for release, interrupt and config calls"
    )


class RetryConfig(BaseModel):
    """Retry budget for retryable transport failures."""

    max_attempts: int = Field(default=5, ge=1, le=100, description="Consecutive failed attempts")
    initial_backoff_seconds: float = Field(default=0.05, ge=0, description="First backoff")
    max_backoff_seconds: float = Field(default=5.0, ge=0, description="Backoff cap")
    backoff_multiplier: float = Field(default=4.0, ge=1.0, description="Backoff growth factor")


class ExecutionConfig(BaseModel):
    """Execution behavior."""

    reattachable: bool = Field(default=True, description="Request reattachable executions")
    release_on_complete: bool = Field(
        default=True, description="Release server buffers once a run completes"
    )
    client_type: str = Field(default="dfconnect-python", description="Client type tag")
    seen_response_window: int = Field(
        default=1024, ge=1, description="Recent response ids remembered to skip duplicates"
    )


class ObservabilityConfig(BaseModel):
    """Observability configuration."""

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="WARNING", description="Log level"
    )
    log_format: Literal["json", "console"] = Field(default="console", description="Log format")
    otel_endpoint: str | None = Field(
        default=None, description="OpenTelemetry collector endpoint"
    )
    otel_service_name: str = Field(default="dfconnect", description="Service name for tracing")


class Config(BaseSettings):
    """Main configuration for the connect client."""

    model_config = SettingsConfigDict(
        env_prefix="DFCONNECT_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    connection: ConnectionConfig = Field(default_factory=ConnectionConfig)
    transport: TransportConfig = Field(default_factory=TransportConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    execution: ExecutionConfig = Field(default_factory=ExecutionConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)

    def with_connection_string(self, url: str) -> Config:
        """Return a copy whose connection section comes from ``url``."""
        return self.model_copy(
            update={"connection": ConnectionConfig.from_connection_string(url)}
        )


@lru_cache
def get_config() -> Config:
    """Get the global configuration instance."""
    return Config()
