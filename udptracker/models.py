"""Pydantic models for udptracker.

Provides validated configuration and torrent metadata models.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field, field_validator


class LogLevel(str, Enum):
    """Logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class TorrentMetadata(BaseModel):
    """The parts of a torrent's metainfo the tracker handshake needs."""

    info_hash: bytes = Field(..., description="SHA-1 info hash (20 bytes)")
    total_length: int = Field(..., ge=0, description="Total content size in bytes")
    announce: str | None = Field(None, description="Primary tracker announce URL")
    name: str | None = Field(None, description="Torrent display name")

    @field_validator("info_hash")
    @classmethod
    def validate_info_hash(cls, v: bytes) -> bytes:
        """Validate info hash length."""
        if len(v) != 20:
            msg = f"info_hash must be 20 bytes, got {len(v)}"
            raise ValueError(msg)
        return v

    @classmethod
    def from_hex(
        cls,
        info_hash_hex: str,
        total_length: int,
        announce: str | None = None,
        name: str | None = None,
    ) -> TorrentMetadata:
        """Build metadata from a 40-character hex info hash."""
        try:
            info_hash = bytes.fromhex(info_hash_hex)
        except ValueError as e:
            msg = f"Invalid hex info hash: {info_hash_hex!r}"
            raise ValueError(msg) from e
        return cls(
            info_hash=info_hash,
            total_length=total_length,
            announce=announce,
            name=name,
        )


class TrackerConfig(BaseModel):
    """UDP tracker client configuration."""

    retry_base_timeout: float = Field(
        default=15.0,
        gt=0.0,
        le=300.0,
        description="Timeout in seconds before the first retransmission (BEP 15: 15s)",
    )
    max_retry_exponent: int = Field(
        default=8,
        ge=0,
        le=8,
        description="Highest n in the 15 * 2^n timeout sequence before giving up",
    )
    connection_id_ttl: float = Field(
        default=60.0,
        gt=0.0,
        le=60.0,
        description="Seconds a tracker connection ID stays valid after issuance",
    )
    announce_port: int = Field(
        default=6881,
        ge=0,
        le=65535,
        description="Listening port reported to the tracker",
    )
    bind_host: str = Field(
        default="0.0.0.0",  # nosec B104 - client socket accepts replies on all interfaces
        description="Local address for the tracker UDP socket",
    )
    bind_port: int = Field(
        default=0,
        ge=0,
        le=65535,
        description="Local port for the tracker UDP socket (0 = ephemeral)",
    )
    peer_id_prefix: str = Field(
        default="-UT0100-",
        min_length=1,
        max_length=20,
        description="Azureus-style client prefix for generated peer IDs",
    )


class ObservabilityConfig(BaseModel):
    """Observability configuration."""

    log_level: LogLevel = Field(default=LogLevel.INFO, description="Log level")
    log_file: str | None = Field(None, description="Log file path")
    structured_logging: bool = Field(
        default=False,
        description="Write JSON records to the log file",
    )
    log_correlation_id: bool = Field(
        default=True,
        description="Include correlation IDs",
    )


class Config(BaseModel):
    """Main configuration model."""

    tracker: TrackerConfig = Field(
        default_factory=TrackerConfig,
        description="UDP tracker configuration",
    )
    observability: ObservabilityConfig = Field(
        default_factory=ObservabilityConfig,
        description="Observability configuration",
    )
