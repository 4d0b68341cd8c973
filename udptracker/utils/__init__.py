"""Shared utilities and infrastructure.

This module contains common utilities used throughout the application.
"""

from __future__ import annotations

from udptracker.utils.backoff import ExponentialBackoff
from udptracker.utils.exceptions import (
    ConfigurationError,
    DecodeError,
    NetworkError,
    ProtocolError,
    TrackerError,
    TrackerRejectedError,
    TrackerTimeoutError,
    TransportError,
    UDPTrackerError,
    ValidationError,
)
from udptracker.utils.logging_config import setup_logging

__all__ = [
    # Exceptions
    "ConfigurationError",
    "DecodeError",
    # Backoff
    "ExponentialBackoff",
    "NetworkError",
    "ProtocolError",
    "TrackerError",
    "TrackerRejectedError",
    "TrackerTimeoutError",
    "TransportError",
    "UDPTrackerError",
    "ValidationError",
    # Logging
    "setup_logging",
]
