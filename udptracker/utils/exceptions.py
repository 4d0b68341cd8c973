"""Exception hierarchy for udptracker.

Decode and correlation errors are raised by the message codec and handled
inside a tracker session; only network-level failures reach the caller.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class UDPTrackerError(Exception):
    """Base exception for all udptracker errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        """Initialize udptracker error."""
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        """Return string representation of the error."""
        if self.details:
            return f"{self.message} (Details: {self.details})"
        return self.message


class NetworkError(UDPTrackerError):
    """Network-related errors."""


class TrackerError(NetworkError):
    """Tracker communication errors."""


class TrackerTimeoutError(TrackerError):
    """Tracker did not answer within the retransmission budget."""


class TrackerRejectedError(TrackerError):
    """Tracker answered a request with an error response."""


class TransportError(NetworkError):
    """The datagram transport failed to send, receive or resolve."""


class ProtocolError(UDPTrackerError):
    """UDP tracker protocol errors."""


class DecodeErrorReason(str, Enum):
    """Why a datagram could not be decoded."""

    TOO_SHORT = "too_short"
    MALFORMED_PEER_LIST = "malformed_peer_list"


class DecodeError(ProtocolError):
    """Datagram is truncated or structurally invalid."""

    def __init__(
        self,
        reason: DecodeErrorReason,
        message: str,
        details: dict[str, Any] | None = None,
    ):
        """Initialize decode error with its reason."""
        super().__init__(message, details)
        self.reason = reason


class ProtocolMismatch(ProtocolError):
    """Response action or transaction id does not match the outstanding request."""


class ValidationError(UDPTrackerError):
    """Data validation errors."""


class ConfigurationError(ValidationError):
    """Configuration validation errors."""
