"""Tracker discovery components.

This module handles UDP tracker communication (BEP 15).
"""

from __future__ import annotations

from udptracker.discovery.retry import RetryScheduler
from udptracker.discovery.tracker_session import (
    AnnounceResult,
    SessionState,
    TrackerSession,
)
from udptracker.discovery.tracker_udp_client import AsyncUDPTrackerClient, get_peers
from udptracker.discovery.udp_messages import Peer

__all__ = [
    "AnnounceResult",
    "AsyncUDPTrackerClient",
    "Peer",
    "RetryScheduler",
    "SessionState",
    "TrackerSession",
    "get_peers",
]
