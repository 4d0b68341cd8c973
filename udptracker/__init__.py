"""udptracker - BitTorrent UDP tracker client (BEP 15)."""

from __future__ import annotations

__version__ = "0.1.0"

from udptracker.config.config import Config, ConfigManager, get_config, init_config
from udptracker.discovery.tracker_session import AnnounceResult
from udptracker.discovery.tracker_udp_client import AsyncUDPTrackerClient, get_peers
from udptracker.discovery.udp_messages import Peer
from udptracker.models import TorrentMetadata
from udptracker.utils.exceptions import (
    TrackerRejectedError,
    TrackerTimeoutError,
    TransportError,
    UDPTrackerError,
)

__all__ = [
    "AnnounceResult",
    "AsyncUDPTrackerClient",
    "Config",
    "ConfigManager",
    "Peer",
    "TorrentMetadata",
    "TrackerRejectedError",
    "TrackerTimeoutError",
    "TransportError",
    "UDPTrackerError",
    "__version__",
    "get_config",
    "get_peers",
    "init_config",
]
