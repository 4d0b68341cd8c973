"""UDP Tracker Client (BEP 15) for BitTorrent.

Owns the UDP socket shared by all tracker sessions, routes each inbound
datagram to the session whose transaction id it carries, and exposes
``get_peers`` as the single entry point for announcing a torrent.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
import socket
import string
from typing import TYPE_CHECKING

from udptracker.config.config import get_config
from udptracker.discovery.tracker_session import AnnounceResult, TrackerSession
from udptracker.discovery.udp_messages import RESPONSE_HEADER
from udptracker.utils.backoff import ExponentialBackoff
from udptracker.utils.exceptions import TransportError, UDPTrackerError
from udptracker.utils.logging_config import LoggingContext

if TYPE_CHECKING:
    from udptracker.models import Config, TorrentMetadata

# Error message constants
_ERROR_UDP_TRANSPORT_NOT_INITIALIZED = "UDP transport is not initialized"
_ERROR_CLIENT_STOPPED = "UDP tracker client stopped"

_PEER_ID_ALPHABET = string.ascii_letters + string.digits


def generate_peer_id(prefix: str = "-UT0100-") -> bytes:
    """Generate an Azureus-style 20-byte peer id with a random suffix."""
    prefix_bytes = prefix.encode("ascii")[:20]
    suffix = "".join(
        secrets.choice(_PEER_ID_ALPHABET) for _ in range(20 - len(prefix_bytes))
    )
    return prefix_bytes + suffix.encode("ascii")


def parse_udp_url(url: str) -> tuple[str, int]:
    """Parse UDP tracker URL.

    Handles URLs with and without paths:
    - udp://host:port/announce -> (host, port)
    - udp://host:port -> (host, port)

    Args:
        url: UDP tracker URL (may include path like /announce)

    Returns:
        Tuple of (host, port)

    Raises:
        ValueError: If URL is malformed or port is invalid

    """
    original_url = url

    if not url.startswith("udp://"):
        msg = f"Not a UDP tracker URL: {original_url}"
        raise ValueError(msg)
    url = url[6:]

    # UDP trackers don't use paths or queries
    url = url.split("/", 1)[0].split("?", 1)[0]

    if url.startswith("["):
        msg = f"IPv6 tracker addresses are not supported: {original_url}"
        raise ValueError(msg)

    host, sep, port_str = url.rpartition(":")
    if not sep:
        msg = f"Missing port in UDP URL: {original_url}"
        raise ValueError(msg)
    if not host or host.isspace():
        msg = f"Empty host in UDP URL: {original_url}"
        raise ValueError(msg)
    if ":" in host:
        msg = f"Malformed UDP URL (multiple colons): {original_url}"
        raise ValueError(msg)

    try:
        port = int(port_str)
    except ValueError as e:
        msg = f"Invalid port in UDP URL: {original_url}"
        raise ValueError(msg) from e

    if not (1 <= port <= 65535):
        msg = f"Invalid port range in UDP URL: {original_url} (port: {port})"
        raise ValueError(msg)

    return host, port


class AsyncUDPTrackerClient:
    """Async UDP tracker client sharing one socket across tracker sessions."""

    def __init__(
        self,
        peer_id: bytes | None = None,
        port: int | None = None,
        config: Config | None = None,
    ):
        """Initialize UDP tracker client.

        Args:
            peer_id: Our peer ID (20 bytes), generated when omitted
            port: Listening port reported to trackers
            config: Configuration, the global one when omitted

        """
        self.config = config or get_config()
        tracker_config = self.config.tracker

        if peer_id is None:
            peer_id = generate_peer_id(tracker_config.peer_id_prefix)
        if len(peer_id) != 20:
            msg = f"peer_id must be 20 bytes, got {len(peer_id)}"
            raise ValueError(msg)
        self.our_peer_id = peer_id
        self.port = tracker_config.announce_port if port is None else port

        self.backoff = ExponentialBackoff(
            base_delay=tracker_config.retry_base_timeout,
            max_retries=tracker_config.max_retry_exponent,
        )

        # UDP socket
        self.transport: asyncio.DatagramTransport | None = None
        self.protocol: UDPTrackerProtocol | None = None

        # Transaction id -> session awaiting a response with that id
        self.sessions: dict[int, TrackerSession] = {}
        # Session whose datagram is being handed to the socket
        self._sender: TrackerSession | None = None

        self.logger = logging.getLogger(__name__)

    async def __aenter__(self) -> AsyncUDPTrackerClient:
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.stop()

    async def start(self) -> None:
        """Bind the UDP socket."""
        if self.transport is not None:
            return

        tracker_config = self.config.tracker
        loop = asyncio.get_running_loop()
        try:
            self.transport, self.protocol = await loop.create_datagram_endpoint(
                lambda: UDPTrackerProtocol(self),
                local_addr=(tracker_config.bind_host, tracker_config.bind_port),
                family=socket.AF_INET,
            )
        except OSError as e:
            msg = f"Failed to bind UDP tracker socket: {e}"
            raise TransportError(
                msg,
                {"host": tracker_config.bind_host, "port": tracker_config.bind_port},
            ) from e

        self.logger.info(
            "UDP tracker client started on %s",
            self.transport.get_extra_info("sockname"),
        )

    async def stop(self) -> None:
        """Fail pending sessions and close the socket."""
        for session in list(self.sessions.values()):
            session.transport_failed(ConnectionAbortedError(_ERROR_CLIENT_STOPPED))
        self.sessions.clear()

        if self.transport is not None:
            self.transport.close()
            self.transport = None
            self.protocol = None
            self.logger.info("UDP tracker client stopped")

    def register(self, transaction_id: int, session: TrackerSession) -> None:
        """Route responses carrying ``transaction_id`` to ``session``."""
        current = self.sessions.get(transaction_id)
        if current is not None and current is not session:
            self.logger.warning(
                "Transaction id %#010x already in use by %s, reassigning to %s",
                transaction_id,
                current.url,
                session.url,
            )
        self.sessions[transaction_id] = session

    def unregister(self, transaction_id: int, session: TrackerSession) -> None:
        """Stop routing ``transaction_id`` to ``session``."""
        if self.sessions.get(transaction_id) is session:
            del self.sessions[transaction_id]

    def send(
        self,
        data: bytes,
        address: tuple[str, int],
        session: TrackerSession | None = None,
    ) -> None:
        """Send one datagram to a tracker.

        The selector transport reports an immediate send failure through
        ``error_received`` before ``sendto`` returns; that error is charged
        to ``session`` alone.
        """
        if self.transport is None or self.transport.is_closing():
            raise ConnectionError(_ERROR_UDP_TRANSPORT_NOT_INITIALIZED)
        self._sender = session
        try:
            self.transport.sendto(data, address)
        finally:
            self._sender = None

    def handle_response(self, data: bytes, addr: tuple[str, int]) -> None:
        """Dispatch an inbound datagram by its transaction id."""
        if len(data) < RESPONSE_HEADER.size:
            self.logger.debug("Dropping %d-byte datagram from %s", len(data), addr)
            return

        _action, transaction_id = RESPONSE_HEADER.unpack_from(data)
        session = self.sessions.get(transaction_id)
        if session is None:
            self.logger.debug(
                "No session for transaction %#010x from %s", transaction_id, addr
            )
            return
        session.datagram_received(data)

    def handle_transport_error(self, exc: Exception) -> None:
        """Handle an error reported by the socket.

        Only the session currently sending is failed. Errors that arrive
        later cannot be attributed to a tracker and are only logged; the
        affected sessions run into their retry timeouts.
        """
        sender = self._sender
        if sender is not None:
            self.logger.debug("Send to %s failed: %s", sender.url, exc)
            sender.transport_failed(exc)
            return
        self.logger.debug("UDP error: %s", exc)

    def handle_connection_lost(self, exc: Exception) -> None:
        """Fail every active session because the socket is gone."""
        self.logger.warning("UDP tracker socket lost: %s", exc)
        for session in list(self.sessions.values()):
            session.transport_failed(exc)

    async def resolve(self, host: str, port: int) -> tuple[str, int]:
        """Resolve a tracker host to an IPv4 socket address."""
        loop = asyncio.get_running_loop()
        try:
            infos = await loop.getaddrinfo(
                host, port, family=socket.AF_INET, type=socket.SOCK_DGRAM
            )
        except OSError as e:
            self.logger.warning("Failed to resolve tracker host %s: %s", host, e)
            msg = f"Failed to resolve tracker host {host}: {e}"
            raise TransportError(msg, {"host": host, "port": port}) from e
        if not infos:
            msg = f"No IPv4 address for tracker host {host}"
            raise TransportError(msg, {"host": host, "port": port})
        address = infos[0][4]
        return address[0], address[1]

    async def announce(self, torrent: TorrentMetadata, url: str) -> AnnounceResult:
        """Announce a torrent to one UDP tracker and return its peers.

        Args:
            torrent: Info hash and size of the torrent
            url: ``udp://host:port`` announce URL

        Raises:
            ValueError: If the URL is not a usable UDP tracker URL
            TrackerTimeoutError: The tracker never answered
            TrackerRejectedError: The tracker returned an error response
            TransportError: The socket or name resolution failed

        """
        if self.transport is None:
            msg = _ERROR_UDP_TRANSPORT_NOT_INITIALIZED
            raise RuntimeError(msg)

        host, port = parse_udp_url(url)
        with LoggingContext(
            "tracker_announce",
            log_level=logging.INFO,
            expected_exceptions=(UDPTrackerError, asyncio.CancelledError),
            url=url,
        ):
            address = await self.resolve(host, port)
            session = TrackerSession(
                self,
                address,
                torrent,
                self.our_peer_id,
                port=self.port,
                url=url,
                backoff=self.backoff,
                connection_ttl=self.config.tracker.connection_id_ttl,
            )
            session.start()
            try:
                return await session.wait()
            finally:
                session.abort()


class UDPTrackerProtocol(asyncio.DatagramProtocol):
    """UDP protocol handler for tracker communication."""

    def __init__(self, client: AsyncUDPTrackerClient):
        """Initialize UDP protocol handler."""
        self.client = client

    def datagram_received(self, data: bytes, addr: tuple[str, int]) -> None:
        """Handle incoming UDP datagram."""
        self.client.handle_response(data, addr)

    def error_received(self, exc: Exception) -> None:
        """Handle UDP error."""
        self.client.handle_transport_error(exc)

    def connection_lost(self, exc: Exception | None) -> None:
        """Handle the socket closing underneath active sessions."""
        if exc is not None:
            self.client.handle_connection_lost(exc)


async def get_peers(
    torrent: TorrentMetadata,
    url: str | None = None,
    *,
    peer_id: bytes | None = None,
    port: int | None = None,
    config: Config | None = None,
) -> AnnounceResult:
    """Announce ``torrent`` to a UDP tracker and return the peers it knows.

    Args:
        torrent: Info hash and size of the torrent
        url: Announce URL, ``torrent.announce`` when omitted
        peer_id: Our peer ID (20 bytes), generated when omitted
        port: Listening port reported to the tracker
        config: Configuration, the global one when omitted

    """
    url = url or torrent.announce
    if not url:
        msg = "No announce URL given and torrent has none"
        raise ValueError(msg)

    async with AsyncUDPTrackerClient(
        peer_id=peer_id, port=port, config=config
    ) as client:
        return await client.announce(torrent, url)
