"""Connect/announce state machine for one UDP tracker and one torrent.

A session sends a connect request, trades the returned connection id for an
announce, and resolves with the tracker's peer list. Datagrams are delivered
by the owning transport, which routes them by transaction id; anything that
does not decode or does not match the outstanding request is dropped.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol

from udptracker.discovery.retry import RetryScheduler
from udptracker.discovery.udp_messages import (
    AnnounceResponse,
    ConnectResponse,
    ErrorResponse,
    Peer,
    TrackerAction,
    decode_announce_response,
    decode_connect_response,
    decode_error_response,
    encode_announce_request,
    encode_connect_request,
    peek_header,
)
from udptracker.utils.exceptions import (
    ProtocolError,
    ProtocolMismatch,
    TrackerRejectedError,
    TrackerTimeoutError,
    TransportError,
    UDPTrackerError,
)
from udptracker.utils.logging_config import get_correlation_id
from udptracker.utils.time import Clock

if TYPE_CHECKING:
    from udptracker.models import TorrentMetadata
    from udptracker.utils.backoff import ExponentialBackoff

logger = logging.getLogger(__name__)

CONNECTION_ID_TTL = 60.0


class SessionState(Enum):
    """Tracker session states."""

    IDLE = "IDLE"
    AWAITING_CONNECT = "AWAITING_CONNECT"
    AWAITING_ANNOUNCE = "AWAITING_ANNOUNCE"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


_TERMINAL_STATES = frozenset({SessionState.SUCCEEDED, SessionState.FAILED})


@dataclass
class TransactionContext:
    """Per-session protocol state."""

    transaction_id: int | None = None
    connection_id: int | None = None
    connection_issued_at: float | None = None
    retry_count: int = 0
    # Fresh connects forced by connection id expiry
    reconnects: int = 0

    def connection_valid(self, now: float, ttl: float = CONNECTION_ID_TTL) -> bool:
        """Whether the stored connection id may still be used."""
        if self.connection_id is None or self.connection_issued_at is None:
            return False
        return now - self.connection_issued_at < ttl


@dataclass
class AnnounceResult:
    """Peers and swarm statistics returned by a tracker."""

    url: str
    interval: int
    leechers: int
    seeders: int
    peers: list[Peer] = field(default_factory=list)


class TrackerTransport(Protocol):
    """What a session needs from the datagram transport."""

    def send(
        self, data: bytes, address: tuple[str, int], session: TrackerSession
    ) -> None:
        """Send one datagram on behalf of ``session``."""

    def register(self, transaction_id: int, session: TrackerSession) -> None:
        """Route responses carrying ``transaction_id`` to ``session``."""

    def unregister(self, transaction_id: int, session: TrackerSession) -> None:
        """Stop routing ``transaction_id`` to ``session``."""


class TrackerSession:
    """Drives connect → announce against one tracker address."""

    def __init__(
        self,
        transport: TrackerTransport,
        address: tuple[str, int],
        torrent: TorrentMetadata,
        peer_id: bytes,
        port: int = 6881,
        url: str | None = None,
        backoff: ExponentialBackoff | None = None,
        connection_ttl: float = CONNECTION_ID_TTL,
        clock: Clock | None = None,
        loop: Any | None = None,
    ):
        """Initialize a tracker session.

        Args:
            transport: Datagram transport and transaction registry
            address: Resolved ``(ip, port)`` of the tracker
            torrent: Info hash and size of the torrent being announced
            peer_id: Our 20-byte peer id
            port: Port we accept peer connections on
            url: Announce URL, for logs and the result
            backoff: Retransmission timeout policy
            connection_ttl: Seconds a connection id stays valid
            clock: Time source for connection id expiry
            loop: Timer source for retransmissions (the running loop by default)

        """
        self.transport = transport
        self.address = address
        self.torrent = torrent
        self.peer_id = peer_id
        self.port = port
        self.url = url or f"udp://{address[0]}:{address[1]}"
        self.connection_ttl = connection_ttl
        self.clock = clock or Clock()

        self.state = SessionState.IDLE
        self.context = TransactionContext()
        self.scheduler = RetryScheduler(self._on_retry_exhausted, backoff, loop)
        # Counts datagrams dropped as undecodable or unrelated
        self.discarded = 0

        self._outstanding: bytes | None = None
        self._result: asyncio.Future[AnnounceResult] | None = None
        self.correlation_id = get_correlation_id() or str(uuid.uuid4())
        self.logger = logging.LoggerAdapter(
            logger, {"correlation_id": self.correlation_id}
        )

    @property
    def done(self) -> bool:
        """Whether the session reached a terminal state."""
        return self.state in _TERMINAL_STATES

    def start(self) -> None:
        """Send the connect request and start waiting for the tracker."""
        if self.state is not SessionState.IDLE:
            msg = f"Session for {self.url} already started"
            raise RuntimeError(msg)

        self._result = asyncio.get_running_loop().create_future()
        self.logger.debug("Announcing %s to %s", self.torrent.info_hash.hex(), self.url)
        self._send_connect()

    async def wait(self) -> AnnounceResult:
        """Wait for the announce to complete.

        Raises:
            TrackerTimeoutError: The tracker never answered
            TrackerRejectedError: The tracker returned an error response
            TransportError: The socket failed

        """
        if self._result is None:
            msg = "Session not started"
            raise RuntimeError(msg)
        try:
            return await self._result
        except asyncio.CancelledError:
            self.abort()
            raise

    def abort(self) -> None:
        """Stop the session without notifying the tracker."""
        if self.done:
            return
        self._finish(SessionState.FAILED)
        if self._result is not None and not self._result.done():
            self._result.cancel()
        self.logger.debug("Session for %s aborted", self.url)

    def datagram_received(self, data: bytes) -> None:
        """Handle a datagram routed to this session."""
        if self.done or self.state is SessionState.IDLE:
            return

        try:
            response = self._decode(data)
        except ProtocolError as e:
            self.discarded += 1
            self.logger.debug("Discarding datagram from %s: %s", self.url, e)
            return

        if isinstance(response, ErrorResponse):
            self._fail(
                TrackerRejectedError(
                    f"Tracker {self.url} rejected request: {response.message}",
                    {"state": self.state.value},
                )
            )
        elif isinstance(response, ConnectResponse):
            self._on_connect_response(response)
        else:
            self._on_announce_response(response)

    def transport_failed(self, exc: Exception) -> None:
        """Fail immediately because the underlying socket is unusable."""
        error = TransportError(f"Transport failed for {self.url}: {exc}")
        error.__cause__ = exc
        self._fail(error)

    def _decode(self, data: bytes) -> ConnectResponse | AnnounceResponse | ErrorResponse:
        action, transaction_id = peek_header(data)
        if transaction_id != self.context.transaction_id:
            msg = f"Unexpected transaction id {transaction_id:#010x}"
            raise ProtocolMismatch(msg)
        if action == TrackerAction.ERROR.value:
            return decode_error_response(data)

        if self.state is SessionState.AWAITING_CONNECT:
            if action != TrackerAction.CONNECT.value:
                msg = f"Expected connect response, got action {action}"
                raise ProtocolMismatch(msg)
            return decode_connect_response(data)

        if action != TrackerAction.ANNOUNCE.value:
            msg = f"Expected announce response, got action {action}"
            raise ProtocolMismatch(msg)
        return decode_announce_response(data)

    def _on_connect_response(self, response: ConnectResponse) -> None:
        self.scheduler.cancel()
        self.context.connection_id = response.connection_id
        self.context.connection_issued_at = self.clock.now()
        if self.context.reconnects == 0:
            self.scheduler.reset()
        self.logger.debug(
            "Connected to %s: connection_id=%#018x", self.url, response.connection_id
        )
        self._transition(SessionState.AWAITING_ANNOUNCE)
        self._send_announce()

    def _on_announce_response(self, response: AnnounceResponse) -> None:
        result = AnnounceResult(
            url=self.url,
            interval=response.interval,
            leechers=response.leechers,
            seeders=response.seeders,
            peers=response.peers,
        )
        self._finish(SessionState.SUCCEEDED)
        if self._result is not None and not self._result.done():
            self._result.set_result(result)
        self.logger.info(
            "Got %d peers from %s (seeders=%d leechers=%d interval=%ds)",
            len(result.peers),
            self.url,
            result.seeders,
            result.leechers,
            result.interval,
        )

    def _send_connect(self) -> None:
        self._transition(SessionState.AWAITING_CONNECT)
        data, transaction_id = encode_connect_request()
        self._send_request(data, transaction_id)

    def _send_announce(self) -> None:
        connection_id = self.context.connection_id
        if connection_id is None:  # pragma: no cover - set by the connect response
            msg = "No connection id"
            raise RuntimeError(msg)
        data, transaction_id = encode_announce_request(
            connection_id,
            self.torrent.info_hash,
            self.torrent.total_length,
            self.peer_id,
            self.port,
        )
        self._send_request(data, transaction_id)

    def _send_request(self, data: bytes, transaction_id: int) -> None:
        """Make ``data`` the outstanding request, arm its timer and send it."""
        if self.context.transaction_id is not None:
            self.transport.unregister(self.context.transaction_id, self)
        self.context.transaction_id = transaction_id
        self._outstanding = data
        self.transport.register(transaction_id, self)
        # Arm before sending; a reply may be delivered synchronously
        if not self.scheduler.pending:
            self.scheduler.arm(self._retransmit)
        self._transmit()

    def _transmit(self) -> None:
        if self._outstanding is None:  # pragma: no cover - set before any send
            return
        try:
            self.transport.send(self._outstanding, self.address, self)
        except OSError as e:
            self.transport_failed(e)

    def _retransmit(self, attempt: int) -> None:
        self.context.retry_count = attempt
        if self.state is SessionState.AWAITING_ANNOUNCE and not self.context.connection_valid(
            self.clock.now(), self.connection_ttl
        ):
            self.logger.debug(
                "Connection id for %s expired, reconnecting (attempt %d)",
                self.url,
                attempt,
            )
            self.context.reconnects += 1
            self.context.connection_id = None
            self.context.connection_issued_at = None
            self._send_connect()
            return

        self.logger.debug(
            "Retransmitting %s request to %s (attempt %d, transaction %#010x)",
            "connect" if self.state is SessionState.AWAITING_CONNECT else "announce",
            self.url,
            attempt,
            self.context.transaction_id,
        )
        self._transmit()

    def _on_retry_exhausted(self) -> None:
        attempts = self.scheduler.attempt + 1
        self._fail(
            TrackerTimeoutError(
                f"No response from tracker {self.url} after {attempts} attempts",
                {"state": self.state.value, "attempts": attempts},
            )
        )

    def _fail(self, error: UDPTrackerError) -> None:
        if self.done:
            return
        previous = self.state
        self._finish(SessionState.FAILED)
        if self._result is not None and not self._result.done():
            self._result.set_exception(error)
        self.logger.warning(
            "Announce to %s failed in %s: %s", self.url, previous.value, error
        )

    def _finish(self, state: SessionState) -> None:
        self.scheduler.cancel()
        if self.context.transaction_id is not None:
            self.transport.unregister(self.context.transaction_id, self)
        self._outstanding = None
        self._transition(state)

    def _transition(self, state: SessionState) -> None:
        if state is not self.state:
            self.logger.debug(
                "Session %s: %s -> %s", self.url, self.state.value, state.value
            )
            self.state = state
