"""UDP tracker wire messages (BEP 15).

Pure encode/decode of the fixed big-endian layouts exchanged with a UDP
tracker. Decoders only check structure; matching the action and transaction
id against the outstanding request is up to the caller.

https://www.bittorrent.org/beps/bep_0015.html
"""

from __future__ import annotations

import secrets
import struct
from dataclasses import dataclass, field
from enum import Enum

from udptracker.utils.exceptions import DecodeError, DecodeErrorReason

PROTOCOL_ID = 0x41727101980

CONNECT_REQUEST = struct.Struct("!QII")
CONNECT_RESPONSE = struct.Struct("!IIQ")
ANNOUNCE_REQUEST = struct.Struct("!QII20s20sQQQIIIiH")
ANNOUNCE_RESPONSE_HEADER = struct.Struct("!IIIII")
RESPONSE_HEADER = struct.Struct("!II")
COMPACT_PEER = struct.Struct("!4sH")

NUM_WANT_DEFAULT = -1


class TrackerAction(Enum):
    """UDP tracker actions."""

    CONNECT = 0
    ANNOUNCE = 1
    SCRAPE = 2
    ERROR = 3


class TrackerEvent(Enum):
    """Tracker announce events."""

    NONE = 0
    COMPLETED = 1
    STARTED = 2
    STOPPED = 3


@dataclass(frozen=True)
class Peer:
    """A peer address from a compact announce response."""

    ip: str
    port: int

    def __str__(self) -> str:
        return f"{self.ip}:{self.port}"


@dataclass
class ConnectRequest:
    """Decoded connect request."""

    protocol_id: int
    action: int
    transaction_id: int


@dataclass
class ConnectResponse:
    """Decoded connect response."""

    action: int
    transaction_id: int
    connection_id: int


@dataclass
class AnnounceRequest:
    """Decoded announce request."""

    connection_id: int
    action: int
    transaction_id: int
    info_hash: bytes
    peer_id: bytes
    downloaded: int
    left: int
    uploaded: int
    event: int
    ip: int
    key: int
    num_want: int
    port: int


@dataclass
class AnnounceResponse:
    """Decoded announce response."""

    action: int
    transaction_id: int
    interval: int
    leechers: int
    seeders: int
    peers: list[Peer] = field(default_factory=list)


@dataclass
class ErrorResponse:
    """Decoded error response."""

    action: int
    transaction_id: int
    message: str


def new_transaction_id() -> int:
    """Return an unpredictable 32-bit transaction id."""
    return secrets.randbits(32)


def _require_length(data: bytes, minimum: int, what: str) -> None:
    if len(data) < minimum:
        msg = f"{what} needs at least {minimum} bytes, got {len(data)}"
        raise DecodeError(
            DecodeErrorReason.TOO_SHORT,
            msg,
            {"length": len(data), "minimum": minimum},
        )


def peek_header(data: bytes) -> tuple[int, int]:
    """Return ``(action, transaction_id)`` from the first 8 bytes of a response."""
    _require_length(data, RESPONSE_HEADER.size, "Response header")
    return RESPONSE_HEADER.unpack_from(data)


def encode_connect_request(transaction_id: int | None = None) -> tuple[bytes, int]:
    """Build a 16-byte connect request.

    Returns:
        The datagram and the transaction id it carries

    """
    if transaction_id is None:
        transaction_id = new_transaction_id()
    data = CONNECT_REQUEST.pack(
        PROTOCOL_ID,
        TrackerAction.CONNECT.value,
        transaction_id,
    )
    return data, transaction_id


def decode_connect_request(data: bytes) -> ConnectRequest:
    """Decode a connect request (tracker side, used for round trips)."""
    _require_length(data, CONNECT_REQUEST.size, "Connect request")
    protocol_id, action, transaction_id = CONNECT_REQUEST.unpack_from(data)
    return ConnectRequest(protocol_id, action, transaction_id)


def decode_connect_response(data: bytes) -> ConnectResponse:
    """Decode a connect response."""
    _require_length(data, CONNECT_RESPONSE.size, "Connect response")
    action, transaction_id, connection_id = CONNECT_RESPONSE.unpack_from(data)
    return ConnectResponse(action, transaction_id, connection_id)


def encode_announce_request(
    connection_id: int,
    info_hash: bytes,
    left: int,
    peer_id: bytes,
    port: int,
    transaction_id: int | None = None,
    key: int | None = None,
) -> tuple[bytes, int]:
    """Build a 98-byte announce request.

    Downloaded and uploaded are always zero, the event is ``none``, the IP
    field is zero so the tracker uses the datagram's source address, and
    ``num_want`` is -1 (tracker default).

    Args:
        connection_id: Connection id from the connect response
        info_hash: 20-byte torrent info hash
        left: Bytes left to download
        peer_id: Our 20-byte peer id
        port: Port we accept peer connections on
        transaction_id: Explicit transaction id, random when omitted
        key: Explicit announce key, random when omitted

    Returns:
        The datagram and the transaction id it carries

    Raises:
        ValueError: If a field does not fit its wire width

    """
    if len(info_hash) != 20:
        msg = f"Invalid info_hash length: {len(info_hash)} (expected 20)"
        raise ValueError(msg)
    if len(peer_id) != 20:
        msg = f"Invalid peer_id length: {len(peer_id)} (expected 20)"
        raise ValueError(msg)
    if not 0 <= port <= 0xFFFF:
        msg = f"Invalid port: {port}"
        raise ValueError(msg)
    if left < 0:
        msg = f"Invalid left: {left}"
        raise ValueError(msg)

    if transaction_id is None:
        transaction_id = new_transaction_id()
    if key is None:
        key = secrets.randbits(32)

    data = ANNOUNCE_REQUEST.pack(
        connection_id,
        TrackerAction.ANNOUNCE.value,
        transaction_id,
        info_hash,
        peer_id,
        0,  # downloaded
        left,
        0,  # uploaded
        TrackerEvent.NONE.value,
        0,  # IP address (0 = use sender IP)
        key,
        NUM_WANT_DEFAULT,
        port,
    )
    return data, transaction_id


def decode_announce_request(data: bytes) -> AnnounceRequest:
    """Decode an announce request (tracker side, used for round trips)."""
    _require_length(data, ANNOUNCE_REQUEST.size, "Announce request")
    return AnnounceRequest(*ANNOUNCE_REQUEST.unpack_from(data))


def decode_peers(data: bytes) -> list[Peer]:
    """Decode a compact IPv4 peer block (6 bytes per peer)."""
    if len(data) % COMPACT_PEER.size:
        msg = f"Peer block length {len(data)} is not a multiple of {COMPACT_PEER.size}"
        raise DecodeError(
            DecodeErrorReason.MALFORMED_PEER_LIST,
            msg,
            {"length": len(data)},
        )
    return [
        Peer(ip=".".join(str(b) for b in ip_bytes), port=port)
        for ip_bytes, port in COMPACT_PEER.iter_unpack(data)
    ]


def decode_announce_response(data: bytes) -> AnnounceResponse:
    """Decode an announce response and its compact peer list."""
    _require_length(data, ANNOUNCE_RESPONSE_HEADER.size, "Announce response")
    action, transaction_id, interval, leechers, seeders = (
        ANNOUNCE_RESPONSE_HEADER.unpack_from(data)
    )
    peers = decode_peers(data[ANNOUNCE_RESPONSE_HEADER.size :])
    return AnnounceResponse(
        action=action,
        transaction_id=transaction_id,
        interval=interval,
        leechers=leechers,
        seeders=seeders,
        peers=peers,
    )


def decode_error_response(data: bytes) -> ErrorResponse:
    """Decode an error response; the message is UTF-8 text after the header."""
    action, transaction_id = peek_header(data)
    message = data[RESPONSE_HEADER.size :].decode("utf-8", errors="replace")
    return ErrorResponse(action, transaction_id, message)


def encode_connect_response(transaction_id: int, connection_id: int) -> bytes:
    """Build a connect response (tracker side)."""
    return CONNECT_RESPONSE.pack(
        TrackerAction.CONNECT.value, transaction_id, connection_id
    )


def encode_announce_response(
    transaction_id: int,
    interval: int,
    leechers: int,
    seeders: int,
    peers: list[Peer],
) -> bytes:
    """Build an announce response with a compact peer list (tracker side)."""
    header = ANNOUNCE_RESPONSE_HEADER.pack(
        TrackerAction.ANNOUNCE.value,
        transaction_id,
        interval,
        leechers,
        seeders,
    )
    body = b"".join(
        COMPACT_PEER.pack(bytes(int(octet) for octet in peer.ip.split(".")), peer.port)
        for peer in peers
    )
    return header + body


def encode_error_response(transaction_id: int, message: str) -> bytes:
    """Build an error response (tracker side)."""
    return RESPONSE_HEADER.pack(
        TrackerAction.ERROR.value, transaction_id
    ) + message.encode("utf-8")
