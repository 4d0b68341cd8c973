"""Unit tests for the connect/announce tracker session.

Drives a session with virtual time and an in-memory transport.
"""

from __future__ import annotations

import asyncio
import struct

import pytest

from udptracker.discovery.tracker_session import (
    SessionState,
    TrackerSession,
    TransactionContext,
)
from udptracker.discovery.udp_messages import (
    Peer,
    decode_announce_request,
    decode_connect_request,
    encode_announce_response,
    encode_connect_response,
    encode_error_response,
)
from udptracker.utils.exceptions import (
    TrackerRejectedError,
    TrackerTimeoutError,
    TransportError,
)

pytestmark = [pytest.mark.unit, pytest.mark.tracker]

PEER_ID = b"-UT0100-abcdefghijkl"
CONNECTION_ID = 0x0102030405060708
TRACKER_ADDRESS = ("203.0.113.5", 6969)


@pytest.fixture
def session(transport, torrent, fake_loop, fake_clock):
    return TrackerSession(
        transport,
        TRACKER_ADDRESS,
        torrent,
        PEER_ID,
        port=6881,
        url="udp://tracker.example.com:6969/announce",
        clock=fake_clock,
        loop=fake_loop,
    )


def _last_transaction_id(transport) -> int:
    return struct.unpack("!I", transport.sent[-1][12:16])[0]


def _connect(session, transport, connection_id=CONNECTION_ID) -> None:
    session.datagram_received(
        encode_connect_response(_last_transaction_id(transport), connection_id)
    )


class TestTransactionContext:
    """Test connection id validity."""

    def test_no_connection(self):
        assert not TransactionContext().connection_valid(0.0)

    def test_expiry(self):
        context = TransactionContext(connection_id=1, connection_issued_at=100.0)

        assert context.connection_valid(159.9)
        assert not context.connection_valid(160.0)


class TestHandshake:
    """Test the connect → announce exchange."""

    @pytest.mark.asyncio
    async def test_start_sends_connect(self, session, transport):
        """Test start sends a connect request and registers its transaction."""
        session.start()

        assert session.state is SessionState.AWAITING_CONNECT
        assert len(transport.sent) == 1
        request = decode_connect_request(transport.sent[0])
        assert request.transaction_id == session.context.transaction_id
        assert transport.registry == {request.transaction_id: session}

    @pytest.mark.asyncio
    async def test_full_exchange(self, session, transport, torrent):
        """Test a connect response leads to an announce and then a result."""
        session.start()
        _connect(session, transport)

        assert session.state is SessionState.AWAITING_ANNOUNCE
        announce = transport.sent[1]
        assert len(announce) == 98
        assert announce[:8] == bytes.fromhex("0102030405060708")

        request = decode_announce_request(announce)
        assert request.info_hash == torrent.info_hash
        assert request.peer_id == PEER_ID
        assert request.left == 1000
        assert request.port == 6881
        assert list(transport.registry) == [request.transaction_id]

        session.datagram_received(
            encode_announce_response(
                request.transaction_id,
                1800,
                3,
                7,
                [Peer("192.168.1.1", 8080), Peer("10.0.0.2", 6881)],
            )
        )

        result = await session.wait()
        assert session.state is SessionState.SUCCEEDED
        assert result.url == "udp://tracker.example.com:6969/announce"
        assert result.interval == 1800
        assert (result.leechers, result.seeders) == (3, 7)
        assert [str(p) for p in result.peers] == ["192.168.1.1:8080", "10.0.0.2:6881"]
        assert transport.registry == {}

    @pytest.mark.asyncio
    async def test_empty_peer_list(self, session, transport):
        """Test a tracker with no peers still succeeds."""
        session.start()
        _connect(session, transport)
        session.datagram_received(
            encode_announce_response(_last_transaction_id(transport), 60, 0, 0, [])
        )

        result = await session.wait()
        assert result.peers == []

    @pytest.mark.asyncio
    async def test_start_twice(self, session):
        """Test a session can only be started once."""
        session.start()

        with pytest.raises(RuntimeError, match="already started"):
            session.start()

    @pytest.mark.asyncio
    async def test_wait_before_start(self, session):
        with pytest.raises(RuntimeError, match="not started"):
            await session.wait()


class TestDiscards:
    """Test datagrams that must not change the session."""

    @pytest.mark.asyncio
    async def test_transaction_id_mismatch_ignored(self, session, transport):
        """Test a response for another transaction is dropped."""
        session.start()
        wrong = (session.context.transaction_id + 1) & 0xFFFFFFFF

        session.datagram_received(encode_connect_response(wrong, CONNECTION_ID))

        assert session.state is SessionState.AWAITING_CONNECT
        assert session.context.connection_id is None
        assert session.discarded == 1
        assert len(transport.sent) == 1

    @pytest.mark.asyncio
    async def test_truncated_connect_response_discarded(self, session, transport):
        """Test a 10-byte datagram does not complete the connect."""
        session.start()
        data = struct.pack("!II", 0, session.context.transaction_id) + b"\x00\x00"

        session.datagram_received(data)

        assert session.state is SessionState.AWAITING_CONNECT
        assert session.discarded == 1

    @pytest.mark.asyncio
    async def test_wrong_action_discarded(self, session, transport):
        """Test an announce response while awaiting connect is dropped."""
        session.start()

        session.datagram_received(
            encode_announce_response(session.context.transaction_id, 60, 0, 0, [])
        )

        assert session.state is SessionState.AWAITING_CONNECT
        assert session.discarded == 1

    @pytest.mark.asyncio
    async def test_malformed_peer_list_discarded(self, session, transport):
        """Test an announce response with a broken peer block keeps waiting."""
        session.start()
        _connect(session, transport)
        data = encode_announce_response(_last_transaction_id(transport), 60, 0, 1, [])

        session.datagram_received(data + b"\x01\x02\x03")

        assert session.state is SessionState.AWAITING_ANNOUNCE
        assert session.discarded == 1

    @pytest.mark.asyncio
    async def test_stale_connect_transaction_ignored(self, session, transport):
        """Test the connect transaction id is retired once announcing."""
        session.start()
        connect_tid = session.context.transaction_id
        _connect(session, transport)

        session.datagram_received(encode_connect_response(connect_tid, 99))

        assert session.state is SessionState.AWAITING_ANNOUNCE
        assert session.context.connection_id == CONNECTION_ID
        assert connect_tid not in transport.registry

    @pytest.mark.asyncio
    async def test_datagram_after_success_ignored(self, session, transport):
        session.start()
        _connect(session, transport)
        tid = _last_transaction_id(transport)
        session.datagram_received(encode_announce_response(tid, 60, 0, 0, []))

        session.datagram_received(encode_error_response(tid, "late"))

        assert session.state is SessionState.SUCCEEDED
        assert (await session.wait()).interval == 60


class TestRetransmission:
    """Test timeouts, retransmits and giving up."""

    @pytest.mark.asyncio
    async def test_retransmits_same_request(self, session, transport, fake_loop):
        """Test a timed-out connect is resent unchanged."""
        session.start()

        fake_loop.advance(15)

        assert len(transport.sent) == 2
        assert transport.sent[0] == transport.sent[1]
        assert session.context.retry_count == 1

    @pytest.mark.asyncio
    async def test_times_out_after_nine_transmissions(
        self, session, transport, fake_loop
    ):
        """Test a silent tracker gets nine connect requests, then a timeout."""
        session.start()

        fake_loop.advance(100000)

        assert len(transport.sent) == 9
        assert transport.sent_at == [0, 15, 45, 105, 225, 465, 945, 1905, 3825]
        assert session.state is SessionState.FAILED
        assert transport.registry == {}
        with pytest.raises(TrackerTimeoutError) as exc_info:
            await session.wait()
        assert exc_info.value.details["attempts"] == 9

    @pytest.mark.asyncio
    async def test_announce_budget_restarts_after_connect(
        self, session, transport, fake_loop
    ):
        """Test the announce phase gets a fresh timeout sequence."""
        session.start()
        fake_loop.advance(45)
        assert session.scheduler.attempt == 2

        _connect(session, transport)

        assert session.scheduler.attempt == 0
        assert fake_loop.delays[-1] == 15.0

    @pytest.mark.asyncio
    async def test_expired_connection_reconnects(self, session, transport, fake_loop):
        """Test an announce retransmit after 60s fetches a new connection id."""
        session.start()
        _connect(session, transport)

        fake_loop.advance(45)
        assert [len(d) for d in transport.sent] == [16, 98, 98, 98]

        fake_loop.advance(60)
        assert len(transport.sent[-1]) == 16
        assert session.state is SessionState.AWAITING_CONNECT
        assert session.context.reconnects == 1
        assert session.context.connection_id is None

        _connect(session, transport, connection_id=0xAA)

        assert session.state is SessionState.AWAITING_ANNOUNCE
        assert transport.sent[-1][:8] == struct.pack("!Q", 0xAA)
        assert session.scheduler.attempt == 3
        assert fake_loop.delays[-1] == 120.0

    @pytest.mark.asyncio
    async def test_reconnects_do_not_extend_budget(
        self, session, transport, fake_loop
    ):
        """Test a tracker that only answers connects still times out."""
        session.start()
        _connect(session, transport)

        for _ in range(20):
            fake_loop.advance(4000)
            if session.done:
                break
            if session.state is SessionState.AWAITING_CONNECT:
                _connect(session, transport)

        assert session.state is SessionState.FAILED
        with pytest.raises(TrackerTimeoutError):
            await session.wait()


class TestFailures:
    """Test fatal outcomes."""

    @pytest.mark.asyncio
    async def test_error_response_during_connect(self, session, transport):
        """Test a tracker error ends the session."""
        session.start()

        session.datagram_received(
            encode_error_response(session.context.transaction_id, "go away")
        )

        assert session.state is SessionState.FAILED
        with pytest.raises(TrackerRejectedError, match="go away"):
            await session.wait()

    @pytest.mark.asyncio
    async def test_error_response_during_announce(self, session, transport):
        session.start()
        _connect(session, transport)

        session.datagram_received(
            encode_error_response(_last_transaction_id(transport), "unregistered torrent")
        )

        with pytest.raises(TrackerRejectedError) as exc_info:
            await session.wait()
        assert exc_info.value.details == {"state": "AWAITING_ANNOUNCE"}

    @pytest.mark.asyncio
    async def test_send_failure(self, session, transport, fake_loop):
        """Test an OSError from the socket fails the session."""
        transport.fail_with = OSError("Network is unreachable")

        session.start()

        assert session.state is SessionState.FAILED
        assert not fake_loop.pending
        with pytest.raises(TransportError, match="Network is unreachable"):
            await session.wait()

    @pytest.mark.asyncio
    async def test_transport_failed(self, session, transport):
        """Test a socket error reported by the transport fails the session."""
        session.start()

        session.transport_failed(ConnectionRefusedError("refused"))

        with pytest.raises(TransportError) as exc_info:
            await session.wait()
        assert isinstance(exc_info.value.__cause__, ConnectionRefusedError)


class TestAbort:
    """Test caller-initiated stops."""

    @pytest.mark.asyncio
    async def test_abort(self, session, transport, fake_loop):
        """Test abort releases the timer and the transaction id."""
        session.start()

        session.abort()

        assert session.state is SessionState.FAILED
        assert transport.registry == {}
        assert not fake_loop.pending
        with pytest.raises(asyncio.CancelledError):
            await session.wait()

    @pytest.mark.asyncio
    async def test_abort_after_success_is_noop(self, session, transport):
        session.start()
        _connect(session, transport)
        session.datagram_received(
            encode_announce_response(_last_transaction_id(transport), 60, 0, 0, [])
        )

        session.abort()

        assert session.state is SessionState.SUCCEEDED

    @pytest.mark.asyncio
    async def test_cancelled_waiter_aborts(self, session, transport):
        """Test cancelling the awaiting task stops the session."""
        session.start()
        waiter = asyncio.create_task(session.wait())
        await asyncio.sleep(0)

        waiter.cancel()
        with pytest.raises(asyncio.CancelledError):
            await waiter

        assert session.state is SessionState.FAILED
        assert transport.registry == {}
