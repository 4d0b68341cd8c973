"""Unit tests for udptracker models."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from udptracker.models import Config, TorrentMetadata, TrackerConfig

pytestmark = [pytest.mark.unit]


class TestTorrentMetadata:
    """Test TorrentMetadata validation."""

    def test_from_hex(self):
        torrent = TorrentMetadata.from_hex(
            "000102030405060708090a0b0c0d0e0f10111213", 100, name="t"
        )

        assert torrent.info_hash == bytes(range(20))
        assert torrent.total_length == 100
        assert torrent.name == "t"
        assert torrent.announce is None

    def test_invalid_hex(self):
        with pytest.raises(ValueError, match="Invalid hex info hash"):
            TorrentMetadata.from_hex("zz" * 20, 0)

    def test_info_hash_length(self):
        with pytest.raises(ValidationError, match="info_hash must be 20 bytes"):
            TorrentMetadata(info_hash=b"x" * 19, total_length=0)

    def test_negative_length(self):
        with pytest.raises(ValidationError):
            TorrentMetadata(info_hash=b"x" * 20, total_length=-1)


class TestTrackerConfig:
    """Test TrackerConfig bounds."""

    def test_defaults(self):
        config = Config()

        assert config.tracker.bind_host == "0.0.0.0"
        assert config.tracker.bind_port == 0
        assert config.tracker.peer_id_prefix == "-UT0100-"

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"retry_base_timeout": 0},
            {"max_retry_exponent": 9},
            {"connection_id_ttl": 60.5},
            {"announce_port": 65536},
            {"peer_id_prefix": "x" * 21},
        ],
    )
    def test_out_of_range(self, kwargs):
        with pytest.raises(ValidationError):
            TrackerConfig(**kwargs)
