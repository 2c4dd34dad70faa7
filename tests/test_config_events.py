"""
Tests for configuration and security event logging.
"""

import logging

import pytest

from sealedpipe.config import DEFAULT_MAX_MESSAGE_SIZE, TransportConfig
from sealedpipe.integration.event_logger import (
    EventLogger, EventType, SecurityEvent, create_event_logger
)


class TestTransportConfig:
    """Tests for TransportConfig."""

    def test_defaults(self):
        config = TransportConfig()
        assert config.max_message_size == DEFAULT_MAX_MESSAGE_SIZE == 32768
        assert config.handshake_timeout is None

    def test_from_env(self):
        config = TransportConfig.from_env({
            "SEALEDPIPE_MAX_MESSAGE_SIZE": "3072",
            "SEALEDPIPE_HANDSHAKE_TIMEOUT": "2.5",
            "SEALEDPIPE_HOST": "0.0.0.0",
        })
        assert config.max_message_size == 3072
        assert config.handshake_timeout == 2.5
        assert config.host == "0.0.0.0"

    def test_from_empty_env(self):
        assert TransportConfig.from_env({}) == TransportConfig()

    def test_malformed_env(self):
        with pytest.raises(ValueError):
            TransportConfig.from_env({"SEALEDPIPE_MAX_MESSAGE_SIZE": "big"})

    def test_non_positive_size(self):
        with pytest.raises(ValueError):
            TransportConfig(max_message_size=0).validate()
        with pytest.raises(ValueError):
            TransportConfig.from_env({"SEALEDPIPE_MAX_MESSAGE_SIZE": "-1"})

    def test_with_overrides(self):
        config = TransportConfig().with_overrides(max_message_size=10)
        assert config.max_message_size == 10
        with pytest.raises(ValueError):
            TransportConfig().with_overrides(handshake_timeout=-1)


class TestEventLogger:
    """Tests for security event logging."""

    def test_log_event(self):
        events = EventLogger()
        event = events.log_event(EventType.MESSAGE_SEND, "127.0.0.1:4000", size=5)
        assert events.get_events() == [event]
        assert event.details == {'size': 5}

    def test_filter_by_type(self):
        events = EventLogger()
        events.log_message_send("a", 5, 53)
        events.log_message_receive("a", 5)
        assert len(events.get_events(EventType.MESSAGE_RECEIVE)) == 1

    def test_record_round_trip(self):
        event = SecurityEvent(EventType.KEY_EXCHANGE, "peer", 1700000000.0,
                              {'algo': 'X25519-HKDF-SHA256'})
        parsed = SecurityEvent.from_record(event.to_record())
        assert parsed == event

    def test_levels(self, caplog):
        events = create_event_logger("sealedpipe.test")
        with caplog.at_level(logging.INFO, logger="sealedpipe.test"):
            events.log_message_receive("peer", 3)
            events.log_event(EventType.DECRYPTION_FAILED, "peer")
        levels = [r.levelno for r in caplog.records]
        assert levels == [logging.INFO, logging.WARNING]
        assert '"type":"decryption_failed"' in caplog.records[1].getMessage()

    def test_callbacks(self):
        events = EventLogger()
        seen = []
        events.add_callback(seen.append)
        events.log_event(EventType.SYSTEM_START)
        events.remove_callback(seen.append)
        events.log_event(EventType.SYSTEM_SHUTDOWN)
        assert [e.event_type for e in seen] == [EventType.SYSTEM_START]

    def test_history_is_bounded(self):
        events = EventLogger(history_size=3)
        for i in range(10):
            events.log_message_receive("peer", i)
        assert [e.details['size'] for e in events.get_events()] == [7, 8, 9]

    def test_no_key_material_in_records(self):
        events = EventLogger()
        event = events.log_key_exchange("peer", "aa:bb", "cc:dd")
        assert set(event.details) == {'own_key', 'peer_key', 'algo'}
