"""
Event Logger Module

Structured security-event logging for connections and sessions.

Every security-relevant step (connection accepted, key exchange, message
sent or received, authentication failure) becomes a SecurityEvent, which is:
- written as one compact JSON record to an injected logging.Logger
- kept in a bounded in-memory history
- handed to registered callbacks

Only key fingerprints and sizes are recorded. Key material and plaintext
never reach the log.
"""

import json
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Optional


# ============================================================================
# Constants
# ============================================================================

EVENT_VERSION = "1.0"
DEFAULT_HISTORY_SIZE = 1000


# ============================================================================
# Event Types
# ============================================================================

class EventType(Enum):
    """Types of security events that can be logged."""

    # Connection lifecycle
    CONNECTION_OPENED = "connection_opened"
    CONNECTION_CLOSED = "connection_closed"

    # Handshake
    KEY_EXCHANGE = "key_exchange"
    KEY_EXCHANGE_FAILED = "key_exchange_failed"

    # Transport
    MESSAGE_SEND = "message_send"
    MESSAGE_RECEIVE = "message_receive"
    MESSAGE_TOO_LARGE = "message_too_large"
    DECRYPTION_FAILED = "decryption_failed"

    # System events
    SYSTEM_START = "system_start"
    SYSTEM_SHUTDOWN = "system_shutdown"


FAILURE_EVENTS = frozenset({
    EventType.KEY_EXCHANGE_FAILED,
    EventType.MESSAGE_TOO_LARGE,
    EventType.DECRYPTION_FAILED,
})


# ============================================================================
# Event Structure
# ============================================================================

@dataclass
class SecurityEvent:
    """A single security event."""
    event_type: EventType
    peer: str        # "host:port", "memory", or "system"
    timestamp: float
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_failure(self) -> bool:
        return self.event_type in FAILURE_EVENTS

    def to_record(self) -> str:
        """Convert event to a compact JSON log record."""
        return json.dumps({
            'version': EVENT_VERSION,
            'type': self.event_type.value,
            'peer': self.peer,
            'time': self.timestamp,
            'iso_time': datetime.fromtimestamp(self.timestamp).isoformat(),
            'details': self.details,
        }, separators=(',', ':'))

    @classmethod
    def from_record(cls, record: str) -> 'SecurityEvent':
        """Parse event from a JSON log record."""
        data = json.loads(record)
        return cls(
            event_type=EventType(data['type']),
            peer=data['peer'],
            timestamp=data['time'],
            details=data.get('details', {}),
        )

    def __str__(self) -> str:
        dt = datetime.fromtimestamp(self.timestamp)
        return (
            f"[{dt.strftime('%Y-%m-%d %H:%M:%S')}] "
            f"{self.event_type.value} | peer:{self.peer}"
        )


# ============================================================================
# Event Logger
# ============================================================================

class EventLogger:
    """
    Security event sink handed to servers, clients and sessions.

    Thread-safe for appends: per-connection threads share one EventLogger,
    and deque.append is atomic.
    """

    def __init__(self, logger: Optional[logging.Logger] = None,
                 history_size: int = DEFAULT_HISTORY_SIZE):
        """
        Initialize the event logger.

        Args:
            logger: Destination logger (sealedpipe.events if None)
            history_size: Number of recent events kept in memory
        """
        self._logger = logger or logging.getLogger("sealedpipe.events")
        self._history: Deque[SecurityEvent] = deque(maxlen=history_size)
        self._callbacks: List[Callable[[SecurityEvent], None]] = []

    @property
    def logger(self) -> logging.Logger:
        """Underlying logger, for free-form debug output."""
        return self._logger

    def add_callback(self, callback: Callable[[SecurityEvent], None]) -> None:
        """Add a callback to be notified of new events."""
        self._callbacks.append(callback)

    def remove_callback(self, callback: Callable[[SecurityEvent], None]) -> None:
        """Remove a callback."""
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def log_event(self, event_type: EventType, peer: str = "system",
                  **details: Any) -> SecurityEvent:
        """
        Record one event.

        Args:
            event_type: What happened
            peer: Remote endpoint the event concerns
            **details: JSON-serializable extra fields

        Returns:
            The logged event
        """
        event = SecurityEvent(
            event_type=event_type,
            peer=peer,
            timestamp=time.time(),
            details=details,
        )
        self._history.append(event)

        level = logging.WARNING if event.is_failure else logging.INFO
        self._logger.log(level, event.to_record())

        for callback in list(self._callbacks):
            callback(event)
        return event

    # ========================================================================
    # Handshake Events
    # ========================================================================

    def log_key_exchange(self, peer: str, own_key: str, peer_key: str,
                         algorithm: str = "X25519-HKDF-SHA256") -> SecurityEvent:
        """Log a completed key exchange (fingerprints only)."""
        return self.log_event(
            EventType.KEY_EXCHANGE, peer,
            own_key=own_key, peer_key=peer_key, algo=algorithm,
        )

    def log_key_exchange_failed(self, peer: str, error: Exception) -> SecurityEvent:
        return self.log_event(EventType.KEY_EXCHANGE_FAILED, peer, error=str(error))

    # ========================================================================
    # Transport Events
    # ========================================================================

    def log_message_send(self, peer: str, size: int, wire_size: int) -> SecurityEvent:
        return self.log_event(EventType.MESSAGE_SEND, peer, size=size, wire_size=wire_size)

    def log_message_receive(self, peer: str, size: int) -> SecurityEvent:
        return self.log_event(EventType.MESSAGE_RECEIVE, peer, size=size)

    # ========================================================================
    # Queries
    # ========================================================================

    def get_events(self, event_type: Optional[EventType] = None) -> List[SecurityEvent]:
        """
        Recent events, oldest first.

        Args:
            event_type: Only return events of this type if given
        """
        events = list(self._history)
        if event_type is not None:
            events = [e for e in events if e.event_type == event_type]
        return events

    def get_statistics(self) -> Dict[str, int]:
        """Event counts by type for the retained history."""
        stats: Dict[str, int] = {}
        for event in list(self._history):
            stats[event.event_type.value] = stats.get(event.event_type.value, 0) + 1
        return stats

    def clear(self) -> None:
        self._history.clear()


def create_event_logger(name: str = "sealedpipe.events",
                        history_size: int = DEFAULT_HISTORY_SIZE) -> EventLogger:
    """Create an EventLogger writing to the named logger."""
    return EventLogger(logging.getLogger(name), history_size)
