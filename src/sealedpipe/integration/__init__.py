# Integration Module
"""
Security event logging shared by servers, clients and sessions.

Events are emitted through an injected logging.Logger; nothing here
keeps process-wide state.
"""

from .event_logger import (
    EventType,
    SecurityEvent,
    EventLogger,
    create_event_logger,
)

__all__ = [
    'EventType',
    'SecurityEvent',
    'EventLogger',
    'create_event_logger',
]
