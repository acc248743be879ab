"""
Event Logger Module

Records every security-relevant action of a SecureComm process as a
SecurityEvent and forwards it to the process logger.

Features:
- Session establishment / termination events
- Authentication and key agreement failures
- Channel open / close events
- Message sent / received / dropped events
- Usernames stored only as SHA-256 hashes
- In-memory audit trail with simple queries
"""

import hashlib
import json
import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, List, Dict, Any, Callable


# ============================================================================
# Constants
# ============================================================================

DEFAULT_CAPACITY = 10000  # Oldest events are discarded beyond this
EVENT_VERSION = "1.0"


# ============================================================================
# Privacy Functions
# ============================================================================

def get_user_hash(username: str) -> str:
    """
    SHA-256 of a username, hex encoded.

    Usernames never reach the audit trail or the log file; events for the
    same principal still correlate through this value.
    """
    return hashlib.sha256(username.encode()).hexdigest()


# ============================================================================
# Event Types
# ============================================================================

class EventType(Enum):
    """What happened. Values appear as the "type" of each record."""

    # Session events
    SESSION_ESTABLISHED = "session_established"
    SESSION_TERMINATED = "session_terminated"
    AUTH_FAILED = "auth_failed"
    KEY_AGREEMENT_FAILED = "key_agreement_failed"

    # Channel events
    CHANNEL_OPENED = "channel_opened"
    CHANNEL_CLOSED = "channel_closed"

    # Messaging events
    MESSAGE_SENT = "message_sent"
    MESSAGE_RECEIVED = "message_received"
    MESSAGE_DROPPED = "message_dropped"

    # System events
    SYSTEM_START = "system_start"
    SYSTEM_SHUTDOWN = "system_shutdown"


# Events logged at WARNING instead of INFO
_WARNING_EVENTS = {
    EventType.AUTH_FAILED,
    EventType.KEY_AGREEMENT_FAILED,
    EventType.MESSAGE_DROPPED,
}

# High-volume events logged at DEBUG
_DEBUG_EVENTS = {
    EventType.MESSAGE_SENT,
    EventType.MESSAGE_RECEIVED,
}


# ============================================================================
# Event Structure
# ============================================================================

@dataclass
class SecurityEvent:
    """One audit trail entry. `user_hash` is "system" for process events."""
    event_type: EventType
    user_hash: str
    timestamp: int  # seconds since the epoch
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def when(self) -> datetime:
        return datetime.fromtimestamp(self.timestamp)

    def to_record(self) -> str:
        """One-line JSON form, as written to the log and by export_log()."""
        record = {
            'version': EVENT_VERSION,
            'type': self.event_type.value,
            'user': self.user_hash[:16],
            'time': self.timestamp,
            'iso_time': self.when.isoformat(),
            'details': self.details,
        }
        return json.dumps(record, separators=(',', ':'))

    @classmethod
    def from_record(cls, record: str) -> 'SecurityEvent':
        """Inverse of to_record(). The user hash comes back shortened."""
        data = json.loads(record)
        return cls(EventType(data['type']), data['user'], data['time'],
                   data.get('details', {}))

    def __str__(self) -> str:
        stamp = self.when.strftime('%Y-%m-%d %H:%M:%S')
        return f"[{stamp}] {self.event_type.value} | user:{self.user_hash[:8]}..."


# ============================================================================
# Event Logger
# ============================================================================

class EventLogger:
    """
    Security audit trail for one SecureComm process.

    Events are kept in memory and mirrored to a stdlib logger. Safe to use
    from the inbound and outbound threads of several channels at once.
    """

    def __init__(
        self,
        logger: Optional[logging.Logger] = None,
        capacity: int = DEFAULT_CAPACITY,
        node: str = "securecomm"
    ):
        """
        Args:
            logger: Logger receiving one line per event
            capacity: Maximum number of events kept in memory
            node: Name recorded with system events
        """
        self._logger = logger or logging.getLogger("securecomm.events")
        self._events = deque(maxlen=capacity)
        self._lock = threading.Lock()
        self._node = node
        self._callbacks: List[Callable[[SecurityEvent], None]] = []

        self._store(SecurityEvent(EventType.SYSTEM_START, "system", int(time.time()),
                                  {'node': node}))

    def _record(self, event_type: EventType, username: str, **details) -> SecurityEvent:
        """Build an event for a hashed principal and store it."""
        event = SecurityEvent(event_type, get_user_hash(username), int(time.time()), details)
        self._store(event)
        return event

    def _store(self, event: SecurityEvent) -> None:
        with self._lock:
            self._events.append(event)
            observers = list(self._callbacks)

        if event.event_type in _WARNING_EVENTS:
            level = logging.WARNING
        elif event.event_type in _DEBUG_EVENTS:
            level = logging.DEBUG
        else:
            level = logging.INFO
        self._logger.log(level, "event %s", event.to_record())

        for observer in observers:
            try:
                observer(event)
            except Exception:
                self._logger.exception("Event callback %r failed", observer)

    def add_callback(self, callback: Callable[[SecurityEvent], None]) -> None:
        """Register an observer called with every new event."""
        with self._lock:
            self._callbacks.append(callback)

    def remove_callback(self, callback: Callable[[SecurityEvent], None]) -> None:
        with self._lock:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

    # ========================================================================
    # Session Events
    # ========================================================================

    def log_session_established(
        self,
        username: str,
        algorithm: str = "DH-MODP2048/HKDF-SHA256"
    ) -> SecurityEvent:
        """
        Record a session that finished authentication and key agreement.

        Args:
            username: The authenticated principal (hashed before storing)
            algorithm: Key agreement and derivation used

        Returns:
            The recorded event
        """
        return self._record(EventType.SESSION_ESTABLISHED, username, algo=algorithm)

    def log_session_terminated(self, username: str) -> SecurityEvent:
        """Record a session whose key has been erased."""
        return self._record(EventType.SESSION_TERMINATED, username)

    def log_auth_failed(self, username: str) -> SecurityEvent:
        return self._record(EventType.AUTH_FAILED, username)

    def log_key_agreement_failed(self, username: str, reason: str) -> SecurityEvent:
        # Reasons come from exception text; keep records bounded
        return self._record(EventType.KEY_AGREEMENT_FAILED, username, reason=reason[:120])

    # ========================================================================
    # Channel Events
    # ========================================================================

    def log_channel_opened(self, username: str, peer: str) -> SecurityEvent:
        return self._record(EventType.CHANNEL_OPENED, username, peer=peer)

    def log_channel_closed(
        self,
        username: str,
        peer: str,
        sent: int = 0,
        received: int = 0,
        dropped: int = 0
    ) -> SecurityEvent:
        """Record the end of a duplex channel with its message counts."""
        return self._record(EventType.CHANNEL_CLOSED, username, peer=peer,
                            sent=sent, received=received, dropped=dropped)

    # ========================================================================
    # Messaging Events
    # ========================================================================

    def log_message_sent(self, username: str, frame_size: int) -> SecurityEvent:
        return self._record(EventType.MESSAGE_SENT, username, size=frame_size)

    def log_message_received(self, username: str, frame_size: int) -> SecurityEvent:
        return self._record(EventType.MESSAGE_RECEIVED, username, size=frame_size)

    def log_message_dropped(
        self,
        username: str,
        reason: str,
        frame_size: int
    ) -> SecurityEvent:
        """
        Record a frame that was discarded.

        Args:
            username: Local principal (hashed before storing)
            reason: Exception class name, e.g. "AuthTagError"
            frame_size: Size of the rejected frame in bytes
        """
        return self._record(EventType.MESSAGE_DROPPED, username,
                            reason=reason, size=frame_size)

    def log_shutdown(self) -> SecurityEvent:
        event = SecurityEvent(EventType.SYSTEM_SHUTDOWN, "system", int(time.time()),
                              {'node': self._node})
        self._store(event)
        return event

    # ========================================================================
    # Retrieval
    # ========================================================================

    def get_all_events(self) -> List[SecurityEvent]:
        """Events still held in memory, oldest first."""
        with self._lock:
            return list(self._events)

    def get_user_events(self, username: str) -> List[SecurityEvent]:
        wanted = get_user_hash(username)
        return [e for e in self.get_all_events() if e.user_hash == wanted]

    def get_events_by_type(self, event_type: EventType) -> List[SecurityEvent]:
        return [e for e in self.get_all_events() if e.event_type is event_type]

    def get_recent_events(self, count: int = 10) -> List[SecurityEvent]:
        return self.get_all_events()[-count:] if count > 0 else []

    def export_log(self) -> str:
        """The audit trail as JSON lines."""
        return "\n".join(e.to_record() for e in self.get_all_events())

    def print_audit_log(self, last_n: Optional[int] = None) -> None:
        """Print the audit trail for an operator."""
        trail = self.get_all_events()
        shown = trail[-last_n:] if last_n else trail
        rule = "=" * 70

        print(f"\n{rule}\nSECURITY AUDIT LOG\n{rule}")
        for event in shown:
            print(event)
            for key, value in event.details.items():
                print(f"    {key}: {value}")
        print(f"{rule}\nTotal events: {len(trail)}\n{rule}")
