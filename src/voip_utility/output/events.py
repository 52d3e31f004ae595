# src/voip_utility/output/events.py
"""
Machine-readable event stream.
Defines the JSON-lines events written while a test runs so that automation
can follow registration, call progress, tone digits and beeps. Uses Pydantic
for validation and serialization; every event carries a type and an ISO
timestamp.
"""

import sys
import threading
from datetime import datetime, timezone
from enum import Enum
from typing import IO, Any, Dict, Optional, List

from pydantic import BaseModel, Field, field_validator


class EventType(str, Enum):
    """Types of events written to the event stream"""
    REGISTERING = "registering"
    REGISTERED = "registered"
    REGISTRATION_FAILED = "registration_failed"
    UNREGISTERED = "unregistered"
    CALLING = "calling"
    CALL_RINGING = "call_ringing"
    CALL_CONNECTED = "call_connected"
    CALL_DISCONNECTED = "call_disconnected"
    INCOMING_CALL = "incoming_call"
    DTMF_SENT = "dtmf_sent"
    DTMF_RECEIVED = "dtmf_received"
    BEEP_DETECTED = "beep_detected"
    AUDIO_STARTED = "audio_started"
    AUDIO_STOPPED = "audio_stopped"
    TEST_STARTED = "test_started"
    STEP_STARTED = "step_started"
    STEP_COMPLETED = "step_completed"
    TEST_COMPLETED = "test_completed"

    def __str__(self) -> str:
        return self.value


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Event(BaseModel):
    """Base event with type and timestamp"""
    type: EventType = Field(..., description="Event type")
    timestamp: datetime = Field(default_factory=_utcnow, description="When the event occurred")


class RegistrationEvent(Event):
    """Account registration progress"""
    account_id: str = Field(..., description="Account identifier")
    code: int = Field(default=0, description="SIP status code")
    reason: str = Field(default="", description="SIP reason phrase")


class CallEvent(Event):
    """Call progress"""
    call_id: int = Field(..., description="Session call identifier")
    account_id: Optional[str] = Field(default=None, description="Account owning the call")
    remote_uri: Optional[str] = Field(default=None, description="Remote party URI")
    code: int = Field(default=0, description="SIP status code")
    reason: str = Field(default="", description="SIP reason phrase")


class DTMFEvent(Event):
    """Tone digits sent or received"""
    call_id: int = Field(..., description="Session call identifier")
    digits: str = Field(..., description="Tone digits")

    @field_validator('digits')
    @classmethod
    def validate_digits(cls, v):
        """Validate tone digits"""
        valid_digits = set('0123456789*#ABCD')
        if not v or not set(v.upper()) <= valid_digits:
            raise ValueError(f"Invalid DTMF digits: {v!r}")
        return v.upper()


class BeepEvent(Event):
    """Beep found in a recording"""
    index: int = Field(..., description="Beep sequence number")
    start_time: float = Field(..., description="Start offset in seconds")
    duration: float = Field(..., description="Duration in seconds")
    frequency: float = Field(..., description="Average frequency in Hz")
    level_db: float = Field(..., description="Average RMS level in dB")


class AudioEvent(Event):
    """Audio playback or recording start/stop"""
    call_id: int = Field(..., description="Session call identifier")
    file: str = Field(..., description="Audio file path")
    direction: str = Field(default="play", description="play or record")


class TestEvent(Event):
    """Test and step lifecycle"""
    __test__ = False

    test: str = Field(..., description="Test name")
    step: Optional[str] = Field(default=None, description="Step (action) name")
    role: Optional[str] = Field(default=None, description="Role executing the step")
    status: Optional[str] = Field(default=None, description="Result status")
    duration: Optional[float] = Field(default=None, description="Duration in seconds")
    message: Optional[str] = Field(default=None, description="Failure or error message")
    definition: Optional[Dict[str, Any]] = Field(default=None, description="Parsed test definition")


class EventEmitter:
    """Base emitter; subclasses decide where events go"""

    def emit(self, event: Event) -> None:
        raise NotImplementedError

    def close(self) -> None:
        pass


class NullEventEmitter(EventEmitter):
    """Discards every event"""

    def emit(self, event: Event) -> None:
        pass


class JsonEventEmitter(EventEmitter):
    """
    Writes one JSON object per line.
    Safe to call from several threads; each line is written and flushed under
    a lock.
    """
    def __init__(self, stream: Optional[IO[str]] = None):
        self.stream = stream if stream is not None else sys.stdout
        self._lock = threading.Lock()
        self.events_written = 0

    def emit(self, event: Event) -> None:
        line = event.model_dump_json(exclude_none=True)
        with self._lock:
            self.stream.write(line + "\n")
            self.stream.flush()
            self.events_written += 1


class MemoryEventEmitter(EventEmitter):
    """Keeps events in a list"""

    def __init__(self):
        self.events: List[Event] = []
        self._lock = threading.Lock()

    def emit(self, event: Event) -> None:
        with self._lock:
            self.events.append(event)

    def of_type(self, event_type: EventType) -> List[Event]:
        with self._lock:
            return [e for e in self.events if e.type == event_type]
