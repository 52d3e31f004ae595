# src/voip_utility/core/events.py
"""
Typed session events and the run-scoped event channel.
Session implementations post these events from whatever thread their SIP stack
calls back on; the test engine is the only consumer and drains the channel
between poll slices.
"""

import queue
from dataclasses import dataclass
from enum import Enum
from typing import List, Union


class RegistrationState(str, Enum):
    """Account registration states"""
    UNREGISTERED = "unregistered"
    REGISTERING = "registering"
    REGISTERED = "registered"
    FAILED = "failed"


class CallState(str, Enum):
    """Call states reported by the session"""
    NULL = "null"
    CALLING = "calling"
    INCOMING = "incoming"
    EARLY = "early"
    CONNECTING = "connecting"
    CONFIRMED = "confirmed"
    DISCONNECTED = "disconnected"


@dataclass(frozen=True)
class RegistrationChanged:
    """Registration state change for one account"""
    account_id: str
    state: RegistrationState
    code: int = 0
    reason: str = ""


@dataclass(frozen=True)
class IncomingCall:
    """New inbound call offered to an account"""
    call_id: int
    account_id: str
    remote_uri: str


@dataclass(frozen=True)
class CallStateChanged:
    """Call state change"""
    call_id: int
    state: CallState
    code: int = 0
    reason: str = ""


@dataclass(frozen=True)
class ToneReceived:
    """A tone digit received on a call"""
    call_id: int
    digit: str
    duration_ms: int = 0


SessionEvent = Union[RegistrationChanged, IncomingCall, CallStateChanged, ToneReceived]


class EventChannel:
    """
    Unbounded FIFO of session events.
    put() may be called from any thread; drain() returns everything queued so
    far in delivery order.
    """
    def __init__(self, name: str = "run"):
        self.name = name
        self._queue: "queue.Queue[SessionEvent]" = queue.Queue()

    def put(self, event: SessionEvent) -> None:
        self._queue.put(event)

    def drain(self) -> List[SessionEvent]:
        events = []
        while True:
            try:
                events.append(self._queue.get_nowait())
            except queue.Empty:
                return events

    def __len__(self) -> int:
        return self._queue.qsize()
