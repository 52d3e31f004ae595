# src/voip_utility/core/interfaces.py
"""
Core interfaces and types for SIP session control.
Defines the session protocol consumed by the test engine, the session exception
and a base class with subscriber bookkeeping and poll-driven waits shared by
concrete session implementations.
"""

import threading
import time
from typing import Protocol, Dict, Any, List, Optional

from ..utils.config import AccountConfig
from ..utils.logger import VoipLogger
from .events import (
    EventChannel,
    SessionEvent,
    RegistrationChanged,
    CallStateChanged,
    RegistrationState,
    CallState,
)

logger = VoipLogger().get_logger(__name__)

POLL_SLICE_MS = 100


class SessionError(Exception):
    """Custom exception for session initialization, registration and call control"""
    pass


class SipSession(Protocol):
    """Protocol defining the SIP collaborator used by the test engine"""

    def initialize(self) -> None:
        """Start the SIP stack"""
        ...

    def shutdown(self) -> None:
        """Stop the SIP stack and release media resources"""
        ...

    def subscribe(self, channel: EventChannel) -> None:
        """Deliver future events to the channel"""
        ...

    def unsubscribe(self, channel: EventChannel) -> None:
        """Stop delivering events to the channel"""
        ...

    def register(self, account: AccountConfig) -> str:
        """Add and register an account, returning its id"""
        ...

    def unregister(self, account_id: str) -> None:
        """Unregister and remove an account"""
        ...

    def make_call(self, account_id: str, uri: str) -> int:
        """Place an outbound call, returning the call id"""
        ...

    def answer(self, call_id: int, code: int = 200) -> None:
        """Answer an incoming call with the given status code"""
        ...

    def hangup(self, call_id: int, code: int = 200) -> None:
        """End a call"""
        ...

    def hangup_all(self) -> None:
        """End every open call"""
        ...

    def send_tone(self, call_id: int, digits: str) -> None:
        """Send tone digits on a call"""
        ...

    def play_file(self, call_id: int, path: str, loop: bool = False) -> None:
        """Play a WAV file into a call"""
        ...

    def start_recording(self, call_id: int, path: str) -> None:
        """Record the call's received audio into a WAV file"""
        ...

    def stop_recording(self, call_id: int) -> None:
        """Stop recording and flush the WAV file"""
        ...

    def poll(self, timeout_ms: int) -> int:
        """Process pending SIP work for up to timeout_ms, returning events delivered"""
        ...


class SipSessionBase:
    """
    Shared session behavior: channel subscriptions, event publishing and
    registration/call state tracking for the convenience waits.
    Subclasses implement the call-control operations and poll().
    """
    def __init__(self):
        self._channels: List[EventChannel] = []
        self._channels_lock = threading.Lock()
        self._registration_states: Dict[str, RegistrationState] = {}
        self._call_states: Dict[int, CallState] = {}

        self.log = logger.bind(component=type(self).__name__)
        self._setup_logging()

    def _setup_logging(self) -> None:
        """Configure session debug statistics"""
        self.debug_stats = {
            'events_published': 0,
            'subscribers': 0,
            'calls_placed': 0,
            'tones_sent': 0,
        }

    def subscribe(self, channel: EventChannel) -> None:
        with self._channels_lock:
            if channel not in self._channels:
                self._channels.append(channel)
            self.debug_stats['subscribers'] = len(self._channels)
        self.log.debug("channel_subscribed",
                       message=f"Subscribed event channel {channel.name}",
                       channel=channel.name)

    def unsubscribe(self, channel: EventChannel) -> None:
        with self._channels_lock:
            if channel in self._channels:
                self._channels.remove(channel)
            self.debug_stats['subscribers'] = len(self._channels)
        self.log.debug("channel_unsubscribed",
                       message=f"Unsubscribed event channel {channel.name}",
                       channel=channel.name)

    def publish(self, event: SessionEvent) -> None:
        """Record state carried by the event and post it to every subscriber"""
        if isinstance(event, RegistrationChanged):
            self._registration_states[event.account_id] = event.state
        elif isinstance(event, CallStateChanged):
            self._call_states[event.call_id] = event.state

        with self._channels_lock:
            channels = list(self._channels)
        for channel in channels:
            channel.put(event)
        self.debug_stats['events_published'] += 1

    def registration_state(self, account_id: str) -> RegistrationState:
        return self._registration_states.get(account_id, RegistrationState.UNREGISTERED)

    def call_state(self, call_id: int) -> CallState:
        return self._call_states.get(call_id, CallState.NULL)

    def poll(self, timeout_ms: int) -> int:
        raise NotImplementedError

    def wait_registered(self, account_id: str, timeout: float) -> bool:
        """
        Poll until the account is registered.
        For callers driving a session directly (scripts, backend checks);
        TestEngine waits on its own run channel so it can honor the test
        deadline and stop flag.

        Returns:
            True once registered, False on failure or timeout
        """
        deadline = time.monotonic() + timeout
        while True:
            state = self.registration_state(account_id)
            if state == RegistrationState.REGISTERED:
                return True
            if state == RegistrationState.FAILED:
                return False
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                self.log.warning("registration_wait_timeout",
                                 message=f"Account {account_id} not registered after {timeout}s",
                                 account_id=account_id)
                return False
            self.poll(int(min(POLL_SLICE_MS, remaining * 1000)))

    def wait_connected(self, call_id: int, timeout: float) -> bool:
        """
        Poll until the call is confirmed.
        Like wait_registered, for direct use outside TestEngine.

        Returns:
            True once confirmed, False if disconnected or timed out
        """
        deadline = time.monotonic() + timeout
        while True:
            state = self.call_state(call_id)
            if state == CallState.CONFIRMED:
                return True
            if state == CallState.DISCONNECTED:
                return False
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                self.log.warning("call_wait_timeout",
                                 message=f"Call {call_id} not connected after {timeout}s",
                                 call_id=call_id)
                return False
            self.poll(int(min(POLL_SLICE_MS, remaining * 1000)))

    def get_debug_info(self) -> Dict[str, Any]:
        """Get debug statistics and state information"""
        return {
            **self.debug_stats,
            'registrations': {k: v.value for k, v in self._registration_states.items()},
            'calls': {k: v.value for k, v in self._call_states.items()},
        }
