# src/voip_utility/core/mock_session.py
"""
Loopback implementation of the SIP session for development and testing.
Simulates a tiny PBX inside the process: registered accounts can call each
other by username, tone digits are relayed between the two legs of a call and
audio played on one leg is captured by the other leg's recording. No network
or media stack is required.
"""

import re
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Dict, Any, List, Iterable

import numpy as np

from ..utils.config import AccountConfig
from ..utils.logger import log_function_call
from ..audio.wav import read_wav, write_wav, WavFormatError
from .interfaces import SipSessionBase, SessionError
from .events import (
    SessionEvent,
    RegistrationChanged,
    IncomingCall,
    CallStateChanged,
    ToneReceived,
    RegistrationState,
    CallState,
)

_URI_USER = re.compile(r"^(?:sips?:)?([^@;>]+)@")


@dataclass
class _Recording:
    path: Path
    chunks: List[np.ndarray] = field(default_factory=list)


@dataclass
class _CallLeg:
    call_id: int
    account_id: str
    remote_uri: str
    state: CallState = CallState.NULL
    peer_id: Optional[int] = None
    incoming: bool = False
    recording: Optional[_Recording] = None
    played: List[str] = field(default_factory=list)
    tones_sent: str = ""


class MockSipSession(SipSessionBase):
    """
    In-process loopback SIP session.

    Args:
        fail_registration: Account ids whose registration is rejected
        unanswered: Account ids that ring but never answer
        time_scale: Multiplier applied to poll() sleeps, 0 disables sleeping
        sample_rate: Sample rate of recordings written by this session
    """
    def __init__(self, fail_registration: Iterable[str] = (),
                 unanswered: Iterable[str] = (),
                 time_scale: float = 1.0,
                 sample_rate: int = 8000):
        super().__init__()
        self.fail_registration = set(fail_registration)
        self.unanswered = set(unanswered)
        self.time_scale = time_scale
        self.sample_rate = sample_rate

        self._initialized = False
        self._accounts: Dict[str, AccountConfig] = {}
        self._calls: Dict[int, _CallLeg] = {}
        self._next_call_id = 0
        self._pending: List[SessionEvent] = []
        self.log.info("mock_session_init", message="Initializing loopback SIP session")

    @log_function_call(level="DEBUG")
    def initialize(self) -> None:
        """Start the loopback session"""
        self._initialized = True
        self.log.info("mock_init_complete", message="Loopback SIP session ready")

    @log_function_call(level="DEBUG")
    def shutdown(self) -> None:
        """Flush recordings and drop every account and call"""
        try:
            for leg in self._calls.values():
                self._flush_recording(leg)
        finally:
            self._calls.clear()
            self._accounts.clear()
            self._pending.clear()
            self._initialized = False
            self.log.info("mock_shutdown_complete", message="Loopback SIP session shut down")

    def _require_initialized(self) -> None:
        if not self._initialized:
            raise SessionError("Session not initialized")

    def _leg(self, call_id: int) -> _CallLeg:
        leg = self._calls.get(call_id)
        if leg is None:
            raise SessionError(f"Unknown call id {call_id}")
        return leg

    def _set_call_state(self, leg: _CallLeg, state: CallState, code: int = 0, reason: str = "") -> None:
        leg.state = state
        self._pending.append(CallStateChanged(leg.call_id, state, code, reason))

    @log_function_call(level="DEBUG")
    def register(self, account: AccountConfig) -> str:
        """Register an account; rejected accounts report a 403 failure"""
        self._require_initialized()
        if account.id in self._accounts:
            raise SessionError(f"Account '{account.id}' already registered")

        self._accounts[account.id] = account
        self._pending.append(RegistrationChanged(account.id, RegistrationState.REGISTERING))
        if account.id in self.fail_registration:
            self._pending.append(RegistrationChanged(account.id, RegistrationState.FAILED,
                                                     403, "Forbidden"))
        else:
            self._pending.append(RegistrationChanged(account.id, RegistrationState.REGISTERED,
                                                     200, "OK"))

        self.log.info("account_registering",
                      message=f"Registering {account.uri}",
                      account_id=account.id)
        return account.id

    @log_function_call(level="DEBUG")
    def unregister(self, account_id: str) -> None:
        self._require_initialized()
        if self._accounts.pop(account_id, None) is None:
            raise SessionError(f"Unknown account '{account_id}'")
        self._pending.append(RegistrationChanged(account_id, RegistrationState.UNREGISTERED,
                                                 200, "OK"))

    def _find_target(self, uri: str) -> Optional[AccountConfig]:
        match = _URI_USER.match(uri.strip().strip("<>"))
        if not match:
            return None
        username = match.group(1)
        for account in self._accounts.values():
            if (account.username == username
                    and self.registration_state(account.id) == RegistrationState.REGISTERED):
                return account
        return None

    def _new_leg(self, account_id: str, remote_uri: str, incoming: bool = False) -> _CallLeg:
        leg = _CallLeg(call_id=self._next_call_id, account_id=account_id,
                       remote_uri=remote_uri, incoming=incoming)
        self._next_call_id += 1
        self._calls[leg.call_id] = leg
        return leg

    @log_function_call(level="DEBUG")
    def make_call(self, account_id: str, uri: str) -> int:
        """
        Place a call from a registered account.

        Calls to a registered username ring that account; anything else is
        disconnected with 404.
        """
        self._require_initialized()
        account = self._accounts.get(account_id)
        if account is None:
            raise SessionError(f"Unknown account '{account_id}'")
        if self.registration_state(account_id) != RegistrationState.REGISTERED:
            raise SessionError(f"Account '{account_id}' is not registered")

        caller = self._new_leg(account_id, uri)
        self._set_call_state(caller, CallState.CALLING)
        self.debug_stats['calls_placed'] += 1

        target = self._find_target(uri)
        if target is None:
            self._set_call_state(caller, CallState.DISCONNECTED, 404, "Not Found")
            self.log.info("call_target_unknown",
                          message=f"No registered account for {uri}",
                          call_id=caller.call_id,
                          uri=uri)
            return caller.call_id

        callee = self._new_leg(target.id, account.uri, incoming=True)
        caller.peer_id = callee.call_id
        callee.peer_id = caller.call_id
        callee.state = CallState.INCOMING
        self._pending.append(IncomingCall(callee.call_id, target.id, account.uri))
        self._pending.append(CallStateChanged(callee.call_id, CallState.INCOMING))
        self._set_call_state(caller, CallState.EARLY, 180, "Ringing")

        self.log.info("call_placed",
                      message=f"Call {caller.call_id} from {account_id} ringing {target.id}",
                      call_id=caller.call_id,
                      peer_call_id=callee.call_id)
        return caller.call_id

    @log_function_call(level="DEBUG")
    def answer(self, call_id: int, code: int = 200) -> None:
        """Answer an incoming call; a non-2xx code rejects it"""
        self._require_initialized()
        leg = self._leg(call_id)
        if not leg.incoming or leg.state != CallState.INCOMING:
            raise SessionError(f"Call {call_id} is not an unanswered incoming call")
        if leg.account_id in self.unanswered:
            self.log.debug("answer_suppressed",
                           message=f"Account {leg.account_id} never answers",
                           call_id=call_id)
            return

        peer = self._calls.get(leg.peer_id)
        if 200 <= code < 300:
            self._set_call_state(leg, CallState.CONNECTING)
            self._set_call_state(leg, CallState.CONFIRMED, code, "OK")
            if peer is not None and peer.state != CallState.DISCONNECTED:
                self._set_call_state(peer, CallState.CONFIRMED, code, "OK")
        else:
            self._set_call_state(leg, CallState.DISCONNECTED, code, "Rejected")
            if peer is not None and peer.state != CallState.DISCONNECTED:
                self._set_call_state(peer, CallState.DISCONNECTED, code, "Rejected")

    @log_function_call(level="DEBUG")
    def hangup(self, call_id: int, code: int = 200) -> None:
        """End a call and its peer leg"""
        self._require_initialized()
        leg = self._leg(call_id)
        if leg.state == CallState.DISCONNECTED:
            return
        for target in (leg, self._calls.get(leg.peer_id)):
            if target is None or target.state == CallState.DISCONNECTED:
                continue
            self._flush_recording(target)
            self._set_call_state(target, CallState.DISCONNECTED, code, "Normal call clearing")

    def hangup_all(self) -> None:
        for call_id, leg in list(self._calls.items()):
            if leg.state != CallState.DISCONNECTED:
                self.hangup(call_id)

    def _confirmed_leg(self, call_id: int) -> _CallLeg:
        self._require_initialized()
        leg = self._leg(call_id)
        if leg.state != CallState.CONFIRMED:
            raise SessionError(f"Call {call_id} is not connected ({leg.state.value})")
        return leg

    @log_function_call(level="DEBUG")
    def send_tone(self, call_id: int, digits: str) -> None:
        """Relay tone digits to the peer leg"""
        leg = self._confirmed_leg(call_id)
        leg.tones_sent += digits
        self.debug_stats['tones_sent'] += len(digits)
        if leg.peer_id is None:
            return
        for digit in digits:
            self._pending.append(ToneReceived(leg.peer_id, digit, 100))

    @log_function_call(level="DEBUG")
    def play_file(self, call_id: int, path: str, loop: bool = False) -> None:
        """Append a WAV file's audio to the peer leg's recording"""
        leg = self._confirmed_leg(call_id)
        try:
            wav = read_wav(path)
        except WavFormatError as e:
            raise SessionError(f"Cannot play {path}: {e}") from e

        if wav.sample_rate != self.sample_rate:
            self.log.warning("sample_rate_mismatch",
                             message=f"{path} is {wav.sample_rate} Hz, session records at {self.sample_rate} Hz",
                             path=str(path))

        leg.played.append(str(path))
        peer = self._calls.get(leg.peer_id)
        if peer is not None and peer.recording is not None:
            peer.recording.chunks.append(wav.channel(0).copy())
        self.log.info("audio_played",
                      message=f"Playing {path} on call {call_id}",
                      call_id=call_id,
                      loop=loop,
                      duration=wav.duration)

    @log_function_call(level="DEBUG")
    def start_recording(self, call_id: int, path: str) -> None:
        self._require_initialized()
        leg = self._leg(call_id)
        if leg.state == CallState.DISCONNECTED:
            raise SessionError(f"Call {call_id} is disconnected")
        self._flush_recording(leg)
        leg.recording = _Recording(path=Path(path))

    @log_function_call(level="DEBUG")
    def stop_recording(self, call_id: int) -> None:
        self._require_initialized()
        self._flush_recording(self._leg(call_id))

    def _flush_recording(self, leg: _CallLeg) -> None:
        recording = leg.recording
        if recording is None:
            return
        leg.recording = None
        if recording.chunks:
            samples = np.concatenate(recording.chunks)
        else:
            samples = np.zeros(0, dtype=np.int16)
        write_wav(recording.path, samples, self.sample_rate)
        self.log.info("recording_saved",
                      message=f"Saved recording {recording.path}",
                      call_id=leg.call_id,
                      samples=int(samples.size))

    def poll(self, timeout_ms: int) -> int:
        """Deliver queued events, then sleep for the scaled timeout"""
        pending, self._pending = self._pending, []
        for event in pending:
            self.publish(event)
        if timeout_ms > 0 and self.time_scale > 0:
            time.sleep(timeout_ms * self.time_scale / 1000.0)
        return len(pending)

    def call_info(self, call_id: int) -> Dict[str, Any]:
        """Snapshot of one call leg"""
        leg = self._leg(call_id)
        return {
            'call_id': leg.call_id,
            'account_id': leg.account_id,
            'remote_uri': leg.remote_uri,
            'state': leg.state.value,
            'peer_id': leg.peer_id,
            'played': list(leg.played),
            'tones_sent': leg.tones_sent,
            'recording': str(leg.recording.path) if leg.recording else None,
        }
