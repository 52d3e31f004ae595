# src/voip_utility/scenario/engine.py
"""
Test engine for scripted call scenarios.
Registers the caller and receiver accounts, places the call, runs each role's
actions and evaluates the expectations against the gathered evidence (call
state, received tone digits and beeps found in the receiver's recording).
All waiting is bounded polling of the SIP session on the calling thread;
session callbacks only ever reach the engine as events on its run channel.
"""

import threading
import time
from pathlib import Path
from typing import Callable, Dict, Any, List, Optional, Tuple

from pydantic import ValidationError

from ..audio.analyzer import AnalyzerConfig, AnalysisError
from ..audio.beep_detector import BeepConfig
from ..audio.verifier import RecordingVerifier
from ..core import runtime
from ..core.backends import create_session
from ..core.digit_buffer import ToneDigitBuffer
from ..core.events import (
    EventChannel,
    RegistrationChanged,
    IncomingCall,
    CallStateChanged,
    ToneReceived,
    RegistrationState,
    CallState,
)
from ..core.interfaces import SipSession, SessionError
from ..output.events import (
    EventEmitter,
    NullEventEmitter,
    EventType,
    RegistrationEvent,
    CallEvent,
    DTMFEvent,
    BeepEvent as BeepStreamEvent,
    AudioEvent,
    TestEvent,
)
from ..utils.config import Config, ConfigurationError, AccountConfig
from ..utils.logger import VoipLogger, log_function_call
from .models import (
    Action,
    RoleConfig,
    TestDefinition,
    TestResult,
    WaitAction,
    SendToneAction,
    ExpectToneAction,
    PlayAudioAction,
    RecordAudioAction,
    ExpectBeepsAction,
    HangupAction,
)
from .parser import parse_test_file
from .state import RunPhase, RunStateMachine, TestStatus

# Get structured logger instance
logger = VoipLogger().get_logger(__name__)

MAX_POLL_SLICE_MS = 100

_REGISTRATION_EVENTS = {
    RegistrationState.REGISTERING: EventType.REGISTERING,
    RegistrationState.REGISTERED: EventType.REGISTERED,
    RegistrationState.FAILED: EventType.REGISTRATION_FAILED,
    RegistrationState.UNREGISTERED: EventType.UNREGISTERED,
}

_CALL_EVENTS = {
    CallState.CALLING: EventType.CALLING,
    CallState.EARLY: EventType.CALL_RINGING,
    CallState.CONFIRMED: EventType.CALL_CONNECTED,
    CallState.DISCONNECTED: EventType.CALL_DISCONNECTED,
}

SessionFactory = Callable[[Config], SipSession]


class TestTimeout(Exception):
    """Raised internally when the overall test deadline passes"""
    __test__ = False


class TestEngine:
    """
    Runs one test definition at a time against a SIP session.

    Args:
        config: Loaded configuration (accounts, timing, beep detection)
        session_factory: Builds the session for each run, defaults to the
                         backend named in the configuration
        emitter: Event stream sink
        stop_event: Optional event that, when set, stops the run like a
                    cleared keep-running flag
    """
    __test__ = False

    def __init__(self, config: Config,
                 session_factory: Optional[SessionFactory] = None,
                 emitter: Optional[EventEmitter] = None,
                 stop_event: Optional[threading.Event] = None):
        self.config = config
        self.session_factory = session_factory or create_session
        self.emitter = emitter or NullEventEmitter()
        self._stop_event = stop_event

        self.definition: Optional[TestDefinition] = None
        self.state_machine: Optional[RunStateMachine] = None
        self._result: Optional[TestResult] = None
        self._reset_run_state()

        self.log = logger.bind(component="TestEngine")
        self._setup_logging()

    def _setup_logging(self) -> None:
        """Configure engine debug statistics"""
        self.debug_stats = {
            'runs': 0,
            'actions_executed': 0,
            'actions_skipped': 0,
            'events_handled': 0,
        }

    def _reset_run_state(self) -> None:
        self._session: Optional[SipSession] = None
        self._channel: Optional[EventChannel] = None
        self._registered: List[str] = []
        self._reg_states: Dict[str, RegistrationState] = {}
        self._call_states: Dict[int, CallState] = {}
        self._buffers: Dict[int, ToneDigitBuffer] = {}
        self._recordings: Dict[int, Path] = {}
        self._caller_call: Optional[int] = None
        self._receiver_call: Optional[int] = None
        self._receiver_account: Optional[str] = None
        self._auto_answer = False
        self._deadline = float("inf")
        self._cleaned_up = False

    @property
    def result(self) -> Optional[TestResult]:
        return self._result

    @property
    def phase(self) -> RunPhase:
        return self.state_machine.phase if self.state_machine else RunPhase.IDLE

    def load(self, path: str) -> TestDefinition:
        """Parse a test file and keep it as the definition to run"""
        self.definition = parse_test_file(path)
        return self.definition

    def _should_stop(self) -> bool:
        if not runtime.is_running():
            return True
        return self._stop_event is not None and self._stop_event.is_set()

    @log_function_call(level="DEBUG")
    def run(self, definition: Optional[TestDefinition] = None) -> TestResult:
        """
        Run a test definition to completion.

        Always returns a fully populated TestResult; session and analysis
        failures become status error, the overall deadline becomes timeout.
        """
        definition = definition or self.definition
        if definition is None:
            raise ConfigurationError("No test definition loaded")

        self.definition = definition
        self._reset_run_state()
        self.debug_stats['runs'] += 1
        result = TestResult(test_name=definition.name)
        self._result = result
        self.state_machine = RunStateMachine(definition.name)
        log = self.log.bind(test=definition.name)

        started = time.monotonic()
        self._deadline = started + definition.timeout
        result.set_status(TestStatus.RUNNING)
        log.info("test_started",
                 message=f"Starting test: {definition.name}",
                 description=definition.description)
        self.emitter.emit(TestEvent(type=EventType.TEST_STARTED, test=definition.name,
                                    definition=definition.to_dict()))

        outcome: Tuple[TestStatus, str] = (TestStatus.ERROR, "Test did not complete")
        try:
            self.state_machine.advance(RunPhase.INITIALIZING, "run started")
            self._initialize(definition)

            self.state_machine.advance(RunPhase.CONNECTING, "accounts registered")
            if not self._connect(definition):
                reason = ("Expected call to connect but it didn't"
                          if definition.expect.connected else "Call failed to connect")
                outcome = (TestStatus.FAILED, reason)
            else:
                self.state_machine.advance(RunPhase.ACTIVE, "call connected")
                self._run_role("receiver", definition.receiver)
                self._run_role("caller", definition.caller)

                self.state_machine.advance(RunPhase.EVALUATING, "actions complete")
                self._settle()
                outcome = self._evaluate(definition)

        except TestTimeout as e:
            log.warning("test_timeout", message=str(e))
            outcome = (TestStatus.TIMEOUT, str(e))
        except (SessionError, ConfigurationError, AnalysisError) as e:
            log.error("test_error",
                      message=f"Test aborted: {e}",
                      phase=self.phase.value,
                      error=str(e))
            outcome = (TestStatus.ERROR, str(e))
        except Exception as e:
            log.error("test_error",
                      message="Unexpected failure during test run",
                      phase=self.phase.value,
                      error=str(e),
                      exc_info=True)
            outcome = (TestStatus.ERROR, f"Internal error: {e}")
        finally:
            result.duration = time.monotonic() - started
            self._cleanup()
            status, message = outcome
            result.set_status(status, message if status != TestStatus.PASSED else "")
            self.state_machine.advance(RunPhase.TERMINAL, status.value)

        log.info("test_completed",
                 message=f"Test {definition.name}: {result.status.value}",
                 status=result.status.value,
                 duration=round(result.duration, 3),
                 reason=result.error_message)
        self.emitter.emit(TestEvent(type=EventType.TEST_COMPLETED,
                                    test=definition.name,
                                    status=result.status.value,
                                    duration=round(result.duration, 3),
                                    message=result.error_message or None))
        return result

    # -- initialization ---------------------------------------------------

    def _resolve_account(self, role: str, account_id: str) -> AccountConfig:
        if not account_id:
            raise ConfigurationError(f"No account set for {role}")
        account = self.config.find_account(account_id)
        if account is None:
            raise ConfigurationError(f"Account '{account_id}' for {role} not found in configuration")
        return account

    def _initialize(self, definition: TestDefinition) -> None:
        caller_account = self._resolve_account("caller", definition.caller.account)
        receiver_account = self._resolve_account("receiver", definition.receiver.account)
        self._receiver_account = receiver_account.id
        self._auto_answer = definition.receiver.auto_answer

        try:
            self._session = self.session_factory(self.config)
            self._session.initialize()
        except SessionError:
            raise
        except Exception as e:
            self.log.error("session_init_failed",
                           message="Failed to create SIP session",
                           error=str(e),
                           exc_info=True)
            raise SessionError(f"Failed to initialize SIP session: {e}") from e

        self._channel = EventChannel(definition.name)
        self._session.subscribe(self._channel)

        for account in (receiver_account, caller_account):
            if account.id in self._registered:
                continue
            self._register(account)

    def _register(self, account: AccountConfig) -> None:
        account_id = self._session.register(account)
        self._registered.append(account_id)

        timeout = self.config.engine.registration_timeout
        done = self._wait_until(
            lambda: self._reg_states.get(account_id) in (RegistrationState.REGISTERED,
                                                         RegistrationState.FAILED),
            timeout,
        )
        state = self._reg_states.get(account_id)
        if state == RegistrationState.FAILED:
            raise SessionError(f"Registration failed for account '{account_id}'")
        if not done or state != RegistrationState.REGISTERED:
            raise SessionError(f"Registration timed out for account '{account_id}' after {timeout}s")

        self.log.info("account_registered",
                      message=f"Account {account_id} registered",
                      account_id=account_id)

    # -- call setup -------------------------------------------------------

    def _connect(self, definition: TestDefinition) -> bool:
        caller = definition.caller
        call_id = self._session.make_call(caller.account, caller.uri)
        self._caller_call = call_id
        self._buffers.setdefault(call_id, ToneDigitBuffer())
        self.log.info("call_started",
                      message=f"Calling {caller.uri}",
                      call_id=call_id,
                      uri=caller.uri)

        self._wait_until(
            lambda: self._call_states.get(call_id) in (CallState.CONFIRMED, CallState.DISCONNECTED),
            caller.timeout,
        )
        connected = self._call_states.get(call_id) == CallState.CONFIRMED
        self._result.connected = connected
        if not connected:
            self.log.warning("call_not_connected",
                             message="Call failed to connect",
                             call_id=call_id,
                             state=self._call_states.get(call_id, CallState.NULL).value)
        return connected

    # -- event handling ---------------------------------------------------

    def _drain_events(self) -> None:
        if self._channel is None:
            return
        for event in self._channel.drain():
            self.debug_stats['events_handled'] += 1
            if isinstance(event, RegistrationChanged):
                self._on_registration(event)
            elif isinstance(event, IncomingCall):
                self._on_incoming_call(event)
            elif isinstance(event, CallStateChanged):
                self._on_call_state(event)
            elif isinstance(event, ToneReceived):
                self._on_tone(event)

    def _on_registration(self, event: RegistrationChanged) -> None:
        self._reg_states[event.account_id] = event.state
        event_type = _REGISTRATION_EVENTS.get(event.state)
        if event_type is not None:
            self.emitter.emit(RegistrationEvent(type=event_type,
                                                account_id=event.account_id,
                                                code=event.code,
                                                reason=event.reason))

    def _on_incoming_call(self, event: IncomingCall) -> None:
        self.emitter.emit(CallEvent(type=EventType.INCOMING_CALL,
                                    call_id=event.call_id,
                                    account_id=event.account_id,
                                    remote_uri=event.remote_uri))
        if event.account_id != self._receiver_account or self._receiver_call is not None:
            self.log.debug("incoming_call_ignored",
                           message=f"Ignoring incoming call {event.call_id}",
                           call_id=event.call_id,
                           account_id=event.account_id)
            return

        self._receiver_call = event.call_id
        self._buffers.setdefault(event.call_id, ToneDigitBuffer())
        self.log.info("incoming_call",
                      message=f"Incoming call from {event.remote_uri}",
                      call_id=event.call_id)
        if self._auto_answer:
            self._session.answer(event.call_id, 200)

    def _on_call_state(self, event: CallStateChanged) -> None:
        self._call_states[event.call_id] = event.state
        event_type = _CALL_EVENTS.get(event.state)
        if event_type is not None:
            self.emitter.emit(CallEvent(type=event_type,
                                        call_id=event.call_id,
                                        code=event.code,
                                        reason=event.reason))
        if event.state == CallState.DISCONNECTED:
            self._recordings.pop(event.call_id, None)

    def _on_tone(self, event: ToneReceived) -> None:
        buffer = self._buffers.setdefault(event.call_id, ToneDigitBuffer())
        if buffer.append(event.digit):
            self._emit_dtmf(EventType.DTMF_RECEIVED, event.call_id, event.digit)

    def _emit_dtmf(self, event_type: EventType, call_id: int, digits: str) -> None:
        try:
            event = DTMFEvent(type=event_type, call_id=call_id, digits=digits)
        except ValidationError as e:
            self.log.warning("dtmf_event_invalid",
                             message=f"Not emitting {event_type.value} for {digits!r}",
                             error=str(e))
            return
        self.emitter.emit(event)

    # -- waiting ----------------------------------------------------------

    def _poll_slice(self, remaining: float) -> None:
        slice_ms = min(self.config.engine.poll_interval_ms, MAX_POLL_SLICE_MS)
        self._session.poll(int(max(0.0, min(slice_ms, remaining * 1000))))

    def _wait_until(self, predicate: Callable[[], bool], timeout: float) -> bool:
        """
        Poll the session until the predicate holds.

        Returns:
            True if the predicate held, False on timeout or stop request

        Raises:
            TestTimeout: If the overall test deadline passes first
        """
        limit = time.monotonic() + timeout
        while True:
            self._drain_events()
            if predicate():
                return True
            if self._should_stop():
                return False
            now = time.monotonic()
            if now >= self._deadline:
                raise TestTimeout("Test timed out")
            if now >= limit:
                return False
            self._poll_slice(min(limit, self._deadline) - now)

    def _settle(self) -> None:
        """Poll for the settle time so in-flight events are delivered"""
        limit = time.monotonic() + self.config.engine.settle_time
        while True:
            self._poll_slice(limit - time.monotonic())
            self._drain_events()
            if time.monotonic() >= limit:
                return

    # -- actions ----------------------------------------------------------

    def _role_call(self, role: str) -> Optional[int]:
        return self._caller_call if role == "caller" else self._receiver_call

    def _run_role(self, role: str, config: RoleConfig) -> None:
        test_name = self._result.test_name
        for index, action in enumerate(config.actions):
            if self._should_stop():
                remaining = len(config.actions) - index
                self.debug_stats['actions_skipped'] += remaining
                self.log.warning("actions_abandoned",
                                 message=f"Stop requested, skipping {remaining} {role} actions",
                                 role=role)
                return
            if time.monotonic() >= self._deadline:
                raise TestTimeout("Test timed out")

            step = action.kind.value
            self.emitter.emit(TestEvent(type=EventType.STEP_STARTED, test=test_name,
                                        step=step, role=role))
            self._execute(role, action)
            self.emitter.emit(TestEvent(type=EventType.STEP_COMPLETED, test=test_name,
                                        step=step, role=role))

    def _media_path(self, path: str, base: Optional[str]) -> Path:
        media = Path(path)
        if media.is_absolute() or not base:
            return media
        return Path(base) / media

    def _play_base(self) -> Optional[str]:
        source = self.definition.source_path if self.definition else None
        return str(Path(source).parent) if source else None

    def _execute(self, role: str, action: Action) -> None:
        """Execute one action for a role"""
        call_id = self._role_call(role)
        log = self.log.bind(role=role, action=action.kind.value)

        if isinstance(action, WaitAction):
            log.debug("action_wait", message=f"Waiting {action.seconds}s")
            self._wait_until(lambda: False, action.seconds)
            self.debug_stats['actions_executed'] += 1
            return

        if isinstance(action, (ExpectToneAction, ExpectBeepsAction)):
            log.debug("expectation_recorded", message="Expectation recorded for evaluation")
            self.debug_stats['actions_executed'] += 1
            return

        if call_id is None:
            self.debug_stats['actions_skipped'] += 1
            log.warning("action_skipped",
                        message=f"No call for {role}, skipping {action.kind.value}")
            return

        if isinstance(action, SendToneAction):
            self._session.send_tone(call_id, action.digits)
            if action.digits:
                self._emit_dtmf(EventType.DTMF_SENT, call_id, action.digits)
            log.info("dtmf_sent", message=f"Sent DTMF {action.digits}", call_id=call_id)

        elif isinstance(action, PlayAudioAction):
            path = self._media_path(action.file, self._play_base())
            self._session.play_file(call_id, str(path), action.loop)
            self.emitter.emit(AudioEvent(type=EventType.AUDIO_STARTED, call_id=call_id,
                                         file=str(path), direction="play"))
            log.info("audio_playing", message=f"Playing {path}", call_id=call_id)

        elif isinstance(action, RecordAudioAction):
            path = self._media_path(action.file, self.config.paths.recordings_dir)
            self._session.start_recording(call_id, str(path))
            self._recordings[call_id] = path
            self.emitter.emit(AudioEvent(type=EventType.AUDIO_STARTED, call_id=call_id,
                                         file=str(path), direction="record"))
            log.info("audio_recording", message=f"Recording to {path}", call_id=call_id)

        elif isinstance(action, HangupAction):
            self._session.hangup(call_id, action.code)
            log.info("call_hangup", message=f"Hung up with {action.code}", call_id=call_id)

        self.debug_stats['actions_executed'] += 1

    # -- evaluation -------------------------------------------------------

    def _stop_recordings(self) -> None:
        for call_id, path in list(self._recordings.items()):
            self._session.stop_recording(call_id)
            self.emitter.emit(AudioEvent(type=EventType.AUDIO_STOPPED, call_id=call_id,
                                         file=str(path), direction="record"))
        self._recordings.clear()

    def _digits_for(self, role: str) -> str:
        call_id = self._role_call(role)
        buffer = self._buffers.get(call_id) if call_id is not None else None
        return buffer.snapshot() if buffer is not None else ""

    def _evaluate(self, definition: TestDefinition) -> Tuple[TestStatus, str]:
        """
        Check expectations against the gathered evidence.

        Returns:
            (status, reason) where reason comes from the first failing check

        Raises:
            AnalysisError: If the receiver recording cannot be analyzed
        """
        result = self._result
        self._stop_recordings()
        result.set_tone_digits(self._digits_for("receiver"))
        failures: List[str] = []

        if definition.expect.connected and not result.connected:
            failures.append("Expected call to connect but it didn't")

        if definition.expects_beeps():
            failures.extend(self._check_beeps(definition))

        for role, config in (("receiver", definition.receiver), ("caller", definition.caller)):
            received = self._digits_for(role)
            for action in config.actions_of(ExpectToneAction):
                pattern = action.pattern.upper()
                if not received.startswith(pattern):
                    failures.append(f"Expected DTMF '{pattern}', received '{received}'")

        if failures:
            self.log.info("expectations_failed",
                          message=failures[0],
                          failures=failures)
            return TestStatus.FAILED, failures[0]
        return TestStatus.PASSED, ""

    def _check_beeps(self, definition: TestDefinition) -> List[str]:
        recording = definition.receiver_recording()
        if recording is None:
            return ["No record_audio action to analyze for beeps"]

        path = self._media_path(recording, self.config.paths.recordings_dir)
        analyzer_config = AnalyzerConfig(
            sample_rate=self.config.audio.sample_rate,
            fft_size=self.config.analyzer.fft_size,
            min_level_db=self.config.analyzer.min_level_db,
            freq_tolerance_hz=self.config.analyzer.freq_tolerance_hz,
        )
        beep_config = BeepConfig(
            min_level_db=self.config.beep.min_level_db,
            min_duration_sec=self.config.beep.min_duration_sec,
            max_duration_sec=self.config.beep.max_duration_sec,
            target_freq_hz=definition.beep_target_frequency(self.config.beep.target_freq_hz),
            freq_tolerance_hz=self.config.beep.freq_tolerance_hz,
        )

        detection = RecordingVerifier(analyzer_config, beep_config).verify(path)
        result = self._result
        result.beeps = detection.events
        result.beep_count = detection.beep_count
        result.beep_frequency = detection.dominant_frequency
        for beep in detection.events:
            self.emitter.emit(BeepStreamEvent(type=EventType.BEEP_DETECTED,
                                              index=beep.index,
                                              start_time=beep.start_time,
                                              duration=beep.duration,
                                              frequency=beep.frequency,
                                              level_db=beep.level_db))

        expected = definition.expected_beep_count()
        if detection.beep_count != expected:
            return [f"Expected {expected} beeps, detected {detection.beep_count}"]
        return []

    # -- cleanup ----------------------------------------------------------

    def _cleanup(self) -> None:
        """Release calls, channel, accounts and session; runs once per run"""
        if self._cleaned_up:
            return
        self._cleaned_up = True
        session = self._session
        if session is None:
            return

        steps = [
            ("hangup_all", session.hangup_all),
            ("settle", self._settle),
        ]
        if self._channel is not None:
            steps.append(("unsubscribe", lambda: session.unsubscribe(self._channel)))
        for account_id in reversed(self._registered):
            steps.append((f"unregister:{account_id}",
                          lambda account_id=account_id: session.unregister(account_id)))
        steps.append(("shutdown", session.shutdown))

        for name, step in steps:
            try:
                step()
            except Exception as e:
                self.log.error("cleanup_step_failed",
                               message=f"Cleanup step {name} failed",
                               step=name,
                               error=str(e),
                               exc_info=True)

        self.log.debug("cleanup_complete", message="Test cleanup complete")

    def get_debug_info(self) -> Dict[str, Any]:
        """Get debug statistics and state information"""
        return {
            **self.debug_stats,
            'phase': self.phase.value,
            'caller_call': self._caller_call,
            'receiver_call': self._receiver_call,
            'registered': list(self._registered),
        }
