# src/voip_utility/scenario/models.py
"""
Test definition and result models.
Actions are one immutable dataclass per kind; a TestDefinition holds the
caller and receiver roles with their action lists and the expectations, and a
TestResult accumulates the outcome of one run.
"""

from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import ClassVar, Dict, Any, List, Optional, Union

from ..audio.beep_detector import BeepEvent
from ..core.digit_buffer import MAX_TONE_DIGITS
from .state import TestStatus, check_status_transition

MAX_ACTIONS = 32
DEFAULT_TEST_NAME = "Unnamed Test"
DEFAULT_TEST_TIMEOUT = 60
DEFAULT_ROLE_TIMEOUT = 30


class ActionKind(str, Enum):
    """Action names used in test definition files"""
    WAIT = "wait"
    SEND_DTMF = "send_dtmf"
    EXPECT_DTMF = "expect_dtmf"
    PLAY_AUDIO = "play_audio"
    RECORD_AUDIO = "record_audio"
    EXPECT_BEEPS = "expect_beeps"
    HANGUP = "hangup"


@dataclass(frozen=True)
class WaitAction:
    seconds: float = 1.0
    kind: ClassVar[ActionKind] = ActionKind.WAIT


@dataclass(frozen=True)
class SendToneAction:
    digits: str = ""
    timeout: int = 5
    kind: ClassVar[ActionKind] = ActionKind.SEND_DTMF


@dataclass(frozen=True)
class ExpectToneAction:
    pattern: str = ""
    timeout: int = 10
    kind: ClassVar[ActionKind] = ActionKind.EXPECT_DTMF


@dataclass(frozen=True)
class PlayAudioAction:
    file: str = ""
    loop: bool = False
    kind: ClassVar[ActionKind] = ActionKind.PLAY_AUDIO


@dataclass(frozen=True)
class RecordAudioAction:
    file: str = ""
    kind: ClassVar[ActionKind] = ActionKind.RECORD_AUDIO


@dataclass(frozen=True)
class ExpectBeepsAction:
    count: int = 1
    frequency: float = 0.0
    kind: ClassVar[ActionKind] = ActionKind.EXPECT_BEEPS


@dataclass(frozen=True)
class HangupAction:
    code: int = 200
    kind: ClassVar[ActionKind] = ActionKind.HANGUP


Action = Union[WaitAction, SendToneAction, ExpectToneAction, PlayAudioAction,
               RecordAudioAction, ExpectBeepsAction, HangupAction]

ACTION_TYPES: Dict[ActionKind, type] = {
    ActionKind.WAIT: WaitAction,
    ActionKind.SEND_DTMF: SendToneAction,
    ActionKind.EXPECT_DTMF: ExpectToneAction,
    ActionKind.PLAY_AUDIO: PlayAudioAction,
    ActionKind.RECORD_AUDIO: RecordAudioAction,
    ActionKind.EXPECT_BEEPS: ExpectBeepsAction,
    ActionKind.HANGUP: HangupAction,
}


def action_to_dict(action: Action) -> Dict[str, Any]:
    return {"action": action.kind.value, **asdict(action)}


@dataclass
class RoleConfig:
    """One side of the call"""
    account: str = ""
    uri: str = ""  # caller only
    auto_answer: bool = False  # receiver only
    timeout: int = DEFAULT_ROLE_TIMEOUT
    actions: List[Action] = field(default_factory=list)

    def actions_of(self, action_type: type) -> List[Action]:
        return [a for a in self.actions if isinstance(a, action_type)]


@dataclass
class Expectation:
    """Pass criteria for a run"""
    connected: bool = True
    beep_count: int = 0
    beep_frequency: float = 0.0


@dataclass
class TestDefinition:
    """A parsed test scenario"""
    __test__ = False

    name: str = DEFAULT_TEST_NAME
    description: str = ""
    timeout: int = DEFAULT_TEST_TIMEOUT
    caller: RoleConfig = field(default_factory=RoleConfig)
    receiver: RoleConfig = field(default_factory=RoleConfig)
    expect: Expectation = field(default_factory=Expectation)
    source_path: Optional[str] = None

    def beep_actions(self) -> List[ExpectBeepsAction]:
        return (self.receiver.actions_of(ExpectBeepsAction)
                + self.caller.actions_of(ExpectBeepsAction))

    def expects_beeps(self) -> bool:
        return self.expect.beep_count > 0 or bool(self.beep_actions())

    def expected_beep_count(self) -> int:
        """expect.beep_count, or the first expect_beeps action's count when unset"""
        if self.expect.beep_count > 0:
            return self.expect.beep_count
        actions = self.beep_actions()
        return actions[0].count if actions else 0

    def beep_target_frequency(self, default: float = 0.0) -> float:
        if self.expect.beep_frequency > 0:
            return self.expect.beep_frequency
        for action in self.beep_actions():
            if action.frequency > 0:
                return action.frequency
        return default

    def receiver_recording(self) -> Optional[str]:
        """Path of the first record_audio action on the receiver"""
        for action in self.receiver.actions_of(RecordAudioAction):
            if action.file:
                return action.file
        return None

    def to_dict(self) -> Dict[str, Any]:
        def role(cfg: RoleConfig) -> Dict[str, Any]:
            return {
                'account': cfg.account,
                'uri': cfg.uri,
                'auto_answer': cfg.auto_answer,
                'timeout': cfg.timeout,
                'actions': [action_to_dict(a) for a in cfg.actions],
            }

        return {
            'name': self.name,
            'description': self.description,
            'timeout': self.timeout,
            'caller': role(self.caller),
            'receiver': role(self.receiver),
            'expect': asdict(self.expect),
        }


@dataclass
class TestResult:
    """Outcome of one test run"""
    __test__ = False

    test_name: str = DEFAULT_TEST_NAME
    status: TestStatus = TestStatus.PENDING
    duration: float = 0.0
    connected: bool = False
    tone_digits: str = ""
    beep_count: int = 0
    beep_frequency: float = 0.0
    beeps: List[BeepEvent] = field(default_factory=list)
    error_message: str = ""

    def set_status(self, status: TestStatus, error_message: Optional[str] = None) -> None:
        """
        Move the result forward.

        Raises:
            StateTransitionError: If the status would regress or leave a terminal status
        """
        check_status_transition(self.status, status)
        self.status = status
        if error_message is not None:
            self.error_message = error_message

    def set_tone_digits(self, digits: str) -> None:
        self.tone_digits = digits[:MAX_TONE_DIGITS]

    @property
    def passed(self) -> bool:
        return self.status == TestStatus.PASSED

    def to_dict(self) -> Dict[str, Any]:
        return {
            'test_name': self.test_name,
            'status': self.status.value,
            'duration': round(self.duration, 3),
            'connected': self.connected,
            'tone_digits': self.tone_digits,
            'beep_count': self.beep_count,
            'beep_frequency': self.beep_frequency,
            'beeps': [asdict(b) for b in self.beeps],
            'error_message': self.error_message,
        }
