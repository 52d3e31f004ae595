"""
Scenario package initialization.
Contains the test definition model, its parser, run state tracking and the
test engine.
"""

from .state import TestStatus, RunPhase, RunStateMachine, StateTransitionError
from .models import (
    ActionKind,
    WaitAction,
    SendToneAction,
    ExpectToneAction,
    PlayAudioAction,
    RecordAudioAction,
    ExpectBeepsAction,
    HangupAction,
    RoleConfig,
    Expectation,
    TestDefinition,
    TestResult,
    MAX_ACTIONS,
)
from .parser import parse_test_string, parse_test_data, parse_test_file, TestParseError
from .engine import TestEngine, TestTimeout
