"""Tests for run phases, result status and definition helpers."""

import pytest

from voip_utility.audio.beep_detector import BeepEvent
from voip_utility.scenario.models import (
    ExpectBeepsAction,
    Expectation,
    RecordAudioAction,
    RoleConfig,
    TestDefinition,
    TestResult,
)
from voip_utility.scenario.state import (
    RunPhase,
    RunStateMachine,
    StateTransitionError,
    TestStatus,
)


class TestRunStateMachine:
    """Test phase transitions."""

    def test_happy_path(self):
        machine = RunStateMachine("demo")
        for phase in (RunPhase.INITIALIZING, RunPhase.CONNECTING, RunPhase.ACTIVE,
                      RunPhase.EVALUATING, RunPhase.TERMINAL):
            machine.advance(phase, "next")

        assert machine.phase == RunPhase.TERMINAL
        assert [t.to_phase for t in machine.history][-1] == RunPhase.TERMINAL
        assert len(machine.history) == 5
        assert machine.history[0].from_phase == RunPhase.IDLE

    @pytest.mark.parametrize("phase", [RunPhase.INITIALIZING, RunPhase.CONNECTING, RunPhase.ACTIVE])
    def test_abort_to_terminal_from_any_phase(self, phase):
        machine = RunStateMachine()
        path = [RunPhase.INITIALIZING, RunPhase.CONNECTING, RunPhase.ACTIVE]
        for step in path[:path.index(phase) + 1]:
            machine.advance(step)

        machine.advance(RunPhase.TERMINAL, "aborted")
        assert machine.phase == RunPhase.TERMINAL

    def test_skipping_phases_raises(self):
        machine = RunStateMachine()
        with pytest.raises(StateTransitionError):
            machine.advance(RunPhase.ACTIVE)
        assert machine.debug_stats['invalid_transitions'] == 1

    def test_terminal_is_final(self):
        machine = RunStateMachine()
        machine.advance(RunPhase.TERMINAL)
        with pytest.raises(StateTransitionError):
            machine.advance(RunPhase.INITIALIZING)


class TestResultStatus:
    """Test monotonic result status."""

    def test_forward_transitions(self):
        result = TestResult()
        result.set_status(TestStatus.RUNNING)
        result.set_status(TestStatus.FAILED, "nope")

        assert result.status == TestStatus.FAILED
        assert result.error_message == "nope"
        assert result.status.is_terminal

    @pytest.mark.parametrize("terminal", [TestStatus.PASSED, TestStatus.FAILED,
                                          TestStatus.TIMEOUT, TestStatus.ERROR])
    def test_terminal_status_never_changes(self, terminal):
        result = TestResult()
        result.set_status(TestStatus.RUNNING)
        result.set_status(terminal)

        for other in TestStatus:
            with pytest.raises(StateTransitionError):
                result.set_status(other)
        assert result.status == terminal

    def test_running_cannot_go_back_to_pending(self):
        result = TestResult()
        result.set_status(TestStatus.RUNNING)
        with pytest.raises(StateTransitionError):
            result.set_status(TestStatus.PENDING)

    def test_tone_digits_bounded(self):
        result = TestResult()
        result.set_tone_digits("1" * 100)
        assert len(result.tone_digits) == 64

    def test_to_dict(self):
        result = TestResult(test_name="demo")
        result.set_status(TestStatus.RUNNING)
        result.beeps = [BeepEvent(0.1, 0.3, 0.2, 1000.0, -9.0, -6.0, 0)]
        result.set_status(TestStatus.PASSED)

        data = result.to_dict()
        assert data["status"] == "passed"
        assert data["test_name"] == "demo"
        assert data["beeps"][0]["frequency"] == 1000.0


class TestDefinitionHelpers:
    """Test beep expectation resolution."""

    def test_expected_count_prefers_expectation(self):
        definition = TestDefinition(
            receiver=RoleConfig(actions=[ExpectBeepsAction(count=5)]),
            expect=Expectation(beep_count=2),
        )
        assert definition.expected_beep_count() == 2

    def test_expected_count_from_first_action(self):
        definition = TestDefinition(
            receiver=RoleConfig(actions=[ExpectBeepsAction(count=4), ExpectBeepsAction(count=9)]),
        )
        assert definition.expects_beeps()
        assert definition.expected_beep_count() == 4

    def test_no_beep_expectation(self):
        assert not TestDefinition().expects_beeps()

    def test_target_frequency_precedence(self):
        action = ExpectBeepsAction(count=1, frequency=425.0)
        with_expect = TestDefinition(receiver=RoleConfig(actions=[action]),
                                     expect=Expectation(beep_frequency=1000.0))
        from_action = TestDefinition(receiver=RoleConfig(actions=[action]))

        assert with_expect.beep_target_frequency(800.0) == 1000.0
        assert from_action.beep_target_frequency(800.0) == 425.0
        assert TestDefinition().beep_target_frequency(800.0) == 800.0

    def test_receiver_recording(self):
        definition = TestDefinition(
            caller=RoleConfig(actions=[RecordAudioAction(file="caller.wav")]),
            receiver=RoleConfig(actions=[RecordAudioAction(file="first.wav"),
                                         RecordAudioAction(file="second.wav")]),
        )
        assert definition.receiver_recording() == "first.wav"
        assert TestDefinition().receiver_recording() is None
