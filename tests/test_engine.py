"""Tests for the test engine running scenarios over the loopback session."""

import json
import threading

import pytest

from voip_utility.core.interfaces import SessionError
from voip_utility.core.mock_session import MockSipSession
from voip_utility.output.events import EventType, MemoryEventEmitter
from voip_utility.scenario.engine import TestEngine
from voip_utility.scenario.models import ExpectToneAction
from voip_utility.scenario.parser import parse_test_data
from voip_utility.scenario.state import RunPhase, TestStatus
from voip_utility.utils.config import ConfigurationError


def _definition(caller_actions=(), receiver_actions=(), expect=None, **overrides):
    data = {
        "name": "engine test",
        "timeout": 10,
        "caller": {"account": "alice", "uri": "sip:1002@pbx.test", "timeout": 2,
                   "actions": list(caller_actions)},
        "receiver": {"account": "bob", "auto_answer": True,
                     "actions": list(receiver_actions)},
        "expect": expect or {"connected": True},
    }
    data.update(overrides)
    return parse_test_data(data)


@pytest.fixture
def emitter():
    return MemoryEventEmitter()


@pytest.fixture
def engine(config, session_factory, emitter):
    return TestEngine(config, session_factory(), emitter)


class TestConnection:
    """Test registration and call setup outcomes."""

    def test_basic_call_passes(self, engine, emitter, sessions):
        result = engine.run(_definition())

        assert result.status == TestStatus.PASSED
        assert result.connected
        assert result.error_message == ""
        assert engine.phase == RunPhase.TERMINAL
        types = [e.type for e in emitter.events]
        assert types[0] == EventType.TEST_STARTED
        assert types[-1] == EventType.TEST_COMPLETED
        assert EventType.CALL_CONNECTED in types
        assert EventType.INCOMING_CALL in types

    def test_started_event_carries_definition(self, engine, emitter):
        engine.run(_definition(caller_actions=[{"action": "send_dtmf", "digits": "12"}]))

        started = emitter.of_type(EventType.TEST_STARTED)[0]
        assert started.definition["name"] == "engine test"
        assert started.definition["caller"]["uri"] == "sip:1002@pbx.test"
        assert started.definition["caller"]["actions"] == [
            {"action": "send_dtmf", "digits": "12", "timeout": 5},
        ]
        assert started.definition["expect"]["connected"] is True

    def test_unanswered_call_fails(self, config, session_factory):
        engine = TestEngine(config, session_factory(unanswered=["bob"]))
        definition = _definition()
        definition.caller.timeout = 0.2

        result = engine.run(definition)

        assert result.status == TestStatus.FAILED
        assert not result.connected
        assert "connect" in result.error_message
        assert result.error_message == "Expected call to connect but it didn't"

    def test_no_auto_answer_fails(self, engine):
        definition = _definition()
        definition.receiver.auto_answer = False
        definition.caller.timeout = 0.2

        result = engine.run(definition)
        assert result.status == TestStatus.FAILED

    def test_unknown_target_without_connect_expectation(self, engine):
        definition = _definition(expect={"connected": False})
        definition.caller.uri = "sip:9999@pbx.test"

        result = engine.run(definition)

        assert result.status == TestStatus.FAILED
        assert result.error_message == "Call failed to connect"

    def test_registration_failure_is_error(self, config, session_factory, sessions):
        engine = TestEngine(config, session_factory(fail_registration=["alice"]))
        result = engine.run(_definition())

        assert result.status == TestStatus.ERROR
        assert "alice" in result.error_message
        assert not sessions[0]._initialized

    def test_unknown_account_is_error(self, engine, sessions):
        definition = _definition()
        definition.caller.account = "carol"

        result = engine.run(definition)

        assert result.status == TestStatus.ERROR
        assert "carol" in result.error_message
        assert sessions == []

    def test_session_factory_failure_is_error(self, config):
        def broken(_config):
            raise RuntimeError("no SIP stack")

        result = TestEngine(config, broken).run(_definition())

        assert result.status == TestStatus.ERROR
        assert "no SIP stack" in result.error_message

    def test_run_without_definition(self, engine):
        with pytest.raises(ConfigurationError):
            engine.run()


class TestToneDigits:
    """Test tone digit expectations."""

    @pytest.mark.parametrize("sent,pattern,status", [
        ("123456", "123", TestStatus.PASSED),
        ("123", "123", TestStatus.PASSED),
        ("9123", "123", TestStatus.FAILED),
        ("12", "123", TestStatus.FAILED),
    ])
    def test_prefix_match(self, engine, sent, pattern, status):
        definition = _definition(
            caller_actions=[{"action": "send_dtmf", "digits": sent}],
            receiver_actions=[{"action": "expect_dtmf", "pattern": pattern}],
        )

        result = engine.run(definition)

        assert result.status == status
        assert result.tone_digits == sent
        if status == TestStatus.FAILED:
            assert result.error_message == f"Expected DTMF '{pattern}', received '{sent}'"

    def test_letter_digits_match_case_insensitively(self, engine):
        definition = _definition(
            caller_actions=[{"action": "send_dtmf", "digits": "a1"}],
            receiver_actions=[{"action": "expect_dtmf", "pattern": "a1"}],
        )

        result = engine.run(definition)

        assert result.status == TestStatus.PASSED
        assert result.tone_digits == "A1"

    def test_programmatic_lowercase_pattern(self, engine):
        definition = _definition(caller_actions=[{"action": "send_dtmf", "digits": "B"}])
        definition.receiver.actions.append(ExpectToneAction(pattern="b"))

        assert engine.run(definition).status == TestStatus.PASSED

    def test_dtmf_events_emitted(self, engine, emitter):
        engine.run(_definition(caller_actions=[{"action": "send_dtmf", "digits": "7#"}]))

        sent = emitter.of_type(EventType.DTMF_SENT)
        received = emitter.of_type(EventType.DTMF_RECEIVED)
        assert [e.digits for e in sent] == ["7#"]
        assert [e.digits for e in received] == ["7", "#"]

    def test_caller_expectation_uses_caller_call(self, engine):
        definition = _definition(
            receiver_actions=[{"action": "send_dtmf", "digits": "55"}],
            caller_actions=[{"action": "expect_dtmf", "pattern": "55"}],
        )

        result = engine.run(definition)

        assert result.status == TestStatus.PASSED
        assert result.tone_digits == ""


class TestBeeps:
    """Test beep expectations against the receiver recording."""

    def _beep_definition(self, tmp_path, beeps_wav, **expect):
        return _definition(
            receiver_actions=[{"action": "record_audio", "file": str(tmp_path / "received.wav")}],
            caller_actions=[{"action": "play_audio", "file": beeps_wav}],
            expect={"connected": True, **expect},
        )

    def test_expected_beeps_pass(self, engine, emitter, tmp_path, three_beeps_wav):
        result = engine.run(self._beep_definition(tmp_path, three_beeps_wav, beep_count=3))

        assert result.status == TestStatus.PASSED
        assert result.beep_count == 3
        assert len(result.beeps) == 3
        assert abs(result.beep_frequency - 1000.0) < 20.0
        assert len(emitter.of_type(EventType.BEEP_DETECTED)) == 3
        assert (tmp_path / "received.wav").exists()

    def test_wrong_beep_count_fails(self, engine, tmp_path, three_beeps_wav):
        result = engine.run(self._beep_definition(tmp_path, three_beeps_wav, beep_count=2))

        assert result.status == TestStatus.FAILED
        assert result.error_message == "Expected 2 beeps, detected 3"

    def test_count_from_expect_beeps_action(self, engine, tmp_path, three_beeps_wav):
        definition = _definition(
            receiver_actions=[
                {"action": "record_audio", "file": str(tmp_path / "received.wav")},
                {"action": "expect_beeps", "count": 3, "frequency": 1000},
            ],
            caller_actions=[{"action": "play_audio", "file": three_beeps_wav}],
        )

        assert engine.run(definition).status == TestStatus.PASSED

    def test_target_frequency_filters_beeps(self, engine, tmp_path, three_beeps_wav):
        result = engine.run(self._beep_definition(tmp_path, three_beeps_wav,
                                                  beep_count=3, beep_frequency=425.0))

        assert result.status == TestStatus.FAILED
        assert result.beep_count == 0

    def test_missing_record_action(self, engine, three_beeps_wav):
        definition = _definition(
            caller_actions=[{"action": "play_audio", "file": three_beeps_wav}],
            expect={"beep_count": 1},
        )

        result = engine.run(definition)

        assert result.status == TestStatus.FAILED
        assert result.error_message == "No record_audio action to analyze for beeps"

    def test_short_recording_is_error(self, engine, tmp_path):
        definition = _definition(
            receiver_actions=[{"action": "record_audio", "file": str(tmp_path / "empty.wav")}],
            expect={"beep_count": 1},
        )

        result = engine.run(definition)

        assert result.status == TestStatus.ERROR
        assert result.error_message

    def test_relative_recording_uses_recordings_dir(self, engine, tmp_path, three_beeps_wav):
        definition = _definition(
            receiver_actions=[{"action": "record_audio", "file": "relative.wav"}],
            caller_actions=[{"action": "play_audio", "file": three_beeps_wav}],
            expect={"beep_count": 3},
        )

        assert engine.run(definition).status == TestStatus.PASSED
        assert (tmp_path / "relative.wav").exists()


class TestLifecycle:
    """Test timeouts, stop requests, session errors and cleanup."""

    def test_overall_timeout(self, engine):
        definition = _definition(caller_actions=[{"action": "wait", "seconds": 5}])
        definition.timeout = 0.2

        result = engine.run(definition)

        assert result.status == TestStatus.TIMEOUT
        assert result.duration < 2.0

    def test_stop_event_skips_remaining_actions(self, config, session_factory):
        stop = threading.Event()

        class StopOnConnect(MemoryEventEmitter):
            def emit(self, event):
                super().emit(event)
                if event.type == EventType.CALL_CONNECTED:
                    stop.set()

        engine = TestEngine(config, session_factory(), StopOnConnect(), stop_event=stop)
        definition = _definition(caller_actions=[{"action": "send_dtmf", "digits": "1"}],
                                 receiver_actions=[{"action": "expect_dtmf", "pattern": "1"}])

        result = engine.run(definition)

        assert result.status == TestStatus.FAILED
        assert result.connected
        assert engine.debug_stats["actions_skipped"] == 2

    def test_stop_before_registration_is_error(self, config, session_factory):
        stop = threading.Event()
        stop.set()

        result = TestEngine(config, session_factory(), stop_event=stop).run(_definition())

        assert result.status == TestStatus.ERROR
        assert "Registration" in result.error_message

    def test_session_error_during_action(self, config, session_factory, sessions, tmp_path):
        engine = TestEngine(config, session_factory())
        definition = _definition(caller_actions=[
            {"action": "play_audio", "file": str(tmp_path / "missing.wav")},
        ])

        result = engine.run(definition)

        assert result.status == TestStatus.ERROR
        assert "missing.wav" in result.error_message
        assert not sessions[0]._initialized

    def test_action_after_hangup_is_error(self, engine):
        definition = _definition(caller_actions=[
            {"action": "hangup"},
            {"action": "send_dtmf", "digits": "1"},
        ])

        result = engine.run(definition)
        assert result.status == TestStatus.ERROR

    def test_hangup_then_wait_passes(self, engine, emitter):
        definition = _definition(caller_actions=[
            {"action": "wait", "seconds": 0.05},
            {"action": "hangup", "code": 486},
        ])

        result = engine.run(definition)

        assert result.status == TestStatus.PASSED
        assert emitter.of_type(EventType.CALL_DISCONNECTED)

    def test_cleanup_runs_once(self, config):
        calls = {"shutdown": 0, "hangup_all": 0, "unregister": 0}

        class CountingSession(MockSipSession):
            def shutdown(self):
                calls["shutdown"] += 1
                super().shutdown()

            def hangup_all(self):
                calls["hangup_all"] += 1
                super().hangup_all()

            def unregister(self, account_id):
                calls["unregister"] += 1
                super().unregister(account_id)

        result = TestEngine(config, lambda _c: CountingSession(time_scale=0)).run(_definition())

        assert result.status == TestStatus.PASSED
        assert calls == {"shutdown": 1, "hangup_all": 1, "unregister": 2}

    def test_cleanup_errors_do_not_mask_result(self, config):
        class FailingShutdown(MockSipSession):
            def shutdown(self):
                raise SessionError("shutdown exploded")

        result = TestEngine(config, lambda _c: FailingShutdown(time_scale=0)).run(_definition())
        assert result.status == TestStatus.PASSED

    def test_load_and_run_file(self, engine, tmp_path):
        path = tmp_path / "call.json"
        path.write_text(json.dumps({
            "name": "from file",
            "caller": {"account": "alice", "uri": "sip:1002@pbx.test",
                       "actions": [{"action": "send_dtmf", "digits": "9"}]},
            "receiver": {"account": "bob", "auto_answer": True,
                         "actions": [{"action": "expect_dtmf", "pattern": "9"}]},
        }))

        engine.load(path)
        result = engine.run()

        assert result.test_name == "from file"
        assert result.status == TestStatus.PASSED
        assert engine.result is result

    def test_phase_history(self, engine):
        engine.run(_definition())

        phases = [t.to_phase for t in engine.state_machine.history]
        assert phases == [RunPhase.INITIALIZING, RunPhase.CONNECTING, RunPhase.ACTIVE,
                          RunPhase.EVALUATING, RunPhase.TERMINAL]
