"""Tests for the voip-utility command line."""

import json
import logging

import pytest
import yaml

from voip_utility.cli import __main__ as cli


@pytest.fixture(autouse=True)
def isolate_process_state(monkeypatch):
    """Keep signal handlers and root logging handlers untouched by main()."""
    monkeypatch.setattr(cli.runtime, "install_signal_handlers", lambda: None)
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers = handlers
    root.setLevel(level)


@pytest.fixture
def config_file(tmp_path, config_data):
    config_data["engine"]["poll_interval_ms"] = 1
    config_data["logging"] = {"level": "WARNING"}
    path = tmp_path / "voip-utility.yml"
    path.write_text(yaml.safe_dump(config_data))
    return str(path)


@pytest.fixture
def scenario_file(tmp_path):
    def _write(data, name="scenario.json"):
        path = tmp_path / name
        path.write_text(json.dumps(data))
        return str(path)
    return _write


def _scenario(caller_actions=(), receiver_actions=(), **expect):
    return {
        "name": "cli scenario",
        "timeout": 10,
        "caller": {"account": "alice", "uri": "sip:1002@pbx.test", "timeout": 2,
                   "actions": list(caller_actions)},
        "receiver": {"account": "bob", "auto_answer": True,
                     "actions": list(receiver_actions)},
        "expect": {"connected": True, **expect},
    }


class TestArguments:
    """Test argument parsing."""

    def test_command_required(self):
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args([])

    def test_test_requires_file(self):
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args(["test"])

    def test_log_level_case_insensitive(self):
        args = cli.build_parser().parse_args(["--log-level", "debug", "analyze", "x.wav"])
        assert args.log_level == "DEBUG"

    def test_negative_target_frequency_rejected(self, capsys):
        with pytest.raises(SystemExit):
            cli.main(["analyze", "x.wav", "--beeps", "--target-freq", "-425"])
        assert "--target-freq" in capsys.readouterr().err

    def test_missing_config_file(self, tmp_path, capsys):
        code = cli.main(["-c", str(tmp_path / "none.yml"), "analyze", "x.wav"])

        assert code == 1
        assert "Configuration error" in capsys.readouterr().err


class TestAnalyzeCommand:
    """Test the analyze subcommand."""

    def test_stats_by_default(self, config_file, three_beeps_wav, capsys):
        code = cli.main(["-c", config_file, "analyze", three_beeps_wav])

        out = capsys.readouterr().out
        assert code == 0
        assert "Sample rate: 8000 Hz" in out
        assert "Duration: 1.800s" in out
        assert "Beeps:" not in out

    def test_beeps_listing(self, config_file, three_beeps_wav, capsys):
        code = cli.main(["-c", config_file, "analyze", three_beeps_wav, "--beeps"])

        out = capsys.readouterr().out
        assert code == 0
        assert "Beeps: 3" in out
        assert "Sample rate" not in out
        assert "#3:" in out

    def test_json_output(self, config_file, three_beeps_wav, capsys):
        code = cli.main(["-c", config_file, "--json", "analyze", three_beeps_wav,
                         "--beeps", "--stats"])

        output = json.loads(capsys.readouterr().out)
        assert code == 0
        assert output["file"] == three_beeps_wav
        assert output["stats"]["sample_rate"] == 8000
        assert output["beeps"]["beep_count"] == 3

    def test_target_frequency_option(self, config_file, three_beeps_wav, capsys):
        cli.main(["-c", config_file, "--json", "analyze", three_beeps_wav,
                  "--beeps", "--target-freq", "425"])

        output = json.loads(capsys.readouterr().out)
        assert output["beeps"]["beep_count"] == 0

    def test_unreadable_file(self, config_file, tmp_path, capsys):
        path = tmp_path / "noise.wav"
        path.write_bytes(b"not a wav file")

        code = cli.main(["-c", config_file, "analyze", str(path)])

        assert code == 1
        assert "Error" in capsys.readouterr().err


class TestTestCommand:
    """Test the test subcommand over the loopback backend."""

    def test_passing_scenario(self, config_file, scenario_file, capsys):
        path = scenario_file(_scenario(
            caller_actions=[{"action": "send_dtmf", "digits": "123"}],
            receiver_actions=[{"action": "expect_dtmf", "pattern": "12"}],
        ))

        code = cli.main(["-c", config_file, "test", "-f", path])

        out = capsys.readouterr().out
        assert code == 0
        assert "Status: PASSED" in out
        assert "DTMF received: 123" in out

    def test_failing_scenario(self, config_file, scenario_file, capsys):
        path = scenario_file(_scenario(
            caller_actions=[{"action": "send_dtmf", "digits": "9"}],
            receiver_actions=[{"action": "expect_dtmf", "pattern": "1"}],
        ))

        code = cli.main(["-c", config_file, "test", "-f", path])

        out = capsys.readouterr().out
        assert code == 1
        assert "Status: FAILED" in out
        assert "Reason: Expected DTMF '1', received '9'" in out

    def test_json_event_stream(self, config_file, scenario_file, capsys):
        path = scenario_file(_scenario())

        code = cli.main(["-c", config_file, "--json", "test", "-f", path])

        lines = capsys.readouterr().out.strip().splitlines()
        events = [json.loads(line) for line in lines]
        assert code == 0
        assert events[0]["type"] == "test_started"
        assert events[-1]["type"] == "test_completed"
        assert events[-1]["status"] == "passed"
        assert all("timestamp" in event for event in events)

    def test_beep_scenario_relative_paths(self, config_file, scenario_file, three_beeps_wav, tmp_path, capsys):
        path = scenario_file(_scenario(
            caller_actions=[{"action": "play_audio", "file": "three_beeps.wav"}],
            receiver_actions=[{"action": "record_audio", "file": "cli-received.wav"}],
            beep_count=3,
        ))

        code = cli.main(["-c", config_file, "test", "-f", path])

        assert code == 0
        assert "Beeps detected: 3" in capsys.readouterr().out
        assert (tmp_path / "cli-received.wav").exists()

    def test_invalid_test_file(self, config_file, scenario_file, capsys):
        path = scenario_file([1, 2, 3])

        code = cli.main(["-c", config_file, "test", "-f", path])

        assert code == 1
        assert "Error" in capsys.readouterr().err

    def test_unknown_account_exits_nonzero(self, config_file, scenario_file, capsys):
        scenario = _scenario()
        scenario["caller"]["account"] = "mallory"

        code = cli.main(["-c", config_file, "test", "-f", scenario_file(scenario)])

        out = capsys.readouterr().out
        assert code == 1
        assert "Status: ERROR" in out