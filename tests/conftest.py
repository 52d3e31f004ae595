"""Shared fixtures for voip-utility tests."""

from typing import Callable, List, Sequence, Tuple

import numpy as np
import pytest

from voip_utility.audio.wav import write_wav
from voip_utility.core import runtime
from voip_utility.core.mock_session import MockSipSession
from voip_utility.utils.config import Config

SAMPLE_RATE = 8000


@pytest.fixture
def generate_tone() -> Callable[..., np.ndarray]:
    """Generate an int16 sine tone."""
    def _generate(frequency: float = 1000.0, duration: float = 0.5,
                  sample_rate: int = SAMPLE_RATE, amplitude: float = 0.5) -> np.ndarray:
        n = int(round(sample_rate * duration))
        t = np.arange(n) / sample_rate
        audio_float = np.sin(2 * np.pi * frequency * t) * amplitude
        return (audio_float * 32767).astype(np.int16)
    return _generate


@pytest.fixture
def beep_train(generate_tone) -> Callable[..., np.ndarray]:
    """Build audio from (frequency, seconds) segments; frequency 0 is silence."""
    def _build(segments: Sequence[Tuple[float, float]], sample_rate: int = SAMPLE_RATE) -> np.ndarray:
        parts: List[np.ndarray] = []
        for frequency, seconds in segments:
            if frequency:
                parts.append(generate_tone(frequency, seconds, sample_rate))
            else:
                parts.append(np.zeros(int(round(sample_rate * seconds)), dtype=np.int16))
        return np.concatenate(parts)
    return _build


@pytest.fixture
def wav_file(tmp_path) -> Callable[..., str]:
    """Write samples to a WAV file under tmp_path and return its path."""
    def _write(samples: np.ndarray, name: str = "audio.wav",
               sample_rate: int = SAMPLE_RATE, channels: int = 1) -> str:
        path = tmp_path / name
        write_wav(path, samples, sample_rate, channels)
        return str(path)
    return _write


@pytest.fixture
def three_beeps_wav(beep_train, wav_file) -> str:
    """Three 200 ms 1 kHz beeps separated by 300 ms of silence."""
    samples = beep_train([
        (0, 0.3), (1000, 0.2), (0, 0.3), (1000, 0.2), (0, 0.3), (1000, 0.2), (0, 0.3),
    ])
    return wav_file(samples, "three_beeps.wav")


@pytest.fixture
def config_data(tmp_path) -> dict:
    """Configuration with two loopback accounts and fast engine timing."""
    return {
        "accounts": [
            {"id": "alice", "username": "1001", "server": "pbx.test", "password": "secret"},
            {"id": "bob", "username": "1002", "server": "pbx.test", "password": "secret"},
        ],
        "audio": {"sample_rate": SAMPLE_RATE},
        "engine": {"registration_timeout": 1.0, "settle_time": 0.0, "poll_interval_ms": 10},
        "paths": {"recordings_dir": str(tmp_path)},
    }


@pytest.fixture
def config(config_data) -> Config:
    return Config.from_dict(config_data)


@pytest.fixture
def sessions() -> List[MockSipSession]:
    """Sessions created by session_factory, in creation order."""
    return []


@pytest.fixture
def session_factory(sessions) -> Callable[..., Callable[[Config], MockSipSession]]:
    """Build a session factory for TestEngine that records every session it creates."""
    def _factory(**kwargs) -> Callable[[Config], MockSipSession]:
        kwargs.setdefault("time_scale", 0)
        kwargs.setdefault("sample_rate", SAMPLE_RATE)

        def _create(config: Config) -> MockSipSession:
            session = MockSipSession(**kwargs)
            sessions.append(session)
            return session
        return _create
    return _factory


@pytest.fixture(autouse=True)
def keep_running():
    """Every test starts with the keep-running flag set."""
    runtime.reset()
    yield
    runtime.reset()
