# src/voip_utility/audio/beep_detector.py
"""
Beep detection over analyzed audio frames.
Implements a streaming tone segmenter that turns per-frame frequency and level
measurements into discrete beep events, validating each tone's duration and
optionally its frequency against a target.
"""

from dataclasses import dataclass
from typing import Optional, List, Dict, Any

from ..utils.logger import VoipLogger
from .analyzer import FrequencyResult, LevelResult

# Get structured logger
logger = VoipLogger().get_logger(__name__)


@dataclass
class BeepConfig:
    """Beep detection configuration parameters"""
    min_level_db: float = -40.0
    min_duration_sec: float = 0.05
    max_duration_sec: float = 5.0
    target_freq_hz: float = 0.0  # 0 accepts any frequency
    freq_tolerance_hz: float = 50.0

    def __post_init__(self):
        if self.target_freq_hz < 0:
            raise ValueError(f"target_freq_hz must be >= 0, got {self.target_freq_hz}")


@dataclass(frozen=True)
class BeepEvent:
    """One detected beep"""
    start_time: float
    end_time: float
    duration: float
    frequency: float  # average over the tone
    level_db: float  # average RMS
    peak_level_db: float
    index: int


@dataclass
class BeepDetectionState:
    """Running state of the tone currently being tracked"""
    in_tone: bool = False
    start_time: float = 0.0
    freq_sum: float = 0.0
    level_sum: float = 0.0
    sample_count: int = 0
    peak_level: float = -200.0


class ToneSegmenter:
    """
    Streaming tone segmenter.
    Feed frames in time order with process(); call finish() at end of input so
    a tone still sounding is closed.
    """
    def __init__(self, config: Optional[BeepConfig] = None):
        self.config = config or BeepConfig()
        self._state = BeepDetectionState()
        self._events: List[BeepEvent] = []
        self._tones_seen = 0
        self._first_beep_time: Optional[float] = None
        self._total_beep_duration = 0.0

        self.log = logger.bind(component="ToneSegmenter",
                               target_freq_hz=self.config.target_freq_hz)
        self._setup_logging()

    def _setup_logging(self) -> None:
        """Configure segmenter statistics"""
        self.debug_stats = {
            'frames_processed': 0,
            'tone_frames': 0,
            'rejected_short': 0,
            'rejected_long': 0,
        }

    def _is_tone(self, freq: FrequencyResult, level: LevelResult) -> bool:
        if not freq.valid or level.is_silence:
            return False
        if freq.magnitude_db <= self.config.min_level_db:
            return False
        if self.config.target_freq_hz != 0:
            return abs(freq.frequency - self.config.target_freq_hz) <= self.config.freq_tolerance_hz
        return True

    def process(self, freq: FrequencyResult, level: LevelResult, timestamp: float) -> Optional[BeepEvent]:
        """
        Advance the segmenter by one frame.

        Args:
            freq: Frequency measurement for the frame
            level: Level measurement for the frame
            timestamp: Frame time in seconds

        Returns:
            BeepEvent when a qualifying tone ends on this frame, None otherwise
        """
        self.debug_stats['frames_processed'] += 1
        state = self._state

        if self._is_tone(freq, level):
            self.debug_stats['tone_frames'] += 1
            if not state.in_tone:
                state.in_tone = True
                state.start_time = timestamp
                state.freq_sum = freq.frequency
                state.level_sum = level.rms_db
                state.sample_count = 1
                state.peak_level = level.peak_db
            else:
                state.freq_sum += freq.frequency
                state.level_sum += level.rms_db
                state.sample_count += 1
                state.peak_level = max(state.peak_level, level.peak_db)
            return None

        if state.in_tone:
            return self._close_tone(timestamp)
        return None

    def finish(self, timestamp: float) -> Optional[BeepEvent]:
        """Close a tone still open at end of input"""
        if self._state.in_tone:
            return self._close_tone(timestamp)
        return None

    def _close_tone(self, end_time: float) -> Optional[BeepEvent]:
        state = self._state
        duration = end_time - state.start_time
        self._tones_seen += 1
        event = None

        if duration < self.config.min_duration_sec:
            self.debug_stats['rejected_short'] += 1
            self.log.debug("tone_rejected",
                           message=f"Tone too short: {duration:.3f}s",
                           start_time=state.start_time,
                           duration=duration)
        elif duration > self.config.max_duration_sec:
            self.debug_stats['rejected_long'] += 1
            self.log.debug("tone_rejected",
                           message=f"Tone too long: {duration:.3f}s",
                           start_time=state.start_time,
                           duration=duration)
        else:
            event = BeepEvent(
                start_time=state.start_time,
                end_time=end_time,
                duration=duration,
                frequency=state.freq_sum / state.sample_count,
                level_db=state.level_sum / state.sample_count,
                peak_level_db=state.peak_level,
                index=len(self._events),
            )
            self._events.append(event)
            if self._first_beep_time is None:
                self._first_beep_time = event.start_time
            self._total_beep_duration += duration
            self.log.info("beep_detected",
                          message=f"Beep {event.index} at {event.start_time:.3f}s, {event.frequency:.0f} Hz",
                          start_time=event.start_time,
                          duration=duration,
                          frequency=event.frequency)

        self._state = BeepDetectionState()
        return event

    @property
    def events(self) -> List[BeepEvent]:
        return list(self._events)

    @property
    def beep_count(self) -> int:
        return len(self._events)

    @property
    def tones_seen(self) -> int:
        return self._tones_seen

    @property
    def first_beep_time(self) -> Optional[float]:
        return self._first_beep_time

    @property
    def total_beep_duration(self) -> float:
        return self._total_beep_duration

    def reset(self) -> None:
        """Clear detected events and tone state, keeping the configuration"""
        self._state = BeepDetectionState()
        self._events = []
        self._tones_seen = 0
        self._first_beep_time = None
        self._total_beep_duration = 0.0
        self._setup_logging()

    def get_debug_info(self) -> Dict[str, Any]:
        """Get debug statistics and state information"""
        return {
            **self.debug_stats,
            'in_tone': self._state.in_tone,
            'beeps': len(self._events),
            'tones_seen': self._tones_seen,
        }
