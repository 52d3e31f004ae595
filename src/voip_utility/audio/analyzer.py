# src/voip_utility/audio/analyzer.py
"""
Spectral and level analysis of 16-bit PCM audio.
Implements a Hann-windowed FFT peak picker for dominant frequency detection and
RMS/peak level measurement, plus frame-by-frame analysis of WAV recordings used
by the beep verifier.
"""

import dataclasses
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Any, List, Optional, Union

import numpy as np

from ..utils.logger import VoipLogger, log_function_call
from .wav import read_wav, WavFormatError

# Get structured logger
logger = VoipLogger().get_logger(__name__)

FULL_SCALE = 32768.0
DB_EPSILON = 1e-10
SILENCE_FLOOR_DB = -60.0


class AnalysisError(Exception):
    """Custom exception for audio analysis failures"""
    pass


@dataclass
class AnalyzerConfig:
    """FFT analyzer configuration parameters"""
    sample_rate: int = 8000
    fft_size: int = 512
    min_level_db: float = -40.0  # minimum magnitude for a valid frequency
    freq_tolerance_hz: float = 50.0


@dataclass(frozen=True)
class FrequencyResult:
    """Dominant frequency of one analysis frame"""
    frequency: float
    magnitude_db: float
    valid: bool


@dataclass(frozen=True)
class LevelResult:
    """Signal level of one analysis frame"""
    rms_db: float
    peak_db: float
    is_silence: bool


@dataclass
class FileAnalysis:
    """Frame-by-frame analysis of one recording"""
    frames: List[FrequencyResult]
    levels: List[LevelResult]
    sample_rate: int
    hop_size: int
    total_samples: int = 0
    fft_size: int = 0

    def __len__(self) -> int:
        return len(self.frames)

    def frame_time(self, index: int) -> float:
        """Start time in seconds of frame `index`"""
        return index * self.hop_size / self.sample_rate

    @property
    def duration(self) -> float:
        return self.total_samples / self.sample_rate if self.sample_rate else 0.0

    def statistics(self) -> Dict[str, Any]:
        """Summary statistics over all frames"""
        valid = [f for f in self.frames if f.valid]
        voiced = [lv for lv in self.levels if not lv.is_silence]
        return {
            'frames': len(self.frames),
            'valid_frames': len(valid),
            'silent_frames': len(self.levels) - len(voiced),
            'duration': round(self.duration, 3),
            'sample_rate': self.sample_rate,
            'mean_frequency': float(np.mean([f.frequency for f in valid])) if valid else 0.0,
            'mean_rms_db': float(np.mean([lv.rms_db for lv in self.levels])) if self.levels else 0.0,
            'max_peak_db': max((lv.peak_db for lv in self.levels), default=-200.0),
        }


def _is_power_of_two(value: int) -> bool:
    return value >= 2 and (value & (value - 1)) == 0


class AudioAnalyzer:
    """
    Windowed FFT analyzer.
    One instance per analysis pass; the window is precomputed at construction.
    """
    def __init__(self, config: Optional[AnalyzerConfig] = None):
        self.config = config or AnalyzerConfig()
        if not _is_power_of_two(self.config.fft_size):
            logger.error("invalid_fft_size",
                         message=f"FFT size {self.config.fft_size} is not a power of two",
                         fft_size=self.config.fft_size)
            raise AnalysisError(f"FFT size must be a power of two >= 2, got {self.config.fft_size}")

        n = self.config.fft_size
        self._window = 0.5 * (1.0 - np.cos(2.0 * np.pi * np.arange(n) / (n - 1)))
        self._setup_logging()

    def _setup_logging(self) -> None:
        """Configure analyzer statistics"""
        self.debug_stats = {
            'frames_analyzed': 0,
            'valid_frames': 0,
        }

    @property
    def bin_width(self) -> float:
        return self.config.sample_rate / self.config.fft_size

    def detect_frequency(self, samples) -> FrequencyResult:
        """
        Find the dominant frequency of up to fft_size samples.

        Args:
            samples: int16 PCM samples; shorter input is zero padded

        Returns:
            FrequencyResult for the strongest non-DC bin below Nyquist
        """
        n = self.config.fft_size
        frame = np.zeros(n, dtype=np.float64)
        pcm = np.asarray(samples, dtype=np.float64)[:n]
        frame[:pcm.size] = pcm / FULL_SCALE

        spectrum = np.abs(np.fft.rfft(frame * self._window))
        search = spectrum[1:n // 2]
        peak_bin, peak = 0, 0.0
        if search.size:
            peak_bin = int(np.argmax(search)) + 1
            peak = float(search[peak_bin - 1])

        if peak == 0.0:
            peak_bin = 0

        magnitude_db = 20.0 * np.log10(peak / (n / 2) + DB_EPSILON)
        frequency = peak_bin * self.config.sample_rate / n
        valid = bool(magnitude_db > self.config.min_level_db)

        self.debug_stats['frames_analyzed'] += 1
        if valid:
            self.debug_stats['valid_frames'] += 1

        return FrequencyResult(frequency=float(frequency),
                               magnitude_db=float(magnitude_db),
                               valid=valid)

    def calculate_level(self, samples) -> LevelResult:
        """
        Measure RMS and peak level of the samples.

        Raises:
            AnalysisError: If no samples are given
        """
        pcm = np.asarray(samples, dtype=np.float64)
        if pcm.size == 0:
            raise AnalysisError("Cannot measure level of an empty buffer")

        normalized = pcm / FULL_SCALE
        rms = float(np.sqrt(np.mean(normalized * normalized)))
        peak = float(np.max(np.abs(normalized)))

        rms_db = 20.0 * np.log10(rms + DB_EPSILON)
        peak_db = 20.0 * np.log10(peak + DB_EPSILON)
        return LevelResult(rms_db=float(rms_db),
                           peak_db=float(peak_db),
                           is_silence=bool(rms_db < SILENCE_FLOOR_DB))

    def freq_matches(self, detected: float, target: float) -> bool:
        return abs(detected - target) <= self.config.freq_tolerance_hz

    def get_debug_info(self) -> Dict[str, Any]:
        """Get debug statistics and configuration"""
        return {
            **self.debug_stats,
            'fft_size': self.config.fft_size,
            'sample_rate': self.config.sample_rate,
            'bin_width': self.bin_width,
        }


@log_function_call(level="DEBUG")
def analyze_file(path: Union[str, Path], config: Optional[AnalyzerConfig] = None) -> FileAnalysis:
    """
    Analyze a WAV recording frame by frame.

    Frames are fft_size samples long with 50% overlap. The analyzer sample rate
    is taken from the file; multi-channel files are analyzed on channel 0.

    Args:
        path: WAV file
        config: Analyzer parameters, defaults to AnalyzerConfig()

    Returns:
        FileAnalysis with one FrequencyResult and LevelResult per frame

    Raises:
        AnalysisError: If the file cannot be decoded or holds less than one frame
    """
    try:
        wav = read_wav(path)
    except WavFormatError as e:
        logger.error("wav_decode_failed",
                     message=f"Failed to decode {path}",
                     error=str(e))
        raise AnalysisError(str(e)) from e

    base = config or AnalyzerConfig()
    analyzer = AudioAnalyzer(dataclasses.replace(base, sample_rate=wav.sample_rate))
    fft_size = analyzer.config.fft_size
    hop = fft_size // 2

    pcm = wav.channel(0)
    if wav.channels > 1:
        logger.debug("multichannel_reduced",
                     message=f"Analyzing channel 0 of {wav.channels}",
                     channels=wav.channels)

    if pcm.size < fft_size:
        raise AnalysisError(
            f"{path}: {pcm.size} samples is shorter than one {fft_size}-sample frame"
        )

    frame_count = (pcm.size - fft_size) // hop + 1
    frames: List[FrequencyResult] = []
    levels: List[LevelResult] = []
    for i in range(frame_count):
        chunk = pcm[i * hop:i * hop + fft_size]
        frames.append(analyzer.detect_frequency(chunk))
        levels.append(analyzer.calculate_level(chunk))

    logger.info("file_analyzed",
                message=f"Analyzed {frame_count} frames from {path}",
                path=str(path),
                frames=frame_count,
                sample_rate=wav.sample_rate,
                valid_frames=analyzer.debug_stats['valid_frames'])

    return FileAnalysis(frames=frames,
                        levels=levels,
                        sample_rate=wav.sample_rate,
                        hop_size=hop,
                        total_samples=int(pcm.size),
                        fft_size=fft_size)
