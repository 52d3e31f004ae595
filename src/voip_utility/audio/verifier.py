# src/voip_utility/audio/verifier.py
"""
Recording verification.
Runs the FFT analyzer over a recorded WAV file and feeds every frame through a
fresh tone segmenter to count beeps.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Union, Dict, Any

from ..utils.logger import VoipLogger, log_function_call
from .analyzer import AnalyzerConfig, AnalysisError, FileAnalysis, analyze_file
from .beep_detector import BeepConfig, BeepEvent, ToneSegmenter

logger = VoipLogger().get_logger(__name__)


@dataclass
class BeepDetectionResult:
    """Beeps found in one recording"""
    events: List[BeepEvent] = field(default_factory=list)
    frames_analyzed: int = 0
    sample_rate: int = 0
    tones_seen: int = 0

    @property
    def beep_count(self) -> int:
        return len(self.events)

    @property
    def dominant_frequency(self) -> float:
        return self.events[0].frequency if self.events else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'beep_count': self.beep_count,
            'dominant_frequency': self.dominant_frequency,
            'frames_analyzed': self.frames_analyzed,
            'sample_rate': self.sample_rate,
            'tones_seen': self.tones_seen,
            'events': [vars(e) for e in self.events],
        }


class RecordingVerifier:
    """
    Beep counter for recorded call audio.
    The analyzer sample rate always follows the file being verified.
    """
    def __init__(self, analyzer_config: Optional[AnalyzerConfig] = None,
                 beep_config: Optional[BeepConfig] = None):
        self.analyzer_config = analyzer_config or AnalyzerConfig()
        self.beep_config = beep_config or BeepConfig()
        self.log = logger.bind(component="RecordingVerifier")

    @log_function_call(level="DEBUG")
    def verify(self, path: Union[str, Path]) -> BeepDetectionResult:
        """
        Detect beeps in a recording.

        Args:
            path: WAV file to analyze

        Returns:
            BeepDetectionResult with the accepted events

        Raises:
            AnalysisError: If the file cannot be analyzed
        """
        try:
            analysis = analyze_file(path, self.analyzer_config)
        except AnalysisError as e:
            self.log.error("verification_failed",
                           message=f"Could not analyze recording {path}",
                           path=str(path),
                           error=str(e))
            raise

        return self.segment(analysis)

    def segment(self, analysis: FileAnalysis) -> BeepDetectionResult:
        """Run a fresh segmenter over an existing analysis"""
        segmenter = ToneSegmenter(self.beep_config)
        for i, (freq, level) in enumerate(zip(analysis.frames, analysis.levels)):
            segmenter.process(freq, level, analysis.frame_time(i))
        segmenter.finish(analysis.duration)

        result = BeepDetectionResult(events=segmenter.events,
                                     frames_analyzed=len(analysis),
                                     sample_rate=analysis.sample_rate,
                                     tones_seen=segmenter.tones_seen)

        self.log.info("recording_verified",
                      message=f"Detected {result.beep_count} beeps",
                      beeps=result.beep_count,
                      tones_seen=result.tones_seen,
                      frames=result.frames_analyzed,
                      dominant_frequency=result.dominant_frequency)
        return result
