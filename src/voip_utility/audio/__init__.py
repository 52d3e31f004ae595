"""
Audio package initialization.
Contains WAV handling, FFT analysis and beep detection.
"""

from .wav import read_wav, write_wav, WavData, WavFormatError
from .analyzer import (
    AnalyzerConfig,
    AudioAnalyzer,
    AnalysisError,
    FileAnalysis,
    FrequencyResult,
    LevelResult,
    analyze_file,
)
from .beep_detector import BeepConfig, BeepEvent, ToneSegmenter
from .verifier import RecordingVerifier, BeepDetectionResult

__all__ = [
    'read_wav',
    'write_wav',
    'WavData',
    'WavFormatError',
    'AnalyzerConfig',
    'AudioAnalyzer',
    'AnalysisError',
    'FileAnalysis',
    'FrequencyResult',
    'LevelResult',
    'analyze_file',
    'BeepConfig',
    'BeepEvent',
    'ToneSegmenter',
    'RecordingVerifier',
    'BeepDetectionResult',
]
