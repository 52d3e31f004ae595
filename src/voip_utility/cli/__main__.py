# src/voip_utility/cli/__main__.py
"""
Command line entry point for voip-utility.
Loads configuration, configures logging and dispatches to the `test` and
`analyze` subcommands.
"""

import argparse
import json
import sys
from typing import List, Optional

from ..audio.analyzer import AnalyzerConfig, AnalysisError, analyze_file
from ..audio.beep_detector import BeepConfig
from ..audio.verifier import RecordingVerifier
from ..core import runtime
from ..output.events import JsonEventEmitter, NullEventEmitter
from ..scenario.engine import TestEngine
from ..scenario.parser import TestParseError, parse_test_file
from ..utils.config import Config, ConfigurationError
from ..utils.logger import VoipLogger, LoggerConfig


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="voip-utility",
        description="Scripted SIP call scenario testing with tone and beep verification",
    )
    parser.add_argument("-c", "--config", help="Configuration file (YAML or JSON)")
    parser.add_argument("--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR"],
                        type=str.upper, help="Override the configured log level")
    parser.add_argument("--json", action="store_true",
                        help="Write machine-readable JSON lines to stdout")

    subparsers = parser.add_subparsers(dest="command")
    subparsers.required = True

    test_parser = subparsers.add_parser("test", help="Run a test definition")
    test_parser.add_argument("-f", "--file", required=True, help="Test definition JSON file")

    analyze_parser = subparsers.add_parser("analyze", help="Analyze a WAV recording")
    analyze_parser.add_argument("file", help="WAV file to analyze")
    analyze_parser.add_argument("--beeps", action="store_true", help="List detected beeps")
    analyze_parser.add_argument("--stats", action="store_true", help="Print frame statistics")
    analyze_parser.add_argument("--target-freq", type=float, default=None,
                                help="Only count beeps near this frequency (Hz)")

    return parser


def _configure_logging(config: Config, level: Optional[str]) -> None:
    VoipLogger().configure(LoggerConfig(
        level=level or config.logging.level,
        format=config.logging.format,
        output_file=config.logging.output,
    ))


def run_test(args: argparse.Namespace, config: Config, json_output: bool) -> int:
    """Run one test definition, returning the process exit code"""
    try:
        definition = parse_test_file(args.file)
    except TestParseError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    runtime.reset()
    runtime.install_signal_handlers()
    emitter = JsonEventEmitter(sys.stdout) if json_output else NullEventEmitter()
    engine = TestEngine(config, emitter=emitter)
    result = engine.run(definition)

    if not json_output:
        print(f"Test: {result.test_name}")
        print(f"Status: {result.status.value.upper()}")
        print(f"Duration: {result.duration:.2f}s")
        print(f"Connected: {'yes' if result.connected else 'no'}")
        if result.tone_digits:
            print(f"DTMF received: {result.tone_digits}")
        if result.beep_count:
            print(f"Beeps detected: {result.beep_count} ({result.beep_frequency:.0f} Hz)")
        if result.error_message:
            print(f"Reason: {result.error_message}")

    return 0 if result.passed else 1


def run_analyze(args: argparse.Namespace, config: Config, json_output: bool) -> int:
    """Analyze a recording, returning the process exit code"""
    analyzer_config = AnalyzerConfig(
        fft_size=config.analyzer.fft_size,
        min_level_db=config.analyzer.min_level_db,
        freq_tolerance_hz=config.analyzer.freq_tolerance_hz,
    )
    beep_config = BeepConfig(
        min_level_db=config.beep.min_level_db,
        min_duration_sec=config.beep.min_duration_sec,
        max_duration_sec=config.beep.max_duration_sec,
        target_freq_hz=args.target_freq if args.target_freq is not None else config.beep.target_freq_hz,
        freq_tolerance_hz=config.beep.freq_tolerance_hz,
    )

    try:
        analysis = analyze_file(args.file, analyzer_config)
    except AnalysisError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    show_stats = args.stats or not args.beeps
    stats = analysis.statistics()
    detection = RecordingVerifier(analyzer_config, beep_config).segment(analysis) if args.beeps else None

    if json_output:
        output = {"file": args.file}
        if show_stats:
            output["stats"] = stats
        if detection is not None:
            output["beeps"] = detection.to_dict()
        print(json.dumps(output))
        return 0

    print(f"File: {args.file}")
    if show_stats:
        print(f"Sample rate: {stats['sample_rate']} Hz")
        print(f"Duration: {stats['duration']:.3f}s")
        print(f"Frames: {stats['frames']} ({stats['valid_frames']} with tone, "
              f"{stats['silent_frames']} silent)")
        print(f"Mean frequency: {stats['mean_frequency']:.1f} Hz")
        print(f"Mean level: {stats['mean_rms_db']:.1f} dB, peak {stats['max_peak_db']:.1f} dB")
    if detection is not None:
        print(f"Beeps: {detection.beep_count}")
        for beep in detection.events:
            print(f"  #{beep.index + 1}: {beep.start_time:.3f}s  {beep.duration:.3f}s  "
                  f"{beep.frequency:.0f} Hz  {beep.level_db:.1f} dB")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point.
    Configuration and test document errors exit with status 1 before any
    call is attempted.
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    if getattr(args, "target_freq", None) is not None and args.target_freq < 0:
        parser.error("--target-freq must be 0 (any frequency) or positive")

    try:
        config = Config.discover(args.config)
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    _configure_logging(config, args.log_level)
    json_output = args.json or config.logging.json_events

    if args.command == "test":
        return run_test(args, config, json_output)
    return run_analyze(args, config, json_output)


if __name__ == "__main__":
    sys.exit(main())
