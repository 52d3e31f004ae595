# src/voip_utility/audio/wav.py
"""
RIFF/WAVE container reading and writing for 16-bit PCM recordings.
The reader walks the chunk list so files carrying LIST or fact chunks ahead of
the audio are handled; the writer emits the canonical 44-byte header.
"""

import struct
from dataclasses import dataclass
from pathlib import Path
from typing import Union

import numpy as np

from ..utils.logger import VoipLogger

logger = VoipLogger().get_logger(__name__)

WAVE_FORMAT_PCM = 1
WAVE_FORMAT_EXTENSIBLE = 0xFFFE
RIFF_HEADER = struct.Struct("<4sI4s")
CHUNK_HEADER = struct.Struct("<4sI")
FMT_CHUNK = struct.Struct("<HHIIHH")


class WavFormatError(Exception):
    """Custom exception for malformed or unsupported WAV files"""
    pass


@dataclass
class WavData:
    """Decoded WAV payload"""
    samples: np.ndarray  # int16, shape (frames, channels)
    sample_rate: int
    channels: int
    bits_per_sample: int
    format_tag: int

    @property
    def frames(self) -> int:
        return self.samples.shape[0]

    @property
    def duration(self) -> float:
        return self.frames / self.sample_rate if self.sample_rate else 0.0

    def channel(self, index: int = 0) -> np.ndarray:
        """Return one channel as a 1-D int16 array"""
        return self.samples[:, index]


def read_wav(path: Union[str, Path]) -> WavData:
    """
    Read a 16-bit PCM WAV file.

    Args:
        path: File to read

    Returns:
        WavData with samples shaped (frames, channels)

    Raises:
        WavFormatError: If the file is unreadable or not 16-bit RIFF/WAVE
    """
    try:
        raw = Path(path).read_bytes()
    except OSError as e:
        raise WavFormatError(f"Cannot read {path}: {e}") from e

    if len(raw) < RIFF_HEADER.size:
        raise WavFormatError(f"{path}: file too short for a RIFF header")

    riff, _, wave = RIFF_HEADER.unpack_from(raw, 0)
    if riff != b"RIFF" or wave != b"WAVE":
        raise WavFormatError(f"{path}: not a RIFF/WAVE file")

    fmt = None
    data = None
    offset = RIFF_HEADER.size
    while offset + CHUNK_HEADER.size <= len(raw) and (fmt is None or data is None):
        chunk_id, chunk_size = CHUNK_HEADER.unpack_from(raw, offset)
        body_start = offset + CHUNK_HEADER.size
        body = raw[body_start:body_start + chunk_size]

        if chunk_id == b"fmt ":
            if len(body) < FMT_CHUNK.size:
                raise WavFormatError(f"{path}: truncated fmt chunk")
            fmt = FMT_CHUNK.unpack_from(body, 0)
        elif chunk_id == b"data":
            data = body
        else:
            logger.debug("wav_chunk_skipped",
                         message=f"Skipping chunk {chunk_id!r}",
                         chunk=chunk_id.decode("latin-1"),
                         size=chunk_size)

        # chunks are word aligned
        offset = body_start + chunk_size + (chunk_size & 1)

    if fmt is None:
        raise WavFormatError(f"{path}: missing fmt chunk")
    if data is None:
        raise WavFormatError(f"{path}: missing data chunk")

    format_tag, channels, sample_rate, _, block_align, bits_per_sample = fmt
    if bits_per_sample != 16:
        raise WavFormatError(f"{path}: unsupported bits per sample {bits_per_sample}")
    if channels < 1 or sample_rate < 1:
        raise WavFormatError(f"{path}: invalid format (channels={channels}, rate={sample_rate})")
    if format_tag not in (WAVE_FORMAT_PCM, WAVE_FORMAT_EXTENSIBLE):
        logger.warning("wav_format_tag",
                       message=f"Unexpected format tag {format_tag}, decoding as PCM",
                       format_tag=format_tag)

    frame_bytes = channels * 2
    usable = len(data) - (len(data) % frame_bytes)
    samples = np.frombuffer(data[:usable], dtype="<i2").astype(np.int16).reshape(-1, channels)

    return WavData(
        samples=samples,
        sample_rate=sample_rate,
        channels=channels,
        bits_per_sample=bits_per_sample,
        format_tag=format_tag,
    )


def write_wav(path: Union[str, Path], samples, sample_rate: int, channels: int = 1) -> None:
    """
    Write 16-bit PCM samples with a canonical 44-byte header.

    Args:
        path: Destination file
        samples: int16 samples, interleaved or shaped (frames, channels)
        sample_rate: Samples per second
        channels: Channel count
    """
    pcm = np.asarray(samples, dtype=np.int16).reshape(-1)
    if pcm.size % channels:
        raise WavFormatError(f"{pcm.size} samples do not divide into {channels} channels")

    payload = pcm.astype("<i2").tobytes()
    block_align = channels * 2
    header = RIFF_HEADER.pack(b"RIFF", 36 + len(payload), b"WAVE")
    header += CHUNK_HEADER.pack(b"fmt ", FMT_CHUNK.size)
    header += FMT_CHUNK.pack(WAVE_FORMAT_PCM, channels, sample_rate,
                             sample_rate * block_align, block_align, 16)
    header += CHUNK_HEADER.pack(b"data", len(payload))

    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    with open(target, "wb") as f:
        f.write(header)
        f.write(payload)

    logger.debug("wav_written",
                 message=f"Wrote {pcm.size // channels} frames to {target}",
                 path=str(target),
                 sample_rate=sample_rate,
                 channels=channels)
