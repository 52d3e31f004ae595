"""Tests for WAV container reading and writing."""

import struct

import numpy as np
import pytest

from voip_utility.audio.wav import WavFormatError, read_wav, write_wav


def _riff(chunks: bytes) -> bytes:
    return b"RIFF" + struct.pack("<I", 4 + len(chunks)) + b"WAVE" + chunks


def _chunk(chunk_id: bytes, body: bytes) -> bytes:
    padding = b"\x00" if len(body) % 2 else b""
    return chunk_id + struct.pack("<I", len(body)) + body + padding


def _fmt(channels=1, rate=8000, bits=16) -> bytes:
    block_align = channels * bits // 8
    return _chunk(b"fmt ", struct.pack("<HHIIHH", 1, channels, rate,
                                       rate * block_align, block_align, bits))


class TestWriteWav:
    """Test the canonical header layout."""

    def test_header_is_44_bytes(self, tmp_path):
        path = tmp_path / "out.wav"
        write_wav(path, np.arange(100, dtype=np.int16), 8000)

        raw = path.read_bytes()
        assert len(raw) == 44 + 200
        assert raw[:4] == b"RIFF"
        assert raw[8:16] == b"WAVEfmt "
        assert raw[36:40] == b"data"
        assert struct.unpack_from("<I", raw, 40)[0] == 200
        assert struct.unpack_from("<I", raw, 24)[0] == 8000

    def test_written_file_reads_back(self, tmp_path):
        samples = np.array([0, 1000, -1000, 32767, -32768], dtype=np.int16)
        path = tmp_path / "out.wav"
        write_wav(path, samples, 16000)

        wav = read_wav(path)
        assert wav.sample_rate == 16000
        assert wav.channels == 1
        np.testing.assert_array_equal(wav.channel(0), samples)

    def test_rejects_uneven_channel_split(self, tmp_path):
        with pytest.raises(WavFormatError):
            write_wav(tmp_path / "bad.wav", np.zeros(3, dtype=np.int16), 8000, channels=2)


class TestReadWav:
    """Test the chunk scanner."""

    def test_skips_unknown_chunks(self, tmp_path):
        pcm = np.array([1, 2, 3, 4], dtype="<i2").tobytes()
        data = _riff(_chunk(b"LIST", b"odd")
                     + _fmt()
                     + _chunk(b"fact", b"\x04\x00\x00\x00")
                     + _chunk(b"data", pcm))
        path = tmp_path / "chunks.wav"
        path.write_bytes(data)

        wav = read_wav(path)
        np.testing.assert_array_equal(wav.channel(0), [1, 2, 3, 4])

    def test_data_before_fmt(self, tmp_path):
        pcm = np.array([5, 6], dtype="<i2").tobytes()
        path = tmp_path / "order.wav"
        path.write_bytes(_riff(_chunk(b"data", pcm) + _fmt()))

        assert read_wav(path).frames == 2

    def test_bad_signature(self, tmp_path):
        path = tmp_path / "bad.wav"
        path.write_bytes(b"RIFX" + b"\x00" * 40)
        with pytest.raises(WavFormatError):
            read_wav(path)

    def test_missing_data_chunk(self, tmp_path):
        path = tmp_path / "nodata.wav"
        path.write_bytes(_riff(_fmt()))
        with pytest.raises(WavFormatError, match="data"):
            read_wav(path)

    def test_missing_fmt_chunk(self, tmp_path):
        path = tmp_path / "nofmt.wav"
        path.write_bytes(_riff(_chunk(b"data", b"\x00\x00")))
        with pytest.raises(WavFormatError, match="fmt"):
            read_wav(path)

    @pytest.mark.parametrize("bits", [0, 8, 24])
    def test_rejects_non_16_bit(self, tmp_path, bits):
        path = tmp_path / "bits.wav"
        path.write_bytes(_riff(_fmt(bits=bits) + _chunk(b"data", b"\x00" * 12)))
        with pytest.raises(WavFormatError):
            read_wav(path)

    def test_unreadable_file(self, tmp_path):
        with pytest.raises(WavFormatError):
            read_wav(tmp_path / "missing.wav")
