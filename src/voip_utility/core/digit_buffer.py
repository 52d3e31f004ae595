# src/voip_utility/core/digit_buffer.py
"""
Bounded tone digit buffer for received DTMF evidence.
"""

import threading
from typing import Dict, Any

from ..utils.logger import VoipLogger

logger = VoipLogger().get_logger(__name__)

MAX_TONE_DIGITS = 64
VALID_DIGITS = frozenset("0123456789*#ABCD")


class ToneDigitBuffer:
    """
    Thread-safe append-only digit buffer.
    Digits past the capacity are dropped and counted.
    """
    def __init__(self, capacity: int = MAX_TONE_DIGITS):
        self.capacity = capacity
        self.lock = threading.Lock()
        self._digits = []
        self._setup_logging()

    def _setup_logging(self):
        """Configure buffer statistics"""
        self.stats = {
            'total_appends': 0,
            'dropped': 0,
            'invalid': 0,
        }

    def append(self, digit: str) -> bool:
        """
        Append one received digit.

        Args:
            digit: Single tone digit character

        Returns:
            True if stored, False if invalid or over capacity
        """
        digit = str(digit).upper()
        with self.lock:
            if len(digit) != 1 or digit not in VALID_DIGITS:
                self.stats['invalid'] += 1
                logger.warning("invalid_tone_digit",
                               message=f"Ignoring invalid tone digit {digit!r}",
                               digit=digit)
                return False

            if len(self._digits) >= self.capacity:
                self.stats['dropped'] += 1
                logger.warning("tone_buffer_full",
                               message="Tone digit buffer full, dropping digit",
                               digit=digit,
                               capacity=self.capacity)
                return False

            self._digits.append(digit)
            self.stats['total_appends'] += 1
            return True

    def snapshot(self) -> str:
        """Return the digits received so far"""
        with self.lock:
            return "".join(self._digits)

    def clear(self) -> None:
        with self.lock:
            self._digits.clear()

    def __len__(self) -> int:
        with self.lock:
            return len(self._digits)

    def get_stats(self) -> Dict[str, Any]:
        """Return buffer statistics"""
        with self.lock:
            return {
                **self.stats,
                'length': len(self._digits),
                'capacity': self.capacity,
            }
