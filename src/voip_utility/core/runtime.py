# src/voip_utility/core/runtime.py
"""
Process-wide keep-running flag.
Cleared by signal handlers to ask in-flight waits to return early.
"""

import signal
import threading

from ..utils.logger import VoipLogger

logger = VoipLogger().get_logger(__name__)

_keep_running = threading.Event()
_keep_running.set()


def is_running() -> bool:
    return _keep_running.is_set()


def request_stop() -> None:
    if _keep_running.is_set():
        logger.info("stop_requested", message="Stop requested, finishing current step")
    _keep_running.clear()


def reset() -> None:
    _keep_running.set()


def install_signal_handlers() -> None:
    """Clear the keep-running flag on SIGINT and SIGTERM"""
    def _handler(signum, frame):
        logger.info("signal_received", message=f"Received signal {signum}", signal=signum)
        request_stop()

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)
