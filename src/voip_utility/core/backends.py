# src/voip_utility/core/backends.py
"""
SIP session backend selection.
`loopback` builds the in-process MockSipSession; any other value is treated as
a `package.module:ClassName` import path whose class is constructed with the
loaded Config.
"""

import importlib

from ..utils.config import Config, ConfigurationError
from ..utils.logger import VoipLogger
from .interfaces import SipSession
from .mock_session import MockSipSession

logger = VoipLogger().get_logger(__name__)

LOOPBACK = "loopback"


def create_session(config: Config) -> SipSession:
    """
    Build the session named by config.sip.backend.

    Raises:
        ConfigurationError: If the backend is unknown or cannot be imported
    """
    backend = (config.sip.backend or LOOPBACK).strip()

    if backend == LOOPBACK:
        logger.debug("session_backend_selected",
                     message="Using loopback SIP session",
                     backend=backend)
        return MockSipSession(sample_rate=config.audio.sample_rate)

    module_name, sep, class_name = backend.partition(":")
    if not sep or not module_name or not class_name:
        raise ConfigurationError(
            f"Unknown SIP backend '{backend}', expected 'loopback' or 'module:Class'"
        )

    try:
        module = importlib.import_module(module_name)
        session_class = getattr(module, class_name)
    except (ImportError, AttributeError) as e:
        logger.error("session_backend_import_failed",
                     message=f"Cannot load SIP backend {backend}",
                     backend=backend,
                     error=str(e))
        raise ConfigurationError(f"Cannot load SIP backend '{backend}': {e}") from e

    logger.info("session_backend_selected",
                message=f"Using SIP backend {backend}",
                backend=backend)
    return session_class(config)
