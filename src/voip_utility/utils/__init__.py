"""
Utilities package initialization.
Contains shared configuration and logging helpers.
"""

from .config import Config, ConfigurationError, AccountConfig
from .logger import VoipLogger, LoggerConfig, log_function_call
