# src/voip_utility/utils/logger.py
"""
Structured logging for voip-utility.
Wraps structlog on top of the standard logging module so that library code can
emit event-style log records (event name + context keywords) that render either
as JSON lines for automation or as readable console output.
"""

import functools
import logging
import logging.handlers
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Any, Callable, Optional

import structlog


@dataclass
class LoggerConfig:
    """Logging configuration parameters"""
    level: str = "INFO"
    format: str = "console"  # "json" or "console"
    output_file: Optional[str] = None
    max_bytes: int = 10_485_760  # 10MB
    backup_count: int = 5


def _numeric_level(level: str) -> int:
    value = logging.getLevelName(str(level).upper())
    if isinstance(value, int):
        return value
    return logging.INFO


class VoipLogger:
    """
    Process-wide structlog configuration holder.
    Every instance shares the same configuration; call configure() once at
    startup and get_logger() anywhere.
    """
    _instance = None
    _configured = False

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def configure(self, config: LoggerConfig, stream: Optional[IO[str]] = None) -> None:
        """
        Configure structlog and the root stdlib logger.

        Args:
            config: Logging parameters
            stream: Console stream, defaults to stderr so stdout stays free
                    for the JSON event stream
        """
        numeric_level = _numeric_level(config.level)

        shared_processors = [
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_logger_name,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", key="timestamp"),
            structlog.processors.StackInfoRenderer(),
        ]

        if config.format == "json":
            renderer = structlog.processors.JSONRenderer()
            shared_processors.append(structlog.processors.format_exc_info)
        else:
            renderer = structlog.dev.ConsoleRenderer(colors=False)

        formatter = structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared_processors,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                renderer,
            ],
        )

        handlers = []
        console_handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

        if config.output_file:
            log_path = Path(config.output_file)
            log_path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.handlers.RotatingFileHandler(
                log_path,
                maxBytes=config.max_bytes,
                backupCount=config.backup_count,
                encoding="utf-8",
            )
            file_handler.setFormatter(formatter)
            handlers.append(file_handler)

        root = logging.getLogger()
        root.handlers = handlers
        root.setLevel(numeric_level)

        structlog.configure(
            processors=[
                *shared_processors,
                structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
            ],
            wrapper_class=structlog.stdlib.BoundLogger,
            logger_factory=structlog.stdlib.LoggerFactory(),
            cache_logger_on_first_use=False,
        )
        VoipLogger._configured = True

        self.get_logger(__name__).debug("logging_configured",
                                        message="Logging configured",
                                        level=config.level,
                                        format=config.format,
                                        output_file=config.output_file)

    @property
    def configured(self) -> bool:
        return VoipLogger._configured

    def get_logger(self, name: str) -> structlog.stdlib.BoundLogger:
        """Return a structlog logger for the given module name"""
        return structlog.stdlib.get_logger(name)


def log_function_call(level: str = "DEBUG") -> Callable:
    """
    Decorator that logs entry into and exit from the wrapped function.

    Args:
        level: Log level name used for both records
    """
    numeric_level = _numeric_level(level)

    def decorator(func: Callable) -> Callable:
        func_logger = VoipLogger().get_logger(func.__module__)

        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            func_logger.log(numeric_level, "function_call",
                            message=f"Calling {func.__qualname__}",
                            function=func.__qualname__)
            result = func(*args, **kwargs)
            func_logger.log(numeric_level, "function_return",
                            message=f"Returned from {func.__qualname__}",
                            function=func.__qualname__)
            return result

        return wrapper

    return decorator
