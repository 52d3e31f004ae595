# src/voip_utility/utils/config.py
"""
Configuration management for voip-utility.
Handles loading and validating configuration from YAML (or JSON) files and
environment variables. Provides typed access to SIP accounts, audio and beep
detection parameters, engine timing and logging settings.
"""

import copy
import os
import yaml
import logging
from typing import Any, Dict, List, Optional, Union
from dataclasses import dataclass, field
from pathlib import Path

# Configure module logger
logger = logging.getLogger(__name__)

TRANSPORTS = ("udp", "tcp", "tls")
SRTP_MODES = ("disabled", "optional", "mandatory")


def default_locations() -> List[Path]:
    """Configuration files tried by Config.discover(), in order"""
    return [
        Path("voip-utility.yml"),
        Path("voip-utility.yaml"),
        Path("voip-utility.json"),
        Path.home() / ".config" / "voip-utility" / "config.yml",
        Path("/etc/voip-utility/config.yml"),
    ]


DEFAULTS: Dict[str, Any] = {
    "accounts": [],
    "audio": {
        "sample_rate": 16000,
        "frame_duration_ms": 20,
        "default_codec": "PCMU",
    },
    "analyzer": {
        "fft_size": 512,
        "min_level_db": -40.0,
        "freq_tolerance_hz": 50.0,
    },
    "beep_detection": {
        "min_level_db": -40.0,
        "min_duration_sec": 0.05,
        "max_duration_sec": 5.0,
        "target_freq_hz": 0.0,
        "freq_tolerance_hz": 50.0,
    },
    "engine": {
        "registration_timeout": 10.0,
        "poll_interval_ms": 100,
        "settle_time": 0.5,
    },
    "sip": {
        "backend": "loopback",
        "local_port": 0,
        "rtp_port_start": 4000,
        "rtp_port_count": 100,
    },
    "paths": {
        "recordings_dir": ".",
        "tests_dir": ".",
    },
    "logging": {
        "level": "INFO",
        "format": "console",
        "output": None,
        "json_events": False,
    },
}


@dataclass
class AccountConfig:
    """SIP account configuration parameters"""
    id: str
    username: str
    server: str
    password: str = ""
    port: int = 5060
    realm: str = ""
    display_name: str = ""
    transport: str = "udp"
    srtp: str = "disabled"
    reg_timeout_sec: int = 3600
    reg_retry_interval_sec: int = 30
    enabled: bool = True

    @property
    def uri(self) -> str:
        return f"sip:{self.username}@{self.server}"


@dataclass
class AudioSettings:
    """Media parameters handed to the SIP session"""
    sample_rate: int
    frame_duration_ms: int
    default_codec: str


@dataclass
class AnalyzerSettings:
    """FFT analyzer parameters used for recording analysis"""
    fft_size: int
    min_level_db: float
    freq_tolerance_hz: float


@dataclass
class BeepSettings:
    """Beep detection defaults"""
    min_level_db: float
    min_duration_sec: float
    max_duration_sec: float
    target_freq_hz: float
    freq_tolerance_hz: float


@dataclass
class EngineSettings:
    """Test engine timing parameters"""
    registration_timeout: float
    poll_interval_ms: int
    settle_time: float


@dataclass
class SipSettings:
    """SIP backend selection and transport parameters"""
    backend: str
    local_port: int
    rtp_port_start: int
    rtp_port_count: int


@dataclass
class PathSettings:
    """Filesystem locations"""
    recordings_dir: str
    tests_dir: str


@dataclass
class LogSettings:
    """Logging configuration parameters"""
    level: str
    format: str
    output: Optional[str]
    json_events: bool


class ConfigurationError(Exception):
    """Custom exception for configuration errors"""
    pass


class Config:
    """
    Configuration for one voip-utility process.
    Starts from built-in defaults; load() merges a file over them and applies
    environment variable overrides.
    """

    def __init__(self):
        self.accounts: List[AccountConfig] = []
        self.audio: Optional[AudioSettings] = None
        self.analyzer: Optional[AnalyzerSettings] = None
        self.beep: Optional[BeepSettings] = None
        self.engine: Optional[EngineSettings] = None
        self.sip: Optional[SipSettings] = None
        self.paths: Optional[PathSettings] = None
        self.logging: Optional[LogSettings] = None
        self._config_path: Optional[Path] = None
        self._raw_config: Dict[str, Any] = copy.deepcopy(DEFAULTS)
        self._validate_and_create_configs()
        logger.debug("Configuration manager initialized")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Config":
        """Build a configuration from an in-memory mapping merged over defaults"""
        config = cls()
        config._merge_configs(data)
        config._validate_and_create_configs()
        return config

    @classmethod
    def discover(cls, path: Optional[Union[str, Path]] = None) -> "Config":
        """
        Load configuration from an explicit path or the default locations.

        An explicit path that does not exist is an error; when no path is
        given and no default location exists, built-in defaults are used.
        """
        config = cls()
        if path is not None:
            config.load(path)
            return config

        for candidate in default_locations():
            if candidate.is_file():
                config.load(candidate)
                return config

        logger.debug("No configuration file found, using defaults")
        config._apply_env_overrides()
        config._validate_and_create_configs()
        return config

    @property
    def path(self) -> Optional[Path]:
        return self._config_path

    def load(self, config_path: Union[str, Path]) -> None:
        """
        Load configuration from a YAML or JSON file with environment overrides.

        Args:
            config_path: Path to configuration file

        Raises:
            ConfigurationError: If configuration loading or validation fails
        """
        try:
            logger.info(f"Loading configuration from {config_path}")
            self._config_path = Path(config_path)

            if not self._config_path.is_file():
                raise ConfigurationError(f"Configuration file not found: {config_path}")

            with open(self._config_path, encoding="utf-8") as f:
                custom_config = yaml.safe_load(f)

            if custom_config is not None:
                if not isinstance(custom_config, dict):
                    raise ConfigurationError("Top-level configuration must be a mapping")
                self._merge_configs(custom_config)
                logger.debug(f"Merged configuration from {self._config_path}")

            self._apply_env_overrides()
            self._validate_and_create_configs()

            logger.info(f"Configuration loaded with {len(self.accounts)} accounts")

        except ConfigurationError:
            raise
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Failed to load configuration: {str(e)}", exc_info=True)
            raise ConfigurationError(f"Configuration loading failed: {str(e)}") from e

    def _apply_env_overrides(self) -> None:
        """Apply environment variable overrides to configuration"""
        env_mapping = {
            "VOIP_LOG_LEVEL": ("logging", "level"),
            "VOIP_LOG_FORMAT": ("logging", "format"),
            "VOIP_LOG_OUTPUT": ("logging", "output"),
            "VOIP_RECORDINGS_DIR": ("paths", "recordings_dir"),
            "VOIP_TESTS_DIR": ("paths", "tests_dir"),
            "VOIP_SIP_BACKEND": ("sip", "backend"),
            "VOIP_SIP_PORT": ("sip", "local_port", int),
            "VOIP_REGISTRATION_TIMEOUT": ("engine", "registration_timeout", float),
            "VOIP_SETTLE_TIME": ("engine", "settle_time", float),
        }

        for env_var, config_path in env_mapping.items():
            if env_var in os.environ:
                section, key = config_path[0], config_path[1]
                value = os.environ[env_var]

                if len(config_path) > 2:
                    try:
                        value = config_path[2](value)
                    except ValueError as e:
                        raise ConfigurationError(
                            f"Invalid environment variable {env_var}: {str(e)}"
                        )

                if not isinstance(self._raw_config.get(section), dict):
                    self._raw_config[section] = {}

                self._raw_config[section][key] = value
                logger.debug(f"Applied environment override: {env_var}={value}")

    def _validate_and_create_configs(self) -> None:
        """Validate configuration and create typed configuration objects"""
        try:
            self.accounts = self._parse_accounts(self._raw_config.get("accounts") or [])

            self.audio = AudioSettings(
                sample_rate=self._get_config_value("audio", "sample_rate", int),
                frame_duration_ms=self._get_config_value("audio", "frame_duration_ms", int),
                default_codec=self._get_config_value("audio", "default_codec", str),
            )

            self.analyzer = AnalyzerSettings(
                fft_size=self._get_config_value("analyzer", "fft_size", int),
                min_level_db=self._get_config_value("analyzer", "min_level_db", float),
                freq_tolerance_hz=self._get_config_value("analyzer", "freq_tolerance_hz", float),
            )

            self.beep = BeepSettings(
                min_level_db=self._get_config_value("beep_detection", "min_level_db", float),
                min_duration_sec=self._get_config_value("beep_detection", "min_duration_sec", float),
                max_duration_sec=self._get_config_value("beep_detection", "max_duration_sec", float),
                target_freq_hz=self._get_config_value("beep_detection", "target_freq_hz", float),
                freq_tolerance_hz=self._get_config_value("beep_detection", "freq_tolerance_hz", float),
            )
            if self.beep.min_duration_sec > self.beep.max_duration_sec:
                raise ConfigurationError(
                    "beep_detection.min_duration_sec must not exceed max_duration_sec"
                )
            if self.beep.target_freq_hz < 0:
                raise ConfigurationError(
                    "beep_detection.target_freq_hz must be 0 (any frequency) or positive"
                )

            self.engine = EngineSettings(
                registration_timeout=self._get_config_value("engine", "registration_timeout", float),
                poll_interval_ms=self._get_config_value("engine", "poll_interval_ms", int),
                settle_time=self._get_config_value("engine", "settle_time", float),
            )
            if not 1 <= self.engine.poll_interval_ms <= 100:
                raise ConfigurationError("engine.poll_interval_ms must be between 1 and 100")

            self.sip = SipSettings(
                backend=self._get_config_value("sip", "backend", str),
                local_port=self._get_config_value("sip", "local_port", int),
                rtp_port_start=self._get_config_value("sip", "rtp_port_start", int),
                rtp_port_count=self._get_config_value("sip", "rtp_port_count", int),
            )

            self.paths = PathSettings(
                recordings_dir=self._get_config_value("paths", "recordings_dir", str),
                tests_dir=self._get_config_value("paths", "tests_dir", str),
            )

            log_format = self._get_config_value("logging", "format", str)
            if log_format not in ("json", "console"):
                raise ConfigurationError(f"Unsupported logging.format: {log_format}")
            output = self._raw_config.get("logging", {}).get("output")
            self.logging = LogSettings(
                level=self._get_config_value("logging", "level", str).upper(),
                format=log_format,
                output=str(output) if output else None,
                json_events=self._get_config_value("logging", "json_events", bool),
            )

            logger.debug("Configuration validation completed successfully")

        except ConfigurationError:
            raise
        except Exception as e:
            logger.error("Configuration validation failed", exc_info=True)
            raise ConfigurationError(f"Configuration validation failed: {str(e)}") from e

    def _parse_accounts(self, raw_accounts: Any) -> List[AccountConfig]:
        """Build account configs, skipping invalid entries and rejecting duplicates"""
        if not isinstance(raw_accounts, list):
            raise ConfigurationError("accounts must be a list")

        accounts: List[AccountConfig] = []
        seen = set()
        for index, entry in enumerate(raw_accounts):
            try:
                account = self._parse_account(entry)
            except ConfigurationError as e:
                logger.warning(f"Skipping invalid account #{index}: {e}")
                continue

            if account.id in seen:
                raise ConfigurationError(f"Account '{account.id}' already exists")
            seen.add(account.id)
            accounts.append(account)
        return accounts

    @staticmethod
    def _parse_account(entry: Any) -> AccountConfig:
        if not isinstance(entry, dict):
            raise ConfigurationError("account entry must be a mapping")

        for required in ("id", "username", "server"):
            if not entry.get(required):
                raise ConfigurationError(f"account missing '{required}'")

        transport = str(entry.get("transport", "udp")).lower()
        if transport not in TRANSPORTS:
            transport = "udp"
        srtp = str(entry.get("srtp", "disabled")).lower()
        if srtp == "required":
            srtp = "mandatory"
        if srtp not in SRTP_MODES:
            srtp = "disabled"

        try:
            return AccountConfig(
                id=str(entry["id"]),
                username=str(entry["username"]),
                server=str(entry["server"]),
                password=str(entry.get("password", "")),
                port=int(entry.get("port", 5060)),
                realm=str(entry.get("realm", "")),
                display_name=str(entry.get("display_name", "")),
                transport=transport,
                srtp=srtp,
                reg_timeout_sec=int(entry.get("reg_timeout_sec", 3600)),
                reg_retry_interval_sec=int(entry.get("reg_retry_interval_sec", 30)),
                enabled=bool(entry.get("enabled", True)),
            )
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"invalid account field: {e}") from e

    def _get_config_value(
        self,
        section: str,
        key: str,
        value_type: type,
        default: Any = None,
    ) -> Any:
        """
        Get typed configuration value with validation.

        Args:
            section: Configuration section name
            key: Configuration key
            value_type: Expected value type
            default: Optional default value

        Returns:
            Typed configuration value

        Raises:
            ConfigurationError: If value is missing or invalid type
        """
        config = self._raw_config.get(section) or {}
        if not isinstance(config, dict):
            raise ConfigurationError(f"Configuration section '{section}' must be a mapping")
        value = config.get(key)

        if value is None:
            if default is None:
                raise ConfigurationError(f"Required configuration missing: {section}.{key}")
            value = default

        try:
            if value_type is bool and isinstance(value, str):
                value = value.strip().lower() in ("1", "true", "yes", "on")
            elif not isinstance(value, value_type):
                value = value_type(value)
        except (ValueError, TypeError) as e:
            raise ConfigurationError(
                f"Invalid type for {section}.{key}: expected {value_type.__name__}, got {type(value).__name__}"
            ) from e

        return value

    def _merge_configs(self, custom_config: Dict[str, Any]) -> None:
        """Deep merge custom configuration with existing config"""
        def deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> None:
            for key, value in override.items():
                if key in base and isinstance(base[key], dict) and isinstance(value, dict):
                    deep_merge(base[key], value)
                else:
                    base[key] = value

        deep_merge(self._raw_config, custom_config)

    def find_account(self, account_id: str) -> Optional[AccountConfig]:
        """Return the account with the given id, or None"""
        for account in self.accounts:
            if account.id == account_id:
                return account
        return None

    def reload(self) -> None:
        """Reload configuration from file"""
        logger.info("Reloading configuration")
        if self._config_path:
            self._raw_config = copy.deepcopy(DEFAULTS)
            self.load(self._config_path)
        else:
            raise ConfigurationError("No configuration path set, cannot reload")
