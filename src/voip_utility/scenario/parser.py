# src/voip_utility/scenario/parser.py
"""
Test definition parser.
Reads JSON test documents into TestDefinition objects. Parsing is lenient:
values of the wrong type fall back to their defaults and malformed or unknown
actions are dropped with a warning. Structural problems raise TestParseError.
"""

import json
import math
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from ..utils.config import ConfigurationError
from ..utils.logger import VoipLogger, log_function_call
from .models import (
    ActionKind,
    Action,
    WaitAction,
    SendToneAction,
    ExpectToneAction,
    PlayAudioAction,
    RecordAudioAction,
    ExpectBeepsAction,
    HangupAction,
    RoleConfig,
    Expectation,
    TestDefinition,
    MAX_ACTIONS,
    DEFAULT_TEST_NAME,
    DEFAULT_TEST_TIMEOUT,
    DEFAULT_ROLE_TIMEOUT,
)

logger = VoipLogger().get_logger(__name__)

MAX_FILE_SIZE = 1024 * 1024

ACTION_ALIASES = {
    "play": ActionKind.PLAY_AUDIO,
    "record": ActionKind.RECORD_AUDIO,
}

_NUMBER = (int, float)


class TestParseError(ConfigurationError):
    """Custom exception for malformed test definitions"""
    __test__ = False


def _value(obj: Dict[str, Any], key: str, types: Union[type, Tuple[type, ...]], default: Any) -> Any:
    """Return obj[key] when it has an accepted JSON type, else the default"""
    value = obj.get(key)
    if value is None:
        return default
    accepted = types if isinstance(types, tuple) else (types,)
    # JSON booleans are Python ints; only accept them where bool is asked for
    wrong_type = not isinstance(value, accepted) or (isinstance(value, bool) and bool not in accepted)
    if wrong_type or (isinstance(value, float) and not math.isfinite(value)):
        logger.warning("invalid_field_type",
                       message=f"Field '{key}' has the wrong type, using default",
                       field=key)
        return default
    return value


def _int(obj: Dict[str, Any], key: str, default: int) -> int:
    return int(_value(obj, key, _NUMBER, default))


def _float(obj: Dict[str, Any], key: str, default: float) -> float:
    return float(_value(obj, key, _NUMBER, default))


def _frequency(obj: Dict[str, Any], key: str) -> float:
    """Target frequency in Hz; 0 means any, negative values fall back to 0"""
    value = _float(obj, key, 0.0)
    if value < 0:
        logger.warning("invalid_field_value",
                       message=f"Field '{key}' must not be negative, using 0 (any frequency)",
                       field=key)
        return 0.0
    return value


def _str(obj: Dict[str, Any], key: str, default: str = "") -> str:
    return _value(obj, key, str, default)


def _bool(obj: Dict[str, Any], key: str, default: bool) -> bool:
    return _value(obj, key, bool, default)


def _section(data: Dict[str, Any], key: str) -> Optional[Dict[str, Any]]:
    section = data.get(key)
    if section is None:
        return None
    if not isinstance(section, dict):
        raise TestParseError(f"'{key}' must be a JSON object")
    return section


def parse_action(obj: Any) -> Optional[Action]:
    """
    Parse one action object.

    Returns:
        The action, or None when the entry is malformed or of an unknown kind
    """
    if not isinstance(obj, dict):
        logger.warning("action_skipped", message="Action entry is not an object")
        return None

    name = obj.get("action")
    if not isinstance(name, str):
        logger.warning("action_skipped", message="Action entry has no 'action' name")
        return None

    try:
        kind = ACTION_ALIASES.get(name) or ActionKind(name)
    except ValueError:
        logger.warning("unknown_action",
                       message=f"Unknown action type: {name}",
                       action=name)
        return None

    if kind == ActionKind.WAIT:
        return WaitAction(seconds=_float(obj, "seconds", 1.0))
    if kind == ActionKind.SEND_DTMF:
        return SendToneAction(digits=_str(obj, "digits"), timeout=_int(obj, "timeout", 5))
    if kind == ActionKind.EXPECT_DTMF:
        return ExpectToneAction(pattern=_str(obj, "pattern").upper(), timeout=_int(obj, "timeout", 10))
    if kind == ActionKind.PLAY_AUDIO:
        return PlayAudioAction(file=_str(obj, "file"), loop=_bool(obj, "loop", False))
    if kind == ActionKind.RECORD_AUDIO:
        return RecordAudioAction(file=_str(obj, "file"))
    if kind == ActionKind.EXPECT_BEEPS:
        return ExpectBeepsAction(count=_int(obj, "count", 1), frequency=_frequency(obj, "frequency"))
    return HangupAction(code=_int(obj, "code", 200))


def parse_actions(items: Any, role: str) -> List[Action]:
    """
    Parse a role's action array.

    Raises:
        TestParseError: If more than MAX_ACTIONS actions remain after filtering
    """
    if not isinstance(items, list):
        if items is not None:
            logger.warning("invalid_field_type",
                           message=f"{role}.actions is not an array, ignoring",
                           field=f"{role}.actions")
        return []

    actions = [a for a in (parse_action(item) for item in items) if a is not None]
    if len(actions) > MAX_ACTIONS:
        raise TestParseError(
            f"{role} has {len(actions)} actions, at most {MAX_ACTIONS} are supported"
        )
    return actions


def _parse_role(data: Dict[str, Any], key: str) -> RoleConfig:
    section = _section(data, key)
    if section is None:
        return RoleConfig()

    return RoleConfig(
        account=_str(section, "account"),
        uri=_str(section, "uri"),
        auto_answer=_bool(section, "auto_answer", False),
        timeout=_int(section, "timeout", DEFAULT_ROLE_TIMEOUT),
        actions=parse_actions(section.get("actions"), key),
    )


def parse_test_data(data: Any, source: Optional[str] = None) -> TestDefinition:
    """
    Build a TestDefinition from a decoded JSON document.

    Raises:
        TestParseError: If the document or one of its sections is not an object
    """
    if not isinstance(data, dict):
        raise TestParseError("Test definition must be a JSON object")

    expect = Expectation()
    expect_section = _section(data, "expect")
    if expect_section is not None:
        expect = Expectation(
            connected=_bool(expect_section, "connected", True),
            beep_count=_int(expect_section, "beep_count", 0),
            beep_frequency=_frequency(expect_section, "beep_frequency"),
        )

    definition = TestDefinition(
        name=_str(data, "name", DEFAULT_TEST_NAME),
        description=_str(data, "description"),
        timeout=_int(data, "timeout", DEFAULT_TEST_TIMEOUT),
        caller=_parse_role(data, "caller"),
        receiver=_parse_role(data, "receiver"),
        expect=expect,
        source_path=source,
    )

    logger.info("test_parsed",
                message=f"Parsed test: {definition.name}",
                test=definition.name,
                caller_actions=len(definition.caller.actions),
                receiver_actions=len(definition.receiver.actions))
    return definition


def _reject_constant(name: str) -> Any:
    raise ValueError(f"{name} is not a valid JSON number")


def parse_test_string(text: str, source: Optional[str] = None) -> TestDefinition:
    """
    Parse a test definition from JSON text.

    Raises:
        TestParseError: If the text is not valid JSON or not a valid definition
    """
    try:
        data = json.loads(text, parse_constant=_reject_constant)
    except ValueError as e:
        logger.error("test_json_invalid",
                     message="Failed to parse test JSON",
                     source=source,
                     error=str(e))
        raise TestParseError(f"Invalid JSON: {e}") from e
    return parse_test_data(data, source)


@log_function_call(level="DEBUG")
def parse_test_file(path: Union[str, Path]) -> TestDefinition:
    """
    Read and parse a test definition file.

    Raises:
        TestParseError: If the file is unreadable, empty, larger than 1 MiB or invalid
    """
    file_path = Path(path)
    try:
        size = file_path.stat().st_size
        if size > MAX_FILE_SIZE:
            raise TestParseError(f"Test file too large: {file_path} ({size} bytes)")
        text = file_path.read_text(encoding="utf-8")
    except OSError as e:
        logger.error("test_file_unreadable",
                     message=f"Cannot read test file {file_path}",
                     path=str(file_path),
                     error=str(e))
        raise TestParseError(f"Cannot read test file {file_path}: {e}") from e
    except UnicodeDecodeError as e:
        raise TestParseError(f"Test file {file_path} is not UTF-8 text") from e

    if not text.strip():
        raise TestParseError(f"Test file is empty: {file_path}")

    return parse_test_string(text, source=str(file_path))
