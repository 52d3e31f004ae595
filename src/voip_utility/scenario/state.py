# src/voip_utility/scenario/state.py
"""
State management for test runs.
Defines the run phase state machine driven by the test engine and the result
status lifecycle. Both validate transitions against fixed tables and keep a
transition history.
"""

import time
from datetime import datetime, timezone
from enum import Enum
from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional, Set

from ..utils.logger import VoipLogger

# Get structured logger instance
logger = VoipLogger().get_logger(__name__)


class StateTransitionError(Exception):
    """Custom exception for invalid state transitions"""
    pass


class TestStatus(str, Enum):
    """Outcome of a test run"""
    __test__ = False

    PENDING = "pending"
    RUNNING = "running"
    PASSED = "passed"
    FAILED = "failed"
    TIMEOUT = "timeout"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({TestStatus.PASSED, TestStatus.FAILED,
                               TestStatus.TIMEOUT, TestStatus.ERROR})

VALID_STATUS_TRANSITIONS: Dict[TestStatus, Set[TestStatus]] = {
    TestStatus.PENDING: {TestStatus.RUNNING, TestStatus.ERROR},
    TestStatus.RUNNING: set(TERMINAL_STATUSES),
}


def check_status_transition(from_status: TestStatus, to_status: TestStatus) -> None:
    """
    Validate a result status change.

    Raises:
        StateTransitionError: If the change moves backwards or leaves a terminal status
    """
    if to_status not in VALID_STATUS_TRANSITIONS.get(from_status, set()):
        raise StateTransitionError(
            f"Invalid status transition: {from_status.value} -> {to_status.value}"
        )


class RunPhase(str, Enum):
    """Test engine phases"""
    IDLE = "idle"
    INITIALIZING = "initializing"
    CONNECTING = "connecting"
    ACTIVE = "active"
    EVALUATING = "evaluating"
    TERMINAL = "terminal"


VALID_PHASE_TRANSITIONS: Dict[RunPhase, Set[RunPhase]] = {
    RunPhase.IDLE: {RunPhase.INITIALIZING, RunPhase.TERMINAL},
    RunPhase.INITIALIZING: {RunPhase.CONNECTING, RunPhase.TERMINAL},
    RunPhase.CONNECTING: {RunPhase.ACTIVE, RunPhase.TERMINAL},
    RunPhase.ACTIVE: {RunPhase.EVALUATING, RunPhase.TERMINAL},
    RunPhase.EVALUATING: {RunPhase.TERMINAL},
    RunPhase.TERMINAL: set(),
}


@dataclass
class StateTransition:
    """Records a phase transition with metadata"""
    from_phase: RunPhase
    to_phase: RunPhase
    timestamp: datetime
    reason: str
    elapsed: float
    metadata: Dict[str, Any] = field(default_factory=dict)


class RunStateMachine:
    """
    Phase tracker for one test run.
    Validates transitions and keeps their history.
    """
    def __init__(self, test_name: str = ""):
        self._phase = RunPhase.IDLE
        self._history: List[StateTransition] = []
        self._started = time.monotonic()

        self.log = logger.bind(component="RunStateMachine", test=test_name)
        self._setup_logging()

    def _setup_logging(self) -> None:
        """Configure state machine statistics"""
        self.debug_stats = {
            'total_transitions': 0,
            'invalid_transitions': 0,
        }

    @property
    def phase(self) -> RunPhase:
        return self._phase

    @property
    def history(self) -> List[StateTransition]:
        return list(self._history)

    def is_valid_transition(self, from_phase: RunPhase, to_phase: RunPhase) -> bool:
        return to_phase in VALID_PHASE_TRANSITIONS.get(from_phase, set())

    def advance(self, new_phase: RunPhase, reason: str = "",
                metadata: Optional[Dict[str, Any]] = None) -> None:
        """
        Move to a new phase.

        Args:
            new_phase: Target phase
            reason: Reason for the change
            metadata: Optional additional information

        Raises:
            StateTransitionError: If the transition is not allowed
        """
        if not self.is_valid_transition(self._phase, new_phase):
            self.debug_stats['invalid_transitions'] += 1
            self.log.error("invalid_transition",
                           message="Invalid phase transition",
                           from_phase=self._phase.value,
                           to_phase=new_phase.value)
            raise StateTransitionError(
                f"Invalid transition: {self._phase.value} -> {new_phase.value}"
            )

        old_phase = self._phase
        self._phase = new_phase
        self._history.append(StateTransition(
            from_phase=old_phase,
            to_phase=new_phase,
            timestamp=datetime.now(timezone.utc),
            reason=reason,
            elapsed=time.monotonic() - self._started,
            metadata=metadata or {},
        ))
        self.debug_stats['total_transitions'] += 1

        self.log.debug("phase_changed",
                       message=f"Phase changed: {old_phase.value} -> {new_phase.value}",
                       from_phase=old_phase.value,
                       to_phase=new_phase.value,
                       reason=reason)

    def get_debug_info(self) -> Dict[str, Any]:
        """Get debug statistics and state information"""
        return {
            **self.debug_stats,
            'current_phase': self._phase.value,
            'history_length': len(self._history),
        }
