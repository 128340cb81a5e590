"""
Phase manager for the download test state machine.
"""

import asyncio
import enum
import time
import logging
from typing import Optional, Dict

from common.errors import InvalidPhaseTransition

logger = logging.getLogger(__name__)


class TestPhase(enum.Enum):
    """Phases of a run."""

    __test__ = False

    IDLE = "idle"
    GRACE = "grace"
    MEASURING = "measuring"
    STOPPING = "stopping"
    COMPLETE = "complete"


async def wait_for_stop(stop_event: asyncio.Event, timeout: float) -> bool:
    """Sleep up to ``timeout`` seconds, waking early if ``stop_event`` is set.

    Returns:
        True if the stop event is set
    """
    if timeout > 0 and not stop_event.is_set():
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            pass
    return stop_event.is_set()


ALLOWED_TRANSITIONS = {
    TestPhase.IDLE: {TestPhase.GRACE},
    TestPhase.GRACE: {TestPhase.MEASURING, TestPhase.STOPPING},
    TestPhase.MEASURING: {TestPhase.STOPPING},
    TestPhase.STOPPING: {TestPhase.COMPLETE},
    TestPhase.COMPLETE: {TestPhase.IDLE},
}


class PhaseManager:
    """Tracks the current phase and when each phase began."""

    def __init__(self):
        """Initialize the phase manager."""
        self.phase: TestPhase = TestPhase.IDLE
        self.phase_start_ts: Optional[float] = None
        self.history: Dict[TestPhase, float] = {}

        logger.debug("Initialized PhaseManager")

    def transition(self, new_phase: TestPhase, timestamp: Optional[float] = None) -> None:
        """Move to ``new_phase``.

        Args:
            new_phase: Target phase
            timestamp: Monotonic time of the transition (defaults to now)

        Raises:
            InvalidPhaseTransition: if the move is not allowed from the current phase
        """
        if new_phase not in ALLOWED_TRANSITIONS[self.phase]:
            raise InvalidPhaseTransition(
                f"cannot move from {self.phase.value} to {new_phase.value}"
            )

        old_phase = self.phase
        self.phase = new_phase
        self.phase_start_ts = timestamp if timestamp is not None else time.monotonic()
        self.history[new_phase] = self.phase_start_ts

        logger.debug(f"Phase {old_phase.value} -> {new_phase.value}")

    def is_running(self) -> bool:
        """True while streams may be downloading."""
        return self.phase in (TestPhase.GRACE, TestPhase.MEASURING)

    def is_complete(self) -> bool:
        return self.phase is TestPhase.COMPLETE

    def reset(self) -> None:
        """Return a completed run to IDLE."""
        self.transition(TestPhase.IDLE)
        self.history.clear()
        self.phase_start_ts = None

        logger.debug("PhaseManager reset")

    def __repr__(self) -> str:
        return f"PhaseManager(phase='{self.phase.value}')"
