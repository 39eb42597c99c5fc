"""
Structured decision records and the outbound channel that carries them.

The protocol engine publishes one record per decision. Subscribers (a
presentation layer, an explainer, a session store adapter) each get their
own asyncio queue; publishing never waits on them.
"""
# Standard library imports
import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

# Local imports
from .records import (
    CatchTrialRecord,
    CatchTrialType,
    Ear,
    EfficiencyConstraint,
    Presentation,
    ThresholdRecord,
)

logger = logging.getLogger(__name__)


class EngineState(str, Enum):
    IDLE = 'idle'
    FAMILIARIZATION = 'familiarization'
    PRESENT_TONE = 'present-tone'
    WAIT_RESPONSE = 'wait-response'
    PROCESS_RESPONSE = 'process-response'
    CONFIRM_THRESHOLD = 'confirm-threshold'
    NEXT_FREQUENCY = 'next-frequency'
    NEXT_EAR = 'next-ear'
    COMPLETE = 'complete'


@dataclass(frozen=True)
class Explanation:
    """Human-readable enrichment attached to a decision record."""
    primary: str
    rationale: Dict[str, str] = field(default_factory=dict)
    fallback: bool = False


@dataclass(frozen=True, kw_only=True)
class DecisionRecord:
    """Common fields of every decision record."""
    timestamp_ms: float
    state: EngineState
    ear: Optional[Ear] = None
    frequency: Optional[int] = None
    level: Optional[int] = None
    reason: str = ''
    rule: str = ''
    explanation: Optional[Explanation] = None

    @property
    def kind(self) -> str:
        return type(self).__name__


@dataclass(frozen=True, kw_only=True)
class StateTransition(DecisionRecord):
    from_state: EngineState
    to_state: EngineState


@dataclass(frozen=True, kw_only=True)
class ResponseWindowOpened(DecisionRecord):
    """A response window is open; the presentation layer may accept presses."""
    presentation: Presentation
    timeout_ms: float


@dataclass(frozen=True, kw_only=True)
class IntensityAdjustment(DecisionRecord):
    from_level: int
    to_level: int
    adjustment: int
    responded: bool
    reversal: bool = False
    reversal_count: int = 0
    limit_applied: bool = False
    limit_reason: Optional[str] = None


@dataclass(frozen=True, kw_only=True)
class CatchTrialResult(DecisionRecord):
    catch_type: CatchTrialType
    record: CatchTrialRecord
    false_positive_count: int
    total_catch_trials: int

    @property
    def passed(self) -> bool:
        return not self.record.is_false_positive


@dataclass(frozen=True, kw_only=True)
class ResponseQualityAlert(DecisionRecord):
    alert: str
    value: Optional[float] = None


@dataclass(frozen=True, kw_only=True)
class EfficiencyConstraintTriggered(DecisionRecord):
    constraint: EfficiencyConstraint
    value: float
    limit: float
    forced_threshold: Optional[int] = None
    confidence: Optional[float] = None
    clinical_rationale: str = ''


@dataclass(frozen=True, kw_only=True)
class ThresholdFinalized(DecisionRecord):
    record: ThresholdRecord


@dataclass(frozen=True, kw_only=True)
class FrequencyChange(DecisionRecord):
    from_frequency: int
    to_frequency: int


@dataclass(frozen=True, kw_only=True)
class EarSwitch(DecisionRecord):
    from_ear: Ear
    to_ear: Ear
    completed_frequencies: Tuple[int, ...] = ()


@dataclass(frozen=True, kw_only=True)
class TestCompletion(DecisionRecord):
    __test__ = False  # keep pytest from collecting this class

    total_tests: int
    expected_tests: int
    report: Any = None


@dataclass(frozen=True, kw_only=True)
class RunStopped(DecisionRecord):
    completed_tests: int


class DecisionChannel:
    """Fan-out of decision records to independent subscriber queues."""

    def __init__(self, history_limit: Optional[int] = None):
        self._subscribers: List[asyncio.Queue] = []
        self._history: List[DecisionRecord] = []
        self._history_limit = history_limit

    def subscribe(self, maxsize: int = 0) -> asyncio.Queue:
        """Register a new subscriber. A bounded queue drops its oldest record when full."""
        queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    def publish(self, record: DecisionRecord) -> None:
        self._history.append(record)
        if self._history_limit is not None and len(self._history) > self._history_limit:
            del self._history[0]

        for queue in self._subscribers:
            try:
                queue.put_nowait(record)
            except asyncio.QueueFull:
                dropped = queue.get_nowait()
                logger.warning("Subscriber queue full; dropped %s", dropped.kind)
                queue.put_nowait(record)

    @property
    def history(self) -> List[DecisionRecord]:
        return list(self._history)

    def clear_history(self) -> None:
        self._history.clear()
