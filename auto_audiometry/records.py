"""
Data model for autonomous audiometry runs.

Everything except TestRun is immutable once created.
"""
# Standard library imports
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Tuple

# Local imports
from .utils.defaults import MAX_TEST_LEVEL, MIN_TEST_LEVEL


class Ear(str, Enum):
    LEFT = 'left'
    RIGHT = 'right'
    BOTH = 'both'

    @property
    def opposite(self) -> 'Ear':
        if self is Ear.LEFT:
            return Ear.RIGHT
        if self is Ear.RIGHT:
            return Ear.LEFT
        return Ear.BOTH


class TimingCategory(str, Enum):
    ANTICIPATORY = 'anticipatory'
    OPTIMAL = 'optimal'
    NORMAL = 'normal'
    DELAYED = 'delayed'
    VERY_DELAYED = 'very-delayed'
    ABNORMAL = 'abnormal'
    NO_RESPONSE = 'no-response'


class DecisionBasis(str, Enum):
    TWO_OF_THREE_RULE = 'two-of-three-rule'
    FORCED_BEST_EVIDENCE = 'forced-best-evidence'
    FORCED_ESTIMATE = 'forced-estimate'
    NO_RESPONSE_MAX_LEVEL = 'no-response-max-level'


class CatchTrialType(str, Enum):
    SILENCE = 'silence'
    VERY_LOW_INTENSITY = 'very-low-intensity'
    WRONG_EAR = 'wrong-ear'
    DELAYED_SILENCE = 'delayed-silence'


class EfficiencyConstraint(str, Enum):
    TIME_LIMIT = 'time-limit'
    PRESENTATION_LIMIT = 'presentation-limit'
    REVERSAL_LIMIT = 'reversal-limit'


ResultKey = Tuple[Ear, int]


@dataclass(frozen=True)
class Presentation:
    """One tone or catch-trial event."""
    frequency: Optional[int]
    level_db_hl: int
    ear: Ear
    duration_ms: int
    is_catch_trial: bool = False
    catch_type: Optional[CatchTrialType] = None
    onset_ms: Optional[float] = None

    @property
    def is_silent(self) -> bool:
        return self.frequency is None


@dataclass(frozen=True)
class ResponseRecord:
    """One subject reply, or a timeout."""
    presentation: Presentation
    responded: bool
    reaction_time_ms: Optional[float]
    timing_category: TimingCategory
    timestamp_ms: float

    def __post_init__(self):
        if self.reaction_time_ms is not None and (
                not self.responded or self.presentation.onset_ms is None):
            raise ValueError("reaction_time_ms requires a response to a presentation with a recorded onset")

    @property
    def level(self) -> int:
        return self.presentation.level_db_hl


@dataclass(frozen=True)
class ThresholdRecord:
    """Finalized outcome for one (ear, frequency) pair."""
    ear: Ear
    frequency: int
    threshold: int
    base_confidence: float
    efficiency_penalty: float
    final_confidence: float
    enhanced_confidence: float
    reversal_count: int
    presentation_count: int
    response_count: int
    decision_basis: DecisionBasis
    constraint: Optional[EfficiencyConstraint] = None
    timing_reliability: Optional[float] = None
    malingering_risk: float = 0.0
    response_pattern: Tuple[Tuple[int, bool], ...] = ()
    finalized_at_ms: float = 0.0

    def __post_init__(self):
        if not MIN_TEST_LEVEL <= self.threshold <= MAX_TEST_LEVEL:
            raise ValueError(f"Threshold {self.threshold} dB HL outside "
                             f"[{MIN_TEST_LEVEL}, {MAX_TEST_LEVEL}]")

    @property
    def key(self) -> ResultKey:
        return (self.ear, self.frequency)

    @property
    def is_forced(self) -> bool:
        return self.decision_basis in (DecisionBasis.FORCED_BEST_EVIDENCE,
                                       DecisionBasis.FORCED_ESTIMATE)


@dataclass(frozen=True)
class CatchTrialRecord:
    """Outcome of one catch trial. A response is always a false positive."""
    catch_type: CatchTrialType
    actual_response: bool
    reaction_time_ms: Optional[float]
    timestamp_ms: float
    frequency: Optional[int] = None
    ear: Optional[Ear] = None
    presentation: Optional[Presentation] = None
    expected_response: bool = False

    @property
    def is_false_positive(self) -> bool:
        return self.actual_response != self.expected_response


@dataclass(frozen=True)
class RiskAssessment:
    """Malingering risk for one (ear, frequency) pair."""
    ear: Ear
    frequency: int
    consistency: float
    cross_frequency: float
    timing: float
    bilateral_symmetry: float
    progression: float
    total_risk: float
    flags: Tuple[str, ...] = ()

    @property
    def components(self) -> Dict[str, float]:
        return {
            'consistency': self.consistency,
            'cross_frequency': self.cross_frequency,
            'timing': self.timing,
            'bilateral_symmetry': self.bilateral_symmetry,
            'progression': self.progression,
        }


@dataclass
class TestRun:
    """Lifecycle container for one run. Mutated only by the protocol engine."""
    __test__ = False  # keep pytest from collecting this class

    ears: Tuple[Ear, ...]
    frequencies: Tuple[int, ...]
    ear_index: int = 0
    frequency_index: int = 0
    active: bool = True
    started_at_ms: float = 0.0
    stop_reason: Optional[str] = None
    results: Dict[ResultKey, ThresholdRecord] = field(default_factory=dict)

    @property
    def current_ear(self) -> Optional[Ear]:
        if self.ear_index < len(self.ears):
            return self.ears[self.ear_index]
        return None

    @property
    def current_frequency(self) -> Optional[int]:
        if self.frequency_index < len(self.frequencies):
            return self.frequencies[self.frequency_index]
        return None

    @property
    def expected_tests(self) -> int:
        return len(self.ears) * len(self.frequencies)

    def ear_thresholds(self, ear: Ear) -> Dict[int, int]:
        """Thresholds measured so far for one ear, keyed by frequency."""
        return {freq: record.threshold
                for (rec_ear, freq), record in self.results.items() if rec_ear is ear}
