"""
Per-frequency threshold search rules (Hughson-Westlake with efficiency limits).

All functions here are pure: they take a FrequencySearch context and return
a new one (or a decision about it). The protocol engine owns the context and
threads it through its state handlers.
"""
# Standard library imports
import logging
import math
from collections import defaultdict
from dataclasses import dataclass, field, replace
from typing import Dict, Optional, Sequence, Tuple

# Local imports
from ..records import DecisionBasis, EfficiencyConstraint, Ear, ResponseRecord
from ..utils.config import ProtocolConfig

logger = logging.getLogger(__name__)

UP = 'up'
DOWN = 'down'

EFFICIENCY_RATIONALES = {
    EfficiencyConstraint.TIME_LIMIT: (
        'Extended testing increases patient fatigue and reduces response reliability. '
        'Clinical appointments require predictable durations.'),
    EfficiencyConstraint.PRESENTATION_LIMIT: (
        'Excessive tone presentations cause mental fatigue and attention lapses. '
        'Presentations are limited to maintain engagement and response quality.'),
    EfficiencyConstraint.REVERSAL_LIMIT: (
        'Too many intensity reversals indicate inconsistent responses, often due to '
        'confusion or fatigue. Reversals are limited to keep measurements reliable.'),
}

# Level -> (positive, total)
LevelGroups = Dict[int, Tuple[int, int]]


@dataclass(frozen=True)
class FrequencySearch:
    """Search state for one (ear, frequency) pair."""
    ear: Ear
    frequency: int
    level: int
    started_at_ms: float
    responses: Tuple[ResponseRecord, ...] = ()
    presentation_count: int = 0
    reversal_count: int = 0
    last_direction: Optional[str] = None

    @property
    def response_count(self) -> int:
        return len(self.responses)

    @property
    def response_pattern(self) -> Tuple[Tuple[int, bool], ...]:
        return tuple((r.level, r.responded) for r in self.responses)

    def elapsed_ms(self, now_ms) -> float:
        return now_ms - self.started_at_ms


@dataclass(frozen=True)
class LevelAdjustment:
    from_level: int
    to_level: int
    adjustment: int
    direction: str
    reversal: bool
    limit_applied: bool = False
    limit_reason: Optional[str] = None


@dataclass(frozen=True)
class ConstraintCheck:
    """An exceeded efficiency limit."""
    constraint: EfficiencyConstraint
    value: float
    limit: float
    reason: str

    @property
    def rationale(self) -> str:
        return EFFICIENCY_RATIONALES[self.constraint]


@dataclass(frozen=True)
class StopDecision:
    """Outcome of the stopping-condition check. Truthy when the threshold should be confirmed."""
    confirm: bool
    constraint: Optional[ConstraintCheck] = None
    safety_valve: bool = False
    early_stop: bool = False
    details: Dict[str, float] = field(default_factory=dict)

    def __bool__(self):
        return self.confirm

    @property
    def forced(self) -> bool:
        return self.constraint is not None or self.safety_valve


def start_search(ear, frequency, now_ms, config: Optional[ProtocolConfig] = None) -> FrequencySearch:
    """Fresh context for a frequency, starting at the configured level."""
    config = config or ProtocolConfig()
    logger.info("Starting threshold search: %d Hz (%s ear)", frequency, Ear(ear).value)
    logger.debug("Efficiency limits: %d reversals, %d presentations, %ds",
                 config.max_reversals, config.max_presentations, config.max_time_ms // 1000)
    return FrequencySearch(ear=Ear(ear), frequency=frequency,
                           level=clamp_level(config.starting_level, config)[0],
                           started_at_ms=now_ms)


def count_presentation(search: FrequencySearch) -> FrequencySearch:
    return replace(search, presentation_count=search.presentation_count + 1)


def add_response(search: FrequencySearch, record: ResponseRecord) -> FrequencySearch:
    return replace(search, responses=search.responses + (record,))


def clamp_level(level, config: Optional[ProtocolConfig] = None):
    """
    Clamp a level to the presentable range.

    Returns:
        tuple: (clamped level, reason or None when no clamp was needed)
    """
    config = config or ProtocolConfig()
    if level > config.max_level:
        return config.max_level, f"Maximum safe level ({config.max_level} dB HL) reached"
    if level < config.min_level:
        return config.min_level, f"Minimum test level ({config.min_level} dB HL) reached"
    return level, None


def adjust_level(search: FrequencySearch, responded, config: Optional[ProtocolConfig] = None):
    """
    Apply the intensity rule: down after a response, up after none.

    Args:
        search (FrequencySearch): Current context
        responded (bool): Whether the subject responded to the last tone
        config (ProtocolConfig): Step sizes and level limits

    Returns:
        tuple: (updated FrequencySearch, LevelAdjustment)
    """
    config = config or ProtocolConfig()
    if responded:
        direction, proposed = DOWN, search.level - config.step_down_db
    else:
        direction, proposed = UP, search.level + config.step_up_db

    to_level, limit_reason = clamp_level(proposed, config)
    if limit_reason:
        logger.warning("Safety limit applied: %s", limit_reason)

    reversal = search.last_direction is not None and direction != search.last_direction
    reversal_count = search.reversal_count + (1 if reversal else 0)
    if reversal:
        logger.debug("Reversal %d at %d Hz (%s)", reversal_count, search.frequency, direction)

    adjustment = LevelAdjustment(
        from_level=search.level,
        to_level=to_level,
        adjustment=to_level - search.level,
        direction=direction,
        reversal=reversal,
        limit_applied=limit_reason is not None,
        limit_reason=limit_reason,
    )
    return replace(search, level=to_level, reversal_count=reversal_count,
                   last_direction=direction), adjustment


def check_efficiency_constraints(search: FrequencySearch, now_ms,
                                 config: Optional[ProtocolConfig] = None) -> Optional[ConstraintCheck]:
    """First exceeded efficiency limit (time, presentations, reversals), or None."""
    config = config or ProtocolConfig()
    elapsed = search.elapsed_ms(now_ms)
    if elapsed >= config.max_time_ms:
        return ConstraintCheck(EfficiencyConstraint.TIME_LIMIT, elapsed, config.max_time_ms,
                               f"Maximum time limit reached ({config.max_time_ms / 1000:g}s)")
    if search.presentation_count >= config.max_presentations:
        return ConstraintCheck(EfficiencyConstraint.PRESENTATION_LIMIT, search.presentation_count,
                               config.max_presentations,
                               f"Maximum presentations reached ({config.max_presentations})")
    if search.reversal_count >= config.max_reversals:
        return ConstraintCheck(EfficiencyConstraint.REVERSAL_LIMIT, search.reversal_count,
                               config.max_reversals,
                               f"Maximum reversals reached ({config.max_reversals})")
    return None


def group_by_level(responses: Sequence[ResponseRecord]) -> LevelGroups:
    counts = defaultdict(lambda: [0, 0])
    for r in responses:
        counts[r.level][1] += 1
        if r.responded:
            counts[r.level][0] += 1
    return {level: (positive, total) for level, (positive, total) in counts.items()}


def has_threshold_confirmation(responses: Sequence[ResponseRecord],
                               config: Optional[ProtocolConfig] = None) -> bool:
    """2-of-3 rule over the most recent responses."""
    config = config or ProtocolConfig()
    recent = list(responses)[-config.confirmation_window:]
    return any(total >= config.min_responses_at_level and positive >= config.min_positive_at_level
               for positive, total in group_by_level(recent).values())


def should_confirm_threshold(search: FrequencySearch, now_ms,
                             config: Optional[ProtocolConfig] = None) -> StopDecision:
    """
    Evaluate the stopping conditions in priority order.

    Args:
        search (FrequencySearch): Current context
        now_ms (float): Current clock time
        config (ProtocolConfig): Limits

    Returns:
        StopDecision: Truthy when the search should stop
    """
    config = config or ProtocolConfig()

    constraint = check_efficiency_constraints(search, now_ms, config)
    if constraint is not None:
        logger.info("Clinical efficiency: %s - forcing threshold estimation", constraint.reason)
        return StopDecision(True, constraint=constraint)

    if search.response_count > config.max_responses:
        logger.warning("Maximum responses reached - forcing threshold calculation")
        return StopDecision(True, safety_valve=True)

    if has_threshold_confirmation(search.responses, config):
        base = calculate_base_confidence(search.responses)
        early = base >= config.early_stop_confidence
        if early:
            logger.info("Sufficient confidence (%d%%) - confirming threshold", round(base * 100))
        return StopDecision(True, early_stop=early, details={'base_confidence': base})

    return StopDecision(False)


def calculate_threshold(search: FrequencySearch, now_ms,
                        config: Optional[ProtocolConfig] = None,
                        constraint: Optional[ConstraintCheck] = None) -> Tuple[int, DecisionBasis]:
    """
    Compute the threshold for a finished search.

    Args:
        search (FrequencySearch): Context at the end of the search
        now_ms (float): Current clock time
        config (ProtocolConfig): Limits
        constraint (ConstraintCheck): Efficiency limit that ended the search;
            looked up from the context when not given

    Returns:
        tuple: (threshold in dB HL, DecisionBasis)
    """
    config = config or ProtocolConfig()
    groups = group_by_level(search.responses)

    confirmed = [level for level, (positive, total) in groups.items()
                 if total >= config.min_responses_at_level and positive >= config.min_positive_at_level]
    if confirmed:
        return min(confirmed), DecisionBasis.TWO_OF_THREE_RULE

    if constraint is None:
        constraint = check_efficiency_constraints(search, now_ms, config)

    if constraint is not None:
        logger.info("Calculating forced threshold due to: %s", constraint.reason)
        best = [level for level, (positive, total) in groups.items()
                if total >= 2 and positive >= 1 and positive / total >= 0.5]
        if best:
            logger.info("Using best available evidence: %d dB HL", min(best))
            return min(best), DecisionBasis.FORCED_BEST_EVIDENCE
        estimate = estimate_from_recent(search, config)
        logger.info("Estimating threshold from current level: %d dB HL", estimate)
        return estimate, DecisionBasis.FORCED_ESTIMATE

    positive_levels = [r.level for r in search.responses if r.responded]
    if positive_levels:
        logger.warning("Using lowest positive response level")
        return min(positive_levels), DecisionBasis.FORCED_BEST_EVIDENCE

    logger.warning("No responses detected - threshold at maximum level")
    return config.max_level, DecisionBasis.NO_RESPONSE_MAX_LEVEL


def estimate_from_recent(search: FrequencySearch, config: Optional[ProtocolConfig] = None) -> int:
    """Mean of the positive levels among the last three responses, else current level + 10."""
    config = config or ProtocolConfig()
    positive = [r.level for r in search.responses[-3:] if r.responded]
    if positive:
        # halves round up
        estimate = int(math.floor(sum(positive) / len(positive) + 0.5))
    else:
        estimate = min(search.level + config.step_up_db, config.max_level)
    return clamp_level(estimate, config)[0]


def calculate_base_confidence(responses: Sequence[ResponseRecord]) -> float:
    """Consistency of responses at each repeated level, in [0.3, 0.95]."""
    if len(responses) < 3:
        return 0.5

    scores = []
    for positive, total in group_by_level(responses).values():
        if total < 2:
            continue
        ratio = positive / total
        if ratio in (0.0, 1.0):
            scores.append(1.0)
        elif ratio >= 0.66 or ratio <= 0.33:
            scores.append(0.5)
        else:
            scores.append(0.0)

    confidence = sum(scores) / len(scores) if scores else 0.5
    return min(0.95, max(0.3, confidence))


def calculate_efficiency_penalty(search: FrequencySearch, now_ms,
                                 config: Optional[ProtocolConfig] = None) -> float:
    config = config or ProtocolConfig()
    penalty = 0.0

    reversal_ratio = search.reversal_count / config.max_reversals
    if reversal_ratio >= 0.75:
        penalty += 0.15
    elif reversal_ratio >= 0.5:
        penalty += 0.10

    presentation_ratio = search.presentation_count / config.max_presentations
    if presentation_ratio >= 0.8:
        penalty += 0.10
    elif presentation_ratio >= 0.6:
        penalty += 0.05

    if search.elapsed_ms(now_ms) / config.max_time_ms >= 0.8:
        penalty += 0.05

    return min(0.3, round(penalty, 10))


def calculate_confidence(search: FrequencySearch, now_ms,
                         config: Optional[ProtocolConfig] = None) -> Tuple[float, float, float]:
    """
    Combine response consistency with the efficiency penalty.

    Returns:
        tuple: (base confidence, efficiency penalty, final confidence)
    """
    base = calculate_base_confidence(search.responses)
    penalty = calculate_efficiency_penalty(search, now_ms, config)
    final = max(0.2, base - penalty)
    logger.debug("Confidence: base=%d%%, penalty=%d%%, final=%d%%",
                 round(base * 100), round(penalty * 100), round(final * 100))
    return base, penalty, final
