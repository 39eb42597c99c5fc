"""
Response timing analysis for autonomous audiometry.

Classifies every reaction time into a clinical category, tracks reaction
time variability over a rolling window and estimates fatigue and attention
from how responses change over the course of a session.
"""
# Standard library imports
import logging
from collections import deque
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

# Third-party imports
import numpy as np

# Local imports
from ..records import ResponseRecord, TimingCategory
from ..utils.defaults import (
    ANTICIPATORY_MAX_MS,
    DELAYED_MIN_MS,
    FATIGUE_RATIO_CEILING,
    NORMAL_RANGE_MS,
    OPTIMAL_RANGE_MS,
    POPULATION_RT_MEAN_MS,
    POPULATION_RT_STD_MS,
    TIMING_BASELINE_SIZE,
    TIMING_WINDOW_SIZE,
    VERY_DELAYED_MIN_MS,
)

logger = logging.getLogger(__name__)

RELIABILITY_WEIGHTS = {
    TimingCategory.OPTIMAL: 1.0,
    TimingCategory.NORMAL: 0.8,
    TimingCategory.DELAYED: 0.5,
    TimingCategory.VERY_DELAYED: 0.3,
    TimingCategory.ANTICIPATORY: 0.1,
    TimingCategory.ABNORMAL: 0.4,
    TimingCategory.NO_RESPONSE: 0.0,
}

# (z-score upper bound, percentile) against the population distribution
_PERCENTILE_STEPS = ((-2, 2), (-1, 16), (0, 50), (1, 84), (2, 98))


def categorize_reaction_time(reaction_time_ms):
    """
    Categorize a reaction time into a clinical timing category.

    Args:
        reaction_time_ms (float or None): Reaction time in milliseconds

    Returns:
        TimingCategory: NO_RESPONSE when no reaction time is available
    """
    if reaction_time_ms is None:
        return TimingCategory.NO_RESPONSE
    if reaction_time_ms < ANTICIPATORY_MAX_MS:
        return TimingCategory.ANTICIPATORY
    if reaction_time_ms > VERY_DELAYED_MIN_MS:
        return TimingCategory.VERY_DELAYED
    if reaction_time_ms > DELAYED_MIN_MS:
        return TimingCategory.DELAYED
    if OPTIMAL_RANGE_MS[0] <= reaction_time_ms <= OPTIMAL_RANGE_MS[1]:
        return TimingCategory.OPTIMAL
    if NORMAL_RANGE_MS[0] <= reaction_time_ms <= NORMAL_RANGE_MS[1]:
        return TimingCategory.NORMAL
    return TimingCategory.ABNORMAL


def reliability_weight(category):
    """Reliability weight (0-1) of a response in the given timing category."""
    return RELIABILITY_WEIGHTS[TimingCategory(category)]


def reaction_time_percentile(reaction_time_ms):
    """Approximate percentile of a reaction time in the normal population."""
    z_score = (reaction_time_ms - POPULATION_RT_MEAN_MS) / POPULATION_RT_STD_MS
    for upper, percentile in _PERCENTILE_STEPS:
        if z_score <= upper:
            return percentile
    return 99


def coefficient_of_variation(values):
    """Population coefficient of variation, 0 for an empty or zero-mean sample."""
    if len(values) == 0:
        return 0.0
    arr = np.asarray(values, dtype=float)
    mean = arr.mean()
    if mean <= 0:
        return 0.0
    return float(arr.std() / mean)


@dataclass(frozen=True)
class TimingAnalysis:
    """Timing evaluation of a single response."""
    category: TimingCategory
    reliability: float
    reaction_time_ms: Optional[float]
    percentile: Optional[int]
    variability: float
    fatigue_level: float
    attention_level: float
    consistency: float
    flags: Tuple[str, ...] = ()

    @property
    def is_valid(self) -> bool:
        return self.category is not TimingCategory.ANTICIPATORY


@dataclass(frozen=True)
class _TimedResponse:
    level: int
    responded: bool
    reaction_time_ms: Optional[float]
    category: TimingCategory


class ResponseTimingAnalyzer:
    """Tracks reaction times, fatigue and attention over a session."""

    def __init__(self, window_size=TIMING_WINDOW_SIZE, baseline_size=TIMING_BASELINE_SIZE,
                 fatigue_ratio_ceiling=FATIGUE_RATIO_CEILING):
        if window_size < 1 or baseline_size < 1:
            raise ValueError("window_size and baseline_size must be >= 1")
        if fatigue_ratio_ceiling <= 1.0:
            raise ValueError("fatigue_ratio_ceiling must be greater than 1")
        self.window_size = window_size
        self.baseline_size = baseline_size
        self.fatigue_ratio_ceiling = fatigue_ratio_ceiling

        self._responses: List[_TimedResponse] = []
        self._recent_times = deque(maxlen=window_size)
        self.consecutive_delayed = 0
        self.consecutive_anticipatory = 0
        self.attention_lapses = 0

    def __len__(self):
        return len(self._responses)

    def add_response(self, record: ResponseRecord) -> TimingAnalysis:
        """
        Add a response and evaluate it.

        Args:
            record (ResponseRecord): The response (or timeout) to analyze

        Returns:
            TimingAnalysis: Category, reliability and session-level indicators
        """
        rt = record.reaction_time_ms
        category = categorize_reaction_time(rt)
        self._responses.append(_TimedResponse(record.level, record.responded, rt, category))
        if rt is not None:
            self._recent_times.append(rt)
        self._update_patterns(category, record.responded)

        analysis = TimingAnalysis(
            category=category,
            reliability=reliability_weight(category),
            reaction_time_ms=rt,
            percentile=reaction_time_percentile(rt) if rt is not None else None,
            variability=self.variability(),
            fatigue_level=self.fatigue_level(),
            attention_level=self.attention_level(),
            consistency=self.consistency(),
            flags=self._flags_for(category),
        )
        if rt is not None:
            logger.debug("Reaction time %.0f ms: %s (reliability %.0f%%, fatigue %.0f%%, attention %.0f%%)",
                         rt, category.value, analysis.reliability * 100,
                         analysis.fatigue_level * 100, analysis.attention_level * 100)
        return analysis

    def _update_patterns(self, category, responded):
        if category in (TimingCategory.DELAYED, TimingCategory.VERY_DELAYED):
            self.consecutive_delayed += 1
            self.consecutive_anticipatory = 0
        elif category is TimingCategory.ANTICIPATORY:
            self.consecutive_anticipatory += 1
            self.consecutive_delayed = 0
        else:
            self.consecutive_delayed = 0
            self.consecutive_anticipatory = 0

        if category is TimingCategory.VERY_DELAYED or not responded:
            self.attention_lapses += 1

    @staticmethod
    def _flags_for(category):
        flags = {
            TimingCategory.ANTICIPATORY: 'Anticipatory response - possible guessing',
            TimingCategory.VERY_DELAYED: 'Very delayed response - attention/fatigue concern',
            TimingCategory.DELAYED: 'Delayed response - processing difficulty',
            TimingCategory.OPTIMAL: 'Optimal reaction time',
            TimingCategory.NO_RESPONSE: 'No reaction time available',
        }
        return (flags[category],) if category in flags else ()

    def variability(self):
        """Coefficient of variation of the rolling reaction-time window (0 below 3 samples)."""
        if len(self._recent_times) < 3:
            return 0.0
        return coefficient_of_variation(list(self._recent_times))

    def fatigue_level(self):
        """
        Fatigue from slowing reaction times.

        Compares the mean reaction time of the most recent window against the
        baseline of the first responses: 0 at equal timing, rising linearly
        to 1.0 when the recent mean reaches ``fatigue_ratio_ceiling`` times
        the baseline.
        """
        if len(self._responses) < self.baseline_size:
            return 0.0

        baseline = [r.reaction_time_ms for r in self._responses[:self.baseline_size]
                    if r.reaction_time_ms is not None]
        recent = [r.reaction_time_ms for r in self._responses[-self.window_size:]
                  if r.reaction_time_ms is not None]
        if not baseline or not recent:
            return 0.0

        baseline_mean = float(np.mean(baseline))
        if baseline_mean <= 0:
            return 0.0
        ratio = float(np.mean(recent)) / baseline_mean
        return float(np.clip((ratio - 1.0) / (self.fatigue_ratio_ceiling - 1.0), 0.0, 1.0))

    def consistency(self):
        """Share of recent level changes whose response moved the expected way."""
        if len(self._responses) < 3:
            return 0.5

        recent = self._responses[-5:]
        consistent = 0
        for previous, current in zip(recent, recent[1:]):
            if current.level > previous.level and current.responded >= previous.responded:
                consistent += 1
            elif current.level < previous.level and current.responded <= previous.responded:
                consistent += 1
        return consistent / (len(recent) - 1)

    def category_rate(self, *categories):
        if not self._responses:
            return 0.0
        wanted = set(categories)
        return sum(1 for r in self._responses if r.category in wanted) / len(self._responses)

    def anticipatory_rate(self):
        return self.category_rate(TimingCategory.ANTICIPATORY)

    def delayed_rate(self):
        return self.category_rate(TimingCategory.DELAYED, TimingCategory.VERY_DELAYED)

    def attention_level(self):
        """
        Attention estimate (0-1).

        Product of response consistency, anticipatory and very-delayed
        penalties and reaction-time variability; neutral 0.5 until five
        responses have been seen.
        """
        if len(self._responses) < self.baseline_size:
            return 0.5

        very_delayed_rate = self.category_rate(TimingCategory.VERY_DELAYED)
        factors = (
            self.consistency(),
            1.0 - 2.0 * self.anticipatory_rate(),
            1.0 - 3.0 * very_delayed_rate,
            1.0 - self.variability(),
        )
        score = 1.0
        for factor in factors:
            score *= max(0.0, factor)
        return float(min(1.0, score))

    def reliability_for(self, records):
        """Mean timing reliability weight of the timed responses among ``records``."""
        weights = [reliability_weight(categorize_reaction_time(r.reaction_time_ms))
                   for r in records if r.reaction_time_ms is not None]
        if not weights:
            return None
        return float(np.mean(weights))

    def timing_statistics(self) -> Dict[str, Optional[float]]:
        """Descriptive statistics of every reaction time seen so far."""
        times = np.asarray([r.reaction_time_ms for r in self._responses
                            if r.reaction_time_ms is not None], dtype=float)
        if times.size == 0:
            return {
                'count': 0, 'average': None, 'median': None, 'min': None, 'max': None,
                'standard_deviation': None, 'variability_coefficient': None,
                'p25': None, 'p75': None, 'p90': None,
            }

        average = float(times.mean())
        std = float(times.std())
        return {
            'count': int(times.size),
            'average': round(average),
            'median': round(float(np.median(times))),
            'min': float(times.min()),
            'max': float(times.max()),
            'standard_deviation': round(std),
            'variability_coefficient': round(std / average, 2) if average > 0 else 0.0,
            'p25': round(float(np.percentile(times, 25))),
            'p75': round(float(np.percentile(times, 75))),
            'p90': round(float(np.percentile(times, 90))),
        }

    def category_summary(self):
        counts = {category.value: 0 for category in TimingCategory}
        for r in self._responses:
            counts[r.category.value] += 1
        total = len(self._responses)
        percentages = {k: (round(v / total * 100) if total else 0) for k, v in counts.items()}
        return {'counts': counts, 'percentages': percentages}

    def clinical_flags(self):
        """Session-level timing concerns, each with a severity."""
        flags = []

        anticipatory = self.anticipatory_rate()
        if anticipatory > 0.2:
            flags.append({
                'type': 'anticipatory_responses',
                'severity': 'high' if anticipatory > 0.4 else 'moderate',
                'message': f"High anticipatory response rate ({round(anticipatory * 100)}%) "
                           f"- possible guessing behavior",
            })

        delayed = self.delayed_rate()
        if delayed > 0.3:
            flags.append({
                'type': 'delayed_responses',
                'severity': 'high' if delayed > 0.5 else 'moderate',
                'message': f"High delayed response rate ({round(delayed * 100)}%) "
                           f"- processing difficulties",
            })

        fatigue = self.fatigue_level()
        if fatigue > 0.6:
            flags.append({
                'type': 'fatigue',
                'severity': 'high' if fatigue > 0.8 else 'moderate',
                'message': f"Significant fatigue detected ({round(fatigue * 100)}%)",
            })

        attention = self.attention_level()
        if attention < 0.4:
            flags.append({
                'type': 'attention',
                'severity': 'high' if attention < 0.2 else 'moderate',
                'message': f"Low attention level ({round(attention * 100)}%) - inconsistent responses",
            })

        variability = self.variability()
        if variability > 0.5:
            flags.append({
                'type': 'variability',
                'severity': 'high' if variability > 0.7 else 'moderate',
                'message': f"High reaction time variability (CV: {round(variability * 100)}%)",
            })

        return flags

    def response_summary(self):
        """Session summary used in the final report."""
        total = len(self._responses)
        positive = sum(1 for r in self._responses if r.responded)
        return {
            'total_responses': total,
            'positive_responses': positive,
            'response_rate': positive / total if total else 0.0,
            'timing': self.timing_statistics(),
            'consistency': self.consistency(),
            'fatigue_level': self.fatigue_level(),
            'attention_level': self.attention_level(),
            'categories': self.category_summary(),
            'clinical_flags': self.clinical_flags(),
        }

    def reset(self):
        self._responses.clear()
        self._recent_times.clear()
        self.consecutive_delayed = 0
        self.consecutive_anticipatory = 0
        self.attention_lapses = 0
