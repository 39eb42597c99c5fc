"""
False-response detection: catch trials and response plausibility scoring.

Catch trials are presentations that should never elicit a response. Their
false-positive rate, together with the consistency and plausibility of the
regular responses, yields an enhanced confidence score (0-100) for every
threshold.
"""
# Standard library imports
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Protocol, Sequence, Tuple

# Third-party imports
import numpy as np

# Local imports
from ..records import (
    CatchTrialRecord,
    CatchTrialType,
    Ear,
    Presentation,
    ResponseRecord,
)
from ..utils.defaults import (
    CATCH_TRIAL_MAX_RECENT,
    CATCH_TRIAL_MIN_PRESENTATIONS,
    CATCH_TRIAL_PROBABILITY,
    CATCH_TRIAL_RECENT_WINDOW_MS,
    CATCH_TRIAL_WEIGHTS,
    DEFAULT_NORMAL_THRESHOLD,
    DELAYED_SILENCE_PRE_DELAY_MS,
    FALSE_RESPONSE_WEIGHTS,
    MAX_FALSE_POSITIVE_RATE,
    MIN_RESPONSES_FOR_CONSISTENCY,
    MIN_TIMED_RESPONSES,
    NORMAL_HEARING_THRESHOLDS,
    RESPONSE_WINDOW_MS,
    STANDARD_FREQUENCIES,
    TONE_DURATION_MS,
    VERY_LOW_INTENSITY_LEVEL,
    WRONG_EAR_LEVEL,
)
from .response_timing import coefficient_of_variation

logger = logging.getLogger(__name__)

# Per-response suspicion limits (logging only)
MIN_PLAUSIBLE_RESPONSE_LEVEL = -5
MIN_PLAUSIBLE_REACTION_MS = 100
MAX_PLAUSIBLE_REACTION_MS = 2500


class RandomSource(Protocol):
    def random(self) -> float:
        ...


class DiscreteSampler:
    """Weighted random choice over a fixed set of outcomes."""

    def __init__(self, weights, rng: RandomSource):
        items = list(weights.items())
        if not items:
            raise ValueError("DiscreteSampler needs at least one outcome")
        if any(w < 0 for _, w in items):
            raise ValueError("Weights must be non-negative")
        total = sum(w for _, w in items)
        if total <= 0:
            raise ValueError("Weights must sum to a positive value")
        self.outcomes = [outcome for outcome, _ in items]
        self.cumulative = np.cumsum([w / total for _, w in items])
        self.rng = rng

    def sample(self):
        draw = float(self.rng.random())
        for outcome, edge in zip(self.outcomes, self.cumulative):
            if draw < edge:
                return outcome
        return self.outcomes[-1]


@dataclass(frozen=True)
class CatchTrialPlan:
    """What to present for one catch trial."""
    catch_type: CatchTrialType
    frequency: Optional[int]
    level_db_hl: int
    ear: Ear
    duration_ms: int = TONE_DURATION_MS
    pre_delay_ms: int = 0

    @property
    def is_silent(self) -> bool:
        return self.frequency is None

    def to_presentation(self) -> Presentation:
        return Presentation(
            frequency=self.frequency,
            level_db_hl=self.level_db_hl,
            ear=self.ear,
            duration_ms=self.duration_ms,
            is_catch_trial=True,
            catch_type=self.catch_type,
        )


class StimulusRunner(Protocol):
    """Engine-side operations a catch trial needs."""

    async def present_stimulus(self, presentation: Presentation) -> Presentation:
        """Present (or, for silence, merely log) and return it with its onset recorded."""
        ...

    async def await_response(self, presentation: Presentation, timeout_ms: float) -> Optional[float]:
        """Open a response window; return the signal timestamp or None on timeout."""
        ...

    async def pause(self, duration_ms: float) -> None:
        ...

    def now_ms(self) -> float:
        ...

    @property
    def is_active(self) -> bool:
        """False once the run that started the catch trial has been stopped."""
        ...


@dataclass(frozen=True)
class _RegularResponse:
    frequency: int
    ear: Ear
    level: int
    responded: bool
    reaction_time_ms: Optional[float]


class FalseResponseDetector:
    """Catch-trial scheduling and false-response evidence scoring."""

    def __init__(self, rng: Optional[RandomSource] = None, random_state=None,
                 catch_trial_probability=CATCH_TRIAL_PROBABILITY,
                 catch_trial_weights=None, weights=None,
                 response_window_ms=RESPONSE_WINDOW_MS):
        """
        Initialize the detector.

        Args:
            rng: Random source with a ``random()`` method; defaults to a numpy
                Generator seeded with ``random_state``
            random_state (int): Seed used when ``rng`` is not given
            catch_trial_probability (float): Insertion probability once eligible
            catch_trial_weights (dict): Weights by catch-trial type value
            weights (dict): Confidence component weights
            response_window_ms (float): Response window for catch trials
        """
        if not 0 <= catch_trial_probability <= 1:
            raise ValueError("catch_trial_probability must be between 0 and 1")
        self.rng = rng if rng is not None else np.random.default_rng(random_state)
        self.catch_trial_probability = catch_trial_probability
        self.weights = dict(weights or FALSE_RESPONSE_WEIGHTS)
        self.response_window_ms = response_window_ms
        self.type_sampler = DiscreteSampler(
            {CatchTrialType(k): v for k, v in (catch_trial_weights or CATCH_TRIAL_WEIGHTS).items()},
            self.rng,
        )

        self.catch_trial_history: List[CatchTrialRecord] = []
        self.false_positive_count = 0
        self._responses: List[_RegularResponse] = []
        self._current_key: Optional[Tuple[int, Ear]] = None
        self._current_responses: List[_RegularResponse] = []
        self._thresholds: Dict[Tuple[Ear, int], int] = {}

    @property
    def total_catch_trials(self):
        return len(self.catch_trial_history)

    @property
    def false_positive_rate(self):
        if not self.catch_trial_history:
            return 0.0
        return self.false_positive_count / self.total_catch_trials

    # ------------------------------------------------------------------
    # Catch trials
    # ------------------------------------------------------------------

    def should_insert_catch_trial(self, presentation_count, frequency, ear, now_ms) -> Optional[CatchTrialPlan]:
        """
        Decide whether the next presentation is preceded by a catch trial.

        Args:
            presentation_count (int): Real presentations so far at this frequency
            frequency (int): Current test frequency
            ear (Ear): Current test ear
            now_ms (float): Current clock time

        Returns:
            CatchTrialPlan or None
        """
        if presentation_count < CATCH_TRIAL_MIN_PRESENTATIONS:
            return None

        recent = [t for t in self.catch_trial_history
                  if now_ms - t.timestamp_ms < CATCH_TRIAL_RECENT_WINDOW_MS]
        if len(recent) >= CATCH_TRIAL_MAX_RECENT:
            return None

        if float(self.rng.random()) >= self.catch_trial_probability:
            return None

        plan = self.plan_catch_trial(self.type_sampler.sample(), frequency, ear)
        logger.info("Inserting catch trial: %s", plan.catch_type.value)
        return plan

    @staticmethod
    def plan_catch_trial(catch_type, frequency, ear) -> CatchTrialPlan:
        catch_type = CatchTrialType(catch_type)
        ear = Ear(ear)
        if catch_type is CatchTrialType.VERY_LOW_INTENSITY:
            return CatchTrialPlan(catch_type, frequency, VERY_LOW_INTENSITY_LEVEL, ear)
        if catch_type is CatchTrialType.WRONG_EAR:
            return CatchTrialPlan(catch_type, frequency, WRONG_EAR_LEVEL, ear.opposite)
        if catch_type is CatchTrialType.DELAYED_SILENCE:
            return CatchTrialPlan(catch_type, None, 0, ear, pre_delay_ms=DELAYED_SILENCE_PRE_DELAY_MS)
        return CatchTrialPlan(catch_type, None, 0, ear)

    async def execute_catch_trial(self, plan: CatchTrialPlan, runner: StimulusRunner) -> Optional[CatchTrialRecord]:
        """
        Run a catch trial through the engine and record its outcome.

        Reaction times are measured from tone onset, or from the opening of
        the response window for silent trials. Nothing is presented or
        recorded once the runner's run has been stopped.

        Args:
            plan (CatchTrialPlan): What to present
            runner (StimulusRunner): Presents stimuli and collects responses

        Returns:
            CatchTrialRecord: The recorded outcome, or None if the run was stopped
        """
        if plan.pre_delay_ms:
            await runner.pause(plan.pre_delay_ms)
            if not runner.is_active:
                return None

        opened_at = runner.now_ms()
        presentation = await runner.present_stimulus(plan.to_presentation())
        signal_ms = await runner.await_response(presentation, self.response_window_ms)
        if not runner.is_active:
            logger.debug("Run stopped during %s catch trial; outcome discarded", plan.catch_type.value)
            return None

        responded = signal_ms is not None
        reaction_time = None
        if responded:
            reference = presentation.onset_ms if presentation.onset_ms is not None else opened_at
            reaction_time = max(0.0, signal_ms - reference)

        return self.record_catch_trial(plan, responded, reaction_time, runner.now_ms(), presentation)

    def record_catch_trial(self, plan, responded, reaction_time_ms, timestamp_ms,
                           presentation=None) -> CatchTrialRecord:
        record = CatchTrialRecord(
            catch_type=plan.catch_type,
            actual_response=bool(responded),
            reaction_time_ms=reaction_time_ms,
            timestamp_ms=timestamp_ms,
            frequency=plan.frequency,
            ear=plan.ear,
            presentation=presentation,
        )
        self.catch_trial_history.append(record)
        if record.is_false_positive:
            self.false_positive_count += 1
            logger.warning("False positive on %s catch trial (%d/%d)", plan.catch_type.value,
                           self.false_positive_count, self.total_catch_trials)
        else:
            logger.info("Correct rejection on %s catch trial", plan.catch_type.value)
        return record

    # ------------------------------------------------------------------
    # Regular responses
    # ------------------------------------------------------------------

    def record_response(self, frequency, ear, record: ResponseRecord):
        """Record a regular (non-catch) response for later scoring."""
        entry = _RegularResponse(frequency, Ear(ear), record.level,
                                 record.responded, record.reaction_time_ms)
        self._responses.append(entry)

        key = (frequency, entry.ear)
        if key != self._current_key:
            self._current_key = key
            self._current_responses = []
        self._current_responses.append(entry)
        self._check_suspicious(entry)

    def record_threshold(self, ear, frequency, threshold):
        """Register a finalized threshold for cross-frequency comparisons."""
        self._thresholds[(Ear(ear), frequency)] = threshold

    def _check_suspicious(self, entry):
        if entry.responded and entry.level < MIN_PLAUSIBLE_RESPONSE_LEVEL:
            logger.warning("Suspicious: response at implausibly low level (%d dB HL)", entry.level)

        rt = entry.reaction_time_ms
        if rt is not None:
            if rt < MIN_PLAUSIBLE_REACTION_MS:
                logger.warning("Suspicious: very fast reaction time (%.0f ms)", rt)
            elif rt > MAX_PLAUSIBLE_REACTION_MS:
                logger.warning("Suspicious: very slow reaction time (%.0f ms)", rt)

        similar = [r.responded for r in self._current_responses[:-1]
                   if abs(r.level - entry.level) <= 5]
        if len(similar) >= 2 and pattern_consistency(similar) < 0.5:
            logger.warning("Suspicious: inconsistent responses near %d dB HL", entry.level)

    # ------------------------------------------------------------------
    # Confidence components
    # ------------------------------------------------------------------

    def catch_trial_score(self):
        """1.0 with no false positives, 0.0 at the maximum tolerated rate; None without catch trials."""
        if not self.catch_trial_history:
            return None
        rate = self.false_positive_rate
        if rate == 0:
            return 1.0
        if rate >= MAX_FALSE_POSITIVE_RATE:
            return 0.0
        return 1.0 - rate / MAX_FALSE_POSITIVE_RATE

    def response_consistency_score(self, frequency, ear):
        responses = [r for r in self._responses if r.frequency == frequency and r.ear is Ear(ear)]
        if len(responses) < MIN_RESPONSES_FOR_CONSISTENCY:
            return None

        bins: Dict[int, List[bool]] = {}
        for r in responses:
            level_bin = int(5 * round(r.level / 5))
            bins.setdefault(level_bin, []).append(r.responded)

        scores = [pattern_consistency(group) for group in bins.values() if len(group) >= 2]
        return float(np.mean(scores)) if scores else 0.5

    @staticmethod
    def threshold_plausibility_score(threshold, frequency):
        expected = NORMAL_HEARING_THRESHOLDS.get(frequency, DEFAULT_NORMAL_THRESHOLD)
        if threshold < -10:
            return 0.0
        if threshold <= expected + 25:
            return 1.0
        if threshold <= 70:
            return 0.8
        if threshold <= 90:
            return 0.6
        return 0.4

    def reaction_time_consistency_score(self, frequency, ear):
        times = [r.reaction_time_ms for r in self._responses
                 if r.frequency == frequency and r.ear is Ear(ear)
                 and r.responded and r.reaction_time_ms is not None]
        if len(times) < MIN_TIMED_RESPONSES:
            return None

        cv = coefficient_of_variation(times)
        if cv <= 0.3:
            return 1.0
        if cv >= 0.8:
            return 0.0
        return 1.0 - (cv - 0.3) / 0.5

    def cross_frequency_score(self, threshold, frequency, ear):
        neighbours = [self._thresholds[(Ear(ear), f)] for f in adjacent_frequencies(frequency)
                      if (Ear(ear), f) in self._thresholds]
        if not neighbours:
            return None

        max_difference = max(abs(threshold - t) for t in neighbours)
        if max_difference <= 20:
            return 1.0
        if max_difference >= 40:
            return 0.0
        return 1.0 - (max_difference - 20) / 20

    def component_scores(self, threshold, frequency, ear) -> Dict[str, Optional[float]]:
        return {
            'catch_trial': self.catch_trial_score(),
            'response_consistency': self.response_consistency_score(frequency, ear),
            'threshold_plausibility': self.threshold_plausibility_score(threshold, frequency),
            'reaction_time_consistency': self.reaction_time_consistency_score(frequency, ear),
            'cross_frequency': self.cross_frequency_score(threshold, frequency, ear),
        }

    def calculate_confidence_score(self, threshold, frequency, ear):
        """
        Enhanced confidence (0-100) for a threshold.

        Components without enough data are left out and the remaining
        weights renormalized; with no component available the score is 50.

        Args:
            threshold (int): Threshold in dB HL
            frequency (int): Test frequency in Hz
            ear (Ear): Test ear

        Returns:
            int: Confidence score between 0 and 100
        """
        scores = self.component_scores(threshold, frequency, ear)
        present = {name: score for name, score in scores.items() if score is not None}
        total_weight = sum(self.weights[name] for name in present)

        if total_weight > 0:
            final = sum(score * self.weights[name] for name, score in present.items()) / total_weight * 100
        else:
            final = 50.0

        logger.debug("Confidence breakdown for %s Hz (%s ear): %s -> %.0f%%",
                     frequency, Ear(ear).value,
                     {k: (None if v is None else round(v, 2)) for k, v in scores.items()}, final)
        return int(round(min(100.0, max(0.0, final))))

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def suspicious_patterns(self):
        patterns = []
        rate = self.false_positive_rate
        if rate > MAX_FALSE_POSITIVE_RATE:
            patterns.append(f"High false positive rate: {round(rate * 100)}%")

        low_level = [r for r in self._responses
                     if r.responded and r.level < MIN_PLAUSIBLE_RESPONSE_LEVEL]
        if low_level:
            patterns.append(f"{len(low_level)} responses at implausibly low levels")

        times = [r.reaction_time_ms for r in self._responses
                 if r.responded and r.reaction_time_ms is not None]
        if len(times) > 5:
            cv = coefficient_of_variation(times)
            if cv > 0.8:
                patterns.append(f"Highly variable reaction times (CV: {cv:.2f})")
        return patterns

    def recommendations(self):
        recommendations = []
        rate = self.false_positive_rate
        if rate > 0.3:
            recommendations.append('High false positive rate - consider retesting')
            recommendations.append('Evaluate patient understanding of instructions')
        elif rate > 0.1:
            recommendations.append('Moderate false positive rate - document findings')

        if self.total_catch_trials < 3:
            recommendations.append('Insufficient catch trials for reliable assessment')
        if len(self.suspicious_patterns()) > 2:
            recommendations.append('Multiple suspicious patterns detected - results may not be reliable')
        return recommendations

    def detection_report(self):
        rate = self.false_positive_rate
        return {
            'catch_trial_summary': {
                'total_catch_trials': self.total_catch_trials,
                'false_positives': self.false_positive_count,
                'false_positive_rate': round(rate * 100),
                'performance': 'Good' if rate <= MAX_FALSE_POSITIVE_RATE else 'Suspicious',
            },
            'suspicious_patterns': self.suspicious_patterns(),
            'recommendations': self.recommendations(),
            'catch_trial_history': [
                {'type': t.catch_type.value, 'response': t.actual_response, 'timestamp_ms': t.timestamp_ms}
                for t in self.catch_trial_history
            ],
        }

    def reset(self):
        self.catch_trial_history = []
        self.false_positive_count = 0
        self._responses = []
        self._current_key = None
        self._current_responses = []
        self._thresholds = {}


def pattern_consistency(pattern: Sequence[bool]):
    """Share of the majority answer in a sequence of responses."""
    if len(pattern) < 2:
        return 1.0
    positive = sum(1 for r in pattern if r)
    return max(positive, len(pattern) - positive) / len(pattern)


def adjacent_frequencies(frequency, standard=STANDARD_FREQUENCIES):
    """The standard frequencies immediately below and above ``frequency``."""
    if frequency not in standard:
        return []
    index = standard.index(frequency)
    adjacent = []
    if index > 0:
        adjacent.append(standard[index - 1])
    if index < len(standard) - 1:
        adjacent.append(standard[index + 1])
    return adjacent
