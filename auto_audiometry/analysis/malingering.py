"""
Malingering detection across finalized thresholds.

Each new threshold is compared with what has been measured so far (same
ear, opposite ear, adjacent frequencies) to spot patterns that are
physiologically implausible.
"""
# Standard library imports
import logging
from typing import Dict, List, Optional

# Third-party imports
import numpy as np

# Local imports
from ..records import Ear, ResultKey, RiskAssessment, ThresholdRecord
from ..utils.defaults import (
    HIGH_FREQUENCY_GROUP,
    LOW_FREQUENCY_GROUP,
    MALINGERING_WEIGHTS,
    MIN_RESPONSES_FOR_CONSISTENCY,
)
from .false_response import adjacent_frequencies

logger = logging.getLogger(__name__)

FLAGGED_RISK = 0.4


class MalingeringDetector:
    """Scores each finalized threshold for signs of invalid responding."""

    def __init__(self, weights: Optional[Dict[str, float]] = None):
        self.weights = dict(weights or MALINGERING_WEIGHTS)
        self.thresholds: Dict[ResultKey, int] = {}
        self.assessments: Dict[ResultKey, RiskAssessment] = {}

    def analyze(self, record: ThresholdRecord) -> RiskAssessment:
        """
        Assess a newly finalized threshold and store the result under its key.

        Args:
            record (ThresholdRecord): The finalized threshold

        Returns:
            RiskAssessment: Components, weighted total and flags
        """
        ear, frequency, threshold = record.ear, record.frequency, record.threshold
        self.thresholds[(ear, frequency)] = threshold

        components = {
            'consistency': self.consistency_risk(record.final_confidence, record.response_count),
            'cross_frequency': self.cross_frequency_risk(ear, frequency, threshold),
            # Reserved: no timing-based formula is defined
            'timing': 0.0,
            'bilateral_symmetry': self.bilateral_symmetry_risk(ear, frequency, threshold),
            'progression': self.progression_risk(ear),
        }

        flags = []
        if components['consistency'] > 0:
            flags.append('Inconsistent thresholds')
        if components['cross_frequency'] > 0:
            flags.append('Unusual cross-frequency pattern')
        if components['timing'] > 0:
            flags.append('Suspicious response timing')
        if components['bilateral_symmetry'] > 0:
            flags.append('Unusual bilateral symmetry')
        if components['progression'] > 0:
            flags.append('Atypical threshold progression')

        total = sum(self.weights[name] * value for name, value in components.items())
        assessment = RiskAssessment(
            ear=ear,
            frequency=frequency,
            total_risk=float(min(1.0, max(0.0, total))),
            flags=tuple(flags),
            **components,
        )
        self.assessments[(ear, frequency)] = assessment

        if assessment.total_risk > FLAGGED_RISK:
            logger.warning("Malingering risk %.2f at %d Hz (%s ear): %s",
                           assessment.total_risk, frequency, ear.value, ', '.join(flags))
        else:
            logger.debug("Malingering risk %.2f at %d Hz (%s ear)",
                         assessment.total_risk, frequency, ear.value)
        return assessment

    @staticmethod
    def consistency_risk(confidence, response_count):
        if confidence < 0.6:
            return 0.4
        if response_count < MIN_RESPONSES_FOR_CONSISTENCY:
            return 0.3
        return 0.0

    def cross_frequency_risk(self, ear, frequency, threshold):
        ear_thresholds = self._ear_thresholds(ear)
        if len(ear_thresholds) >= 4 and len(set(ear_thresholds.values())) == 1:
            return 0.8

        differences = [abs(threshold - ear_thresholds[f]) for f in adjacent_frequencies(frequency)
                       if f in ear_thresholds]
        if differences and max(differences) > 40:
            return 0.6
        return 0.0

    def bilateral_symmetry_risk(self, ear, frequency, threshold):
        opposite = self.thresholds.get((Ear(ear).opposite, frequency))
        if opposite is None:
            return 0.0
        if abs(threshold - opposite) > 40:
            return 0.5

        differences = self.bilateral_differences()
        if len(differences) >= 4 and all(d < 5 for d in differences):
            return 0.4
        return 0.0

    def progression_risk(self, ear):
        ear_thresholds = self._ear_thresholds(ear)
        if len(ear_thresholds) < 4:
            return 0.0

        low = [t for f, t in ear_thresholds.items() if f in LOW_FREQUENCY_GROUP]
        high = [t for f, t in ear_thresholds.items() if f in HIGH_FREQUENCY_GROUP]
        if not low or not high:
            return 0.0
        if np.mean(high) < np.mean(low) - 20:
            return 0.5
        return 0.0

    def bilateral_differences(self) -> List[int]:
        """Absolute left/right threshold differences at every frequency measured in both ears."""
        left = self._ear_thresholds(Ear.LEFT)
        right = self._ear_thresholds(Ear.RIGHT)
        return [abs(left[f] - right[f]) for f in sorted(set(left) & set(right))]

    def _ear_thresholds(self, ear) -> Dict[int, int]:
        return {f: t for (e, f), t in self.thresholds.items() if e is Ear(ear)}

    def risk_score(self, ear, frequency):
        assessment = self.assessments.get((Ear(ear), frequency))
        return assessment.total_risk if assessment else 0.0

    @property
    def overall_risk(self):
        if not self.assessments:
            return 0.0
        return float(np.mean([a.total_risk for a in self.assessments.values()]))

    @staticmethod
    def risk_level(risk):
        if risk < 0.2:
            return 'Low'
        if risk < 0.4:
            return 'Moderate'
        if risk < 0.6:
            return 'High'
        return 'Very High'

    def flagged(self):
        return [
            {'ear': a.ear.value, 'frequency': a.frequency, 'risk': a.total_risk, 'flags': list(a.flags)}
            for a in self.assessments.values() if a.total_risk > FLAGGED_RISK
        ]

    def final_report(self):
        overall = self.overall_risk
        flagged = self.flagged()

        recommendations = []
        if overall > 0.5:
            recommendations.append('Consider retesting with different protocol')
            recommendations.append('Evaluate patient motivation and understanding')
        if len(flagged) > 3:
            recommendations.append('Results may not be reliable - consider referral')
        if overall > 0.3:
            recommendations.append('Document suspicious response patterns')
            recommendations.append('Consider objective testing methods')

        return {
            'overall_risk': overall,
            'risk_level': self.risk_level(overall),
            'flagged_frequencies': flagged,
            'recommendations': recommendations,
            'detailed_analysis': {
                f"{ear.value}_{frequency}": {
                    'total_risk': a.total_risk,
                    'flags': list(a.flags),
                    'components': a.components,
                }
                for (ear, frequency), a in self.assessments.items()
            },
        }

    def reset(self):
        self.thresholds = {}
        self.assessments = {}
