"""Tests for malingering risk assessment."""
import pytest

from auto_audiometry.analysis.malingering import MalingeringDetector
from auto_audiometry.records import Ear

from .helpers import threshold_record


def analyze_all(detector, ear, thresholds):
    return [detector.analyze(threshold_record(ear, freq, level)) for freq, level in thresholds.items()]


def test_consistency_risk() -> None:
    assert MalingeringDetector.consistency_risk(0.5, 10) == 0.4
    assert MalingeringDetector.consistency_risk(0.8, 4) == 0.3
    assert MalingeringDetector.consistency_risk(0.8, 8) == 0.0


def test_clean_threshold_has_no_risk() -> None:
    assessment = MalingeringDetector().analyze(threshold_record('right', 1000, 20))
    assert assessment.total_risk == 0.0
    assert assessment.flags == ()


def test_low_confidence_is_flagged() -> None:
    assessment = MalingeringDetector().analyze(threshold_record('right', 1000, 20, final_confidence=0.4))
    assert assessment.consistency == 0.4
    assert assessment.total_risk == pytest.approx(0.12)
    assert assessment.flags == ('Inconsistent thresholds',)


def test_flat_audiogram_is_suspicious() -> None:
    detector = MalingeringDetector()
    assessments = analyze_all(detector, Ear.RIGHT, {500: 30, 1000: 30, 2000: 30, 4000: 30})
    assert assessments[-1].cross_frequency == 0.8
    assert assessments[-2].cross_frequency == 0.0


def test_large_adjacent_difference() -> None:
    detector = MalingeringDetector()
    assessments = analyze_all(detector, Ear.RIGHT, {1000: 10, 1500: 60})
    assert assessments[-1].cross_frequency == 0.6
    assert 'Unusual cross-frequency pattern' in assessments[-1].flags


def test_large_interaural_difference() -> None:
    detector = MalingeringDetector()
    detector.analyze(threshold_record('right', 1000, 10))
    assessment = detector.analyze(threshold_record('left', 1000, 60))
    assert assessment.bilateral_symmetry == 0.5


def test_near_identical_ears_are_suspicious() -> None:
    detector = MalingeringDetector()
    analyze_all(detector, Ear.RIGHT, {500: 20, 1000: 25, 2000: 30, 4000: 40})
    assessments = analyze_all(detector, Ear.LEFT, {500: 20, 1000: 25, 2000: 30, 4000: 42})

    assert detector.bilateral_differences() == [0, 0, 0, 2]
    assert assessments[-2].bilateral_symmetry == 0.0
    assert assessments[-1].bilateral_symmetry == 0.4
    assert assessments[-1].total_risk == pytest.approx(0.06)
    assert assessments[-1].flags == ('Unusual bilateral symmetry',)


def test_better_high_frequencies_are_atypical() -> None:
    detector = MalingeringDetector()
    assessments = analyze_all(detector, Ear.RIGHT, {250: 50, 500: 50, 1000: 45, 4000: 10})
    assert assessments[-1].progression == 0.5
    assert assessments[-2].progression == 0.0


def test_progression_needs_both_groups() -> None:
    detector = MalingeringDetector()
    analyze_all(detector, Ear.RIGHT, {250: 50, 500: 50, 1000: 45, 2000: 10})
    assert detector.progression_risk(Ear.RIGHT) == 0.0


def test_reanalysis_replaces_previous_entry() -> None:
    detector = MalingeringDetector()
    detector.analyze(threshold_record('right', 1000, 20, final_confidence=0.4))
    detector.analyze(threshold_record('right', 1000, 20))
    assert len(detector.assessments) == 1
    assert detector.risk_score('right', 1000) == 0.0


@pytest.mark.parametrize("risk, level", [
    (0.1, 'Low'), (0.2, 'Moderate'), (0.4, 'High'), (0.6, 'Very High'),
])
def test_risk_level(risk, level) -> None:
    assert MalingeringDetector.risk_level(risk) == level


def test_final_report() -> None:
    detector = MalingeringDetector()
    detector.analyze(threshold_record('right', 1000, 20))
    detector.analyze(threshold_record('left', 1000, 80, final_confidence=0.4))

    report = detector.final_report()
    assert set(report['detailed_analysis']) == {'right_1000', 'left_1000'}
    left = report['detailed_analysis']['left_1000']
    assert left['components']['bilateral_symmetry'] == 0.5
    assert left['total_risk'] == pytest.approx(0.3 * 0.4 + 0.15 * 0.5)
    assert report['risk_level'] == 'Low'
    assert report['flagged_frequencies'] == []

    detector.reset()
    assert detector.final_report()['overall_risk'] == 0.0
