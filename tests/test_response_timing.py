"""Tests for reaction-time categorization and session timing indicators."""
import pytest

from auto_audiometry.analysis.response_timing import (
    ResponseTimingAnalyzer,
    categorize_reaction_time,
    coefficient_of_variation,
    reliability_weight,
)
from auto_audiometry.records import TimingCategory

from .helpers import response


@pytest.mark.parametrize("rt, expected", [
    (None, TimingCategory.NO_RESPONSE),
    (149, TimingCategory.ANTICIPATORY),
    (150, TimingCategory.ABNORMAL),
    (250, TimingCategory.NORMAL),
    (300, TimingCategory.OPTIMAL),
    (800, TimingCategory.OPTIMAL),
    (801, TimingCategory.NORMAL),
    (1500, TimingCategory.NORMAL),
    (1800, TimingCategory.ABNORMAL),
    (2001, TimingCategory.DELAYED),
    (3500, TimingCategory.DELAYED),
    (3501, TimingCategory.VERY_DELAYED),
])
def test_categorize_reaction_time(rt, expected) -> None:
    assert categorize_reaction_time(rt) is expected


def test_reliability_weights() -> None:
    assert reliability_weight(TimingCategory.OPTIMAL) == 1.0
    assert reliability_weight(TimingCategory.NORMAL) == 0.8
    assert reliability_weight(TimingCategory.ANTICIPATORY) == 0.1
    assert reliability_weight('no-response') == 0.0


def test_coefficient_of_variation() -> None:
    assert coefficient_of_variation([]) == 0.0
    assert coefficient_of_variation([500, 500, 500]) == 0.0
    assert coefficient_of_variation([400, 600]) == pytest.approx(0.2)


def test_fatigue_from_slowing_responses() -> None:
    analyzer = ResponseTimingAnalyzer()
    for rt in [400] * 5 + [800] * 5:
        analysis = analyzer.add_response(response(40, True, rt))
    assert analysis.fatigue_level == pytest.approx(1.0)


def test_no_fatigue_at_steady_timing() -> None:
    analyzer = ResponseTimingAnalyzer()
    for _ in range(8):
        analysis = analyzer.add_response(response(40, True, 500))
    assert analysis.fatigue_level == 0.0
    assert analysis.variability == 0.0


def test_attention_neutral_before_five_responses() -> None:
    analyzer = ResponseTimingAnalyzer()
    for _ in range(4):
        analysis = analyzer.add_response(response(40, True, 500))
    assert analysis.attention_level == 0.5


def test_anticipatory_responses_lower_attention() -> None:
    analyzer = ResponseTimingAnalyzer()
    for rt in (100, 100, 100, 500, 500, 500):
        analysis = analyzer.add_response(response(40, True, rt))
    assert analysis.attention_level == 0.0
    assert analyzer.consecutive_anticipatory == 0
    assert not analyzer.add_response(response(40, True, 90)).is_valid


def test_timeouts_count_as_attention_lapses() -> None:
    analyzer = ResponseTimingAnalyzer()
    analysis = analyzer.add_response(response(40, False))
    assert analysis.category is TimingCategory.NO_RESPONSE
    assert analysis.reliability == 0.0
    assert analyzer.attention_lapses == 1


def test_reliability_for_ignores_timeouts() -> None:
    analyzer = ResponseTimingAnalyzer()
    records = [response(40, True, 500), response(40, True, 1000), response(45, False)]
    assert analyzer.reliability_for(records) == pytest.approx(0.9)
    assert analyzer.reliability_for([response(45, False)]) is None


def test_response_summary_and_reset() -> None:
    analyzer = ResponseTimingAnalyzer()
    for rt in (400, 500, 600):
        analyzer.add_response(response(40, True, rt))
    analyzer.add_response(response(35, False))

    summary = analyzer.response_summary()
    assert summary['total_responses'] == 4
    assert summary['positive_responses'] == 3
    assert summary['timing']['average'] == 500
    assert summary['categories']['counts']['optimal'] == 3

    analyzer.reset()
    assert len(analyzer) == 0
    assert analyzer.response_summary()['timing']['average'] is None


def test_clinical_flag_for_fatigue() -> None:
    analyzer = ResponseTimingAnalyzer()
    for rt in [400] * 5 + [800] * 5:
        analyzer.add_response(response(40, True, rt))
    assert 'fatigue' in {flag['type'] for flag in analyzer.clinical_flags()}
