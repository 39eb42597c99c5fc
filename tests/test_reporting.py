"""Tests for report summaries and tabular export."""
import pandas as pd
import pytest

from auto_audiometry.analysis.reporting import (
    TestReport,
    audiogram_frame,
    overall_confidence,
    pure_tone_average,
    results_to_dataframe,
    summarize_ears,
)
from auto_audiometry.records import DecisionBasis, EfficiencyConstraint, Ear

from .helpers import threshold_record


@pytest.fixture
def records():
    return (
        threshold_record('right', 2000, 30, final_confidence=0.9),
        threshold_record('right', 500, 20, final_confidence=0.7),
        threshold_record('right', 1000, 25, final_confidence=0.8),
        threshold_record('left', 1000, 40, final_confidence=0.6,
                         decision_basis=DecisionBasis.FORCED_ESTIMATE,
                         constraint=EfficiencyConstraint.TIME_LIMIT),
    )


def test_summarize_ears(records) -> None:
    summaries = summarize_ears(records)
    assert summaries['right'] == {'average_threshold': 25, 'average_confidence': 80, 'frequencies_tested': 3}
    assert summaries['left']['frequencies_tested'] == 1


def test_overall_confidence(records) -> None:
    assert overall_confidence(records) == 75
    assert overall_confidence([]) is None


def test_pure_tone_average(records) -> None:
    assert pure_tone_average(records, Ear.RIGHT) == 25.0
    assert pure_tone_average(records, 'left') is None


def test_results_to_dataframe(records) -> None:
    frame = results_to_dataframe(records)
    assert list(frame['ear']) == ['left', 'right', 'right', 'right']
    assert list(frame['frequency']) == [1000, 500, 1000, 2000]
    assert frame.loc[0, 'decision_basis'] == 'forced-estimate'
    assert frame.loc[0, 'constraint'] == 'time-limit'
    assert pd.isna(frame.loc[1, 'constraint'])


def test_empty_dataframe_keeps_columns() -> None:
    frame = results_to_dataframe([])
    assert frame.empty
    assert 'threshold' in frame.columns


def test_audiogram_frame(records) -> None:
    frame = audiogram_frame(records)
    assert list(frame.columns) == ['0.5kHz Right', '1.0kHz Right', '1.0kHz Left', '2.0kHz Right']
    assert frame.loc[0, '1.0kHz Left'] == 40


def test_report_lookup(records) -> None:
    report = TestReport(protocol='Hughson-Westlake', results=records,
                        ear_summaries=summarize_ears(records),
                        overall_confidence=overall_confidence(records),
                        pure_tone_averages={'right': 25.0, 'left': None},
                        total_tests=4, expected_tests=6)
    assert report.threshold('left', 1000) == 40
    assert report.threshold(Ear.LEFT, 2000) is None
    assert len(report.to_dataframe()) == 4


def test_threshold_record_level_bounds() -> None:
    with pytest.raises(ValueError):
        threshold_record('right', 1000, 125)
