"""
Final test report and tabular export of threshold records.
"""
# Standard library imports
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

# Third-party imports
import numpy as np
import pandas as pd

# Local imports
from ..records import Ear, ThresholdRecord
from ..utils.defaults import PTA_FREQUENCIES


@dataclass(frozen=True)
class TestReport:
    """Everything known about a completed run."""
    __test__ = False  # keep pytest from collecting this class

    protocol: str
    results: Tuple[ThresholdRecord, ...]
    ear_summaries: Dict[str, Dict[str, Any]]
    overall_confidence: Optional[int]
    pure_tone_averages: Dict[str, Optional[float]]
    malingering: Dict[str, Any] = field(default_factory=dict)
    false_response: Dict[str, Any] = field(default_factory=dict)
    timing: Dict[str, Any] = field(default_factory=dict)
    total_tests: int = 0
    expected_tests: int = 0
    duration_ms: float = 0.0
    stop_reason: Optional[str] = None

    def threshold(self, ear, frequency) -> Optional[int]:
        for record in self.results:
            if record.ear is Ear(ear) and record.frequency == frequency:
                return record.threshold
        return None

    def to_dataframe(self) -> pd.DataFrame:
        return results_to_dataframe(self.results)


def summarize_ears(records: Iterable[ThresholdRecord]) -> Dict[str, Dict[str, Any]]:
    """
    Per-ear averages of threshold and final confidence.

    Returns:
        dict: ``{ear: {'average_threshold', 'average_confidence', 'frequencies_tested'}}``;
            confidence is a rounded percentage
    """
    by_ear: Dict[Ear, List[ThresholdRecord]] = {}
    for record in records:
        by_ear.setdefault(record.ear, []).append(record)

    return {
        ear.value: {
            'average_threshold': int(round(np.mean([r.threshold for r in ear_records]))),
            'average_confidence': int(round(np.mean([r.final_confidence for r in ear_records]) * 100)),
            'frequencies_tested': len(ear_records),
        }
        for ear, ear_records in by_ear.items()
    }


def overall_confidence(records: Iterable[ThresholdRecord]) -> Optional[int]:
    values = [r.final_confidence for r in records]
    if not values:
        return None
    return int(round(np.mean(values) * 100))


def pure_tone_average(records: Iterable[ThresholdRecord], ear, frequencies=PTA_FREQUENCIES) -> Optional[float]:
    """Mean threshold over ``frequencies`` for one ear; None if any is missing."""
    thresholds = {r.frequency: r.threshold for r in records if r.ear is Ear(ear)}
    if not all(f in thresholds for f in frequencies):
        return None
    return float(np.mean([thresholds[f] for f in frequencies]))


def results_to_dataframe(records: Iterable[ThresholdRecord]) -> pd.DataFrame:
    """
    One row per threshold record, sorted by ear and frequency.

    Args:
        records (iterable): ThresholdRecord objects

    Returns:
        pd.DataFrame: Threshold, confidences, counts and decision basis per (ear, frequency)
    """
    columns = ['ear', 'frequency', 'threshold', 'base_confidence', 'efficiency_penalty',
               'final_confidence', 'enhanced_confidence', 'reversal_count',
               'presentation_count', 'response_count', 'decision_basis', 'constraint',
               'timing_reliability', 'malingering_risk']
    rows = []
    for r in records:
        rows.append({
            'ear': r.ear.value,
            'frequency': r.frequency,
            'threshold': r.threshold,
            'base_confidence': r.base_confidence,
            'efficiency_penalty': r.efficiency_penalty,
            'final_confidence': r.final_confidence,
            'enhanced_confidence': r.enhanced_confidence,
            'reversal_count': r.reversal_count,
            'presentation_count': r.presentation_count,
            'response_count': r.response_count,
            'decision_basis': r.decision_basis.value,
            'constraint': r.constraint.value if r.constraint else None,
            'timing_reliability': r.timing_reliability,
            'malingering_risk': r.malingering_risk,
        })

    dataframe = pd.DataFrame(rows, columns=columns)
    return dataframe.sort_values(['ear', 'frequency']).reset_index(drop=True)


def audiogram_frame(records: Iterable[ThresholdRecord]) -> pd.DataFrame:
    """
    Single-row hearing profile with one column per frequency and ear.

    Columns are named like ``"1.0kHz Right"``, the layout used by the
    hearing profile generators and curve plots.
    """
    data_dict = {}
    for r in sorted(records, key=lambda r: (r.frequency, r.ear.value != 'right')):
        data_dict[f"{r.frequency/1000:.1f}kHz {r.ear.value.capitalize()}"] = r.threshold
    return pd.DataFrame(data_dict, index=[0])
