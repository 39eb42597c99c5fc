"""
Analysis module for response validity and test results.

This module contains:
- Response timing, fatigue and attention analysis
- Catch-trial based false-response detection
- Malingering risk assessment across thresholds
- Final report and tabular export of thresholds
"""

from .response_timing import ResponseTimingAnalyzer, TimingAnalysis, categorize_reaction_time
from .false_response import CatchTrialPlan, DiscreteSampler, FalseResponseDetector
from .malingering import MalingeringDetector
from .reporting import TestReport, audiogram_frame, pure_tone_average, results_to_dataframe

__all__ = [
    "ResponseTimingAnalyzer",
    "TimingAnalysis",
    "categorize_reaction_time",
    "CatchTrialPlan",
    "DiscreteSampler",
    "FalseResponseDetector",
    "MalingeringDetector",
    "TestReport",
    "audiogram_frame",
    "pure_tone_average",
    "results_to_dataframe",
]
