"""
Procedures module for autonomous audiometry.

This module contains:
- Per-frequency Hughson-Westlake search rules with efficiency limits
- The autonomous protocol engine (state machine)
- Optional explanation of engine decisions
"""

from .autonomous_engine import AutonomousAudiometryEngine, SessionStore, TonePlayer
from .explanation import Explainer, ExplanationResult, TemplateExplainer, enrich, fallback_explanation
from .threshold_search import FrequencySearch, StopDecision, calculate_threshold, should_confirm_threshold

__all__ = [
    "AutonomousAudiometryEngine",
    "SessionStore",
    "TonePlayer",
    "Explainer",
    "ExplanationResult",
    "TemplateExplainer",
    "enrich",
    "fallback_explanation",
    "FrequencySearch",
    "StopDecision",
    "calculate_threshold",
    "should_confirm_threshold",
]
