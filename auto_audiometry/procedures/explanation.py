"""
Optional enrichment of decision records with human-readable explanations.

The engine calls ``enrich`` for every decision. Whatever the explainer does,
``enrich`` returns an ExplanationResult; a failure is carried as a value and
replaced by a fallback explanation, so the protocol always advances.
"""
# Standard library imports
import logging
from dataclasses import dataclass
from typing import Optional, Protocol

# Local imports
from ..events import (
    CatchTrialResult,
    DecisionRecord,
    EarSwitch,
    EfficiencyConstraintTriggered,
    Explanation,
    FrequencyChange,
    IntensityAdjustment,
    TestCompletion,
    ThresholdFinalized,
)

logger = logging.getLogger(__name__)


class Explainer(Protocol):
    def explain(self, decision: DecisionRecord) -> Explanation:
        ...


@dataclass(frozen=True)
class ExplanationResult:
    """Either an explanation or the error raised while producing it."""
    value: Optional[Explanation] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap_or(self, default: Explanation) -> Explanation:
        return self.value if self.ok and self.value is not None else default


def enrich(explainer: Optional[Explainer], decision: DecisionRecord) -> ExplanationResult:
    """
    Ask the explainer about a decision, capturing any failure.

    Args:
        explainer: Object with ``explain(decision)``, or None
        decision (DecisionRecord): The decision to explain

    Returns:
        ExplanationResult: The explanation, or the error; never raises
    """
    if explainer is None:
        return ExplanationResult()
    try:
        explanation = explainer.explain(decision)
    except Exception as e:  # any explainer failure is replaced by a fallback
        logger.warning("Explainer failed for %s: %s", decision.kind, e)
        return ExplanationResult(error=e)

    if not isinstance(explanation, Explanation) or not explanation.primary:
        logger.warning("Explainer returned an invalid explanation for %s", decision.kind)
        return ExplanationResult(error=TypeError(f"invalid explanation: {explanation!r}"))
    return ExplanationResult(value=explanation)


def fallback_explanation(decision: DecisionRecord) -> Explanation:
    """Minimal explanation built from the decision record alone."""
    if isinstance(decision, IntensityAdjustment):
        primary = ('Intensity decreased - response confirmed' if decision.responded
                   else 'Intensity increased - no response detected')
    elif isinstance(decision, ThresholdFinalized):
        primary = f"Threshold established at {decision.record.threshold} dB HL"
    elif isinstance(decision, FrequencyChange):
        primary = f"Frequency changed from {decision.from_frequency} Hz to {decision.to_frequency} Hz"
    elif isinstance(decision, EarSwitch):
        primary = f"Switched from {decision.from_ear.value} ear to {decision.to_ear.value} ear"
    elif isinstance(decision, CatchTrialResult):
        primary = f"Catch trial executed - {decision.catch_type.value}"
    elif isinstance(decision, EfficiencyConstraintTriggered):
        primary = f"Clinical efficiency limit reached - {decision.reason or 'proceeding with available data'}"
    elif isinstance(decision, TestCompletion):
        primary = 'Audiometric assessment completed'
    else:
        primary = decision.reason or 'Clinical decision made'

    return Explanation(
        primary=primary,
        rationale={
            'rule': decision.rule or 'Standard clinical protocol',
            'note': 'Detailed explanation unavailable - clinical progression maintained',
        },
        fallback=True,
    )


def explain_decision(explainer: Optional[Explainer], decision: DecisionRecord) -> Optional[Explanation]:
    """Explanation to attach to a decision: the explainer's, a fallback on failure, or None without an explainer."""
    if explainer is None:
        return None
    return enrich(explainer, decision).unwrap_or(fallback_explanation(decision))


class TemplateExplainer:
    """Plain-text explanations for the decisions a clinician cares about."""

    def explain(self, decision: DecisionRecord) -> Explanation:
        if isinstance(decision, IntensityAdjustment):
            verb = 'Decreased' if decision.adjustment < 0 else 'Increased'
            primary = f"{verb} intensity from {decision.from_level} to {decision.to_level} dB HL"
            rationale = {'rule': decision.rule, 'reason': decision.reason}
            if decision.limit_applied:
                rationale['safety'] = decision.limit_reason or ''
        elif isinstance(decision, ThresholdFinalized):
            record = decision.record
            primary = (f"Threshold {record.threshold} dB HL at {record.frequency} Hz "
                       f"({record.ear.value} ear), confidence {record.enhanced_confidence:.0f}%")
            rationale = {'rule': record.decision_basis.value,
                         'evidence': f"{record.response_count} responses, {record.reversal_count} reversals"}
        elif isinstance(decision, EfficiencyConstraintTriggered):
            primary = f"Efficiency limit reached: {decision.reason}"
            rationale = {'rule': decision.constraint.value, 'clinical': decision.clinical_rationale}
        elif isinstance(decision, CatchTrialResult):
            outcome = 'passed' if decision.passed else 'failed'
            primary = f"Catch trial ({decision.catch_type.value}) {outcome}"
            rationale = {'rule': 'Catch trials expect no response',
                         'false_positives': f"{decision.false_positive_count}/{decision.total_catch_trials}"}
        else:
            primary = decision.reason or decision.kind
            rationale = {'rule': decision.rule} if decision.rule else {}
        return Explanation(primary=primary, rationale=rationale)
