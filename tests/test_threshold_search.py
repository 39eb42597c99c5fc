"""Tests for the per-frequency threshold search rules."""
import pytest

from auto_audiometry.procedures.threshold_search import (
    DOWN,
    UP,
    FrequencySearch,
    adjust_level,
    calculate_base_confidence,
    calculate_confidence,
    calculate_efficiency_penalty,
    calculate_threshold,
    check_efficiency_constraints,
    clamp_level,
    count_presentation,
    group_by_level,
    has_threshold_confirmation,
    should_confirm_threshold,
    start_search,
)
from auto_audiometry.records import DecisionBasis, EfficiencyConstraint, Ear
from auto_audiometry.utils.config import ProtocolConfig

from .helpers import responses


def make_search(pattern=(), level=40, **kwargs) -> FrequencySearch:
    recorded = responses(pattern)
    values = dict(ear=Ear.RIGHT, frequency=1000, level=level, started_at_ms=0.0,
                  responses=recorded, presentation_count=len(recorded))
    values.update(kwargs)
    return FrequencySearch(**values)


def test_start_search_uses_starting_level() -> None:
    search = start_search('right', 2000, 500.0, ProtocolConfig(starting_level=30))
    assert search.ear is Ear.RIGHT
    assert search.frequency == 2000
    assert search.level == 30
    assert search.started_at_ms == 500.0
    assert search.presentation_count == 0 and search.reversal_count == 0


def test_count_presentation_returns_new_context() -> None:
    search = make_search()
    counted = count_presentation(search)
    assert counted.presentation_count == 1
    assert search.presentation_count == 0


def test_response_steps_down_and_miss_steps_up() -> None:
    search, adjustment = adjust_level(make_search(level=40), True)
    assert search.level == 35
    assert adjustment.direction == DOWN
    assert adjustment.adjustment == -5
    assert not adjustment.reversal

    search, adjustment = adjust_level(search, False)
    assert search.level == 45
    assert adjustment.direction == UP
    assert adjustment.reversal
    assert search.reversal_count == 1


def test_same_direction_is_not_a_reversal() -> None:
    search, _ = adjust_level(make_search(level=40), False)
    search, adjustment = adjust_level(search, False)
    assert search.level == 60
    assert not adjustment.reversal
    assert search.reversal_count == 0


def test_level_clamped_at_maximum() -> None:
    search, adjustment = adjust_level(make_search(level=115), False)
    assert search.level == 120
    assert adjustment.limit_applied
    assert "Maximum safe level" in adjustment.limit_reason


def test_level_clamped_at_minimum() -> None:
    search, adjustment = adjust_level(make_search(level=-10), True)
    assert search.level == -10
    assert adjustment.adjustment == 0
    assert adjustment.limit_applied
    assert "Minimum test level" in adjustment.limit_reason


def test_clamp_level_passes_valid_levels() -> None:
    assert clamp_level(50) == (50, None)


def test_reversal_counter_keeps_counting_past_limit() -> None:
    search = make_search(level=40, reversal_count=10, last_direction=UP)
    search, _ = adjust_level(search, True)
    assert search.reversal_count == 11


def test_time_limit_has_priority_over_other_limits() -> None:
    search = make_search(presentation_count=10, reversal_count=4)
    check = check_efficiency_constraints(search, 60000.0)
    assert check.constraint is EfficiencyConstraint.TIME_LIMIT
    assert check.rationale


def test_presentation_limit_before_reversal_limit() -> None:
    search = make_search(presentation_count=10, reversal_count=4)
    check = check_efficiency_constraints(search, 1000.0)
    assert check.constraint is EfficiencyConstraint.PRESENTATION_LIMIT
    assert check.value == 10 and check.limit == 10


def test_no_constraint_inside_limits() -> None:
    assert check_efficiency_constraints(make_search(presentation_count=3), 1000.0) is None


def test_group_by_level() -> None:
    groups = group_by_level(responses([(40, False), (50, True), (40, True)]))
    assert groups == {40: (1, 2), 50: (1, 1)}


def test_two_of_three_confirmation() -> None:
    search = make_search([(40, False), (50, True), (45, True), (40, True), (40, True)])
    assert has_threshold_confirmation(search.responses)
    assert should_confirm_threshold(search, 1000.0)
    assert calculate_threshold(search, 1000.0) == (40, DecisionBasis.TWO_OF_THREE_RULE)


def test_confirmation_only_looks_at_recent_responses() -> None:
    old = [(40, True), (40, True), (40, False)]
    newer = [(45, False), (55, True), (50, False), (60, True), (55, False), (65, True)]
    assert not has_threshold_confirmation(responses(old + newer))


def test_lowest_confirmed_level_wins() -> None:
    search = make_search([(40, True), (40, True), (40, False), (35, True), (35, True), (35, False)])
    assert calculate_threshold(search, 1000.0)[0] == 35


def test_no_positive_responses_gives_maximum_level() -> None:
    search = make_search([(40, False), (50, False)])
    assert calculate_threshold(search, 1000.0) == (120, DecisionBasis.NO_RESPONSE_MAX_LEVEL)


def test_lowest_positive_without_constraint() -> None:
    search = make_search([(40, False), (50, True), (45, False)])
    assert calculate_threshold(search, 1000.0) == (50, DecisionBasis.FORCED_BEST_EVIDENCE)


def test_forced_threshold_from_best_evidence() -> None:
    search = make_search([(50, True), (50, False)], presentation_count=10)
    assert calculate_threshold(search, 1000.0) == (50, DecisionBasis.FORCED_BEST_EVIDENCE)


def test_forced_estimate_from_recent_positives() -> None:
    search = make_search([(30, False), (40, False), (50, True), (45, False), (60, True)],
                         presentation_count=10)
    assert calculate_threshold(search, 1000.0) == (55, DecisionBasis.FORCED_ESTIMATE)


def test_forced_estimate_rounds_half_up() -> None:
    search = make_search([(50, False), (45, True), (40, True)], presentation_count=10)
    assert calculate_threshold(search, 1000.0) == (43, DecisionBasis.FORCED_ESTIMATE)


def test_forced_estimate_without_positives_steps_up() -> None:
    search = make_search([(50, False), (60, False), (70, False)], level=70, presentation_count=10)
    assert calculate_threshold(search, 1000.0) == (80, DecisionBasis.FORCED_ESTIMATE)


def test_forced_estimate_is_capped() -> None:
    search = make_search([(115, False)], level=115, presentation_count=10)
    assert calculate_threshold(search, 1000.0) == (120, DecisionBasis.FORCED_ESTIMATE)


def test_safety_valve_after_too_many_responses() -> None:
    config = ProtocolConfig(max_presentations=100, max_reversals=100, max_responses=3)
    search = make_search([(40, False), (50, False), (60, False), (70, False)])
    decision = should_confirm_threshold(search, 1000.0, config)
    assert decision and decision.safety_valve and decision.forced
    assert decision.constraint is None


def test_constraint_forces_stop() -> None:
    decision = should_confirm_threshold(make_search([(40, False)], presentation_count=10), 1000.0)
    assert decision.forced
    assert decision.constraint.constraint is EfficiencyConstraint.PRESENTATION_LIMIT


def test_continue_without_evidence() -> None:
    decision = should_confirm_threshold(make_search([(40, False), (50, True)]), 1000.0)
    assert not decision
    assert not decision.forced


def test_early_stop_with_consistent_responses() -> None:
    search = make_search([(40, False), (50, True), (45, False), (50, True), (45, False), (50, True)])
    decision = should_confirm_threshold(search, 1000.0)
    assert decision and decision.early_stop
    assert decision.details['base_confidence'] == pytest.approx(0.95)


def test_confirmation_without_early_stop() -> None:
    decision = should_confirm_threshold(make_search([(40, True), (40, False), (40, True)]), 1000.0)
    assert decision
    assert not decision.early_stop
    assert not decision.forced


def test_base_confidence() -> None:
    assert calculate_base_confidence(responses([(40, True), (45, False)])) == 0.5
    assert calculate_base_confidence(responses([(40, True), (40, True), (45, False)])) == pytest.approx(0.95)
    assert calculate_base_confidence(responses([(40, True), (40, False), (45, True)])) == pytest.approx(0.3)


def test_full_efficiency_penalty() -> None:
    search = make_search(presentation_count=8, reversal_count=3)
    assert calculate_efficiency_penalty(search, 48000.0) == pytest.approx(0.3)


def test_partial_efficiency_penalty() -> None:
    search = make_search(presentation_count=6, reversal_count=2)
    assert calculate_efficiency_penalty(search, 1000.0) == pytest.approx(0.15)


def test_final_confidence_floor() -> None:
    search = make_search([(40, True), (40, False), (45, True)], presentation_count=8, reversal_count=3)
    base, penalty, final = calculate_confidence(search, 48000.0)
    assert base == pytest.approx(0.3)
    assert penalty == pytest.approx(0.3)
    assert final == 0.2
