"""
Protocol configuration for the autonomous audiometry engine.

Defaults come from ``defaults.py``; a YAML file may override any field
under a ``protocol`` section.
"""
# Standard library imports
from dataclasses import dataclass, field, fields, asdict
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

# Third-party imports
import yaml

# Local imports
from ..exceptions import ConfigurationError
from . import defaults

VALID_TEST_EARS = ('left', 'right')


@dataclass
class ProtocolConfig:
    """All tunable clinical constants used by the protocol engine."""
    protocol_name: str = 'Hughson-Westlake'
    ears: List[str] = field(default_factory=lambda: list(defaults.DEFAULT_TEST_EARS))
    frequencies: List[int] = field(default_factory=lambda: list(defaults.DEFAULT_TEST_FREQUENCIES))

    starting_level: int = defaults.DEFAULT_STARTING_LEVEL
    step_up_db: int = defaults.STEP_UP_DB
    step_down_db: int = defaults.STEP_DOWN_DB
    min_level: int = defaults.MIN_TEST_LEVEL
    max_level: int = defaults.MAX_TEST_LEVEL
    tone_duration_ms: int = defaults.TONE_DURATION_MS

    familiarization_frequency: int = defaults.FAMILIARIZATION_FREQUENCY
    familiarization_level: int = defaults.FAMILIARIZATION_LEVEL
    familiarization_window_ms: int = defaults.FAMILIARIZATION_WINDOW_MS

    response_window_ms: int = defaults.RESPONSE_WINDOW_MS
    inter_stimulus_delay_ms: int = defaults.INTER_STIMULUS_DELAY_MS
    post_catch_trial_delay_ms: int = defaults.POST_CATCH_TRIAL_DELAY_MS
    frequency_change_delay_ms: int = defaults.FREQUENCY_CHANGE_DELAY_MS
    ear_switch_delay_ms: int = defaults.EAR_SWITCH_DELAY_MS

    max_reversals: int = defaults.MAX_REVERSALS_PER_FREQUENCY
    max_presentations: int = defaults.MAX_PRESENTATIONS_PER_FREQUENCY
    max_time_ms: int = defaults.MAX_TIME_PER_FREQUENCY_MS
    max_responses: int = defaults.MAX_RESPONSES_PER_FREQUENCY
    early_stop_confidence: float = defaults.EARLY_STOP_CONFIDENCE

    confirmation_window: int = defaults.CONFIRMATION_WINDOW
    min_responses_at_level: int = defaults.MIN_RESPONSES_AT_LEVEL
    min_positive_at_level: int = defaults.MIN_POSITIVE_AT_LEVEL

    catch_trials_enabled: bool = True
    catch_trial_probability: float = defaults.CATCH_TRIAL_PROBABILITY

    def __post_init__(self):
        self.validate()

    def validate(self):
        """
        Check internal consistency of the configuration.

        Raises:
            ConfigurationError: If any value is out of range.
        """
        validate_test_sequence(self.ears, self.frequencies)
        if self.min_level >= self.max_level:
            raise ConfigurationError("min_level must be lower than max_level")
        if not self.min_level <= self.starting_level <= self.max_level:
            raise ConfigurationError("starting_level must lie within [min_level, max_level]")
        if self.step_up_db <= 0 or self.step_down_db <= 0:
            raise ConfigurationError("step sizes must be positive")
        for name in ('max_reversals', 'max_presentations', 'max_time_ms', 'max_responses'):
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"{name} must be positive")
        if not 1 <= self.min_positive_at_level <= self.min_responses_at_level <= self.confirmation_window:
            raise ConfigurationError(
                "confirmation rule requires 1 <= min_positive_at_level <= "
                "min_responses_at_level <= confirmation_window")
        for name in ('response_window_ms', 'familiarization_window_ms', 'tone_duration_ms'):
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"{name} must be positive")
        if not 0 <= self.catch_trial_probability <= 1:
            raise ConfigurationError("catch_trial_probability must be between 0 and 1")
        if not 0 <= self.early_stop_confidence <= 1:
            raise ConfigurationError("early_stop_confidence must be between 0 and 1")

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'ProtocolConfig':
        """Build a config from a mapping, rejecting unknown keys."""
        data = dict(data or {})
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigurationError(f"Unknown protocol settings: {unknown}")
        try:
            return cls(**data)
        except TypeError as e:
            raise ConfigurationError(str(e)) from e

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def validate_test_sequence(ears, frequencies):
    """
    Validate an ear order and frequency order.

    Args:
        ears (list): Ears to test, each 'left' or 'right'
        frequencies (list): Test frequencies in Hz

    Raises:
        ConfigurationError: If either list is empty, contains duplicates or
            invalid entries.
    """
    if not ears:
        raise ConfigurationError("At least one ear must be tested")
    invalid_ears = [e for e in ears if e not in VALID_TEST_EARS]
    if invalid_ears:
        raise ConfigurationError(f"Invalid ears: {invalid_ears}. Expected 'left' or 'right'")
    if len(set(ears)) != len(ears):
        raise ConfigurationError(f"Duplicate ears in test order: {list(ears)}")

    if not frequencies:
        raise ConfigurationError("At least one frequency must be tested")
    invalid_freqs = [f for f in frequencies
                     if isinstance(f, bool) or not isinstance(f, int) or f <= 0]
    if invalid_freqs:
        raise ConfigurationError(f"Frequencies must be positive integers in Hz: {invalid_freqs}")
    if len(set(frequencies)) != len(frequencies):
        raise ConfigurationError(f"Duplicate frequencies in test order: {list(frequencies)}")


def load_config(config_path: Union[str, Path]) -> Dict[str, Any]:
    """Load raw configuration from a YAML file."""
    with open(config_path, 'r') as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Configuration file {config_path} must contain a mapping")
    return data


def load_protocol_config(config_path: Union[str, Path]) -> ProtocolConfig:
    """Load the ``protocol`` section of a YAML file into a ProtocolConfig."""
    return ProtocolConfig.from_dict(load_config(config_path).get('protocol'))
