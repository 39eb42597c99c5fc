"""Tests for protocol configuration and YAML loading."""
from pathlib import Path

import pytest
import yaml

from auto_audiometry.exceptions import ConfigurationError
from auto_audiometry.utils.config import (
    ProtocolConfig,
    load_config,
    load_protocol_config,
    validate_test_sequence,
)

ROOT = Path(__file__).resolve().parent.parent


def test_defaults() -> None:
    config = ProtocolConfig()
    assert config.ears == ['right', 'left']
    assert config.frequencies == [1000, 2000, 4000, 500, 250, 8000]
    assert (config.starting_level, config.step_up_db, config.step_down_db) == (40, 10, 5)
    assert (config.max_reversals, config.max_presentations, config.max_time_ms) == (4, 10, 60000)


@pytest.mark.parametrize("ears, frequencies", [
    ([], [1000]),
    (['right'], []),
    (['middle'], [1000]),
    (['right', 'right'], [1000]),
    (['right'], [1000, 1000]),
    (['right'], [0]),
    (['right'], [1000.5]),
    (['right'], [True]),
    (['both'], [1000]),
])
def test_invalid_test_sequence(ears, frequencies) -> None:
    with pytest.raises(ConfigurationError):
        validate_test_sequence(ears, frequencies)


def test_valid_test_sequence() -> None:
    validate_test_sequence(['left'], [8000, 250])


@pytest.mark.parametrize("overrides", [
    {'min_level': 50, 'max_level': 40},
    {'starting_level': 130},
    {'step_up_db': 0},
    {'max_presentations': 0},
    {'catch_trial_probability': 1.5},
    {'min_positive_at_level': 4},
    {'confirmation_window': 2},
    {'response_window_ms': 0},
])
def test_invalid_values(overrides) -> None:
    with pytest.raises(ConfigurationError):
        ProtocolConfig(**overrides)


def test_from_dict_rejects_unknown_keys() -> None:
    with pytest.raises(ConfigurationError, match="max_levels"):
        ProtocolConfig.from_dict({'max_levels': 100})


def test_round_trip_through_dict() -> None:
    config = ProtocolConfig(max_reversals=6, frequencies=[1000, 4000])
    assert ProtocolConfig.from_dict(config.to_dict()) == config
    assert ProtocolConfig.from_dict(None) == ProtocolConfig()


def test_load_protocol_config(tmp_path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump({'protocol': {'ears': ['left'], 'max_presentations': 12}}))

    config = load_protocol_config(path)
    assert config.ears == ['left']
    assert config.max_presentations == 12
    assert config.starting_level == 40


def test_load_empty_and_invalid_files(tmp_path) -> None:
    empty = tmp_path / "empty.yaml"
    empty.write_text("")
    assert load_config(empty) == {}
    assert load_protocol_config(empty) == ProtocolConfig()

    listing = tmp_path / "list.yaml"
    listing.write_text("- 1\n- 2\n")
    with pytest.raises(ConfigurationError):
        load_config(listing)


def test_shipped_default_config() -> None:
    raw = load_config(ROOT / "configs" / "default.yaml")
    assert ProtocolConfig.from_dict(raw['protocol']) == ProtocolConfig()
    assert set(raw['simulation']['listener']) == {'right', 'left'}
