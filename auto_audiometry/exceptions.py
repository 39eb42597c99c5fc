"""Exception hierarchy for the autonomous audiometry engine."""


class AudiometryError(Exception):
    """Base class for all errors raised by auto_audiometry."""


class ConfigurationError(AudiometryError, ValueError):
    """Invalid ear/frequency lists or protocol configuration values.

    Raised before any engine state is mutated.
    """


class AlreadyActiveError(ConfigurationError):
    """A test run was started while another one is still in progress."""


class DuplicateThresholdError(AudiometryError):
    """A threshold was finalized twice for the same (ear, frequency) pair."""

    def __init__(self, ear, frequency):
        super().__init__(f"Threshold already finalized for {ear} ear at {frequency} Hz")
        self.ear = ear
        self.frequency = frequency
