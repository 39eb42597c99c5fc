"""Psychometric response and reaction-time model for simulated listeners."""

import numpy as np
from scipy.special import expit, logit

from ..utils.defaults import DEFAULT_GUESS_RATE, DEFAULT_LAPSE_RATE, DEFAULT_SLOPE


class HearingResponseModel:
    """Models probability and speed of response to a pure tone stimulus."""

    def __init__(self, slope=DEFAULT_SLOPE, guess_rate=DEFAULT_GUESS_RATE,
                 lapse_rate=DEFAULT_LAPSE_RATE, threshold_probability=0.5,
                 rt_median_ms=450.0, rt_sigma=0.25, rt_slowing_ms=400.0):
        """
        Initialize the hearing response model.

        Args:
            slope (float): Steepness of the psychometric function (per dB)
            guess_rate (float): Probability of responding with nothing audible
            lapse_rate (float): Probability of missing a clearly audible tone
            threshold_probability (float): Response probability at threshold
            rt_median_ms (float): Median reaction time well above threshold
            rt_sigma (float): Log-normal shape of the reaction time distribution
            rt_slowing_ms (float): Extra median reaction time at threshold
        """
        if not 0 <= threshold_probability <= 1:
            raise ValueError("threshold_probability must be between 0 and 1")
        if guess_rate < 0 or lapse_rate < 0 or guess_rate + lapse_rate >= 1:
            raise ValueError("guess_rate and lapse_rate must be non-negative and sum below 1")
        if rt_median_ms <= 0 or rt_sigma < 0:
            raise ValueError("rt_median_ms must be positive and rt_sigma non-negative")

        self.slope = slope
        self.guess_rate = guess_rate
        self.lapse_rate = lapse_rate
        self.threshold_probability = threshold_probability
        self.rt_median_ms = rt_median_ms
        self.rt_sigma = rt_sigma
        self.rt_slowing_ms = rt_slowing_ms

        # Calculate bias from threshold probability
        if threshold_probability == 0:
            self.threshold_bias = float('-inf')
        elif threshold_probability == 1:
            self.threshold_bias = float('inf')
        else:
            self.threshold_bias = logit(threshold_probability) / self.slope

    def get_response_probability(self, stimulus_level, true_threshold):
        """Calculate probability of response for given stimulus level."""
        x = self.slope * (stimulus_level - true_threshold + self.threshold_bias)
        p = expit(x)
        return self.guess_rate + (1 - self.guess_rate - self.lapse_rate) * p

    def sample_response(self, stimulus_level, true_threshold, rng):
        """Generate binary response based on probability model."""
        p = self.get_response_probability(stimulus_level, true_threshold)
        return bool(rng.random() < p)

    def sample_guess(self, rng):
        """Response to a presentation with nothing audible."""
        return bool(rng.random() < self.guess_rate)

    def sample_reaction_time(self, stimulus_level, true_threshold, rng):
        """
        Draw a reaction time in milliseconds.

        Responses slow down as the stimulus approaches threshold; the
        slowing decays by half for every 10 dB of sensation level.

        Args:
            stimulus_level (float or None): Presented level, None for silence
            true_threshold (float): Listener threshold at this frequency
            rng (np.random.Generator): Random source

        Returns:
            float: Reaction time in milliseconds
        """
        median = self.rt_median_ms
        if stimulus_level is None:
            median += self.rt_slowing_ms
        else:
            sensation_level = max(0.0, stimulus_level - true_threshold)
            median += self.rt_slowing_ms * 0.5 ** (sensation_level / 10.0)
        return float(rng.lognormal(np.log(median), self.rt_sigma))
