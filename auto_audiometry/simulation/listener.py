"""
Simulated subject and virtual tone player for headless runs.

A listener subscribes to the engine's decision channel, waits for response
windows and presses the (virtual) button through ``on_response_signal``
with the timestamp at which the press would have happened.
"""
# Standard library imports
import asyncio
import logging
from typing import Dict, List, Optional

# Third-party imports
import numpy as np

# Local imports
from ..events import ResponseWindowOpened
from ..records import Ear, Presentation
from .response_model import HearingResponseModel

logger = logging.getLogger(__name__)


class Listener:
    """Base class: turns response windows into button presses."""

    def __init__(self):
        self.windows_seen = 0
        self.presses = 0

    def reaction_time(self, presentation: Presentation) -> Optional[float]:
        """Milliseconds from presentation to press, or None for no press."""
        raise NotImplementedError

    def attach(self, engine) -> asyncio.Queue:
        """Subscribe to the engine's decision channel."""
        return engine.channel.subscribe()

    async def listen(self, engine, queue: asyncio.Queue):
        """React to response windows until cancelled."""
        while True:
            record = await queue.get()
            if isinstance(record, ResponseWindowOpened):
                self.handle_window(engine, record)

    def handle_window(self, engine, event: ResponseWindowOpened) -> bool:
        self.windows_seen += 1
        presentation = event.presentation
        rt = self.reaction_time(presentation)
        if rt is None:
            return False

        reference = presentation.onset_ms if presentation.onset_ms is not None else event.timestamp_ms
        playing = 0 if presentation.is_silent else presentation.duration_ms
        press_at = reference + rt
        if press_at > reference + playing + event.timeout_ms:
            return False

        accepted = engine.on_response_signal(press_at)
        if accepted:
            self.presses += 1
        return accepted


class SimulatedListener(Listener):
    """Listener with per-ear hearing thresholds and a psychometric response model."""

    def __init__(self, hearing_profile_data, response_model_params=None, random_state=None, rng=None):
        """
        Initialize the simulated listener.

        Args:
            hearing_profile_data (dict): Thresholds by frequency, either flat
                ``{freq: dB}`` (both ears) or per ear ``{'right': {...}, 'left': {...}}``
            response_model_params (dict): Parameters for HearingResponseModel
            random_state (int): Random seed for reproducibility
            rng (np.random.Generator): Random source, overrides random_state
        """
        super().__init__()
        self.profiles = self._normalize_profile(hearing_profile_data)
        self.response_model = HearingResponseModel(**(response_model_params or {}))
        self.rng = rng if rng is not None else np.random.default_rng(random_state)

    @staticmethod
    def _normalize_profile(hearing_profile_data) -> Dict[Ear, Dict[int, float]]:
        if not isinstance(hearing_profile_data, dict) or not hearing_profile_data:
            raise ValueError("hearing_profile_data must be a non-empty dict")

        keys = set(hearing_profile_data)
        if keys <= {'left', 'right', Ear.LEFT, Ear.RIGHT}:
            profiles = {Ear(ear): {int(f): float(t) for f, t in data.items()}
                        for ear, data in hearing_profile_data.items()}
            if any(not data for data in profiles.values()):
                raise ValueError("Each ear needs at least one threshold")
            if len(profiles) == 1:
                (only,) = profiles.values()
                profiles = {Ear.LEFT: only, Ear.RIGHT: only}
            return profiles

        flat = {int(f): float(t) for f, t in hearing_profile_data.items()}
        return {Ear.LEFT: flat, Ear.RIGHT: dict(flat)}

    def true_threshold(self, ear, frequency) -> float:
        """Threshold at a frequency, interpolated on a log-frequency axis when not in the profile."""
        ear = Ear(ear)
        if ear is Ear.BOTH:
            return min(self.true_threshold(Ear.LEFT, frequency), self.true_threshold(Ear.RIGHT, frequency))

        profile = self.profiles[ear]
        if frequency in profile:
            return profile[frequency]
        freqs = sorted(profile)
        return float(np.interp(np.log2(frequency), np.log2(freqs), [profile[f] for f in freqs]))

    def reaction_time(self, presentation: Presentation) -> Optional[float]:
        model = self.response_model
        if presentation.is_silent:
            if not model.sample_guess(self.rng):
                return None
            return model.sample_reaction_time(None, 0.0, self.rng)

        threshold = self.true_threshold(presentation.ear, presentation.frequency)
        if not model.sample_response(presentation.level_db_hl, threshold, self.rng):
            return None
        return model.sample_reaction_time(presentation.level_db_hl, threshold, self.rng)


class VirtualTonePlayer:
    """Tone player that records presentations and lets the timer account for their duration."""

    def __init__(self, timer=None):
        self.timer = timer
        self.presentations: List[dict] = []

    async def present(self, frequency, level_db_hl, ear, duration_ms):
        self.presentations.append({
            'frequency': frequency,
            'level': level_db_hl,
            'ear': Ear(ear),
            'duration_ms': duration_ms,
        })
        if self.timer is not None:
            await self.timer.sleep(duration_ms)
        else:
            await asyncio.sleep(0)
