"""
Simulation module for autonomous audiometry testing.

This module contains functions and classes for:
- Modeling psychometric functions and reaction times
- Simulating listener responses to presented tones
- Running complete headless sessions on a virtual clock
"""

from .response_model import HearingResponseModel
from .listener import Listener, SimulatedListener, VirtualTonePlayer
from .session import SimulationResult, run_simulated_session, simulate_session

__all__ = [
    "HearingResponseModel",
    "Listener",
    "SimulatedListener",
    "VirtualTonePlayer",
    "SimulationResult",
    "run_simulated_session",
    "simulate_session",
]
