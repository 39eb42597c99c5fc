"""
Auto Audiometry - Autonomous Pure-Tone Threshold Testing with Response Validity Scoring
"""

__version__ = "0.1.0"

# Import main classes and functions for easy access
from .procedures.autonomous_engine import AutonomousAudiometryEngine
from .analysis.reporting import TestReport
from .records import Ear, ThresholdRecord
from .utils.config import ProtocolConfig, load_protocol_config
from .simulation.session import run_simulated_session, simulate_session

__all__ = [
    "AutonomousAudiometryEngine",
    "TestReport",
    "Ear",
    "ThresholdRecord",
    "ProtocolConfig",
    "load_protocol_config",
    "run_simulated_session",
    "simulate_session",
]
