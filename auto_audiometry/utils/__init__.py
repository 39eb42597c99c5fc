"""
Utility module for common functions and constants.

This module contains:
- Default values and clinical constants
- Protocol configuration and YAML loading
- Clock and timer abstractions
"""

from .defaults import *
from .clock import AsyncioTimer, Clock, ManualClock, RealClock, Timer, VirtualTimer
from .config import ProtocolConfig, load_config, load_protocol_config, validate_test_sequence

__all__ = [
    "AsyncioTimer",
    "Clock",
    "ManualClock",
    "RealClock",
    "Timer",
    "VirtualTimer",
    "ProtocolConfig",
    "load_config",
    "load_protocol_config",
    "validate_test_sequence",
]
