"""
Headless simulated test sessions.

Runs the autonomous engine against a simulated listener on a manual clock,
so a complete bilateral audiogram takes milliseconds and is reproducible
from a seed.
"""
# Standard library imports
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Optional

# Third-party imports
import numpy as np

# Local imports
from ..analysis.reporting import TestReport
from ..procedures.autonomous_engine import AutonomousAudiometryEngine
from ..utils.clock import ManualClock, VirtualTimer
from ..utils.config import ProtocolConfig
from .listener import Listener, SimulatedListener, VirtualTonePlayer

logger = logging.getLogger(__name__)


@dataclass
class SimulationResult:
    report: Optional[TestReport]
    engine: AutonomousAudiometryEngine
    listener: Listener
    tone_player: VirtualTonePlayer


async def run_simulated_session(hearing_profile_data=None, config: Optional[ProtocolConfig] = None,
                                ears=None, frequencies=None, random_state=None,
                                response_model_params=None, listener: Optional[Listener] = None,
                                explainer=None, session_store=None, settle_rounds=10) -> SimulationResult:
    """
    Run one simulated session to completion.

    Args:
        hearing_profile_data (dict): Listener thresholds (see SimulatedListener)
        config (ProtocolConfig): Protocol configuration
        ears (list): Ear order, defaults to the config
        frequencies (list): Frequency order, defaults to the config
        random_state (int): Seed; the engine and the listener get independent streams
        response_model_params (dict): Parameters for HearingResponseModel
        listener (Listener): Use this listener instead of a SimulatedListener
        explainer: Optional explainer for decision records
        session_store: Optional session store
        settle_rounds (int): Event-loop rounds the virtual timer waits for a press

    Returns:
        SimulationResult: Report, engine, listener and recorded presentations
    """
    seed_sequence = np.random.SeedSequence(random_state)
    engine_seed, listener_seed = seed_sequence.spawn(2)

    clock = ManualClock()
    timer = VirtualTimer(clock, settle_rounds=settle_rounds)
    tone_player = VirtualTonePlayer(timer)
    engine = AutonomousAudiometryEngine(
        tone_player, config,
        clock=clock, timer=timer,
        rng=np.random.default_rng(engine_seed),
        explainer=explainer, session_store=session_store,
    )

    if listener is None:
        if hearing_profile_data is None:
            raise ValueError("hearing_profile_data is required without a listener")
        listener = SimulatedListener(hearing_profile_data, response_model_params,
                                     rng=np.random.default_rng(listener_seed))

    queue = listener.attach(engine)
    listening = asyncio.ensure_future(listener.listen(engine, queue))
    try:
        report = await engine.begin_run(ears, frequencies)
    finally:
        listening.cancel()
        await asyncio.gather(listening, return_exceptions=True)
        engine.channel.unsubscribe(queue)

    logger.info("Simulated session finished in %.1f virtual seconds (%d tones presented)",
                clock.now_ms() / 1000, len(tone_player.presentations))
    return SimulationResult(report=report, engine=engine, listener=listener, tone_player=tone_player)


def simulate_session(*args: Any, **kwargs: Any) -> SimulationResult:
    """Synchronous wrapper around run_simulated_session."""
    return asyncio.run(run_simulated_session(*args, **kwargs))
