"""Shared test doubles and record builders."""
from __future__ import annotations

import asyncio
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from auto_audiometry.procedures.autonomous_engine import AutonomousAudiometryEngine
from auto_audiometry.records import (
    DecisionBasis,
    Ear,
    Presentation,
    ResponseRecord,
    ThresholdRecord,
)
from auto_audiometry.analysis.response_timing import categorize_reaction_time
from auto_audiometry.simulation.listener import Listener, VirtualTonePlayer
from auto_audiometry.utils.clock import ManualClock, VirtualTimer
from auto_audiometry.utils.config import ProtocolConfig


class FixedRandom:
    def __init__(self, value: float) -> None:
        self.value = value

    def random(self) -> float:
        return self.value


class SequenceRandom:
    def __init__(self, values: Sequence[float]) -> None:
        self.values = list(values)
        self.index = 0

    def random(self) -> float:
        value = self.values[self.index % len(self.values)]
        self.index += 1
        return value


class ThresholdListener(Listener):
    """Hears every tone at or above its threshold, after a fixed reaction time."""

    def __init__(self, threshold: float = 30, reaction_time_ms: float = 500,
                 answers_silence: bool = False) -> None:
        super().__init__()
        self.threshold = threshold
        self.rt = reaction_time_ms
        self.answers_silence = answers_silence

    def reaction_time(self, presentation: Presentation) -> Optional[float]:
        if presentation.is_silent:
            return self.rt if self.answers_silence else None
        return self.rt if presentation.level_db_hl >= self.threshold else None


class FailingTonePlayer(VirtualTonePlayer):
    async def present(self, frequency, level_db_hl, ear, duration_ms):
        await super().present(frequency, level_db_hl, ear, duration_ms)
        raise RuntimeError("audio device unavailable")


class RecordingStore:
    def __init__(self) -> None:
        self.thresholds: List[ThresholdRecord] = []
        self.reports = []

    def record_threshold(self, record: ThresholdRecord) -> None:
        self.thresholds.append(record)

    def save_report(self, report) -> None:
        self.reports.append(report)


def build_engine(config: Optional[ProtocolConfig] = None, rng=None, tone_player_cls=VirtualTonePlayer,
                 **kwargs) -> Tuple[AutonomousAudiometryEngine, ManualClock, VirtualTonePlayer]:
    clock = ManualClock()
    timer = VirtualTimer(clock)
    tone_player = tone_player_cls(timer)
    engine = AutonomousAudiometryEngine(tone_player, config, clock=clock, timer=timer,
                                        rng=rng if rng is not None else FixedRandom(0.99), **kwargs)
    return engine, clock, tone_player


async def drive(engine: AutonomousAudiometryEngine, listener: Listener,
                ears: Iterable = ('right',), frequencies: Iterable = (1000,)):
    queue = listener.attach(engine)
    task = asyncio.ensure_future(listener.listen(engine, queue))
    try:
        return await engine.begin_run(list(ears), list(frequencies))
    finally:
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        engine.channel.unsubscribe(queue)


def response(level: int, responded: bool, rt: Optional[float] = None, frequency: int = 1000,
             ear: Ear = Ear.RIGHT, onset_ms: float = 0.0) -> ResponseRecord:
    if responded and rt is None:
        rt = 500.0
    presentation = Presentation(frequency=frequency, level_db_hl=level, ear=ear,
                                duration_ms=1000, onset_ms=onset_ms)
    rt = rt if responded else None
    return ResponseRecord(presentation=presentation, responded=responded, reaction_time_ms=rt,
                          timing_category=categorize_reaction_time(rt),
                          timestamp_ms=onset_ms + (rt or 3000.0))


def responses(pattern: Iterable[Tuple[int, bool]], **kwargs) -> Tuple[ResponseRecord, ...]:
    return tuple(response(level, heard, **kwargs) for level, heard in pattern)


def threshold_record(ear, frequency: int, threshold: int, final_confidence: float = 0.9,
                     response_count: int = 8, **overrides) -> ThresholdRecord:
    values: Dict = dict(
        ear=Ear(ear), frequency=frequency, threshold=threshold,
        base_confidence=final_confidence, efficiency_penalty=0.0,
        final_confidence=final_confidence, enhanced_confidence=80,
        reversal_count=2, presentation_count=response_count, response_count=response_count,
        decision_basis=DecisionBasis.TWO_OF_THREE_RULE,
    )
    values.update(overrides)
    return ThresholdRecord(**values)
