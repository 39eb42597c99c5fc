"""
Autonomous pure-tone audiometry using a Hughson-Westlake state machine.

The engine decides what to present next, interprets responses, confirms
thresholds under clinical efficiency limits and scores how much each
threshold can be trusted. Tone playback, response capture, explanation and
storage are external collaborators.
"""
# Standard library imports
import asyncio
import logging
from dataclasses import replace
from typing import Any, Dict, Optional, Protocol, Tuple

# Third-party imports
import numpy as np

# Local imports
from ..analysis.false_response import FalseResponseDetector
from ..analysis.malingering import MalingeringDetector
from ..analysis.reporting import (
    TestReport,
    overall_confidence,
    pure_tone_average,
    summarize_ears,
)
from ..analysis.response_timing import ResponseTimingAnalyzer, categorize_reaction_time
from ..events import (
    CatchTrialResult,
    DecisionChannel,
    DecisionRecord,
    EarSwitch,
    EfficiencyConstraintTriggered,
    EngineState,
    FrequencyChange,
    IntensityAdjustment,
    ResponseQualityAlert,
    ResponseWindowOpened,
    RunStopped,
    StateTransition,
    TestCompletion,
    ThresholdFinalized,
)
from ..exceptions import AlreadyActiveError, DuplicateThresholdError
from ..records import (
    Ear,
    Presentation,
    ResponseRecord,
    TestRun,
    ThresholdRecord,
    TimingCategory,
)
from ..utils.clock import AsyncioTimer, Clock, RealClock, Timer
from ..utils.config import ProtocolConfig, validate_test_sequence
from ..utils.defaults import PTA_FREQUENCIES
from .explanation import Explainer, explain_decision
from .threshold_search import (
    FrequencySearch,
    StopDecision,
    add_response,
    adjust_level,
    calculate_confidence,
    calculate_threshold,
    count_presentation,
    should_confirm_threshold,
    start_search,
)

logger = logging.getLogger(__name__)

FATIGUE_ALERT_LEVEL = 0.6
ATTENTION_ALERT_LEVEL = 0.4

THRESHOLD_RULE = 'Hughson-Westlake: Lowest level with 2+ positive responses'


class TonePlayer(Protocol):
    async def present(self, frequency: Optional[int], level_db_hl: int, ear: Ear, duration_ms: int) -> None:
        """Play a calibrated tone; resolve when the presentation has finished."""
        ...


class SessionStore(Protocol):
    def record_threshold(self, record: ThresholdRecord) -> Any:
        ...

    def save_report(self, report: TestReport) -> Any:
        ...


class AutonomousAudiometryEngine:
    def __init__(self, tone_player: TonePlayer,
                 config: Optional[ProtocolConfig] = None,
                 *,
                 clock: Optional[Clock] = None,
                 timer: Optional[Timer] = None,
                 random_state=None,
                 rng=None,
                 explainer: Optional[Explainer] = None,
                 session_store: Optional[SessionStore] = None,
                 channel: Optional[DecisionChannel] = None):
        """
        Initialize the protocol engine.

        Args:
            tone_player (TonePlayer): Plays tones; failures are logged and ignored
            config (ProtocolConfig): Clinical constants and default test order
            clock (Clock): Time source in milliseconds
            timer (Timer): Sleeps and response windows
            random_state (int): Seed for catch-trial decisions
            rng: Random source with a ``random()`` method, overrides random_state
            explainer (Explainer): Optional enrichment of decision records
            session_store (SessionStore): Receives thresholds and the final report
            channel (DecisionChannel): Outbound decision records
        """
        self.tone_player = tone_player
        self.config = config or ProtocolConfig()
        self.clock = clock or RealClock()
        self.timer = timer or AsyncioTimer()
        self.rng = rng if rng is not None else np.random.default_rng(random_state)
        self.explainer = explainer
        self.session_store = session_store
        self.channel = channel or DecisionChannel()

        self.timing_analyzer = ResponseTimingAnalyzer()
        self.false_response_detector = FalseResponseDetector(
            rng=self.rng,
            catch_trial_probability=self.config.catch_trial_probability,
            response_window_ms=self.config.response_window_ms,
        )
        self.malingering_detector = MalingeringDetector()

        self.state = EngineState.IDLE
        self.run: Optional[TestRun] = None
        self.search: Optional[FrequencySearch] = None
        self.report: Optional[TestReport] = None

        self._window: Optional[asyncio.Future] = None
        self._presentation: Optional[Presentation] = None
        self._last_response: Optional[ResponseRecord] = None
        self._stop_decision: Optional[StopDecision] = None
        self._loop_exited: Optional[asyncio.Event] = None

        self._handlers = {
            EngineState.FAMILIARIZATION: self._handle_familiarization,
            EngineState.PRESENT_TONE: self._handle_present_tone,
            EngineState.WAIT_RESPONSE: self._handle_wait_response,
            EngineState.PROCESS_RESPONSE: self._handle_process_response,
            EngineState.CONFIRM_THRESHOLD: self._handle_confirm_threshold,
            EngineState.NEXT_FREQUENCY: self._handle_next_frequency,
            EngineState.NEXT_EAR: self._handle_next_ear,
        }

    @property
    def is_active(self) -> bool:
        return self.run is not None and self.run.active

    # ------------------------------------------------------------------
    # Run control
    # ------------------------------------------------------------------

    async def begin_run(self, ear_order=None, frequency_order=None) -> Optional[TestReport]:
        """
        Run the complete protocol.

        If a stopped run is still finishing its current step, the new run
        starts once that step has ended.

        Args:
            ear_order (list): Ears to test in order, defaults to the config
            frequency_order (list): Frequencies to test in order, defaults to the config

        Returns:
            TestReport: The final report, or None if the run was stopped

        Raises:
            AlreadyActiveError: If a run is already in progress
            ConfigurationError: If the ear or frequency order is invalid
        """
        ears = list(ear_order) if ear_order is not None else list(self.config.ears)
        frequencies = list(frequency_order) if frequency_order is not None else list(self.config.frequencies)
        validate_test_sequence(ears, frequencies)

        # A stopped loop must reach its next step boundary before another run starts
        while True:
            if self.is_active:
                raise AlreadyActiveError("A test run is already in progress")
            exited = self._loop_exited
            if exited is None or exited.is_set():
                break
            await exited.wait()

        self._reset_analysis()
        self.run = TestRun(ears=tuple(Ear(e) for e in ears), frequencies=tuple(frequencies),
                           started_at_ms=self.clock.now_ms())
        self.report = None
        logger.info("Starting %s protocol: ears=%s, frequencies=%s", self.config.protocol_name,
                    [e.value for e in self.run.ears], list(self.run.frequencies))

        run = self.run
        exited = self._loop_exited = asyncio.Event()
        try:
            self._transition(EngineState.FAMILIARIZATION)
            search = None
            while run.active:
                if self.state is EngineState.COMPLETE:
                    return self._complete()
                next_state, search = await self._handlers[self.state](run, search)
                self.search = search
                if not run.active:
                    break
                self._transition(next_state)
            return None
        finally:
            if run.active:
                run.active = False
                self._close_window()
                self.state = EngineState.IDLE
            exited.set()

    def stop_run(self, reason: str = 'user_initiated') -> Dict[Tuple[Ear, int], ThresholdRecord]:
        """
        Stop the current run at its next step boundary.

        Finalized thresholds are kept. Calling this again, or without a run,
        is harmless.

        Returns:
            dict: Copy of the thresholds finalized so far, keyed by (ear, frequency)
        """
        if self.run is None:
            return {}
        if self.run.active:
            self.run.active = False
            self.run.stop_reason = reason
            self._close_window()
            from_state = self.state
            self.state = EngineState.IDLE
            logger.info("Test stopped (%s) with %d thresholds", reason, len(self.run.results))
            self._publish(RunStopped(
                timestamp_ms=self.clock.now_ms(), state=from_state,
                reason=reason, rule='Cooperative cancellation',
                completed_tests=len(self.run.results)))
        return dict(self.run.results)

    def on_response_signal(self, timestamp_ms: Optional[float] = None) -> bool:
        """
        Subject response from the presentation layer.

        Returns:
            bool: True if a response window was open and took the signal
        """
        window = self._window
        if window is None or window.done():
            logger.debug("Response signal ignored: no open response window")
            return False
        window.set_result(self.clock.now_ms() if timestamp_ms is None else float(timestamp_ms))
        return True

    def status(self) -> Dict[str, Any]:
        run = self.run
        return {
            'active': self.is_active,
            'state': self.state.value,
            'current_ear': run.current_ear.value if run and run.current_ear else None,
            'current_frequency': run.current_frequency if run else None,
            'current_level': self.search.level if self.search else None,
            'progress': {
                'ear_index': run.ear_index if run else 0,
                'frequency_index': run.frequency_index if run else 0,
                'total_ears': len(run.ears) if run else 0,
                'total_frequencies': len(run.frequencies) if run else 0,
            },
            'completed_tests': len(run.results) if run else 0,
        }

    def decision_history(self):
        return self.channel.history

    @property
    def results(self) -> Dict[Tuple[Ear, int], ThresholdRecord]:
        return dict(self.run.results) if self.run else {}

    # ------------------------------------------------------------------
    # Stimulus runner (also used by the false-response detector)
    # ------------------------------------------------------------------

    def now_ms(self) -> float:
        return self.clock.now_ms()

    async def pause(self, duration_ms: float) -> None:
        await self.timer.sleep(duration_ms)

    async def present_stimulus(self, presentation: Presentation, timeout_ms: Optional[float] = None) -> Presentation:
        """
        Open a response window and present a stimulus.

        Silent presentations are not sent to the tone player and carry no
        onset time. A tone player failure is logged and the presentation is
        treated as having occurred.
        """
        onset = None if presentation.is_silent else self.clock.now_ms()
        presentation = replace(presentation, onset_ms=onset)
        self._presentation = presentation
        self._window = asyncio.get_running_loop().create_future()

        self._publish(ResponseWindowOpened(
            timestamp_ms=self.clock.now_ms(), state=self.state,
            ear=presentation.ear, frequency=presentation.frequency, level=presentation.level_db_hl,
            reason='Catch trial' if presentation.is_catch_trial else 'Tone presented',
            presentation=presentation,
            timeout_ms=self.config.response_window_ms if timeout_ms is None else timeout_ms))

        if presentation.is_silent:
            logger.debug("Silent presentation (%s)", presentation.catch_type.value
                         if presentation.catch_type else 'silence')
            return presentation

        logger.debug("Presenting %d Hz at %d dB HL (%s ear)", presentation.frequency,
                     presentation.level_db_hl, presentation.ear.value)
        try:
            await self.tone_player.present(presentation.frequency, presentation.level_db_hl,
                                           presentation.ear, presentation.duration_ms)
        except Exception as e:  # playback failures never stop the protocol
            logger.warning("Failed to present tone at %s Hz: %s", presentation.frequency, e)
        return presentation

    async def await_response(self, presentation: Presentation, timeout_ms: float) -> Optional[float]:
        """Wait for the open window; return the response timestamp or None."""
        window = self._window
        if window is None:
            return None

        start = self.clock.now_ms()
        await self.timer.wait_for(window, timeout_ms)
        closes_at = start + timeout_ms
        self._close_window()

        if not window.done() or window.cancelled():
            return None
        timestamp = window.result()
        if timestamp is None:
            return None
        if timestamp > closes_at:
            logger.debug("Late response at %.0f ms ignored (window closed at %.0f ms)", timestamp, closes_at)
            return None
        return timestamp

    def _close_window(self):
        window, self._window = self._window, None
        if window is not None and not window.done():
            window.set_result(None)

    # ------------------------------------------------------------------
    # State handlers: each takes the frequency context and returns
    # (next state, context)
    # ------------------------------------------------------------------

    async def _handle_familiarization(self, run: TestRun, search):
        config = self.config
        presentation = Presentation(frequency=config.familiarization_frequency,
                                    level_db_hl=config.familiarization_level,
                                    ear=Ear.BOTH, duration_ms=config.tone_duration_ms)
        presentation = await self.present_stimulus(presentation, config.familiarization_window_ms)
        signal = await self.await_response(presentation, config.familiarization_window_ms)
        logger.info("Familiarization %s", 'response received' if signal is not None else 'completed without response')

        return EngineState.PRESENT_TONE, self._new_search()

    async def _handle_present_tone(self, run: TestRun, search: FrequencySearch):
        if self.config.catch_trials_enabled:
            plan = self.false_response_detector.should_insert_catch_trial(
                search.presentation_count, search.frequency, search.ear, self.clock.now_ms())
            if plan is not None:
                record = await self.false_response_detector.execute_catch_trial(plan, self)
                if record is None:
                    return EngineState.WAIT_RESPONSE, search
                detector = self.false_response_detector
                self._publish(CatchTrialResult(
                    timestamp_ms=self.clock.now_ms(), state=self.state,
                    ear=plan.ear, frequency=plan.frequency, level=plan.level_db_hl,
                    reason='False positive' if record.is_false_positive else 'Correct rejection',
                    rule='Catch trials expect no response',
                    catch_type=plan.catch_type, record=record,
                    false_positive_count=detector.false_positive_count,
                    total_catch_trials=detector.total_catch_trials))
                if not run.active:
                    return EngineState.WAIT_RESPONSE, search
                await self.timer.sleep(self.config.post_catch_trial_delay_ms)
                if not run.active:
                    return EngineState.WAIT_RESPONSE, search

        presentation = Presentation(frequency=search.frequency, level_db_hl=search.level,
                                    ear=search.ear, duration_ms=self.config.tone_duration_ms)
        await self.present_stimulus(presentation)
        return EngineState.WAIT_RESPONSE, count_presentation(search)

    async def _handle_wait_response(self, run: TestRun, search: FrequencySearch):
        presentation = self._presentation
        signal = await self.await_response(presentation, self.config.response_window_ms)

        responded = signal is not None
        reaction_time = None
        if responded and presentation.onset_ms is not None:
            reaction_time = max(0.0, signal - presentation.onset_ms)

        record = ResponseRecord(
            presentation=presentation,
            responded=responded,
            reaction_time_ms=reaction_time,
            timing_category=categorize_reaction_time(reaction_time),
            timestamp_ms=signal if responded else self.clock.now_ms(),
        )
        self._last_response = record
        logger.info("%s at %d dB HL%s", 'Response' if responded else 'No response', record.level,
                    f" ({reaction_time:.0f} ms)" if reaction_time is not None else '')
        return EngineState.PROCESS_RESPONSE, add_response(search, record)

    async def _handle_process_response(self, run: TestRun, search: FrequencySearch):
        record = self._last_response
        analysis = self.timing_analyzer.add_response(record)
        self._check_response_quality(analysis, search)
        self.false_response_detector.record_response(search.frequency, search.ear, record)

        search, adjustment = adjust_level(search, record.responded, self.config)
        if record.responded:
            reason = f"Patient responded - decrease by {self.config.step_down_db} dB"
            rule = f"Hughson-Westlake: Down {self.config.step_down_db} after response"
        else:
            reason = f"No response - increase by {self.config.step_up_db} dB"
            rule = f"Hughson-Westlake: Up {self.config.step_up_db} after no response"
        self._publish(IntensityAdjustment(
            timestamp_ms=self.clock.now_ms(), state=self.state,
            ear=search.ear, frequency=search.frequency, level=adjustment.to_level,
            reason=reason, rule=rule,
            from_level=adjustment.from_level, to_level=adjustment.to_level,
            adjustment=adjustment.adjustment, responded=record.responded,
            reversal=adjustment.reversal, reversal_count=search.reversal_count,
            limit_applied=adjustment.limit_applied, limit_reason=adjustment.limit_reason))

        decision = should_confirm_threshold(search, self.clock.now_ms(), self.config)
        if decision:
            self._stop_decision = decision
            return EngineState.CONFIRM_THRESHOLD, search

        logger.debug("Threshold not confirmed - need more data (%d responses)", search.response_count)
        await self.timer.sleep(self.config.inter_stimulus_delay_ms)
        return EngineState.PRESENT_TONE, search

    async def _handle_confirm_threshold(self, run: TestRun, search: FrequencySearch):
        self._finalize_threshold(search, self._stop_decision or StopDecision(True))
        self._stop_decision = None
        return EngineState.NEXT_FREQUENCY, search

    async def _handle_next_frequency(self, run: TestRun, search: FrequencySearch):
        previous = run.current_frequency
        run.frequency_index += 1
        if run.current_frequency is None:
            logger.info("All frequencies completed for %s ear", run.current_ear.value)
            return EngineState.NEXT_EAR, search

        self._publish(FrequencyChange(
            timestamp_ms=self.clock.now_ms(), state=self.state,
            ear=run.current_ear, frequency=run.current_frequency,
            reason=f"Threshold established at {previous} Hz",
            rule='Standard audiometric frequency sequence',
            from_frequency=previous, to_frequency=run.current_frequency))
        await self.timer.sleep(self.config.frequency_change_delay_ms)
        return EngineState.PRESENT_TONE, self._new_search()

    async def _handle_next_ear(self, run: TestRun, search: FrequencySearch):
        previous = run.current_ear
        run.ear_index += 1
        if run.current_ear is None:
            return EngineState.COMPLETE, None

        run.frequency_index = 0
        self._publish(EarSwitch(
            timestamp_ms=self.clock.now_ms(), state=self.state,
            ear=run.current_ear, frequency=run.current_frequency,
            reason=f"{previous.value.capitalize()} ear testing complete",
            rule='Test each ear across all frequencies',
            from_ear=previous, to_ear=run.current_ear,
            completed_frequencies=tuple(run.frequencies)))
        await self.timer.sleep(self.config.ear_switch_delay_ms)
        return EngineState.PRESENT_TONE, self._new_search()

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------

    def _new_search(self) -> FrequencySearch:
        return start_search(self.run.current_ear, self.run.current_frequency,
                            self.clock.now_ms(), self.config)

    def _check_response_quality(self, analysis, search: FrequencySearch):
        alerts = []
        if analysis.category is TimingCategory.ANTICIPATORY:
            alerts.append(('anticipatory-response', analysis.reaction_time_ms,
                           'Anticipatory response - possible guessing'))
        if analysis.fatigue_level > FATIGUE_ALERT_LEVEL:
            alerts.append(('fatigue', analysis.fatigue_level,
                           f"Patient fatigue detected ({round(analysis.fatigue_level * 100)}%)"))
        if analysis.attention_level < ATTENTION_ALERT_LEVEL:
            alerts.append(('low-attention', analysis.attention_level,
                           f"Low attention level ({round(analysis.attention_level * 100)}%)"))

        for alert, value, reason in alerts:
            logger.warning("Clinical alert: %s", reason)
            self._publish(ResponseQualityAlert(
                timestamp_ms=self.clock.now_ms(), state=self.state,
                ear=search.ear, frequency=search.frequency, level=search.level,
                reason=reason, rule='Response timing analysis', alert=alert, value=value))

    def _finalize_threshold(self, search: FrequencySearch, decision: StopDecision) -> ThresholdRecord:
        run = self.run
        key = (search.ear, search.frequency)
        if key in run.results:
            raise DuplicateThresholdError(search.ear.value, search.frequency)

        now = self.clock.now_ms()
        threshold, basis = calculate_threshold(search, now, self.config, decision.constraint)
        base, penalty, final = calculate_confidence(search, now, self.config)
        enhanced = self.false_response_detector.calculate_confidence_score(
            threshold, search.frequency, search.ear)

        constraint = decision.constraint
        if constraint is not None:
            logger.warning("Efficiency constraint: %s - threshold forced at %d dB HL",
                           constraint.reason, threshold)
            self._publish(EfficiencyConstraintTriggered(
                timestamp_ms=now, state=self.state,
                ear=search.ear, frequency=search.frequency, level=search.level,
                reason=constraint.reason, rule='Clinical efficiency limits',
                constraint=constraint.constraint, value=constraint.value, limit=constraint.limit,
                forced_threshold=threshold, confidence=final,
                clinical_rationale=constraint.rationale))

        record = ThresholdRecord(
            ear=search.ear,
            frequency=search.frequency,
            threshold=threshold,
            base_confidence=base,
            efficiency_penalty=penalty,
            final_confidence=final,
            enhanced_confidence=enhanced,
            reversal_count=search.reversal_count,
            presentation_count=search.presentation_count,
            response_count=search.response_count,
            decision_basis=basis,
            constraint=constraint.constraint if constraint else None,
            timing_reliability=self.timing_analyzer.reliability_for(search.responses),
            response_pattern=search.response_pattern,
            finalized_at_ms=now,
        )
        assessment = self.malingering_detector.analyze(record)
        record = replace(record, malingering_risk=assessment.total_risk)
        self.false_response_detector.record_threshold(search.ear, search.frequency, threshold)
        run.results[key] = record

        if constraint is not None:
            reason = constraint.reason
        elif decision.safety_valve:
            reason = 'Maximum responses reached - best available evidence used'
        elif decision.early_stop:
            reason = '2 out of 3 responses confirmed with sufficient confidence'
        else:
            reason = '2 out of 3 responses confirmed at threshold level'

        logger.info("Threshold finalized at %d dB HL for %d Hz (%s ear), confidence %d%% (enhanced %d%%)",
                    threshold, search.frequency, search.ear.value, round(final * 100), enhanced)
        self._publish(ThresholdFinalized(
            timestamp_ms=now, state=self.state,
            ear=search.ear, frequency=search.frequency, level=threshold,
            reason=reason, rule=THRESHOLD_RULE, record=record))

        if self.session_store is not None:
            try:
                self.session_store.record_threshold(record)
            except Exception as e:  # storage failures never stop the protocol
                logger.warning("Session store rejected threshold for %d Hz: %s", search.frequency, e)
        return record

    def _complete(self) -> TestReport:
        run = self.run
        records = tuple(run.results.values())
        now = self.clock.now_ms()
        report = TestReport(
            protocol=self.config.protocol_name,
            results=records,
            ear_summaries=summarize_ears(records),
            overall_confidence=overall_confidence(records),
            pure_tone_averages={ear.value: pure_tone_average(records, ear, PTA_FREQUENCIES)
                                for ear in run.ears},
            malingering=self.malingering_detector.final_report(),
            false_response=self.false_response_detector.detection_report(),
            timing=self.timing_analyzer.response_summary(),
            total_tests=len(records),
            expected_tests=run.expected_tests,
            duration_ms=now - run.started_at_ms,
            stop_reason=run.stop_reason,
        )
        self.report = report
        run.active = False

        for record in records:
            logger.info("%s_%d: %d dB HL (confidence: %d%%)", record.ear.value, record.frequency,
                        record.threshold, round(record.final_confidence * 100))
        self._publish(TestCompletion(
            timestamp_ms=now, state=self.state,
            reason=f"Audiometric test completed: {len(records)} measurements across {len(run.ears)} ears",
            rule='All ears and frequencies tested',
            total_tests=len(records), expected_tests=run.expected_tests, report=report))

        if self.session_store is not None:
            try:
                self.session_store.save_report(report)
            except Exception as e:  # storage failures never stop the protocol
                logger.warning("Session store rejected final report: %s", e)
        return report

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    def _transition(self, to_state: EngineState):
        from_state = self.state
        self.state = to_state
        logger.debug("State: %s -> %s", from_state.value, to_state.value)
        self._publish(StateTransition(
            timestamp_ms=self.clock.now_ms(), state=to_state,
            ear=self.run.current_ear if self.run else None,
            frequency=self.run.current_frequency if self.run else None,
            level=self.search.level if self.search else None,
            from_state=from_state, to_state=to_state))

    def _publish(self, record: DecisionRecord):
        explanation = explain_decision(self.explainer, record)
        if explanation is not None:
            record = replace(record, explanation=explanation)
        self.channel.publish(record)

    def _reset_analysis(self):
        self.timing_analyzer.reset()
        self.false_response_detector.reset()
        self.malingering_detector.reset()
        self.channel.clear_history()
        self.search = None
        self._presentation = None
        self._last_response = None
        self._stop_decision = None
