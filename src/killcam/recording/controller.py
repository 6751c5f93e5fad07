"""
Recording Capture State Machine

    IDLE ──select──> SOURCE_SELECTED ──start──> RECORDING ──stop──> STOPPING ──> IDLE

start(source) and auto-start from IDLE pass through SOURCE_SELECTED first.

Auto-start: when the game is reported running, a start is scheduled after a
debounce delay. Any transition cancels the pending timer, and a timer that
fires for an older generation does nothing.

Stop (user, tray, or stream ended by itself) joins the buffered chunks into
one recording, hands it to the persistence sink and always returns to IDLE.

Typical usage example:

    controller = RecordingController(FFmpegCaptureHost(), DirectorySink("recordings"))
    controller.update_target_status(True)   # game detected, starts in 5s
    ...
    result = controller.stop()
    print(result.path)
"""

import logging
import threading
import time
from typing import Callable, List, Optional

from ..errors import AlreadyRecordingError, CaptureAcquisitionError, InvalidTransitionError
from ..game_profile import VALORANT, GameProfile
from .session import (
    CaptureHost,
    CaptureSource,
    PersistenceSink,
    RecordingSession,
    RecordingState,
    SaveResult,
    choose_source,
    recording_filename,
)

logger = logging.getLogger(__name__)

DEFAULT_AUTO_START_DELAY = 5.0
DEFAULT_TICK_INTERVAL = 1.0

StateListener = Callable[[RecordingState, Optional[RecordingSession]], None]


class RecordingController:
    """Owns the single recording session and every transition on it.

    All transitions run under one lock. Timers only ever act through the same
    guarded methods and carry the generation they were scheduled in.
    """

    def __init__(self,
                 host: CaptureHost,
                 sink: PersistenceSink,
                 profile: GameProfile = VALORANT,
                 auto_start_delay: float = DEFAULT_AUTO_START_DELAY,
                 tick_interval: float = DEFAULT_TICK_INTERVAL,
                 timer_factory: Callable[..., threading.Timer] = threading.Timer,
                 clock: Callable[[], float] = time.time):
        self.host = host
        self.sink = sink
        self.profile = profile
        self.auto_start_delay = auto_start_delay
        self.tick_interval = tick_interval
        self._timer_factory = timer_factory
        self._clock = clock

        self._lock = threading.RLock()
        self._state = RecordingState.IDLE
        self._generation = 0
        self._sources: List[CaptureSource] = []
        self._selected: Optional[CaptureSource] = None
        self._session: Optional[RecordingSession] = None
        self._target_running = False
        self._auto_timer: Optional[threading.Timer] = None
        self._tick_timer: Optional[threading.Timer] = None
        self._listeners: List[StateListener] = []
        self.last_result: Optional[SaveResult] = None

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> RecordingState:
        with self._lock:
            return self._state

    @property
    def session(self) -> Optional[RecordingSession]:
        with self._lock:
            return self._session

    @property
    def selected_source(self) -> Optional[CaptureSource]:
        with self._lock:
            return self._selected

    @property
    def auto_start_pending(self) -> bool:
        with self._lock:
            return self._auto_timer is not None

    @property
    def duration(self) -> int:
        with self._lock:
            return self._session.duration if self._session else 0

    def add_listener(self, listener: StateListener) -> None:
        """Register a callback fired after every state change."""
        with self._lock:
            self._listeners.append(listener)

    def remove_listener(self, listener: StateListener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    # ------------------------------------------------------------------
    # Internals (call with lock held)
    # ------------------------------------------------------------------

    def _set_state(self, state: RecordingState) -> None:
        previous = self._state
        self._state = state
        self._generation += 1
        self._cancel_auto_start()
        logger.debug(f"Recording state {previous.value} -> {state.value}")

        for listener in list(self._listeners):
            try:
                listener(state, self._session)
            except Exception:
                logger.exception("Recording state listener failed")

    def _cancel_auto_start(self) -> None:
        if self._auto_timer is not None:
            self._auto_timer.cancel()
            self._auto_timer = None

    def _cancel_tick(self) -> None:
        if self._tick_timer is not None:
            self._tick_timer.cancel()
            self._tick_timer = None

    def _start_timer(self, interval: float, function: Callable, *args) -> threading.Timer:
        timer = self._timer_factory(interval, function, args=args)
        timer.daemon = True
        timer.start()
        return timer

    def _schedule_tick(self, token: int) -> None:
        self._tick_timer = self._start_timer(self.tick_interval, self._tick, token)

    def _tick(self, token: int) -> None:
        with self._lock:
            session = self._session
            if self._state != RecordingState.RECORDING or session is None or session.token != token:
                return
            session.duration += 1
            self._schedule_tick(token)

    # ------------------------------------------------------------------
    # Sources
    # ------------------------------------------------------------------

    def refresh_sources(self) -> List[CaptureSource]:
        """Ask the host for the current capture sources."""
        sources = self.host.enumerate_sources()
        with self._lock:
            self._sources = list(sources)
            return list(self._sources)

    def _find_source(self, source_id: str) -> CaptureSource:
        for source in self._sources:
            if source.id == source_id:
                return source
        for source in self.refresh_sources():
            if source.id == source_id:
                return source
        raise ValueError(f"Unknown capture source: {source_id}")

    def select_source(self, source_id: str) -> CaptureSource:
        """
        Choose the source to record. Cancels a pending auto-start.

        Raises:
            AlreadyRecordingError: While recording or stopping
            ValueError: If the source id is unknown
        """
        with self._lock:
            if self._state in (RecordingState.RECORDING, RecordingState.STOPPING):
                raise AlreadyRecordingError(f"Cannot change source while {self._state.value}")

            self._selected = self._find_source(source_id)
            self._set_state(RecordingState.SOURCE_SELECTED)
            logger.info(f"Selected capture source: {self._selected.name}")
            return self._selected

    # ------------------------------------------------------------------
    # Start / stop
    # ------------------------------------------------------------------

    def start(self, source_id: Optional[str] = None) -> RecordingSession:
        """
        Start recording the given (or previously selected) source.

        Raises:
            AlreadyRecordingError: While recording or stopping (state unchanged)
            InvalidTransitionError: If no source is given or selected
            CaptureAcquisitionError: If the host cannot open the stream
                (state returns to IDLE)
        """
        with self._lock:
            if self._state in (RecordingState.RECORDING, RecordingState.STOPPING):
                raise AlreadyRecordingError(f"A recording is already {self._state.value}")

            if source_id is not None:
                source = self._find_source(source_id)
            elif self._selected is not None:
                source = self._selected
            else:
                raise InvalidTransitionError("No capture source selected")

            if self._state != RecordingState.SOURCE_SELECTED or self._selected is not source:
                self._selected = source
                self._set_state(RecordingState.SOURCE_SELECTED)

            self._cancel_auto_start()
            # Taken after the select transition so the session owns the next generation
            token = self._generation + 1
            session = RecordingSession(source=source, token=token, started_at=self._clock())

            try:
                session.stream = self.host.acquire_stream(
                    source.id,
                    on_chunk=lambda data: self._on_chunk(token, data),
                    on_ended=lambda: self._on_stream_ended(token),
                )
            except Exception as e:
                self._selected = None
                self._session = None
                self._set_state(RecordingState.IDLE)
                logger.error(f"Failed to start recording {source.name}: {e}")
                raise CaptureAcquisitionError(f"Could not capture '{source.name}': {e}") from e

            self._selected = source
            self._session = session
            self._set_state(RecordingState.RECORDING)
            # _set_state bumped the generation to the session token
            self._schedule_tick(token)
            logger.info(f"Recording started: {source.name}")
            return session

    def _on_chunk(self, token: int, data: bytes) -> None:
        if not data:
            return
        with self._lock:
            session = self._session
            if session is None or session.token != token:
                return
            if self._state in (RecordingState.RECORDING, RecordingState.STOPPING):
                session.chunks.append(data)

    def _on_stream_ended(self, token: int) -> None:
        with self._lock:
            session = self._session
            if self._state != RecordingState.RECORDING or session is None or session.token != token:
                return
        logger.warning("Capture stream ended unexpectedly, saving recording")
        self._finish(token)

    def stop(self) -> SaveResult:
        """
        Stop recording and persist the captured data.

        Returns:
            SaveResult from the sink (a failed result if nothing was captured
            or the sink raised). The state is IDLE afterwards either way.

        Raises:
            InvalidTransitionError: If not recording
        """
        with self._lock:
            if self._state != RecordingState.RECORDING or self._session is None:
                raise InvalidTransitionError(f"Cannot stop while {self._state.value}")
            token = self._session.token
        result = self._finish(token)
        if result is None:
            raise InvalidTransitionError("Recording was already being stopped")
        return result

    def handle_stop_signal(self) -> Optional[SaveResult]:
        """Tray/menu stop request: stops if recording, ignored otherwise."""
        with self._lock:
            if self._state != RecordingState.RECORDING or self._session is None:
                logger.debug("Stop signal ignored: not recording")
                return None
            token = self._session.token
        return self._finish(token)

    def _finish(self, token: int) -> Optional[SaveResult]:
        with self._lock:
            session = self._session
            if self._state != RecordingState.RECORDING or session is None or session.token != token:
                return None
            self._cancel_tick()
            self._set_state(RecordingState.STOPPING)

        # Outside the lock: stopping may flush chunks through _on_chunk
        try:
            if session.stream is not None:
                session.stream.stop()
        except Exception as e:
            logger.error(f"Error while stopping capture stream: {e}")

        result = self._persist(session)

        with self._lock:
            self._session = None
            self._selected = None
            self.last_result = result
            self._set_state(RecordingState.IDLE)

        if result.success:
            logger.info(f"Recording saved to: {result.path}")
        else:
            logger.error(f"Save failed: {result.error}")
        return result

    def _persist(self, session: RecordingSession) -> SaveResult:
        with self._lock:
            data = session.join_chunks()
        if not data:
            return SaveResult(success=False, error="No data was captured")

        filename = recording_filename(self.profile, int(self._clock() * 1000))
        try:
            return self.sink.persist(data, filename)
        except Exception as e:
            return SaveResult(success=False, error=str(e))

    # ------------------------------------------------------------------
    # Auto-start
    # ------------------------------------------------------------------

    def update_target_status(self, running: bool) -> None:
        """
        Game-running signal from the host.

        ``True`` while idle schedules an auto-start after the debounce delay;
        ``False`` cancels a pending one. A running recording is not affected.
        """
        with self._lock:
            self._target_running = running
            if not running:
                self._cancel_auto_start()
                return

            if self._state not in (RecordingState.IDLE, RecordingState.SOURCE_SELECTED):
                return
            if self._auto_timer is not None:
                return

            generation = self._generation
            self._auto_timer = self._start_timer(self.auto_start_delay, self._auto_start, generation)
            logger.info(f"{self.profile.name} detected, recording starts in {self.auto_start_delay:g}s")

    def _auto_start(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation:
                logger.debug("Stale auto-start timer ignored")
                return
            self._auto_timer = None
            if not self._target_running or self._state not in (RecordingState.IDLE, RecordingState.SOURCE_SELECTED):
                return

            try:
                source = self._selected or choose_source(self.refresh_sources(), self.profile)
            except Exception as e:
                logger.error(f"Auto-start could not list capture sources: {e}")
                return

            if source is None:
                logger.warning("Auto-start found no game window or screen to capture")
                return

            try:
                self.start(source.id)
            except CaptureAcquisitionError as e:
                logger.error(f"Auto-start failed: {e}")

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    def shutdown(self) -> Optional[SaveResult]:
        """Cancel timers and save an active recording."""
        with self._lock:
            self._target_running = False
            self._cancel_auto_start()
            recording = self._state == RecordingState.RECORDING and self._session is not None
            token = self._session.token if recording else None

        if recording:
            return self._finish(token)
        return None
