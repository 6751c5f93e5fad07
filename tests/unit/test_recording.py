"""
Unit tests for the recording state machine, capture host and sinks.

Timers are replaced by a manual fake so debounce and stale-timer behavior is
deterministic.
"""

import io
import threading

import pytest
from unittest.mock import Mock, patch

from src.killcam.errors import AlreadyRecordingError, CaptureAcquisitionError, InvalidTransitionError
from src.killcam.game_profile import VALORANT
from src.killcam.recording.controller import RecordingController
from src.killcam.recording.ffmpeg_capture import FFmpegCaptureHost, FFmpegCaptureStream, SCREEN_SOURCE_ID
from src.killcam.recording.session import (
    CaptureHost,
    CaptureSource,
    CaptureStream,
    PersistenceSink,
    RecordingState,
    SaveResult,
    choose_source,
    recording_filename,
)
from src.killcam.recording.sinks import DirectorySink


class FakeTimer:
    """threading.Timer stand-in fired by hand."""

    created = []

    def __init__(self, interval, function, args=None):
        self.interval = interval
        self.function = function
        self.args = args or ()
        self.daemon = False
        self.started = False
        self.cancelled = False
        FakeTimer.created.append(self)

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        self.function(*self.args)


class FakeStream(CaptureStream):

    def __init__(self, on_chunk, on_ended, flush=b""):
        self.on_chunk = on_chunk
        self.on_ended = on_ended
        self.flush = flush
        self.stopped = False

    def stop(self):
        self.stopped = True
        if self.flush:
            self.on_chunk(self.flush)


class FakeHost(CaptureHost):

    def __init__(self, sources=None, fail=False, flush=b""):
        self.sources = sources if sources is not None else [
            CaptureSource("screen:0", "Entire screen"),
            CaptureSource("window:VALORANT", "VALORANT  "),
        ]
        self.fail = fail
        self.flush = flush
        self.streams = []

    def enumerate_sources(self):
        return list(self.sources)

    def acquire_stream(self, source_id, on_chunk, on_ended):
        if self.fail:
            raise RuntimeError("permission denied")
        stream = FakeStream(on_chunk, on_ended, self.flush)
        self.streams.append(stream)
        return stream


class MemorySink(PersistenceSink):

    def __init__(self, error=None):
        self.saved = []
        self.error = error

    def persist(self, data, suggested_filename):
        if self.error:
            raise self.error
        self.saved.append((data, suggested_filename))
        return SaveResult(success=True, path=f"/recordings/{suggested_filename}")


@pytest.fixture(autouse=True)
def reset_timers():
    FakeTimer.created = []
    yield


@pytest.fixture
def host():
    return FakeHost()


@pytest.fixture
def sink():
    return MemorySink()


@pytest.fixture
def controller(host, sink):
    return RecordingController(host, sink, timer_factory=FakeTimer, clock=lambda: 1700000000.0)


@pytest.mark.unit
class TestTransitions:
    """Test suite for start/stop transitions."""

    def test_initial_state(self, controller):
        assert controller.state == RecordingState.IDLE
        assert controller.session is None
        assert controller.duration == 0

    def test_select_then_start(self, controller, host):
        controller.select_source("screen:0")
        assert controller.state == RecordingState.SOURCE_SELECTED

        session = controller.start()

        assert controller.state == RecordingState.RECORDING
        assert session.source.id == "screen:0"
        assert len(host.streams) == 1

    def test_start_without_source(self, controller):
        with pytest.raises(InvalidTransitionError):
            controller.start()
        assert controller.state == RecordingState.IDLE

    def test_second_start_rejected(self, controller):
        controller.start("screen:0")
        session = controller.session

        with pytest.raises(AlreadyRecordingError):
            controller.start("window:VALORANT")

        assert controller.state == RecordingState.RECORDING
        assert controller.session is session

    def test_cannot_change_source_while_recording(self, controller):
        controller.start("screen:0")
        with pytest.raises(AlreadyRecordingError):
            controller.select_source("window:VALORANT")

    def test_unknown_source(self, controller):
        with pytest.raises(ValueError):
            controller.select_source("window:Notepad")

    def test_acquisition_failure_returns_to_idle(self, sink):
        controller = RecordingController(FakeHost(fail=True), sink, timer_factory=FakeTimer)

        with pytest.raises(CaptureAcquisitionError, match="permission denied"):
            controller.start("screen:0")

        assert controller.state == RecordingState.IDLE
        assert controller.session is None

    def test_stop_persists_chunks(self, controller, host, sink):
        controller.start("screen:0")
        stream = host.streams[0]
        stream.on_chunk(b"abc")
        stream.on_chunk(b"")
        stream.on_chunk(b"def")

        result = controller.stop()

        assert result.success
        assert stream.stopped
        assert sink.saved == [(b"abcdef", "valorant-recording-1700000000000.webm")]
        assert controller.state == RecordingState.IDLE
        assert controller.session is None
        assert controller.last_result is result

    def test_chunks_flushed_during_stop_are_kept(self, sink):
        host = FakeHost(flush=b"tail")
        controller = RecordingController(host, sink, timer_factory=FakeTimer)
        controller.start("screen:0")
        host.streams[0].on_chunk(b"head")

        controller.stop()

        assert sink.saved[0][0] == b"headtail"

    def test_stop_without_data(self, controller, sink):
        controller.start("screen:0")

        result = controller.stop()

        assert not result.success
        assert result.error == "No data was captured"
        assert sink.saved == []
        assert controller.state == RecordingState.IDLE

    def test_sink_failure_still_returns_to_idle(self, host):
        controller = RecordingController(host, MemorySink(error=OSError("disk full")), timer_factory=FakeTimer)
        controller.start("screen:0")
        host.streams[0].on_chunk(b"data")

        result = controller.stop()

        assert not result.success
        assert "disk full" in result.error
        assert controller.state == RecordingState.IDLE

    def test_stop_when_idle(self, controller):
        with pytest.raises(InvalidTransitionError):
            controller.stop()

    def test_stop_signal_when_idle_is_ignored(self, controller):
        assert controller.handle_stop_signal() is None
        assert controller.state == RecordingState.IDLE

    def test_stop_signal_while_recording(self, controller, host):
        controller.start("screen:0")
        host.streams[0].on_chunk(b"x")

        result = controller.handle_stop_signal()

        assert result.success

    def test_stream_ended_saves_recording(self, controller, host, sink):
        controller.start("screen:0")
        host.streams[0].on_chunk(b"frames")

        host.streams[0].on_ended()

        assert controller.state == RecordingState.IDLE
        assert sink.saved[0][0] == b"frames"

    def test_chunks_from_old_session_ignored(self, controller, host, sink):
        controller.start("screen:0")
        old = host.streams[0]
        old.on_chunk(b"one")
        controller.stop()

        controller.start("screen:0")
        old.on_chunk(b"stale")
        host.streams[1].on_chunk(b"two")
        controller.stop()

        assert [data for data, _ in sink.saved] == [b"one", b"two"]

    def test_listeners(self, controller, host):
        seen = []
        controller.add_listener(lambda state, session: seen.append(state))
        controller.add_listener(Mock(side_effect=RuntimeError("ui gone")))

        controller.start("screen:0")
        host.streams[0].on_chunk(b"x")
        controller.stop()

        assert seen == [RecordingState.SOURCE_SELECTED, RecordingState.RECORDING,
                        RecordingState.STOPPING, RecordingState.IDLE]

    def test_start_with_selected_source_skips_reselect(self, controller):
        controller.select_source("screen:0")
        seen = []
        controller.add_listener(lambda state, session: seen.append(state))

        controller.start("screen:0")

        assert seen == [RecordingState.RECORDING]

    def test_acquisition_failure_passes_through_selection(self, sink):
        controller = RecordingController(FakeHost(fail=True), sink, timer_factory=FakeTimer)
        seen = []
        controller.add_listener(lambda state, session: seen.append(state))

        with pytest.raises(CaptureAcquisitionError):
            controller.start("screen:0")

        assert seen == [RecordingState.SOURCE_SELECTED, RecordingState.IDLE]

    def test_shutdown_saves_active_recording(self, controller, host, sink):
        controller.start("screen:0")
        host.streams[0].on_chunk(b"x")

        result = controller.shutdown()

        assert result.success
        assert controller.state == RecordingState.IDLE


@pytest.mark.unit
class TestTimers:
    """Test suite for the duration tick and auto-start debounce."""

    def test_tick_counts_seconds(self, controller):
        controller.start("screen:0")

        for _ in range(3):
            FakeTimer.created[-1].fire()

        assert controller.duration == 3

    def test_stale_tick_after_stop(self, controller, host):
        controller.start("screen:0")
        tick = FakeTimer.created[-1]
        host.streams[0].on_chunk(b"x")
        controller.stop()
        created = len(FakeTimer.created)

        tick.fire()

        assert tick.cancelled
        assert len(FakeTimer.created) == created

    def test_auto_start_after_delay(self, controller, host):
        controller.update_target_status(True)

        assert controller.auto_start_pending
        timer = FakeTimer.created[0]
        assert timer.interval == 5.0
        assert controller.state == RecordingState.IDLE

        timer.fire()

        assert controller.state == RecordingState.RECORDING
        assert controller.session.source.id == "window:VALORANT"

    def test_auto_start_selects_source_first(self, controller, host):
        seen = []
        controller.add_listener(lambda state, session: seen.append((state, controller.selected_source)))
        controller.update_target_status(True)

        FakeTimer.created[0].fire()

        assert [state for state, _ in seen] == [RecordingState.SOURCE_SELECTED, RecordingState.RECORDING]
        assert seen[0][1].id == "window:VALORANT"
        # the session still owns the live generation, so its chunks and ticks count
        host.streams[0].on_chunk(b"x")
        FakeTimer.created[-1].fire()
        assert controller.duration == 1
        assert controller.session.chunks == [b"x"]

    def test_repeated_running_signal_schedules_once(self, controller):
        controller.update_target_status(True)
        controller.update_target_status(True)

        assert len(FakeTimer.created) == 1

    def test_target_gone_cancels_auto_start(self, controller):
        controller.update_target_status(True)
        timer = FakeTimer.created[0]

        controller.update_target_status(False)
        timer.fire()

        assert timer.cancelled
        assert not controller.auto_start_pending
        assert controller.state == RecordingState.IDLE

    def test_transition_invalidates_pending_timer(self, controller):
        controller.update_target_status(True)
        timer = FakeTimer.created[0]

        controller.select_source("screen:0")
        timer.fire()

        assert timer.cancelled
        assert controller.state == RecordingState.SOURCE_SELECTED

    def test_auto_start_uses_selected_source(self, controller):
        controller.select_source("screen:0")
        controller.update_target_status(True)

        FakeTimer.created[-1].fire()

        assert controller.session.source.id == "screen:0"

    def test_running_signal_ignored_while_recording(self, controller):
        controller.start("screen:0")
        created = len(FakeTimer.created)

        controller.update_target_status(True)

        assert len(FakeTimer.created) == created

    def test_auto_start_without_sources(self, sink):
        controller = RecordingController(FakeHost(sources=[]), sink, timer_factory=FakeTimer)
        controller.update_target_status(True)

        FakeTimer.created[0].fire()

        assert controller.state == RecordingState.IDLE

    def test_real_timer_auto_start(self, host, sink):
        controller = RecordingController(host, sink, auto_start_delay=0.01, tick_interval=60)
        started = threading.Event()
        controller.add_listener(lambda state, session: state == RecordingState.RECORDING and started.set())

        controller.update_target_status(True)

        assert started.wait(timeout=5)
        controller.shutdown()


@pytest.mark.unit
class TestSourceSelection:

    def test_game_window_preferred(self):
        sources = [CaptureSource("screen:0", "Entire screen"), CaptureSource("w1", "VALORANT")]
        assert choose_source(sources, VALORANT).id == "w1"

    def test_screen_fallback(self):
        sources = [CaptureSource("w2", "Discord"), CaptureSource("screen:0", "Entire Screen")]
        assert choose_source(sources, VALORANT).id == "screen:0"

    def test_nothing_suitable(self):
        assert choose_source([CaptureSource("w2", "Discord")], VALORANT) is None

    def test_recording_filename(self):
        assert recording_filename(VALORANT, 1234) == "valorant-recording-1234.webm"


@pytest.mark.unit
class TestFFmpegCaptureHost:
    """Test suite for FFmpegCaptureHost class."""

    def test_linux_command(self):
        host = FFmpegCaptureHost(display=":1", platform="linux", ffmpeg_path="ffmpeg")

        cmd = host.build_command(SCREEN_SOURCE_ID)

        assert cmd[cmd.index('-f') + 1] == 'x11grab'
        assert 'pulse' in cmd
        assert cmd[-3:] == ['-f', 'webm', 'pipe:1']
        assert cmd[cmd.index('-c:a') + 1] == 'libopus'

    def test_linux_without_audio(self):
        cmd = FFmpegCaptureHost(platform="linux", capture_audio=False).build_command(SCREEN_SOURCE_ID)

        assert 'pulse' not in cmd
        assert '-an' in cmd

    def test_windows_window_capture(self):
        host = FFmpegCaptureHost(windows=["VALORANT"], platform="win32")

        sources = host.enumerate_sources()
        cmd = host.build_command(sources[1].id)

        assert [s.name for s in sources] == ["Entire screen", "VALORANT"]
        assert 'title=VALORANT' in cmd
        assert '-an' in cmd

    def test_window_capture_unsupported_elsewhere(self):
        host = FFmpegCaptureHost(windows=["VALORANT"], platform="linux")

        assert len(host.enumerate_sources()) == 1
        with pytest.raises(ValueError):
            host.build_command("window:VALORANT")

    def test_macos_command(self):
        cmd = FFmpegCaptureHost(platform="darwin", screen_input="1:0").build_command(SCREEN_SOURCE_ID)

        assert cmd[cmd.index('-i') + 1] == "1:0"
        assert 'libopus' in cmd

    @patch('src.killcam.recording.ffmpeg_capture.subprocess.Popen')
    def test_acquire_stream_exits_immediately(self, mock_popen):
        mock_popen.return_value = Mock(returncode=1, poll=Mock(return_value=1))

        with pytest.raises(RuntimeError):
            FFmpegCaptureHost(platform="linux").acquire_stream(SCREEN_SOURCE_ID, Mock(), Mock())

    def test_stream_reads_chunks_until_eof(self):
        process = Mock()
        process.stdout = io.BytesIO(b"x" * 10)
        process.poll.return_value = 0
        received = []
        ended = threading.Event()

        stream = FFmpegCaptureStream(process, received.append, ended.set, chunk_size=4)

        assert ended.wait(timeout=5)
        assert b"".join(received) == b"x" * 10
        stream.stop()
        process.stdin.write.assert_called_once_with(b"q")


@pytest.mark.unit
class TestDirectorySink:

    def test_persist(self, tmp_path):
        result = DirectorySink(str(tmp_path / "recordings")).persist(b"webm", "rec.webm")

        assert result.success
        assert (tmp_path / "recordings" / "rec.webm").read_bytes() == b"webm"

    def test_never_overwrites(self, tmp_path):
        sink = DirectorySink(str(tmp_path))
        sink.persist(b"first", "rec.webm")

        result = sink.persist(b"second", "rec.webm")

        assert result.path == str(tmp_path / "rec-1.webm")
        assert (tmp_path / "rec.webm").read_bytes() == b"first"

    def test_write_error(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("not a directory")

        result = DirectorySink(str(blocker / "sub")).persist(b"x", "rec.webm")

        assert not result.success
        assert result.error
