import threading
import time

import numpy as np

from detection.capture_controller import CaptureController
from detection.detection_types import Detection, DisplayState, ModelState, SourceMode
from detection.frame_source import CameraUnavailableError
from utils.settings import AppConfig

HAPPY = Detection(
    box=(4, 4, 10, 10),
    expressions={"happy": 0.82, "neutral": 0.10, "sad": 0.08},
    score=0.9,
)


class FakeSource:
    def __init__(self, width=64, height=48, live=True):
        self.width = width
        self.height = height
        self.is_live = live
        self.released = False
        self.reads = 0
        self.last_frame = np.zeros((height, width, 3), dtype=np.uint8)

    def is_ready(self):
        return not self.released

    def read(self):
        self.reads += 1
        return np.full((self.height, self.width, 3), 90, dtype=np.uint8)

    def release(self):
        self.released = True


class DroppingSource(FakeSource):
    """Delivers a few frames, then read() only returns None (unplugged camera)."""

    def __init__(self, frames, **kwargs):
        super().__init__(**kwargs)
        self.frames_left = frames

    def read(self):
        if self.frames_left <= 0:
            self.reads += 1
            return None
        self.frames_left -= 1
        return super().read()


class FakeEngine:
    def __init__(self, detections=None, fail_load=False, error=None):
        self.detections = list(detections or [])
        self.fail_load = fail_load
        self.error = error
        self.load_calls = 0
        self.detect_calls = 0
        self.frames = []

    def load_models(self, path):
        self.load_calls += 1
        if self.fail_load:
            raise RuntimeError("weights missing")

    def detect(self, frame, min_confidence):
        self.detect_calls += 1
        self.frames.append(frame)
        if self.error is not None:
            raise self.error
        return list(self.detections)


class Recorder:
    def __init__(self):
        self.displays = []
        self.frames = []
        self.errors = []
        self.states = []
        self.model_states = []

    def callbacks(self):
        return dict(
            on_display=self.displays.append,
            on_frame=self.frames.append,
            on_error=self.errors.append,
            on_state=self.states.append,
            on_model_state=self.model_states.append,
        )


def wait_for(predicate, timeout=3.0):
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def make_controller(engine, sources=None, recorder=None, interval_ms=20, factory=None, **config):
    created = []

    def default_factory(mode, image_path):
        source = sources.pop(0) if sources else FakeSource(live=mode is SourceMode.CAMERA)
        created.append((mode, source))
        return source

    config = AppConfig(poll_interval_ms=interval_ms, **config)
    callbacks = recorder.callbacks() if recorder else {}
    controller = CaptureController(
        engine, config, source_factory=factory or default_factory, **callbacks
    )
    return controller, created


def test_start_presents_top_expression():
    engine = FakeEngine([HAPPY])
    rec = Recorder()
    controller, _ = make_controller(engine, recorder=rec)

    assert controller.start() is True
    try:
        assert wait_for(lambda: controller.display_state.text == "Happy (82.0%)")
        assert controller.display_state.icon is not None
        assert controller.running
        assert controller.model_state is ModelState.LOADED
        assert rec.states == [True]
        assert rec.model_states == [ModelState.LOADING, ModelState.LOADED]
        assert wait_for(lambda: any(f is not None for f in rec.frames))
    finally:
        controller.stop()


def test_no_face_clears_display_in_camera_mode():
    engine = FakeEngine([])
    rec = Recorder()
    controller, _ = make_controller(engine, recorder=rec)

    controller.start()
    try:
        assert wait_for(lambda: engine.detect_calls >= 1 and len(rec.displays) >= 2)
        assert controller.display_state == DisplayState.empty()
        assert controller.overlay.is_clear()
    finally:
        controller.stop()


def test_no_face_in_image_mode_shows_message_and_analyzes_once():
    engine = FakeEngine([])
    controller, created = make_controller(engine)

    assert controller.start(SourceMode.IMAGE, "face.png")
    try:
        assert wait_for(lambda: controller.display_state.text == "No face detected")
        assert controller.display_state.icon is None
        time.sleep(0.1)
        assert engine.detect_calls == 1
        assert controller.running
        assert created[0][0] is SourceMode.IMAGE
    finally:
        controller.stop()


def test_image_mode_requires_a_path():
    rec = Recorder()
    controller, created = make_controller(FakeEngine(), recorder=rec)

    assert controller.start(SourceMode.IMAGE) is False
    assert rec.errors
    assert created == []
    assert not controller.running


def test_stop_releases_source_and_clears_everything():
    engine = FakeEngine([HAPPY])
    rec = Recorder()
    source = FakeSource()
    controller, _ = make_controller(engine, sources=[source], recorder=rec)

    controller.start()
    assert wait_for(lambda: not controller.overlay.is_clear())

    assert controller.stop() is True

    assert source.released
    assert controller.source is None
    assert controller.overlay.is_clear()
    assert controller.display_state == DisplayState.empty()
    assert not controller.running
    assert rec.states == [True, False]
    assert rec.displays[-1] == DisplayState.empty()
    assert rec.frames[-1] is None


def test_stop_when_stopped_is_a_noop():
    rec = Recorder()
    controller, _ = make_controller(FakeEngine(), recorder=rec)

    assert controller.stop() is False
    assert controller.stop() is False

    assert rec.displays == []
    assert rec.frames == []
    assert rec.states == []
    assert rec.errors == []
    assert not controller.running


def test_overlay_follows_source_size_every_tick():
    engine = FakeEngine([HAPPY])
    source = FakeSource(width=64, height=48)
    controller, _ = make_controller(engine, sources=[source])

    controller.start()
    try:
        assert controller.overlay.size == (64, 48)
        assert wait_for(lambda: engine.detect_calls >= 1)

        source.width, source.height = 80, 60
        calls = engine.detect_calls
        assert wait_for(lambda: engine.detect_calls > calls + 1)
        assert controller.overlay.size == (80, 60)
    finally:
        controller.stop()


def test_switch_camera_to_image_releases_camera_first():
    engine = FakeEngine([HAPPY])
    camera = FakeSource(width=64, height=48, live=True)
    image = FakeSource(width=32, height=32, live=False)
    seen = {}

    def factory(mode, image_path):
        if mode is SourceMode.IMAGE:
            seen["camera_released_before_image"] = camera.released
            return image
        return camera

    controller, _ = make_controller(engine, factory=factory)

    controller.start(SourceMode.CAMERA)
    assert wait_for(lambda: engine.detect_calls >= 1)

    assert controller.switch_mode(SourceMode.IMAGE, "face.png")
    try:
        assert seen["camera_released_before_image"] is True
        assert camera.released
        assert wait_for(lambda: engine.frames and engine.frames[-1].shape == (32, 32, 3))
        assert controller.mode is SourceMode.IMAGE
        assert controller.overlay.size == (32, 32)
        assert engine.load_calls == 1
    finally:
        controller.stop()
    assert image.released


def test_camera_failure_leaves_controller_stopped():
    rec = Recorder()

    def factory(mode, image_path):
        raise CameraUnavailableError("Camera 0 could not be opened (not connected or access denied).")

    controller, _ = make_controller(FakeEngine(), recorder=rec, factory=factory)

    assert controller.start() is False

    assert not controller.running
    assert controller.source is None
    assert controller.overlay.is_clear()
    assert rec.errors == ["Camera 0 could not be opened (not connected or access denied)."]
    assert rec.states == []


def test_model_load_failure_then_retry():
    engine = FakeEngine([HAPPY], fail_load=True)
    rec = Recorder()
    controller, created = make_controller(engine, recorder=rec)

    assert controller.start() is False
    assert controller.model_state is ModelState.FAILED
    assert created == []
    assert not controller.running
    assert "weights missing" in rec.errors[0]

    engine.fail_load = False
    assert controller.start() is True
    try:
        assert controller.model_state is ModelState.LOADED
        assert engine.load_calls == 2
    finally:
        controller.stop()


def test_concurrent_loads_share_one_model_load():
    release = threading.Event()

    class SlowEngine(FakeEngine):
        def load_models(self, path):
            self.load_calls += 1
            release.wait(2.0)

    engine = SlowEngine()
    controller, _ = make_controller(engine)
    results = []

    threads = [
        threading.Thread(target=lambda: results.append(controller.ensure_models()))
        for _ in range(3)
    ]
    for t in threads:
        t.start()
    assert wait_for(lambda: controller.model_state is ModelState.LOADING)
    release.set()
    for t in threads:
        t.join(2.0)

    assert results == [True, True, True]
    assert engine.load_calls == 1
    assert controller.model_state is ModelState.LOADED


def test_ticks_never_overlap():
    gate = threading.Event()
    active = []
    peak = []

    class BlockingEngine(FakeEngine):
        def detect(self, frame, min_confidence):
            active.append(1)
            peak.append(len(active))
            gate.wait(2.0)
            active.pop()
            return []

    engine = BlockingEngine()
    controller, _ = make_controller(engine, interval_ms=1)

    controller.start()
    try:
        assert wait_for(lambda: len(peak) == 1)
        # the worker is inside detect(): a manual tick is dropped, not queued
        assert controller.tick() is False
        gate.set()
        assert wait_for(lambda: len(peak) >= 3)
        assert max(peak) == 1
    finally:
        gate.set()
        controller.stop()


def test_inference_error_is_reported_once_and_loop_continues():
    engine = FakeEngine(error=RuntimeError("backend crashed"))
    rec = Recorder()
    controller, _ = make_controller(engine, recorder=rec)

    controller.start()
    try:
        assert wait_for(lambda: engine.detect_calls >= 3)
        assert controller.running
        assert rec.errors == ["Detection failed: backend crashed"]
        assert controller.display_state == DisplayState.empty()
    finally:
        controller.stop()


def test_snapshot_only_while_running(tmp_path):
    engine = FakeEngine([HAPPY])
    controller, _ = make_controller(engine)

    assert controller.snapshot(tmp_path) is None

    controller.start()
    try:
        assert wait_for(lambda: not controller.overlay.is_clear())
        path = controller.snapshot(tmp_path)
    finally:
        controller.stop()

    assert path == tmp_path / "emotion-snapshot.png"
    assert path.exists()
    assert controller.snapshot(tmp_path) is None


def test_first_missing_frame_clears_overlay_and_label():
    engine = FakeEngine([HAPPY])
    rec = Recorder()
    source = DroppingSource(frames=1)
    controller, _ = make_controller(
        engine, sources=[source], recorder=rec, camera_read_failures=1000
    )

    controller.start()
    try:
        assert wait_for(lambda: source.reads >= 3)
        assert any(d.text == "Happy (82.0%)" for d in rec.displays)
        assert rec.displays[-1] == DisplayState.empty()
        assert controller.display_state == DisplayState.empty()
        assert controller.overlay.is_clear()
        assert controller.running
        assert rec.errors == []
    finally:
        controller.stop()


def test_camera_that_stops_delivering_frames_ends_the_session():
    engine = FakeEngine([HAPPY])
    rec = Recorder()
    dead = DroppingSource(frames=2)
    controller, created = make_controller(
        engine, sources=[dead, FakeSource()], recorder=rec, camera_read_failures=3
    )

    controller.start()
    assert wait_for(lambda: rec.states == [True, False])
    assert rec.errors == ["Camera stopped delivering frames."]
    assert dead.released
    assert not controller.running
    assert controller.source is None
    assert controller.display_state == DisplayState.empty()
    assert controller.overlay.is_clear()
    assert rec.frames[-1] is None
    assert controller.stop() is False

    # a new start opens a fresh source
    assert controller.start() is True
    try:
        assert created[-1][1] is not dead
        assert wait_for(lambda: controller.display_state.text == "Happy (82.0%)")
    finally:
        controller.stop()


class SlowEngine(FakeEngine):
    def __init__(self):
        super().__init__([HAPPY])
        self.loaded = threading.Event()
        self.close_calls = 0

    def load_models(self, path):
        self.load_calls += 1
        self.loaded.wait(5)

    def close(self):
        self.close_calls += 1


def test_close_during_model_load_does_not_block_or_start():
    engine = SlowEngine()
    rec = Recorder()
    controller, created = make_controller(engine, recorder=rec)
    result = []
    starter = threading.Thread(target=lambda: result.append(controller.start()))
    starter.start()

    assert wait_for(lambda: controller.model_state is ModelState.LOADING)
    began = time.time()
    controller.close()
    assert time.time() - began < 0.5
    assert engine.close_calls == 0

    engine.loaded.set()
    starter.join(timeout=3)
    assert result == [False]
    assert not controller.running
    assert created == []
    assert rec.states == []
    assert engine.close_calls == 1
    assert controller.start() is False


def test_close_when_idle_closes_engine_once():
    engine = SlowEngine()
    engine.loaded.set()
    controller, _ = make_controller(engine)

    assert controller.start() is True
    controller.close()
    controller.close()

    assert controller.closed
    assert not controller.running
    assert engine.close_calls == 1
