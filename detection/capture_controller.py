"""Owns the frame source, the model lifecycle and the detection loop."""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Callable, List, Optional, Union

import numpy as np

from detection.detection_types import Detection, DisplayState, ModelState, SourceMode
from detection.emotion_presenter import present
from detection.frame_source import (
    CameraSource,
    CameraUnavailableError,
    ImageLoadError,
    ImageSource,
)
from detection.overlay import OverlayRenderer
from detection.snapshot import export_snapshot
from utils.settings import AppConfig

WORKER_JOIN_ATTEMPTS = 5


class CaptureController:
    """
    Start/stop capture for one input mode at a time and run the poll loop.

    The engine only needs ``load_models(path)`` and
    ``detect(frame, min_confidence)``. Callbacks run on the caller's thread
    for start/stop and on the worker thread for ticks; they must not call
    stop() synchronously.

    Ticks never overlap: the worker finishes one tick before sleeping for
    the poll interval, and tick() drops the call if another one is in
    flight.
    """

    def __init__(
        self,
        engine,
        config: Optional[AppConfig] = None,
        *,
        source_factory: Optional[Callable] = None,
        on_display: Optional[Callable[[DisplayState], None]] = None,
        on_frame: Optional[Callable[[Optional[np.ndarray]], None]] = None,
        on_error: Optional[Callable[[str], None]] = None,
        on_state: Optional[Callable[[bool], None]] = None,
        on_model_state: Optional[Callable[[ModelState], None]] = None,
    ):
        self.engine = engine
        self.config = config or AppConfig()
        self.overlay = OverlayRenderer()
        self._source_factory = source_factory or self._open_source

        self.on_display = on_display
        self.on_frame = on_frame
        self.on_error = on_error
        self.on_state = on_state
        self.on_model_state = on_model_state

        self._lock = threading.RLock()  # source, overlay, display, last frame
        self._session_lock = threading.Lock()  # serializes start/stop
        self._tick_lock = threading.Lock()  # single in-flight tick
        self._model_cond = threading.Condition()

        self._model_state = ModelState.UNLOADED
        self._source = None
        self._mode: Optional[SourceMode] = None
        self._running = False
        self._session = 0
        self._display = DisplayState.empty()
        self._frame: Optional[np.ndarray] = None
        self._stop_event: Optional[threading.Event] = None
        self._worker: Optional[threading.Thread] = None
        self._tick_error_reported = False
        self._read_failures = 0
        self._closed = False
        self._engine_closed = False

    # state
    @property
    def running(self) -> bool:
        return self._running

    @property
    def mode(self) -> Optional[SourceMode]:
        return self._mode

    @property
    def model_state(self) -> ModelState:
        return self._model_state

    @property
    def display_state(self) -> DisplayState:
        return self._display

    @property
    def source(self):
        return self._source

    @property
    def closed(self) -> bool:
        return self._closed

    # model lifecycle
    def ensure_models(self) -> bool:
        """
        Load the models once. Callers arriving while a load is in progress
        wait for it instead of loading again. Returns False if that load
        failed; raises if this call's own load fails.
        """
        with self._model_cond:
            waited = False
            while self._model_state is ModelState.LOADING:
                waited = True
                self._model_cond.wait()
            if self._model_state is ModelState.LOADED:
                return True
            if waited and self._model_state is ModelState.FAILED:
                return False
            self._model_state = ModelState.LOADING
        self._emit(self.on_model_state, ModelState.LOADING)
        print("⏳ Loading models...")

        try:
            self.engine.load_models(self.config.models_dir)
        except Exception:
            self._set_model_state(ModelState.FAILED)
            if self._closed:
                self._close_engine()
            raise
        self._set_model_state(ModelState.LOADED)
        if self._closed:
            # close() skipped the engine while this load was running
            self._close_engine()
        return True

    def _set_model_state(self, state: ModelState) -> None:
        with self._model_cond:
            self._model_state = state
            self._model_cond.notify_all()
        self._emit(self.on_model_state, state)

    # capture lifecycle
    def start(self, mode: Union[SourceMode, str] = SourceMode.CAMERA, image_path=None) -> bool:
        """
        Load models if needed, replace any active source with a new one and
        start polling. Expected failures are reported, never raised; the
        controller is then left stopped. Always False after close().
        """
        mode = SourceMode(mode)
        if self._closed:
            return False
        if mode is SourceMode.IMAGE and not image_path:
            self._report_error("No image selected.")
            return False

        try:
            if not self.ensure_models():
                self._report_error("Models could not be loaded.")
                return False
        except Exception as exc:
            self._report_error(f"Model loading failed: {exc}")
            return False

        with self._session_lock:
            if self._closed:
                print("⚠️ Controller closed while loading, capture not started.")
                return False
            # the previous source must be gone before the new one is opened
            was_running = self._stop_locked()
            try:
                source = self._source_factory(mode, image_path)
            except (CameraUnavailableError, ImageLoadError, OSError) as exc:
                self._report_error(str(exc))
                if was_running:
                    self._emit_stopped()
                return False

            stop_event = threading.Event()
            with self._lock:
                self._session += 1
                self._source = source
                self._mode = mode
                self._running = True
                self._display = DisplayState.empty()
                self._frame = None
                self._tick_error_reported = False
                self._read_failures = 0
                self.overlay.sync_size(source.width, source.height)
                self._stop_event = stop_event
                self._worker = threading.Thread(
                    target=self._run, args=(stop_event, source), daemon=True
                )
            print(f"▶️ Capture started ({mode.value}).")
            self._emit(self.on_display, DisplayState.empty())
            self._emit(self.on_state, True)
            self._worker.start()
        return True

    def switch_mode(self, mode: Union[SourceMode, str], image_path=None) -> bool:
        return self.start(mode, image_path)

    def stop(self) -> bool:
        """Stop polling and release the source. Returns False (and does nothing) when not running."""
        with self._session_lock:
            stopped = self._stop_locked()
        if stopped:
            self._emit_stopped()
        return stopped

    def _emit_stopped(self) -> None:
        print("⏹️ Capture stopped.")
        self._emit(self.on_display, DisplayState.empty())
        self._emit(self.on_frame, None)
        self._emit(self.on_state, False)

    def close(self) -> None:
        """
        Stop for good. Never waits for a model load in progress: the
        loading thread closes the engine itself once it finishes.
        """
        self._closed = True
        self.stop()
        with self._model_cond:
            loading = self._model_state is ModelState.LOADING
        if not loading:
            self._close_engine()

    def _close_engine(self) -> None:
        with self._model_cond:
            if self._engine_closed:
                return
            self._engine_closed = True
        closer = getattr(self.engine, "close", None)
        if callable(closer):
            closer()

    def _stop_locked(self) -> bool:
        if not self._running and self._source is None:
            return False

        if self._stop_event is not None:
            self._stop_event.set()
        worker = self._worker
        if worker is not None and worker is not threading.current_thread():
            for attempt in range(WORKER_JOIN_ATTEMPTS):
                worker.join(timeout=1.0 + attempt)
                if not worker.is_alive():
                    break
            if worker.is_alive():
                print("⚠️ Detection worker still busy, releasing the source anyway.")

        with self._lock:
            self._release_locked()
            self._worker = None
        return True

    def _release_locked(self) -> None:
        """Drop the source and reset the per-session state. Caller holds self._lock."""
        if self._stop_event is not None:
            self._stop_event.set()
        source = self._source
        self._source = None
        self._running = False
        self._mode = None
        self._session += 1
        if source is not None:
            source.release()
        self.overlay.reset()
        self._display = DisplayState.empty()
        self._frame = None
        self._stop_event = None
        self._read_failures = 0

    def _open_source(self, mode: SourceMode, image_path=None):
        if mode is SourceMode.IMAGE:
            return ImageSource(image_path)
        return CameraSource(self.config.camera_index, self.config.camera_resolution)

    # polling
    def _run(self, stop_event: threading.Event, source) -> None:
        while not stop_event.is_set():
            ran = self.tick()
            if ran and not source.is_live:
                # a still image only needs one pass
                stop_event.wait()
                break
            stop_event.wait(self.config.poll_interval)

    def tick(self) -> bool:
        """Run one poll iteration. Returns False when skipped."""
        if not self._tick_lock.acquire(blocking=False):
            return False
        try:
            return self._tick()
        finally:
            self._tick_lock.release()

    def _tick(self) -> bool:
        with self._lock:
            source = self._source
            if not self._running or source is None:
                return False
            frame = source.read() if source.is_ready() else None
            if frame is None:
                return self._handle_read_failure(source)
            self._read_failures = 0
            session = self._session
            mode = self._mode
            self.overlay.sync_size(source.width, source.height)

        detections: Optional[List[Detection]]
        try:
            detections = self.engine.detect(frame, self.config.min_confidence)
        except Exception as exc:
            detections = None
            self._report_tick_error(exc)

        with self._lock:
            if session != self._session or self._source is not source:
                return False
            self.overlay.sync_size(source.width, source.height)
            if detections is None:
                self.overlay.clear()
                display = DisplayState.empty()
            else:
                self._tick_error_reported = False
                self.overlay.draw(detections)
                display = present(detections, mode, self.config.face_selection)
            self._display = display
            self._frame = frame
            composed = self.overlay.composite(frame)

        self._emit(self.on_display, display)
        self._emit(self.on_frame, composed)
        return True

    def _handle_read_failure(self, source) -> bool:
        """
        Called with self._lock held when the source gave no frame. The
        first miss clears the overlay and label; after
        camera_read_failures misses in a row the session ends from the
        worker side (the source is released without joining this thread).
        """
        self._read_failures += 1
        first_miss = self._read_failures == 1
        lost = self._read_failures >= self.config.camera_read_failures
        if first_miss:
            self.overlay.clear()
            self._display = DisplayState.empty()
        if lost:
            print(f"❌ No frame from the source after {self._read_failures} reads.")
            self._release_locked()

        if lost:
            self._report_error("Camera stopped delivering frames.")
            self._emit_stopped()
        elif first_miss:
            self._emit(self.on_display, DisplayState.empty())
        return False

    # snapshot
    def snapshot(self, directory=None) -> Optional[Path]:
        """Save frame + overlay as PNG. Only available while running."""
        with self._lock:
            if not self._running or self._source is None:
                return None
            frame = self._frame if self._frame is not None else self._source.last_frame
            if frame is None:
                return None
            frame = frame.copy()
            overlay = self.overlay.copy()
        target_dir = directory or self.config.snapshot_dir
        try:
            return export_snapshot(frame, overlay, target_dir, self.config.snapshot_filename)
        except (OSError, ValueError, RuntimeError) as exc:
            self._report_error(f"Snapshot failed: {exc}")
            return None

    # reporting
    def _report_tick_error(self, exc: Exception) -> None:
        print(f"❌ Detection error: {exc}")
        if not self._tick_error_reported:
            self._tick_error_reported = True
            self._emit(self.on_error, f"Detection failed: {exc}")

    def _report_error(self, message: str) -> None:
        print(f"❌ {message}")
        self._emit(self.on_error, message)

    @staticmethod
    def _emit(callback, *args) -> None:
        if callback is not None:
            callback(*args)
