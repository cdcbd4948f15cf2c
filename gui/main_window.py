import sys
import threading
from typing import List, Optional

import cv2
from PyQt5.QtWidgets import (QApplication, QMainWindow, QWidget, QVBoxLayout,
                             QHBoxLayout, QPushButton, QLabel, QComboBox,
                             QFileDialog, QMessageBox)
from PyQt5.QtCore import Qt, pyqtSignal, pyqtSlot
from PyQt5.QtGui import QPixmap, QImage

from detection.capture_controller import CaptureController
from detection.detection_types import DisplayState, ModelState, SourceMode
from detection.frame_source import scan_cameras
from utils.settings import AppConfig, load_app_config

# import inference engine (pulls in deepface/mediapipe)
try:
    from detection.engine import EmotionEngine
    DETECTION_AVAILABLE = True
except ImportError as e:
    DETECTION_AVAILABLE = False
    print(f"Could not import detection engine: {e}")

PLACEHOLDER_TEXT = "📷  Camera not started"
VIDEO_SIZE = (480, 360)
IMAGE_FILTER = "Images (*.png *.jpg *.jpeg *.bmp *.webp);;All Files (*.*)"
ERROR_COLOR = "#FF6B4A"
INFO_COLOR = "#9E9E9E"


class MainWindow(QMainWindow):
    """Video preview, emotion label and capture controls."""

    frame_ready = pyqtSignal(object)
    display_changed = pyqtSignal(object)
    error_raised = pyqtSignal(str)
    running_changed = pyqtSignal(bool)
    model_state_changed = pyqtSignal(object)

    def __init__(self, config: Optional[AppConfig] = None, engine=None):
        super().__init__()

        self.setWindowTitle("Emotion Detector")
        self.setGeometry(100, 100, 720, 640)
        self.setAttribute(Qt.WA_QuitOnClose, True)
        self._is_closing = False

        self.setStyleSheet(self._get_main_stylesheet())

        self.config = config or load_app_config()
        self.available_cameras = self._scan_cameras()
        self._start_thread: Optional[threading.Thread] = None

        if engine is None and DETECTION_AVAILABLE:
            engine = EmotionEngine()
        self.controller = None
        if engine is not None:
            # controller callbacks arrive on worker threads, signals hop to the Qt thread
            self.controller = CaptureController(
                engine,
                self.config,
                on_display=self.display_changed.emit,
                on_frame=self._queue_frame_display,
                on_error=self.error_raised.emit,
                on_state=self.running_changed.emit,
                on_model_state=self.model_state_changed.emit,
            )

        self.frame_ready.connect(self._update_camera_display)
        self.display_changed.connect(self._update_emotion_label)
        self.error_raised.connect(self._show_error)
        self.running_changed.connect(self._update_controls)
        self.model_state_changed.connect(self._update_loading_state)

        self._setup_ui()
        self._update_controls(False)

    def _get_main_stylesheet(self):
        return """
            QWidget {
                background-color: #161618;
                color: #FFFFFF;
                font-family: -apple-system, BlinkMacSystemFont, 'SF Pro Text', Monaco, monospace;
            }
            QLabel {
                background-color: transparent;
            }
            QLabel#titleLabel {
                font-size: 18px;
                font-weight: bold;
                letter-spacing: 1px;
            }
            QLabel#videoLabel {
                background-color: #000000;
                border: 1px solid #212124;
                border-radius: 10px;
            }
            QLabel#iconLabel {
                font-size: 34px;
            }
            QLabel#emotionLabel {
                font-size: 20px;
                font-weight: bold;
            }
            QLabel#statusLabel {
                font-size: 11px;
            }
            QPushButton, QComboBox {
                background-color: #212124;
                border: none;
                border-radius: 6px;
                padding: 8px 14px;
                font-size: 13px;
            }
            QPushButton:hover {
                background-color: #3a2a2e;
            }
            QPushButton:disabled {
                color: #666666;
                background-color: #1c1c1e;
            }
        """

    def _scan_cameras(self) -> List[int]:
        """Scan camera indices once at startup."""
        found = scan_cameras()
        if self.config.camera_index not in found:
            found.insert(0, self.config.camera_index)
        return found

    def _setup_ui(self):
        central_widget = QWidget()
        self.setCentralWidget(central_widget)
        main_layout = QVBoxLayout(central_widget)
        main_layout.setContentsMargins(24, 16, 24, 16)

        title_label = QLabel("EMOTION DETECTOR")
        title_label.setObjectName("titleLabel")
        main_layout.addWidget(title_label, 0, Qt.AlignHCenter)
        main_layout.addSpacing(10)

        self.camera_label = QLabel()
        self.camera_label.setObjectName("videoLabel")
        self.camera_label.setFixedSize(*VIDEO_SIZE)
        self.camera_label.setAlignment(Qt.AlignCenter)
        self.camera_label.setText(PLACEHOLDER_TEXT)
        main_layout.addWidget(self.camera_label, 0, Qt.AlignHCenter)
        main_layout.addSpacing(12)

        main_layout.addLayout(self._create_emotion_row())
        main_layout.addSpacing(12)
        main_layout.addLayout(self._create_controls())

        self.status_label = QLabel("")
        self.status_label.setObjectName("statusLabel")
        self.status_label.setStyleSheet(f"color: {ERROR_COLOR};")
        self.status_label.setWordWrap(True)
        main_layout.addWidget(self.status_label, 0, Qt.AlignHCenter)
        main_layout.addStretch()

    def _create_emotion_row(self):
        row = QHBoxLayout()
        row.addStretch()
        self.icon_label = QLabel("")
        self.icon_label.setObjectName("iconLabel")
        row.addWidget(self.icon_label)
        row.addSpacing(10)
        self.emotion_label = QLabel("")
        self.emotion_label.setObjectName("emotionLabel")
        row.addWidget(self.emotion_label)
        row.addStretch()
        return row

    def _create_controls(self):
        controls = QHBoxLayout()
        controls.addStretch()

        self.camera_combo = QComboBox()
        for idx in self.available_cameras:
            self.camera_combo.addItem(f"Camera {idx}", idx)
        current = self.camera_combo.findData(self.config.camera_index)
        if current >= 0:
            self.camera_combo.setCurrentIndex(current)
        controls.addWidget(self.camera_combo)

        self.start_button = QPushButton("Start Camera")
        self.start_button.clicked.connect(self.start_camera)
        controls.addWidget(self.start_button)

        self.upload_button = QPushButton("Upload Image")
        self.upload_button.clicked.connect(self.upload_image)
        controls.addWidget(self.upload_button)

        self.stop_button = QPushButton("Stop")
        self.stop_button.clicked.connect(self.stop_capture)
        controls.addWidget(self.stop_button)

        self.snapshot_button = QPushButton("Snapshot")
        self.snapshot_button.clicked.connect(self.take_snapshot)
        controls.addWidget(self.snapshot_button)

        controls.addStretch()
        return controls

    # capture control
    def start_camera(self):
        self.config.camera_index = self.camera_combo.currentData()
        self._start_async(SourceMode.CAMERA)

    def upload_image(self):
        file_path, _ = QFileDialog.getOpenFileName(self, "Select Image", "", IMAGE_FILTER)
        if not file_path:
            return
        self._start_async(SourceMode.IMAGE, file_path)

    def _start_async(self, mode: SourceMode, image_path=None):
        if self.controller is None:
            self._show_error("Detection engine not available (deepface/mediapipe missing).")
            return
        if self._start_thread is not None and self._start_thread.is_alive():
            return

        self.status_label.setText("")
        self.start_button.setEnabled(False)
        self.upload_button.setEnabled(False)

        def start_worker():
            # model loading can take seconds; keep it off the Qt thread
            ok = self.controller.start(mode, image_path)
            if not ok:
                self.running_changed.emit(self.controller.running)

        self._start_thread = threading.Thread(target=start_worker, daemon=True)
        self._start_thread.start()

    def stop_capture(self):
        if self.controller is not None:
            self.controller.stop()

    def take_snapshot(self):
        if self.controller is None or not self.controller.running:
            return
        path = self.controller.snapshot()
        if path is not None:
            self.status_label.setStyleSheet(f"color: {INFO_COLOR};")
            self.status_label.setText(f"Snapshot saved to {path}")

    # display
    def _queue_frame_display(self, frame):
        if frame is None:
            self.frame_ready.emit(None)
            return
        frame_rgb = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
        h, w, ch = frame_rgb.shape
        bytes_per_line = ch * w
        qt_image = QImage(frame_rgb.data, w, h, bytes_per_line, QImage.Format_RGB888)
        self.frame_ready.emit(qt_image.copy())

    @pyqtSlot(object)
    def _update_camera_display(self, image):
        if image is None:
            self.camera_label.clear()
            self.camera_label.setText(PLACEHOLDER_TEXT)
            return
        pixmap = QPixmap.fromImage(image)
        scaled_pixmap = pixmap.scaled(
            self.camera_label.size(),
            Qt.KeepAspectRatio,
            Qt.SmoothTransformation
        )
        self.camera_label.setPixmap(scaled_pixmap)

    @pyqtSlot(object)
    def _update_emotion_label(self, state: DisplayState):
        color = state.icon.color if state.icon else "#FFFFFF"
        self.icon_label.setText(state.icon.glyph if state.icon else "")
        self.emotion_label.setText(state.text)
        self.emotion_label.setStyleSheet(f"color: {color};")

    @pyqtSlot(bool)
    def _update_controls(self, running: bool):
        loading = (
            self.controller is not None
            and self.controller.model_state is ModelState.LOADING
        )
        self.start_button.setEnabled(not loading)
        self.upload_button.setEnabled(not loading)
        self.camera_combo.setEnabled(not running)
        self.stop_button.setEnabled(running)
        self.snapshot_button.setEnabled(running)
        if not running:
            self.camera_label.clear()
            self.camera_label.setText(PLACEHOLDER_TEXT)

    @pyqtSlot(object)
    def _update_loading_state(self, state: ModelState):
        if state is ModelState.LOADING:
            self.start_button.setText("Loading...")
            self.start_button.setEnabled(False)
            self.upload_button.setEnabled(False)
        else:
            self.start_button.setText("Start Camera")
            self.start_button.setEnabled(True)
            self.upload_button.setEnabled(True)

    @pyqtSlot(str)
    def _show_error(self, message: str):
        self.status_label.setStyleSheet(f"color: {ERROR_COLOR};")
        self.status_label.setText(message)
        if not self._is_closing:
            QMessageBox.warning(self, "Emotion Detector", message)

    def closeEvent(self, event):
        if self._is_closing:
            event.accept()
            return

        self._is_closing = True
        if self.controller is not None:
            self.controller.close()

        event.accept()
        QApplication.instance().quit()


if __name__ == "__main__":
    app = QApplication(sys.argv)
    window = MainWindow()
    window.show()
    sys.exit(app.exec_())
