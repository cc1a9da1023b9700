from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from pathlib import Path
from queue import Empty, Queue

import cv2
import numpy as np

from posecam.core.config.settings import PoseCamSettings
from posecam.core.detectors.yolo import YoloObjectDetector
from posecam.core.errors import ModelLoadFailed
from posecam.core.geometry import is_transposed, to_affine
from posecam.core.overlay.draw import BorderedText, dip_to_px, draw_frame_info
from posecam.core.overlay.render_cache import RenderCache
from posecam.core.pipeline import DetectionPipeline, ObjectDetector, PoseEstimator
from posecam.core.pose.posenet import PoseNetEstimator
from posecam.core.types import Frame, FrameInfo, TrackedRecognition
from posecam.core.video_sources.base import FileSource, VideoSource, WebcamSource

logger = logging.getLogger(__name__)

CLASSIFIER_INIT_FAILED = "Classifier could not be initialized"


def build_detector(settings: PoseCamSettings) -> ObjectDetector:
    """Load the configured object detector."""

    return YoloObjectDetector.load(
        settings.detector_model,
        settings.labels_path,
        input_size=settings.detector_input_size,
        quantized=settings.detector_quantized,
    )


def build_pose_estimator(settings: PoseCamSettings) -> PoseEstimator:
    """Load the configured single-person pose model."""

    return PoseNetEstimator.load(
        settings.pose_model,
        device=settings.pose_device,
        input_size=settings.pose_input_size,
    )


class CameraEngine:
    """Runs the camera -> pipeline -> overlay -> JPEG loop.

    Threads:
    - capture thread reads the source and feeds `DetectionPipeline.process_image`,
      waiting for its ready signal before reading the next frame
    - the pipeline's single inference worker runs detection and pose
    - UI thread drains posted callbacks and, whenever the overlay is
      invalidated, renders the latest frame with the overlay and encodes it
    """

    def __init__(self, settings: PoseCamSettings) -> None:
        self.settings = settings
        if settings.target_fps is not None:
            self._target_fps = float(settings.target_fps)
        else:
            # Files pace themselves to their own fps.
            self._target_fps = 0.0 if settings.video_source == "file" else 30.0

        self.render_cache = RenderCache(
            text_size_dip=settings.tracker_text_size_dip,
            density=settings.display_density,
            min_size=settings.min_box_size,
            keypoint_min_score=settings.keypoint_min_score,
            corner_divisor=settings.corner_divisor,
            draw_body_joints=settings.draw_body_joints,
            keypoint_mapping=settings.keypoint_mapping,
            cycle_palette=settings.cycle_palette,
            crop_size=settings.detector_input_size,
            pose_input_size=settings.pose_input_size,
        )
        self._hud_text = BorderedText(
            dip_to_px(settings.pipeline_text_size_dip, settings.display_density)
        )

        self.pipeline: DetectionPipeline | None = None
        self.source: VideoSource | None = None
        self.running = False
        self.last_error: str | None = None
        self._capture_thread: threading.Thread | None = None
        self._ui_thread: threading.Thread | None = None

        self._lock = threading.Lock()
        self._ui_queue: Queue[Callable[[], None]] = Queue()
        self._invalidated = threading.Event()
        self._latest_captured_frame: Frame | None = None
        self._frame_info: FrameInfo | None = None
        self._latest_frame: bytes | None = None
        self._latest_stream_packet: tuple[bytes, int, FrameInfo | None, list[TrackedRecognition]] | None = None
        self._render_seq = 0
        self._dropped_frames = 0

        self._camera_fps = 0.0
        self._camera_alpha = 0.2
        self._last_captured_at: float | None = None

    def _make_source(self) -> VideoSource:
        """Instantiate the configured `VideoSource`."""

        if self.settings.video_source == "file" and self.settings.video_path:
            video_path = Path(self.settings.video_path)
            if not video_path.exists():
                raise RuntimeError(f"Video path not found: {video_path}")
            return FileSource(str(video_path))
        return WebcamSource(
            self.settings.camera_index,
            (self.settings.preview_width, self.settings.preview_height),
        )

    def _load_models(self) -> tuple[ObjectDetector, PoseEstimator]:
        return build_detector(self.settings), build_pose_estimator(self.settings)

    def start(self) -> None:
        """Load the models, open the camera and start the threads.

        Safe to call multiple times; subsequent calls while running are ignored.
        """

        if self.running:
            return
        try:
            detector, pose_estimator = self._load_models()
        except ModelLoadFailed:
            self.last_error = CLASSIFIER_INIT_FAILED
            logger.exception("Exception initializing classifier!")
            self.running = False
            return

        try:
            self.source = self._make_source()
        except Exception:
            self.last_error = "Failed to initialize video source"
            logger.exception(self.last_error)
            return

        self.pipeline = DetectionPipeline(
            detector,
            pose_estimator,
            self.render_cache,
            post_to_ui=self._post_to_ui,
            invalidate=self._invalidated.set,
            on_frame_info=self._on_frame_info,
            crop_size=self.settings.detector_input_size,
            pose_input_size=self.settings.pose_input_size,
            min_confidence=self.settings.min_confidence,
            person_label=self.settings.person_label,
            maintain_aspect=self.settings.maintain_aspect,
            color_order="bgr",
            save_preview=self.settings.save_preview,
            save_dir=self.settings.save_dir,
        )
        if self.settings.use_accelerator:
            self.pipeline.set_use_accelerator(True)
        if self.settings.num_threads is not None:
            self.pipeline.set_num_threads(self.settings.num_threads)

        width, height = self.source.preview_size
        self.pipeline.on_preview_size_chosen(width, height, self.settings.sensor_orientation)

        self.running = True
        self.last_error = None
        self._invalidated.clear()
        self._capture_thread = threading.Thread(target=self._capture_loop, daemon=True)
        self._ui_thread = threading.Thread(target=self._ui_loop, daemon=True)
        self._capture_thread.start()
        self._ui_thread.start()

    def stop(self) -> None:
        """Stop the threads, wait for the in-flight detection and close the source."""

        self.running = False
        self._invalidated.set()
        if self._capture_thread and self._capture_thread.is_alive():
            self._capture_thread.join(timeout=2)
        if self._ui_thread and self._ui_thread.is_alive():
            self._ui_thread.join(timeout=2)
        if self.pipeline is not None:
            self.pipeline.close()
        if self.source:
            self.source.close()

    def _post_to_ui(self, fn: Callable[[], None]) -> None:
        self._ui_queue.put(fn)
        self._invalidated.set()

    def _on_frame_info(self, info: FrameInfo) -> None:
        # Runs on the UI thread.
        with self._lock:
            self._frame_info = info

    def _capture_loop(self) -> None:
        """Read frames and hand each one to the pipeline."""

        logger.debug("Capture loop started")
        pipeline = self.pipeline
        while self.running and self.source and pipeline is not None:
            start = time.perf_counter()
            frame = self.source.read()
            if frame is None:
                time.sleep(0.02)
                continue
            now = time.perf_counter()
            with self._lock:
                if self._last_captured_at is not None:
                    dt = now - self._last_captured_at
                    if dt > 0:
                        instant = 1.0 / dt
                        self._camera_fps = (
                            instant
                            if self._camera_fps == 0.0
                            else (
                                self._camera_fps * (1.0 - self._camera_alpha)
                                + instant * self._camera_alpha
                            )
                        )
                self._last_captured_at = now
                self._latest_captured_frame = frame

            ready = threading.Event()
            try:
                future = pipeline.process_image(frame, ready.set)
            except Exception:
                logger.exception("Failed to stage frame %d", pipeline.timestamp)
                continue
            if future is None:
                with self._lock:
                    self._dropped_frames += 1
            ready.wait(timeout=1.0)

            if self._target_fps > 0:
                delay = (1.0 / self._target_fps) - (time.perf_counter() - start)
                if delay > 0:
                    time.sleep(delay)

    def _drain_ui_queue(self) -> None:
        while True:
            try:
                fn = self._ui_queue.get_nowait()
            except Empty:
                return
            try:
                fn()
            except Exception:
                logger.exception("UI callback failed")

    def _ui_loop(self) -> None:
        """Run posted callbacks and redraw on invalidation."""

        logger.debug("UI loop started")
        while self.running:
            if not self._invalidated.wait(timeout=0.5):
                continue
            self._invalidated.clear()
            self._drain_ui_queue()
            if not self.running:
                break
            try:
                self._render()
            except Exception:
                logger.exception("Overlay rendering failed")

    def _canvas_size(self, frame: Frame) -> tuple[int, int]:
        if self.settings.canvas_width and self.settings.canvas_height:
            return self.settings.canvas_width, self.settings.canvas_height
        h, w = frame.shape[:2]
        if is_transposed(self.settings.sensor_orientation):
            return h, w
        return w, h

    def render_canvas(self, frame: Frame) -> np.ndarray:
        """Compose the preview `frame` with the current overlay."""

        canvas_w, canvas_h = self._canvas_size(frame)
        frame_to_canvas = self.render_cache.frame_to_canvas(canvas_w, canvas_h)
        if frame_to_canvas is None:
            canvas = cv2.resize(frame, (canvas_w, canvas_h), interpolation=cv2.INTER_LINEAR)
        else:
            canvas = cv2.warpAffine(
                frame, to_affine(frame_to_canvas), (canvas_w, canvas_h), flags=cv2.INTER_LINEAR
            )
        self.render_cache.draw(canvas)
        if self.settings.debug_overlay:
            self.render_cache.draw_debug(canvas)
        with self._lock:
            info = self._frame_info
        draw_frame_info(canvas, info, self._hud_text)
        return canvas

    def _render(self) -> None:
        with self._lock:
            frame = self._latest_captured_frame
        if frame is None:
            return
        canvas = self.render_canvas(frame)
        encode_param = [int(cv2.IMWRITE_JPEG_QUALITY), self.settings.jpeg_quality]
        ok, jpg = cv2.imencode(".jpg", canvas, encode_param)
        if not ok:
            logger.warning("JPEG encoding failed")
            return
        frame_bytes = jpg.tobytes()
        tracked = self.render_cache.tracked
        with self._lock:
            self._render_seq += 1
            self._latest_frame = frame_bytes
            self._latest_stream_packet = (frame_bytes, self._render_seq, self._frame_info, tracked)

    def latest_frame(self) -> bytes | None:
        """Return the latest encoded JPEG bytes (or `None` if not ready)."""

        with self._lock:
            return self._latest_frame

    def latest_frame_info(self) -> FrameInfo | None:
        """Return the timing info of the last completed detection."""

        with self._lock:
            return self._frame_info

    def latest_stream_packet(
        self,
    ) -> tuple[bytes | None, int | None, FrameInfo | None, list[TrackedRecognition]]:
        """Return (jpeg_bytes, render_id, frame_info, tracked) of the same render."""

        with self._lock:
            if self._latest_stream_packet is None:
                return None, None, None, []
            return self._latest_stream_packet

    def tracked(self) -> list[TrackedRecognition]:
        return self.render_cache.tracked

    def stream_fps(self) -> float:
        """Approximate camera FPS based on capture timestamps."""

        with self._lock:
            return float(self._camera_fps)

    def dropped_frames(self) -> int:
        """Frames skipped because a detection was still in flight."""

        with self._lock:
            return self._dropped_frames
