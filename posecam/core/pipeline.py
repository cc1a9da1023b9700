"""Per-frame detection + pose pipeline.

`DetectionPipeline.process_image` is called from the camera thread for every
preview frame. It never blocks on inference: while one frame is being
processed on the single background worker, newly arriving frames are dropped.
The worker runs the detector on the staged crop, runs the pose model once per
accepted person and publishes the results to the `RenderCache`.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from typing import Protocol

from posecam.core.config.constants import (
    DETECTOR_INPUT_SIZE,
    MINIMUM_CONFIDENCE,
    PERSON_LABEL,
    POSE_INPUT_SIZE,
    SAVE_PREVIEW_BITMAP,
)
from posecam.core.errors import DegenerateDetection, PoseEstimationUnavailable
from posecam.core.geometry import map_rect
from posecam.core.overlay.render_cache import RenderCache
from posecam.core.staging import ImageStager, pad_to_square_and_resize, save_raster
from posecam.core.types import Frame, FrameInfo, Person, Raster, Recognition, Rect

logger = logging.getLogger(__name__)


class ObjectDetector(Protocol):
    """Minimal detector interface expected by `DetectionPipeline`."""

    def recognize(self, raster: Raster) -> list[Recognition]:
        """Return recognitions in detector-input coordinates."""

    def set_use_accelerator(self, enabled: bool) -> None: ...

    def set_num_threads(self, num_threads: int) -> None: ...


class PoseEstimator(Protocol):
    """Minimal single-person pose interface expected by `DetectionPipeline`."""

    def estimate_single(self, raster: Raster, scale_size: float, source_box: Rect) -> Person:
        """Return a 17-keypoint `Person` in pose-model coordinates."""


def _noop() -> None:
    return None


class DetectionPipeline:
    """Drives one frame at a time through detection, pose and publish.

    Threads:
    - the camera thread calls `process_image` (stages pixels, submits work)
    - the single worker runs `_run_detection` (inference, publish)
    - `post_to_ui` hands `FrameInfo` updates to whoever owns the UI
    """

    def __init__(
        self,
        detector: ObjectDetector,
        pose_estimator: PoseEstimator,
        render_cache: RenderCache,
        *,
        executor: Executor | None = None,
        post_to_ui: Callable[[Callable[[], None]], None] | None = None,
        invalidate: Callable[[], None] | None = None,
        on_frame_info: Callable[[FrameInfo], None] | None = None,
        crop_size: int = DETECTOR_INPUT_SIZE,
        pose_input_size: int = POSE_INPUT_SIZE,
        min_confidence: float = MINIMUM_CONFIDENCE,
        person_label: str = PERSON_LABEL,
        maintain_aspect: bool = False,
        color_order: str = "bgr",
        save_preview: bool = SAVE_PREVIEW_BITMAP,
        save_dir: str = "preview_dumps",
    ) -> None:
        """Create a pipeline around already-loaded detector and pose adapters.

        Args:
            detector: Object detector consumed on the worker only.
            pose_estimator: Long-lived single-person pose adapter.
            render_cache: Destination of every publish.
            executor: Background executor; defaults to a private single
                worker. Must run one task at a time.
            post_to_ui: Schedules a callable on the UI loop; defaults to
                calling it inline.
            invalidate: Requests an overlay redraw.
            on_frame_info: Receives timing info on the UI loop after publish.
        """

        self.detector = detector
        self.pose_estimator = pose_estimator
        self.render_cache = render_cache
        self._owns_executor = executor is None
        self.executor: Executor = executor or ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="inference"
        )
        self.post_to_ui = post_to_ui or (lambda fn: fn())
        self.invalidate = invalidate or _noop
        self.on_frame_info = on_frame_info
        self.crop_size = int(crop_size)
        self.pose_input_size = int(pose_input_size)
        self.min_confidence = float(min_confidence)
        self.person_label = person_label
        self.maintain_aspect = bool(maintain_aspect)
        self.color_order = color_order
        self.save_preview = bool(save_preview)
        self.save_dir = save_dir

        self.stager: ImageStager | None = None
        self.timestamp = 0
        self._busy = threading.Lock()
        self._last_detect_ms = 0.0
        self._last_pose_ms = 0.0
        self.last_frame_info: FrameInfo | None = None

    @property
    def computing_detection(self) -> bool:
        return self._busy.locked()

    @property
    def last_detect_ms(self) -> float:
        return self._last_detect_ms

    @property
    def last_pose_ms(self) -> float:
        """Wall-clock duration of the most recent pose-model call."""

        return self._last_pose_ms

    def on_preview_size_chosen(self, width: int, height: int, rotation: int = 0) -> None:
        """Allocate the staging rasters for the negotiated preview size."""

        logger.info("Camera orientation relative to screen canvas: %d", rotation)
        logger.info("Initializing at size %dx%d", width, height)
        self.stager = ImageStager(
            width,
            height,
            crop_size=self.crop_size,
            rotation=rotation,
            maintain_aspect=self.maintain_aspect,
            color_order=self.color_order,
        )
        self.render_cache.set_frame_configuration(
            width,
            height,
            rotation,
            crop_size=self.crop_size,
            maintain_aspect=self.maintain_aspect,
        )

    def process_image(self, frame: Frame, ready: Callable[[], None] = _noop) -> Future | None:
        """Accept a camera frame, or drop it when a detection is in flight.

        `ready` (the camera's "deliver the next frame" signal) is called
        exactly once on both paths.

        Returns:
            The Future of the submitted detection task, or None if dropped.
        """

        if self.stager is None:
            raise RuntimeError("on_preview_size_chosen() must be called first")

        self.timestamp += 1
        curr_timestamp = self.timestamp
        self.invalidate()

        if not self._busy.acquire(blocking=False):
            ready()
            return None

        try:
            logger.debug("Preparing image %d for detection in bg thread.", curr_timestamp)
            try:
                self.stager.load_frame(frame)
            finally:
                ready()
            crop = self.stager.warp_to_crop()
            if self.save_preview:
                save_raster(crop, "preview.png", self.save_dir)
            return self.executor.submit(self._run_detection, crop, curr_timestamp)
        except Exception:
            self._busy.release()
            raise

    def _run_detection(self, crop: Raster, timestamp: int) -> list[Recognition]:
        """Worker body: detect, pose each person, publish. Always clears busy."""

        info: FrameInfo | None = None
        try:
            mapped, info = self._detect_and_publish(crop, timestamp)
            return mapped
        except Exception:
            logger.exception("Detection failed on frame %d; dropping it", timestamp)
            return []
        finally:
            self._busy.release()
            if info is not None and self.on_frame_info is not None:
                callback = self.on_frame_info
                frame_info = info
                self.post_to_ui(lambda: callback(frame_info))

    def _detect_and_publish(
        self, crop: Raster, timestamp: int
    ) -> tuple[list[Recognition], FrameInfo]:
        stager = self.stager
        assert stager is not None

        logger.debug("Running detection on image %d", timestamp)
        t0 = time.perf_counter()
        results = self.detector.recognize(crop)
        self._last_detect_ms = (time.perf_counter() - t0) * 1000.0

        mapped: list[Recognition] = []
        persons: list[Person] = []
        for result in results:
            location = result.location
            if (
                location is None
                or result.confidence < self.min_confidence
                or result.title != self.person_label
            ):
                continue

            try:
                padded = pad_to_square_and_resize(crop, location, self.pose_input_size)
            except DegenerateDetection as exc:
                logger.debug("Skipping detection %s: %s", result.id, exc)
                continue
            if self.save_preview:
                save_raster(padded.raster, f"person_{timestamp}_{result.id}.png", self.save_dir)

            t_pose0 = time.perf_counter()
            try:
                person = self.pose_estimator.estimate_single(
                    padded.raster, padded.scale_size, location
                )
            except PoseEstimationUnavailable as exc:
                logger.warning("Pose estimation unavailable for detection %s: %s", result.id, exc)
                continue
            finally:
                self._last_pose_ms = (time.perf_counter() - t_pose0) * 1000.0

            mapped.append(
                Recognition(
                    id=result.id,
                    title=result.title,
                    confidence=result.confidence,
                    location=map_rect(stager.crop_to_frame, location),
                )
            )
            persons.append(person)

        self.render_cache.track_results(mapped, persons, timestamp)
        self.invalidate()

        info = FrameInfo(
            timestamp=timestamp,
            frame_size=stager.frame_size,
            crop_size=stager.crop_dims,
            detect_ms=self._last_detect_ms,
            pose_ms=self._last_pose_ms,
            persons=len(persons),
        )
        self.last_frame_info = info
        return mapped, info

    def set_use_accelerator(self, enabled: bool) -> Future:
        """Toggle the detector's accelerator on the worker."""

        return self.executor.submit(self.detector.set_use_accelerator, enabled)

    def set_num_threads(self, num_threads: int) -> Future:
        """Change the detector's thread count on the worker."""

        return self.executor.submit(self.detector.set_num_threads, num_threads)

    def close(self) -> None:
        """Wait for the in-flight task and release the private executor."""

        if self._owns_executor:
            self.executor.shutdown(wait=True)
