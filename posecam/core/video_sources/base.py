"""Camera source abstractions.

The engine consumes preview frames through a small interface (`VideoSource`)
so the capture implementation (webcam/file) can be swapped without affecting
the detection pipeline. A source reports its negotiated preview size up front
so the pipeline can allocate its rasters once.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod

import cv2

from posecam.core.config.constants import DESIRED_PREVIEW_SIZE
from posecam.core.types import Frame

logger = logging.getLogger(__name__)


class VideoSource(ABC):
    """Base interface for anything that can produce preview frames."""

    @property
    @abstractmethod
    def preview_size(self) -> tuple[int, int]:
        """Negotiated (width, height) of every frame `read()` returns."""

        raise NotImplementedError

    @abstractmethod
    def read(self) -> Frame | None:
        """Return the next frame, or `None` when unavailable."""

        raise NotImplementedError

    @abstractmethod
    def close(self) -> None:
        """Release any underlying resources."""

        raise NotImplementedError


class OpenCVSource(VideoSource):
    """A `VideoSource` backed by `cv2.VideoCapture`.

    Frames whose size differs from the negotiated preview size are resized so
    downstream rasters never need reallocation.
    """

    def __init__(self, source: str | int) -> None:
        self.cap = cv2.VideoCapture(source)
        if not self.cap.isOpened():
            raise RuntimeError(f"Failed to open video source: {source}")
        self._size = self._probe_size()

    def _probe_size(self) -> tuple[int, int]:
        w = int(self.cap.get(cv2.CAP_PROP_FRAME_WIDTH) or 0)
        h = int(self.cap.get(cv2.CAP_PROP_FRAME_HEIGHT) or 0)
        if w <= 0 or h <= 0:
            return DESIRED_PREVIEW_SIZE
        return (w, h)

    @property
    def preview_size(self) -> tuple[int, int]:
        return self._size

    def _conform(self, frame: Frame) -> Frame:
        h, w = frame.shape[:2]
        if (w, h) != self._size:
            return cv2.resize(frame, self._size, interpolation=cv2.INTER_LINEAR)
        return frame

    def read(self) -> Frame | None:
        """Read the next frame from the underlying OpenCV capture."""

        ok, frame = self.cap.read()
        if not ok:
            return None
        return self._conform(frame)

    def close(self) -> None:
        """Release the underlying OpenCV capture."""

        self.cap.release()


class WebcamSource(OpenCVSource):
    """Webcam capture at a requested preview size (default 640x480)."""

    def __init__(
        self,
        index: int = 0,
        preview_size: tuple[int, int] = DESIRED_PREVIEW_SIZE,
    ) -> None:
        self.cap = None
        for backend in (cv2.CAP_ANY, getattr(cv2, "CAP_V4L2", None), getattr(cv2, "CAP_DSHOW", None)):
            if backend is None:
                continue
            cap = cv2.VideoCapture(index, backend)
            if cap.isOpened():
                self.cap = cap
                logger.info("Opened camera index=%s backend=%s", index, backend)
                break
            cap.release()

        if self.cap is None:
            raise RuntimeError(f"Failed to open camera: {index}")

        # Keep driver-side buffering minimal; ignored by some backends.
        self.cap.set(cv2.CAP_PROP_BUFFERSIZE, 1)
        self.cap.set(cv2.CAP_PROP_FRAME_WIDTH, preview_size[0])
        self.cap.set(cv2.CAP_PROP_FRAME_HEIGHT, preview_size[1])
        self._size = self._probe_size()
        if self._size != tuple(preview_size):
            logger.info(
                "Camera negotiated %dx%d (requested %dx%d)",
                self._size[0],
                self._size[1],
                preview_size[0],
                preview_size[1],
            )


class FileSource(OpenCVSource):
    """Video file played back in real time, looping at EOF."""

    def __init__(self, path: str, loop: bool = True) -> None:
        self._path = path
        self._loop = loop
        self._start_perf: float | None = None
        self._frame_index = 0
        super().__init__(path)
        fps = float(self.cap.get(cv2.CAP_PROP_FPS) or 0.0)
        self._source_fps: float | None = fps if fps > 0.0 else None

    def _pace(self) -> None:
        # Play in seconds, not decode-as-fast-as-possible.
        if self._source_fps is None or self._start_perf is None:
            return
        expected = self._frame_index / self._source_fps
        delay = expected - (time.perf_counter() - self._start_perf)
        if delay > 0:
            time.sleep(delay)

    def read(self) -> Frame | None:
        """Read the next frame; when EOF is reached, rewind and continue."""

        if self._start_perf is None:
            self._start_perf = time.perf_counter()
            self._frame_index = 0

        ok, frame = self.cap.read()
        if not ok:
            if not self._loop or not self.cap.set(cv2.CAP_PROP_POS_FRAMES, 0):
                return None
            self._start_perf = time.perf_counter()
            self._frame_index = 0
            ok, frame = self.cap.read()
            if not ok:
                return None

        self._frame_index += 1
        self._pace()
        return self._conform(frame)
