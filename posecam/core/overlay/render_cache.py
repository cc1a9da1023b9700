"""Per-frame render cache for detections and their poses.

Holds the most recent list of `TrackedRecognition`s and draws boxes, labels
and keypoints on a canvas. There is no association across frames: every
publish replaces the whole list.

Coordinate chain for a keypoint (pose-model space -> canvas):

1. pose space (0..257) -> detector-input space:
   `p * scale_size / 257 + offset`
2. detector-input space -> canvas, either
   - "legacy": independent per-axis factors derived from the canvas width
     and the frame aspect (`scale_x = canvas_w / 300`,
     `scale_y = (canvas_w * frame_w // frame_h) / 300`), or
   - "frame": crop->frame then frame->canvas, the same matrices the boxes use.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Sequence
from dataclasses import dataclass, replace

import cv2
import numpy as np

from posecam.core.config.constants import (
    BODY_JOINTS,
    BOX_STROKE_WIDTH,
    CORNER_DIVISOR,
    DETECTOR_INPUT_SIZE,
    KEYPOINT_MIN_SCORE,
    KEYPOINT_RADIUS,
    MIN_BOX_SIZE,
    PALETTE,
    POSE_INPUT_SIZE,
    TRACKER_TEXT_SIZE_DIP,
)
from posecam.core.geometry import (
    build_transform,
    invert_transform,
    is_transposed,
    map_point,
    map_rect,
)
from posecam.core.overlay.draw import BorderedText, dip_to_px, draw_round_rect
from posecam.core.types import Color, Keypoint, Person, Point, Recognition, Rect, TrackedRecognition

logger = logging.getLogger(__name__)

KEYPOINT_MAPPINGS = ("legacy", "frame")


def _undo_padding(kp: Keypoint, rec: TrackedRecognition, pose_size: float) -> Point:
    ratio = rec.scale_size / pose_size
    x, y = kp.position
    return (x * ratio + rec.offset[0], y * ratio + rec.offset[1])


@dataclass(frozen=True)
class ScreenRect:
    """Debug record: a detection's confidence and its canvas-space rect."""

    confidence: float
    rect: Rect


class RenderCache:
    """Thread-safe store of the last published frame, plus its drawing code.

    Every public method holds the same re-entrant lock, so a draw sees either
    the previous frame's list or the new one in full.
    """

    def __init__(
        self,
        text_size_dip: float = TRACKER_TEXT_SIZE_DIP,
        density: float = 1.0,
        min_size: float = MIN_BOX_SIZE,
        keypoint_min_score: float = KEYPOINT_MIN_SCORE,
        corner_divisor: float = CORNER_DIVISOR,
        palette: Sequence[Color] = PALETTE,
        draw_body_joints: bool = False,
        keypoint_mapping: str = "legacy",
        cycle_palette: bool = False,
        crop_size: int = DETECTOR_INPUT_SIZE,
        pose_input_size: int = POSE_INPUT_SIZE,
    ) -> None:
        if keypoint_mapping not in KEYPOINT_MAPPINGS:
            raise ValueError("keypoint_mapping must be legacy|frame")
        if not palette:
            raise ValueError("palette must not be empty")
        self._lock = threading.RLock()
        self.bordered_text = BorderedText(dip_to_px(text_size_dip, density))
        self.min_size = float(min_size)
        self.keypoint_min_score = float(keypoint_min_score)
        self.corner_divisor = float(corner_divisor)
        self.palette: tuple[Color, ...] = tuple(palette)
        self.draw_body_joints = bool(draw_body_joints)
        self.keypoint_mapping = keypoint_mapping
        self.cycle_palette = bool(cycle_palette)
        self.crop_size = int(crop_size)
        self.pose_input_size = int(pose_input_size)

        self.frame_width = 0
        self.frame_height = 0
        self.sensor_orientation = 0
        self._crop_to_frame: np.ndarray | None = None
        self._frame_to_canvas: np.ndarray | None = None
        self._tracked: list[TrackedRecognition] = []
        self._screen_rects: list[ScreenRect] = []

    def set_frame_configuration(
        self,
        width: int,
        height: int,
        sensor_orientation: int,
        crop_size: int | None = None,
        maintain_aspect: bool = False,
    ) -> None:
        """Record the preview size/orientation the detections are expressed in."""

        with self._lock:
            self.frame_width = int(width)
            self.frame_height = int(height)
            self.sensor_orientation = int(sensor_orientation)
            if crop_size is not None:
                self.crop_size = int(crop_size)
            frame_to_crop = build_transform(
                self.frame_width,
                self.frame_height,
                self.crop_size,
                self.crop_size,
                self.sensor_orientation,
                maintain_aspect,
            )
            self._crop_to_frame = invert_transform(frame_to_crop)
            self._frame_to_canvas = None

    @property
    def tracked(self) -> list[TrackedRecognition]:
        """Copy of the current list, safe to read off the lock."""

        with self._lock:
            return [replace(t, keypoints=list(t.keypoints)) for t in self._tracked]

    @property
    def screen_rects(self) -> list[ScreenRect]:
        with self._lock:
            return list(self._screen_rects)

    def track_results(
        self,
        recognitions: Sequence[Recognition],
        persons: Sequence[Person],
        timestamp: int,
    ) -> None:
        """Replace the cached list with this frame's results."""

        with self._lock:
            logger.debug("Processing %d results from %d", len(recognitions), timestamp)
            self._process_results(recognitions, persons)

    def _color_for(self, index: int) -> Color | None:
        if index < len(self.palette):
            return self.palette[index]
        if self.cycle_palette:
            return self.palette[index % len(self.palette)]
        return None

    def _process_results(
        self, recognitions: Sequence[Recognition], persons: Sequence[Person]
    ) -> None:
        if len(recognitions) != len(persons):
            raise ValueError(
                f"got {len(recognitions)} recognitions but {len(persons)} persons"
            )

        self._screen_rects.clear()
        frame_to_screen = (
            self._frame_to_canvas if self._frame_to_canvas is not None else np.eye(3)
        )

        accepted: list[tuple[Recognition, Person]] = []
        for result, person in zip(recognitions, persons):
            if result.location is None:
                continue
            frame_rect = result.location
            screen_rect = map_rect(frame_to_screen, frame_rect)
            logger.debug("Result! Frame: %s mapped to screen: %s", frame_rect, screen_rect)
            self._screen_rects.append(ScreenRect(result.confidence, screen_rect))

            if frame_rect.is_degenerate(self.min_size):
                logger.warning("Degenerate rectangle! %s", frame_rect)
                continue
            accepted.append((result, person))

        self._tracked = []
        if not accepted:
            logger.debug("Nothing to track, aborting.")
            return

        for result, person in accepted:
            color = self._color_for(len(self._tracked))
            if color is None:
                break
            self._tracked.append(
                TrackedRecognition(
                    location=result.location,
                    detection_confidence=result.confidence,
                    title=result.title,
                    color=color,
                    keypoints=list(person.keypoints),
                    offset=person.offset,
                    scale_size=person.scale_size,
                )
            )

    def _update_frame_to_canvas(self, canvas_w: int, canvas_h: int) -> np.ndarray:
        rotated = is_transposed(self.sensor_orientation)
        fw, fh = self.frame_width, self.frame_height
        multiplier = min(
            canvas_h / float(fw if rotated else fh),
            canvas_w / float(fh if rotated else fw),
        )
        self._frame_to_canvas = build_transform(
            fw,
            fh,
            int(multiplier * (fh if rotated else fw)),
            int(multiplier * (fw if rotated else fh)),
            self.sensor_orientation,
            False,
        )
        return self._frame_to_canvas

    def frame_to_canvas(self, canvas_w: int, canvas_h: int) -> np.ndarray | None:
        """Frame->canvas matrix for a canvas of this size (None until configured)."""

        with self._lock:
            if self.frame_width <= 0 or self.frame_height <= 0:
                return None
            return self._update_frame_to_canvas(canvas_w, canvas_h).copy()

    def keypoint_mapper(self, canvas_w: int, canvas_h: int | None = None):
        """Return a function mapping (keypoint, TrackedRecognition) to a canvas point.

        In "frame" mode the last frame->canvas matrix is reused; before the
        first draw it is built for `canvas_w` x `canvas_h` (height defaults to
        the frame aspect).
        """

        with self._lock:
            if self.frame_width <= 0 or self.frame_height <= 0:
                raise RuntimeError("frame configuration not set")
            pose_size = float(self.pose_input_size)
            if self.keypoint_mapping == "frame":
                if self._frame_to_canvas is None:
                    if canvas_h is None:
                        canvas_h = canvas_w * self.frame_height // self.frame_width
                    self._update_frame_to_canvas(canvas_w, canvas_h)
                crop_to_canvas = self._frame_to_canvas @ self._crop_to_frame

                def _frame(kp: Keypoint, rec: TrackedRecognition) -> Point:
                    point = _undo_padding(kp, rec, pose_size)
                    return map_point(crop_to_canvas, point)

                return _frame

            scale_x = canvas_w / float(self.crop_size)
            # Integer arithmetic on the aspect; the legacy mapping floors it.
            scale_y = (canvas_w * self.frame_width // self.frame_height) / float(self.crop_size)

        def _legacy(kp: Keypoint, rec: TrackedRecognition) -> Point:
            x, y = _undo_padding(kp, rec, pose_size)
            return (x * scale_x, y * scale_y)

        return _legacy

    def to_detector_input(self, kp: Keypoint, rec: TrackedRecognition) -> Point:
        """Undo the pad-to-square/resize: pose-model space -> detector-input space."""

        with self._lock:
            pose_input_size = float(self.pose_input_size)
        return _undo_padding(kp, rec, pose_input_size)

    def draw(self, canvas: np.ndarray) -> np.ndarray:
        """Draw every tracked recognition onto `canvas` (in place)."""

        with self._lock:
            if self.frame_width <= 0 or self.frame_height <= 0:
                return canvas
            canvas_h, canvas_w = canvas.shape[:2]
            frame_to_canvas = self._update_frame_to_canvas(canvas_w, canvas_h)
            to_canvas = self.keypoint_mapper(canvas_w, canvas_h)

            for rec in self._tracked:
                pos = map_rect(frame_to_canvas, rec.location)
                corner = min(pos.width, pos.height) / self.corner_divisor
                draw_round_rect(canvas, pos, corner, rec.color, BOX_STROKE_WIDTH)

                points = [to_canvas(kp, rec) for kp in rec.keypoints]
                for kp, (cx, cy) in zip(rec.keypoints, points):
                    if kp.score > self.keypoint_min_score:
                        cv2.circle(
                            canvas,
                            (int(cx), int(cy)),
                            KEYPOINT_RADIUS,
                            rec.color,
                            BOX_STROKE_WIDTH,
                            cv2.LINE_AA,
                        )

                if self.draw_body_joints:
                    self._draw_joints(canvas, rec, points)

                label = (
                    f"{rec.title} {100 * rec.detection_confidence:.2f}%"
                    if rec.title
                    else f"{100 * rec.detection_confidence:.2f}%"
                )
                self.bordered_text.draw_text(
                    canvas, pos.left + corner, pos.top, label, background=rec.color
                )
            return canvas

    def _draw_joints(
        self, canvas: np.ndarray, rec: TrackedRecognition, points: list[Point]
    ) -> None:
        by_part = {kp.part: (kp, pt) for kp, pt in zip(rec.keypoints, points)}
        for first, second in BODY_JOINTS:
            a = by_part.get(first)
            b = by_part.get(second)
            if a is None or b is None:
                continue
            if a[0].score > self.keypoint_min_score and b[0].score > self.keypoint_min_score:
                p1 = (int(a[1][0]), int(a[1][1]))
                p2 = (int(b[1][0]), int(b[1][1]))
                cv2.line(canvas, p1, p2, rec.color, 3, cv2.LINE_AA)

    def draw_debug(self, canvas: np.ndarray) -> np.ndarray:
        """Draw every raw detection of the last frame with its confidence."""

        with self._lock:
            for item in self._screen_rects:
                rect = item.rect
                x1, y1, x2, y2 = (int(v) for v in rect.as_tuple())
                cv2.rectangle(canvas, (x1, y1), (x2, y2), (0, 0, 255), 1)
                text = f"{item.confidence:.2f}"
                self.bordered_text.draw_text(canvas, rect.left, rect.top, text)
                self.bordered_text.draw_text(canvas, rect.center_x, rect.center_y, text)
            return canvas

