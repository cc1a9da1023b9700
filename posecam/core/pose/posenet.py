"""Single-person PoseNet estimator on ONNX Runtime.

The model takes one 257x257 RGB image and returns a keypoint heatmap grid and
an offset grid. Decoding picks the strongest heatmap cell per keypoint and
refines it with the matching offsets, yielding 17 keypoints in pose-model
pixel space.
"""

from __future__ import annotations

import logging
import math
from pathlib import Path

import numpy as np
import onnxruntime as ort

from posecam.core.config.constants import POSE_INPUT_SIZE
from posecam.core.errors import ModelLoadFailed, PoseEstimationUnavailable, ShapeMismatch
from posecam.core.geometry import clamped_origin
from posecam.core.types import NUM_KEYPOINTS, BodyPart, Keypoint, Person, Raster, Rect

logger = logging.getLogger(__name__)

DEVICES = ("cpu", "gpu", "nnapi")

_PROVIDERS: dict[str, list[str]] = {
    "cpu": ["CPUExecutionProvider"],
    "gpu": ["CUDAExecutionProvider", "CPUExecutionProvider"],
    "nnapi": ["NnapiExecutionProvider", "CPUExecutionProvider"],
}


def providers_for(device: str) -> list[str]:
    """Return the ONNX Runtime provider list for `device`, keeping only available ones."""

    key = str(device).strip().lower()
    if key not in _PROVIDERS:
        raise ValueError(f"device must be one of {', '.join(DEVICES)}")
    available = set(ort.get_available_providers())
    chosen = [p for p in _PROVIDERS[key] if p in available]
    return chosen or ["CPUExecutionProvider"]


def _sigmoid(x: float) -> float:
    if x >= 0:
        return 1.0 / (1.0 + math.exp(-x))
    e = math.exp(x)
    return e / (1.0 + e)


def _to_hwc(arr: np.ndarray, channels: int) -> np.ndarray:
    """Drop the batch axis and return a (h, w, channels) view."""

    a = np.asarray(arr)
    if a.ndim == 4:
        a = a[0]
    if a.ndim != 3:
        raise ShapeMismatch(f"unexpected pose output shape {np.shape(arr)}")
    if a.shape[-1] == channels:
        return a
    if a.shape[0] == channels:
        return np.transpose(a, (1, 2, 0))
    raise ShapeMismatch(f"pose output {a.shape} has no axis of size {channels}")


def decode_single_pose(
    heatmaps: np.ndarray,
    offsets: np.ndarray,
    input_size: int = POSE_INPUT_SIZE,
) -> tuple[list[Keypoint], float]:
    """Decode one pose from PoseNet heatmaps/offsets.

    Args:
        heatmaps: `(h, w, 17)` raw heatmap logits (batch/CHW layouts accepted).
        offsets: `(h, w, 34)` offsets; y offsets first, then x offsets.
        input_size: Side of the square model input.

    Returns:
        (keypoints in `BodyPart` order, mean keypoint score).
    """

    heat = _to_hwc(heatmaps, NUM_KEYPOINTS)
    offs = _to_hwc(offsets, NUM_KEYPOINTS * 2)
    height, width = heat.shape[:2]

    keypoints: list[Keypoint] = []
    total = 0.0
    for part in BodyPart:
        k = int(part)
        flat = int(np.argmax(heat[:, :, k]))
        row, col = divmod(flat, width)
        y_grid = row / float(height - 1) if height > 1 else 0.0
        x_grid = col / float(width - 1) if width > 1 else 0.0
        # Positions are truncated to whole pixels.
        y = int(y_grid * input_size + float(offs[row, col, k]))
        x = int(x_grid * input_size + float(offs[row, col, k + NUM_KEYPOINTS]))
        score = _sigmoid(float(heat[row, col, k]))
        total += score
        keypoints.append(Keypoint(part=part, position=(float(x), float(y)), score=score))
    return keypoints, total / NUM_KEYPOINTS


class PoseNetEstimator:
    """Long-lived PoseNet session; one instance serves every person."""

    def __init__(
        self,
        model_path: str,
        device: str = "cpu",
        input_size: int = POSE_INPUT_SIZE,
    ) -> None:
        path = Path(model_path)
        if not path.is_file():
            raise ModelLoadFailed(f"pose model not found: {path}")
        self.model_path = str(path)
        self.device = str(device).strip().lower()
        self.input_size = int(input_size)
        providers = providers_for(self.device)
        try:
            self.session = ort.InferenceSession(self.model_path, providers=providers)
        except Exception as exc:
            raise ModelLoadFailed(f"failed to load pose model {path}") from exc

        model_input = self.session.get_inputs()[0]
        self.input_name = model_input.name
        shape = list(model_input.shape)
        # NCHW exports put the channel axis second.
        self.channels_first = len(shape) == 4 and shape[1] == 3
        self.output_names = [o.name for o in self.session.get_outputs()]
        if len(self.output_names) < 2:
            raise ModelLoadFailed(
                f"pose model {path} must expose heatmap and offset outputs, "
                f"found {self.output_names}"
            )
        logger.info(
            "Loaded pose model %s on %s (providers=%s)", self.model_path, self.device, providers
        )

    @classmethod
    def load(
        cls, model_path: str, device: str = "cpu", input_size: int = POSE_INPUT_SIZE
    ) -> PoseNetEstimator:
        return cls(model_path, device=device, input_size=input_size)

    def _prepare(self, raster: Raster) -> np.ndarray:
        rgb = raster[:, :, :3].astype(np.float32)
        tensor = (rgb - 127.5) / 127.5
        if self.channels_first:
            tensor = np.transpose(tensor, (2, 0, 1))
        return tensor[np.newaxis, ...]

    def estimate_single(self, raster: Raster, scale_size: float, source_box: Rect) -> Person:
        """Estimate the pose of the one person filling `raster`.

        Args:
            raster: `(257, 257, 3|4)` uint8 RGB(A) pose input.
            scale_size: Side of the padded square before resizing, stored
                verbatim on the result.
            source_box: Person box in detector-input space, stored verbatim.

        Returns:
            A `Person` with 17 keypoints in pose-model space.
        """

        if (
            raster.ndim != 3
            or raster.shape[:2] != (self.input_size, self.input_size)
            or raster.shape[2] not in (3, 4)
            or raster.dtype != np.uint8
        ):
            raise ShapeMismatch(
                f"pose model expects ({self.input_size}, {self.input_size}, 3|4) uint8, "
                f"got {raster.shape} {raster.dtype}"
            )

        tensor = self._prepare(raster)
        try:
            outputs = self.session.run(self.output_names[:2], {self.input_name: tensor})
        except Exception as exc:
            raise PoseEstimationUnavailable(f"pose inference failed: {exc}") from exc

        keypoints, score = decode_single_pose(outputs[0], outputs[1], self.input_size)
        left, top = clamped_origin(source_box)
        return Person(
            keypoints=keypoints,
            score=score,
            offset=(float(left), float(top)),
            scale_size=float(scale_size),
            source_box=source_box,
        )
