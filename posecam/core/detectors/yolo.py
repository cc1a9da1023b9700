"""Ultralytics YOLO object detector integration.

The detector consumes the square RGBA detector-input raster produced by
`ImageStager` and returns labelled `Recognition`s in that raster's pixel space.
Torch stays an optional runtime dependency: ONNX/TFLite exports run without
importing torch.
"""

from __future__ import annotations

import importlib
import logging
from contextlib import nullcontext
from pathlib import Path
from typing import Any

import cv2
import numpy as np
from ultralytics import YOLO

from posecam.core.config.constants import (
    DETECTOR_INPUT_SIZE,
    DETECTOR_IS_QUANTIZED,
    DETECTOR_MAX_RESULTS,
)
from posecam.core.errors import ModelLoadFailed, ShapeMismatch
from posecam.core.types import Raster, Recognition, Rect

logger = logging.getLogger(__name__)

# Candidate boxes below this never reach the pipeline's own threshold anyway.
PREDICT_CONFIDENCE_FLOOR = 0.1


def load_labels(path: str | Path) -> list[str]:
    """Read a label map (one label per line, indexed by class id).

    A leading `???` line is the background placeholder used by TF Object
    Detection label maps and is dropped so that line 0 is class id 0.
    """

    p = Path(path)
    try:
        lines = [line.strip() for line in p.read_text(encoding="utf-8").splitlines()]
    except OSError as exc:
        raise ModelLoadFailed(f"cannot read labels file {p}") from exc
    labels = [line for line in lines if line]
    if labels and labels[0] == "???":
        labels = labels[1:]
    if not labels:
        raise ModelLoadFailed(f"labels file {p} is empty")
    return labels


class YoloObjectDetector:
    """Object detector wrapper around Ultralytics YOLO.

    Not thread-safe: the pipeline only ever calls it from its single worker.
    """

    def __init__(
        self,
        model_path: str,
        labels: list[str] | None = None,
        input_size: int = DETECTOR_INPUT_SIZE,
        quantized: bool = DETECTOR_IS_QUANTIZED,
        max_results: int = DETECTOR_MAX_RESULTS,
    ) -> None:
        """Create a detector.

        Args:
            model_path: Model path understood by Ultralytics (`.pt`, `.onnx`,
                `.tflite`, ...). Must exist on disk.
            labels: Optional label list indexed by class id; defaults to the
                model's own class names.
            input_size: Side of the square detector-input raster.
            quantized: The model consumes raw uint8 pixels; the raster dtype
                is checked accordingly.
            max_results: Keep at most this many boxes per call.
        """

        path = Path(model_path)
        if not path.is_file():
            raise ModelLoadFailed(f"detector model not found: {path}")
        self.model_path = str(path)
        self.input_size = int(input_size)
        self.quantized = bool(quantized)
        self.max_results = int(max_results)
        self.device = "cpu"
        self._torch_inference_mode: Any | None = None
        if self.model_path.lower().endswith(".pt"):
            try:
                torch = importlib.import_module("torch")
                self._torch_inference_mode = torch.inference_mode
            except ImportError:
                self._torch_inference_mode = None

        try:
            self.model = YOLO(self.model_path, task="detect")
        except Exception as exc:
            raise ModelLoadFailed(f"failed to load detector model {path}") from exc

        names = getattr(self.model, "names", None) or {}
        if labels:
            self.labels = list(labels)
        elif isinstance(names, dict):
            self.labels = [str(names[k]) for k in sorted(names)]
        else:
            self.labels = [str(n) for n in names]
        logger.info(
            "Loaded detector %s (input=%d quantized=%s labels=%d)",
            self.model_path,
            self.input_size,
            self.quantized,
            len(self.labels),
        )

    @classmethod
    def load(
        cls,
        model_path: str,
        labels_path: str | None,
        input_size: int = DETECTOR_INPUT_SIZE,
        quantized: bool = DETECTOR_IS_QUANTIZED,
    ) -> YoloObjectDetector:
        """Build a detector from a model file and an optional label map file."""

        labels = load_labels(labels_path) if labels_path else None
        return cls(model_path, labels=labels, input_size=input_size, quantized=quantized)

    def set_use_accelerator(self, enabled: bool) -> None:
        """Run subsequent predictions on the first CUDA device (or back on CPU)."""

        self.device = "cuda:0" if enabled else "cpu"
        logger.info("Detector device set to %s", self.device)

    def set_num_threads(self, num_threads: int) -> None:
        """Configure torch's CPU thread pool (no-op when torch is absent)."""

        try:
            torch = importlib.import_module("torch")
        except ImportError:
            logger.debug("torch not installed; ignoring num_threads=%s", num_threads)
            return
        torch.set_num_threads(max(1, int(num_threads)))

    def _label(self, class_id: int) -> str:
        if 0 <= class_id < len(self.labels):
            return self.labels[class_id]
        return str(class_id)

    def recognize(self, raster: Raster) -> list[Recognition]:
        """Run inference on the detector-input raster.

        Args:
            raster: `(input_size, input_size, 4)` RGBA image.

        Returns:
            Up to `max_results` recognitions, best first, in raster pixels.
        """

        expected = (self.input_size, self.input_size, 4)
        if raster.shape != expected:
            raise ShapeMismatch(f"detector expects {expected}, got {raster.shape}")
        if self.quantized and raster.dtype != np.uint8:
            raise ShapeMismatch(f"quantized detector expects uint8 pixels, got {raster.dtype}")

        # Ultralytics expects OpenCV-style BGR.
        bgr = cv2.cvtColor(raster, cv2.COLOR_RGBA2BGR)
        infer_ctx = (
            self._torch_inference_mode()
            if self._torch_inference_mode is not None
            else nullcontext()
        )
        with infer_ctx:
            results = self.model.predict(
                bgr,
                imgsz=self.input_size,
                conf=PREDICT_CONFIDENCE_FLOOR,
                max_det=self.max_results,
                device=self.device,
                verbose=False,
            )

        if not results:
            return []
        boxes = getattr(results[0], "boxes", None)
        if boxes is None or len(boxes) == 0:
            return []

        data = boxes.data
        if hasattr(data, "cpu"):
            data = data.cpu()
        data_np = data.numpy() if hasattr(data, "numpy") else np.asarray(data)
        # Boxes.data = (x1, y1, x2, y2, conf, cls)
        if data_np.ndim != 2 or data_np.shape[1] < 6:
            return []

        order = np.argsort(-data_np[:, 4], kind="stable")[: self.max_results]
        out: list[Recognition] = []
        for i, row in enumerate(data_np[order]):
            out.append(
                Recognition(
                    id=str(i),
                    title=self._label(int(row[5])),
                    confidence=float(row[4]),
                    location=Rect(float(row[0]), float(row[1]), float(row[2]), float(row[3])),
                )
            )
        return out
