from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path

import cv2

from posecam.api.schemas.models import FrameSchema
from posecam.core.config.constants import (
    DETECTOR_INPUT_SIZE,
    DETECTOR_LABELS_PATH,
    DETECTOR_MODEL_PATH,
    MINIMUM_CONFIDENCE,
    PIPELINE_TEXT_SIZE_DIP,
    POSE_MODEL_PATH,
)
from posecam.core.detectors.yolo import YoloObjectDetector
from posecam.core.overlay.draw import BorderedText, draw_frame_info
from posecam.core.overlay.render_cache import RenderCache
from posecam.core.pipeline import DetectionPipeline
from posecam.core.pose.posenet import PoseNetEstimator

logger = logging.getLogger(__name__)


class _DummyDetector:
    def recognize(self, raster):  # pragma: no cover - trivial
        return []

    def set_use_accelerator(self, enabled):  # pragma: no cover - trivial
        return None

    def set_num_threads(self, num_threads):  # pragma: no cover - trivial
        return None


class _DummyPose:
    def estimate_single(self, raster, scale_size, source_box):  # pragma: no cover - trivial
        raise AssertionError("no detections are produced in mock mode")


def run(args):
    cap = cv2.VideoCapture(args.input)
    if not cap.isOpened():
        raise SystemExit(f"Cannot open video {args.input}")

    if args.mock:
        detector, pose = _DummyDetector(), _DummyPose()
    else:
        detector = YoloObjectDetector.load(args.model, args.labels)
        pose = PoseNetEstimator.load(args.pose_model, device=args.pose_device)

    render_cache = RenderCache(draw_body_joints=args.body_joints)
    pipeline = DetectionPipeline(
        detector,
        pose,
        render_cache,
        crop_size=DETECTOR_INPUT_SIZE,
        min_confidence=args.conf,
    )
    hud = BorderedText(PIPELINE_TEXT_SIZE_DIP)
    writer: cv2.VideoWriter | None = None

    outputs = []
    try:
        while True:
            ok, frame = cap.read()
            if not ok:
                break
            if pipeline.stager is None:
                h, w = frame.shape[:2]
                pipeline.on_preview_size_chosen(w, h, args.rotation)

            # Offline: wait for every detection so no frame is dropped.
            future = pipeline.process_image(frame)
            if future is not None:
                future.result()

            tracked = render_cache.tracked
            outputs.append(
                FrameSchema.build(pipeline.timestamp, pipeline.last_frame_info, tracked).model_dump(
                    mode="json"
                )
            )

            if args.annotated:
                canvas = frame.copy()
                render_cache.draw(canvas)
                draw_frame_info(canvas, pipeline.last_frame_info, hud)
                if writer is None:
                    h, w = canvas.shape[:2]
                    fps = cap.get(cv2.CAP_PROP_FPS) or 10.0
                    writer = cv2.VideoWriter(
                        args.annotated, cv2.VideoWriter_fourcc(*"MJPG"), fps, (w, h)
                    )
                writer.write(canvas)

            if args.max_frames and len(outputs) >= args.max_frames:
                break
    finally:
        pipeline.close()
        cap.release()
        if writer is not None:
            writer.release()

    out_path = Path(args.output)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    with open(out_path, "w", encoding="utf-8") as f:
        json.dump(outputs, f, indent=2)
    print(f"Wrote {len(outputs)} frame results to {out_path}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run detection + pose on a video")
    parser.add_argument("--input", required=True, help="Path to video file")
    parser.add_argument("--output", required=True, help="Where to save JSON output")
    parser.add_argument("--annotated", default=None, help="Optional annotated video (.avi)")
    parser.add_argument("--model", default=DETECTOR_MODEL_PATH)
    parser.add_argument("--labels", default=DETECTOR_LABELS_PATH)
    parser.add_argument("--pose-model", default=POSE_MODEL_PATH)
    parser.add_argument("--pose-device", default="cpu", choices=["cpu", "gpu", "nnapi"])
    parser.add_argument("--conf", type=float, default=MINIMUM_CONFIDENCE)
    parser.add_argument("--rotation", type=int, default=0, help="Sensor orientation (degrees)")
    parser.add_argument("--body-joints", action="store_true", help="Draw skeleton lines")
    parser.add_argument("--max-frames", type=int, default=0, help="Limit frames for quick tests")
    parser.add_argument(
        "--mock", action="store_true", help="Use dummy models (no model files needed)"
    )
    return parser


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    run(build_parser().parse_args())
