import json
import os
import subprocess
import sys
from pathlib import Path

import cv2
import numpy as np
import pytest


def _make_dummy_video(path: Path, frames: int = 5, size=(64, 48)):
    fourcc = cv2.VideoWriter_fourcc(*"MJPG")
    writer = cv2.VideoWriter(str(path), fourcc, 5.0, size)
    if not writer.isOpened():
        pytest.skip("OpenCV build cannot write MJPG video on this platform")
    for i in range(frames):
        frame = np.zeros((size[1], size[0], 3), dtype=np.uint8)
        cv2.putText(frame, str(i), (5, 32), cv2.FONT_HERSHEY_SIMPLEX, 0.5, (255, 255, 255), 1)
        writer.write(frame)
    writer.release()


def _readable(path: Path) -> bool:
    cap = cv2.VideoCapture(str(path))
    ok, frame = cap.read()
    cap.release()
    return bool(ok) and frame is not None


def test_run_on_video_cli(tmp_path: Path):
    video_path = tmp_path / "dummy.avi"
    out_path = tmp_path / "out.json"
    annotated = tmp_path / "annotated.avi"
    _make_dummy_video(video_path)
    if not _readable(video_path):
        pytest.skip("OpenCV backend cannot read generated video on this platform")

    env = os.environ.copy()
    env["PYTHONPATH"] = env.get("PYTHONPATH", ".") + os.pathsep + str(Path(__file__).resolve().parents[1])

    cmd = [
        sys.executable,
        "-m",
        "posecam.tools.run_on_video",
        "--input",
        str(video_path),
        "--output",
        str(out_path),
        "--annotated",
        str(annotated),
        "--max-frames",
        "3",
        "--mock",
    ]
    result = subprocess.run(cmd, env=env, capture_output=True, text=True)
    assert result.returncode == 0, result.stderr
    data = json.loads(out_path.read_text())
    assert len(data) == 3
    assert [d["timestamp"] for d in data] == [1, 2, 3]
    assert data[0]["frame_size"] == [64, 48]
    assert data[0]["persons"] == []
    assert annotated.exists()
