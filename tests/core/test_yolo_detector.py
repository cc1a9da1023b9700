import numpy as np
import pytest

import posecam.core.detectors.yolo as yolo_mod
from posecam.core.errors import ModelLoadFailed, ShapeMismatch
from posecam.core.types import Rect


class _FakeBoxes:
    def __init__(self, data):
        self.data = data

    def __len__(self):
        return int(self.data.shape[0])


class _FakeResult:
    def __init__(self, boxes=None):
        self.boxes = boxes


class _FakeYOLO:
    names = {0: "person", 1: "bicycle", 2: "car"}

    def __init__(self, model_name, task=None):
        self.model_name = model_name
        self.task = task
        self.predict_calls = []
        self.frames = []
        self.rows = np.zeros((0, 6), dtype=np.float32)

    def predict(self, frame, **kwargs):
        self.frames.append(frame)
        self.predict_calls.append(kwargs)
        return [_FakeResult(_FakeBoxes(self.rows))]


@pytest.fixture
def model_file(tmp_path, monkeypatch):
    path = tmp_path / "detect.pt"
    path.write_bytes(b"weights")
    monkeypatch.setattr(yolo_mod, "YOLO", _FakeYOLO)
    return path


def test_load_labels_drops_background_placeholder(tmp_path):
    labels = tmp_path / "labelmap.txt"
    labels.write_text("???\nperson\nbicycle\n\n", encoding="utf-8")
    assert yolo_mod.load_labels(labels) == ["person", "bicycle"]


def test_load_labels_errors_are_model_load_failures(tmp_path):
    with pytest.raises(ModelLoadFailed):
        yolo_mod.load_labels(tmp_path / "missing.txt")
    empty = tmp_path / "empty.txt"
    empty.write_text("???\n", encoding="utf-8")
    with pytest.raises(ModelLoadFailed):
        yolo_mod.load_labels(empty)


def test_missing_model_raises_model_load_failed(tmp_path):
    with pytest.raises(ModelLoadFailed):
        yolo_mod.YoloObjectDetector(str(tmp_path / "nope.pt"))


def test_yolo_constructor_error_is_wrapped(tmp_path, monkeypatch):
    path = tmp_path / "detect.onnx"
    path.write_bytes(b"x")

    def _boom(*args, **kwargs):
        raise RuntimeError("corrupt")

    monkeypatch.setattr(yolo_mod, "YOLO", _boom)
    with pytest.raises(ModelLoadFailed):
        yolo_mod.YoloObjectDetector(str(path))


def test_recognize_sorts_by_confidence_and_uses_label_map(model_file, tmp_path):
    labels = tmp_path / "labelmap.txt"
    labels.write_text("???\nperson\ncat\n", encoding="utf-8")
    det = yolo_mod.YoloObjectDetector.load(str(model_file), str(labels))
    det.model.rows = np.array(
        [
            [10, 20, 50, 80, 0.4, 1],
            [100, 100, 200, 260, 0.73, 0],
            [0, 0, 5, 5, 0.2, 7],
        ],
        dtype=np.float32,
    )
    raster = np.zeros((300, 300, 4), dtype=np.uint8)

    results = det.recognize(raster)

    assert [r.title for r in results] == ["person", "cat", "7"]
    assert [r.id for r in results] == ["0", "1", "2"]
    assert results[0].confidence == pytest.approx(0.73)
    assert results[0].location == Rect(100.0, 100.0, 200.0, 260.0)
    call = det.model.predict_calls[0]
    assert call["imgsz"] == 300
    assert call["max_det"] == 10
    assert call["device"] == "cpu"
    assert det.model.frames[0].shape == (300, 300, 3)


def test_recognize_falls_back_to_model_names(model_file):
    det = yolo_mod.YoloObjectDetector(str(model_file))
    det.model.rows = np.array([[1, 1, 30, 30, 0.9, 2]], dtype=np.float32)
    assert det.recognize(np.zeros((300, 300, 4), dtype=np.uint8))[0].title == "car"


def test_recognize_without_boxes_is_empty(model_file):
    det = yolo_mod.YoloObjectDetector(str(model_file))
    assert det.recognize(np.zeros((300, 300, 4), dtype=np.uint8)) == []


def test_recognize_rejects_wrong_raster(model_file):
    det = yolo_mod.YoloObjectDetector(str(model_file))
    with pytest.raises(ShapeMismatch):
        det.recognize(np.zeros((320, 320, 4), dtype=np.uint8))
    with pytest.raises(ShapeMismatch):
        det.recognize(np.zeros((300, 300, 4), dtype=np.float32))


def test_accelerator_toggles_predict_device(model_file):
    det = yolo_mod.YoloObjectDetector(str(model_file))
    det.set_use_accelerator(True)
    assert det.device == "cuda:0"
    det.set_use_accelerator(False)
    assert det.device == "cpu"
