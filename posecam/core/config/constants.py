"""Baked-in defaults for the camera pipeline.

`PoseCamSettings` uses these as field defaults; code that runs without settings
(tests, the offline runner) imports them directly.
"""

from __future__ import annotations

from posecam.core.types import BodyPart, Color

# Detector (quantized SSD-family, 300x300 input)
DETECTOR_INPUT_SIZE = 300
DETECTOR_IS_QUANTIZED = True
DETECTOR_MAX_RESULTS = 10
DETECTOR_MODEL_PATH = "assets/detect.pt"
DETECTOR_LABELS_PATH = "assets/labelmap.txt"
PERSON_LABEL = "person"
MINIMUM_CONFIDENCE = 0.5

# Pose model (257x257 input, 17 keypoints)
POSE_INPUT_SIZE = 257
POSE_MODEL_PATH = "assets/posenet.onnx"
KEYPOINT_MIN_SCORE = 0.5

# Camera
DESIRED_PREVIEW_SIZE = (640, 480)
MAINTAIN_ASPECT = False
SAVE_PREVIEW_BITMAP = False

# Overlay
MIN_BOX_SIZE = 16.0
CORNER_DIVISOR = 8.0
BOX_STROKE_WIDTH = 10
KEYPOINT_RADIUS = 5
PIPELINE_TEXT_SIZE_DIP = 10.0
TRACKER_TEXT_SIZE_DIP = 18.0


def _hex(code: str) -> Color:
    code = code.lstrip("#")
    r, g, b = int(code[0:2], 16), int(code[2:4], 16), int(code[4:6], 16)
    return (b, g, r)


# Display palette (BGR). One entry per tracked person, in detection order.
PALETTE: tuple[Color, ...] = (
    _hex("#0000FF"),  # blue
    _hex("#FF0000"),  # red
    _hex("#00FF00"),  # green
    _hex("#FFFF00"),  # yellow
    _hex("#00FFFF"),  # cyan
    _hex("#FF00FF"),  # magenta
    _hex("#FFFFFF"),  # white
    _hex("#55FF55"),
    _hex("#FFA500"),
    _hex("#FF8888"),
    _hex("#AAAAFF"),
    _hex("#FFFFAA"),
    _hex("#55AAAA"),
    _hex("#AA33AA"),
    _hex("#0D0068"),
)

# Skeleton segments drawn by the debug body-joint overlay.
BODY_JOINTS: tuple[tuple[BodyPart, BodyPart], ...] = (
    (BodyPart.LEFT_WRIST, BodyPart.LEFT_ELBOW),
    (BodyPart.LEFT_ELBOW, BodyPart.LEFT_SHOULDER),
    (BodyPart.LEFT_SHOULDER, BodyPart.RIGHT_SHOULDER),
    (BodyPart.RIGHT_SHOULDER, BodyPart.RIGHT_ELBOW),
    (BodyPart.RIGHT_ELBOW, BodyPart.RIGHT_WRIST),
    (BodyPart.LEFT_SHOULDER, BodyPart.LEFT_HIP),
    (BodyPart.LEFT_HIP, BodyPart.RIGHT_HIP),
    (BodyPart.RIGHT_HIP, BodyPart.RIGHT_SHOULDER),
    (BodyPart.LEFT_HIP, BodyPart.LEFT_KNEE),
    (BodyPart.LEFT_KNEE, BodyPart.LEFT_ANKLE),
    (BodyPart.RIGHT_HIP, BodyPart.RIGHT_KNEE),
    (BodyPart.RIGHT_KNEE, BodyPart.RIGHT_ANKLE),
)
