"""Error kinds raised by the pose camera core."""

from __future__ import annotations


class PoseCamError(Exception):
    """Base class for all pose camera errors."""


class ModelLoadFailed(PoseCamError):
    """A model (or its labels) is missing or could not be loaded. Fatal."""


class ShapeMismatch(PoseCamError, ValueError):
    """A raster does not have the dimensions/format a stage expects."""


class InvalidGeometry(PoseCamError, ValueError):
    """A transform could not be built or inverted."""


class DegenerateDetection(PoseCamError):
    """A detection box is too small (or falls outside the raster) to use."""


class PoseEstimationUnavailable(PoseCamError):
    """The pose model failed for one person; the caller skips that person."""
