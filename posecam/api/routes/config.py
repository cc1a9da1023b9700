"""Runtime configuration of the pose camera (models, thresholds, overlay)."""

from __future__ import annotations

from fastapi import APIRouter

from posecam.api.schemas.models import ConfigSchema
from posecam.api.services.state import get_settings, reload_settings
from posecam.core.config.settings import settings_to_dict

router = APIRouter()


@router.get("/config", response_model=ConfigSchema)
def get_config() -> ConfigSchema:
    """Return the current effective configuration."""

    settings = get_settings()
    return ConfigSchema(**settings_to_dict(settings))


@router.post("/config", response_model=ConfigSchema)
def update_config(cfg: ConfigSchema) -> ConfigSchema:
    """Apply `cfg` and restart the camera engine with it.

    Unknown devices or mapping modes are rejected by `ConfigSchema` with a
    422 before anything is torn down. Nothing is written back to the YAML file.
    """

    data = cfg.model_dump()
    settings = reload_settings(data)
    return ConfigSchema(**settings_to_dict(settings))
