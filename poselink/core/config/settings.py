"""Bridge configuration.

Settings are loaded from YAML defaults and overridden by environment variables
prefixed with `POSELINK_`.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from poselink.core.retarget.mapping import LAYOUTS, MAPPINGS


class PoseLinkSettings(BaseSettings):
    """Runtime configuration loaded from YAML defaults and `POSELINK_` env overrides."""

    model_config = SettingsConfigDict(env_prefix="POSELINK_", validate_assignment=True)

    # Inbound pose telemetry.
    receive_host: str = "0.0.0.0"
    receive_port: int = 5005
    receive_buffer_size: int = 65535

    # Outbound camera frames.
    sender_enabled: bool = False
    send_host: str = "127.0.0.1"
    send_port: int = 5004
    camera_index: int = 0
    target_width: int = 640
    target_height: int = 360
    jpeg_quality: int = 50
    # Image bytes per datagram; kept well under typical UDP limits ("Message too long").
    max_packet_size: int = 8192
    send_fps: float = 30.0

    # One-Euro filter.
    smoothing_enabled: bool = True
    min_cutoff: float = 1.0
    beta: float = 0.0
    derivative_cutoff: float = 1.0

    # Identity tracker. Distances are in normalized image units.
    max_matching_distance: float = 0.2
    body_timeout: float = 0.5
    max_tracked_persons: int = Field(5, description="rig slots and tracker capacity")
    min_detection_score: float = 0.3
    tracking_keypoints: int = 17

    # Retargeting.
    min_landmark_visibility: float = 0.5
    auto_hide_timeout: float = 0.5
    movement_scale: float = 1.0
    flip_horizontal: bool = False
    bone_mapping: str = Field("mirrored", description="mirrored|direct")
    landmark_layout: str = Field("auto", description="auto|body33|coco17")

    # Horizontal root navigation and face texture.
    x_multiplier: float = 10.0
    x_offset: float = 0.0
    flip_x: bool = True
    move_speed: float = 5.0
    face_scale: float = 1.0

    # Processing loop rate (ticks per second).
    tick_rate: float = 60.0

    @field_validator("receive_port", "send_port")
    @classmethod
    def _validate_port(cls, v: int) -> int:
        if not 0 <= v <= 65535:
            raise ValueError("port must be in [0, 65535]")
        return v

    @field_validator("receive_buffer_size")
    @classmethod
    def _validate_buffer(cls, v: int) -> int:
        if v < 4:
            raise ValueError("receive_buffer_size must be >= 4")
        return v

    @field_validator("jpeg_quality")
    @classmethod
    def _validate_jpeg_quality(cls, v: int) -> int:
        if not 1 <= v <= 100:
            raise ValueError("jpeg_quality must be in [1, 100]")
        return v

    @field_validator("target_width", "target_height", "max_packet_size")
    @classmethod
    def _validate_positive_int(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("value must be > 0")
        return v

    @field_validator("send_fps", "tick_rate")
    @classmethod
    def _validate_rate(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("rate must be > 0")
        return float(v)

    @field_validator("min_cutoff", "derivative_cutoff")
    @classmethod
    def _validate_cutoff(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("cutoff must be > 0")
        return float(v)

    @field_validator("beta", "movement_scale", "move_speed", "x_multiplier")
    @classmethod
    def _validate_non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError("value must be >= 0")
        return float(v)

    @field_validator("max_matching_distance", "body_timeout", "auto_hide_timeout", "face_scale")
    @classmethod
    def _validate_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("value must be > 0")
        return float(v)

    @field_validator("max_tracked_persons")
    @classmethod
    def _validate_capacity(cls, v: int) -> int:
        if not 1 <= v <= 32:
            raise ValueError("max_tracked_persons must be in [1, 32]")
        return v

    @field_validator("tracking_keypoints")
    @classmethod
    def _validate_tracking_keypoints(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("tracking_keypoints must be >= 1")
        return v

    @field_validator("min_detection_score", "min_landmark_visibility")
    @classmethod
    def _validate_unit(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError("value must be in [0, 1]")
        return float(v)

    @field_validator("bone_mapping")
    @classmethod
    def _validate_bone_mapping(cls, v: str) -> str:
        v2 = str(v).strip().lower()
        if v2 not in MAPPINGS:
            raise ValueError(f"bone_mapping must be {'|'.join(sorted(MAPPINGS))}")
        return v2

    @field_validator("landmark_layout")
    @classmethod
    def _validate_landmark_layout(cls, v: str) -> str:
        v2 = str(v).strip().lower()
        if v2 != "auto" and v2 not in LAYOUTS:
            raise ValueError(f"landmark_layout must be auto|{'|'.join(sorted(LAYOUTS))}")
        return v2


# Changing any of these needs new sockets or new rigs; everything else is a live tunable.
RECEIVER_FIELDS = frozenset({"receive_host", "receive_port", "receive_buffer_size"})
SENDER_FIELDS = frozenset(
    {"sender_enabled", "send_host", "send_port", "camera_index", "target_width", "target_height"}
)
RIG_FIELDS = frozenset({"max_tracked_persons", "bone_mapping"})


def settings_to_dict(settings: PoseLinkSettings) -> dict[str, Any]:
    return settings.model_dump()


def changed_fields(old: PoseLinkSettings, new: PoseLinkSettings) -> set[str]:
    """Return the names of fields whose values differ between two settings."""

    a, b = settings_to_dict(old), settings_to_dict(new)
    return {name for name in b if a.get(name) != b[name]}


def _fields_set(obj: PoseLinkSettings) -> set[str]:
    """Return the set of fields explicitly provided/overridden on the model."""

    return set(obj.model_fields_set)


def _config_path() -> Path:
    """Return the YAML configuration path (defaults to config/poselink.config.yml)."""

    return Path(os.getenv("POSELINK_CONFIG", "config/poselink.config.yml"))


def load_settings() -> PoseLinkSettings:
    """Load settings from YAML and environment variables.

    YAML provides defaults; environment variables override.
    """

    data: dict[str, Any] = {}
    path = _config_path()
    if path.exists():
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

    env_settings = PoseLinkSettings()
    env_overrides: dict[str, Any] = {
        name: getattr(env_settings, name) for name in _fields_set(env_settings)
    }

    merged = {**data, **env_overrides}
    return PoseLinkSettings(**merged)
