"""Pydantic models for the HTTP/WS API."""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator

from poselink.core.retarget.mapping import LAYOUTS, MAPPINGS


class PersonSchema(BaseModel):
    """Tracked person payload."""

    id: int
    slot: int | None
    visible: bool
    last_seen: float
    hips_position: tuple[float, float, float] | None
    bone_rotations: dict[str, tuple[float, float, float, float]]
    root_x: float | None = None
    face_window: tuple[float, float, float, float] | None = None


class TickSchema(BaseModel):
    """Per-tick pose payload."""

    tick_id: int
    timestamp: float
    persons: list[PersonSchema]
    packets_processed: int
    decode_errors: int
    packets_received: int = 0
    packets_overwritten: int = 0
    fps: float


class StatsSchema(BaseModel):
    """High-level summary stats payload."""

    tracked_persons: int
    visible_rigs: int
    fps: float
    packets_received: int
    packets_processed: int
    packets_overwritten: int
    decode_errors: int
    frames_sent: int = 0
    frames_dropped: int = 0
    error: str | None = None


class ConfigSchema(BaseModel):
    """Runtime configuration payload.

    Fields left out of a POST keep their current value.
    """

    receive_host: str = "0.0.0.0"
    receive_port: int = Field(default=5005, ge=0, le=65535)
    receive_buffer_size: int = Field(default=65535, ge=4)
    sender_enabled: bool = False
    send_host: str = "127.0.0.1"
    send_port: int = Field(default=5004, ge=0, le=65535)
    camera_index: int = 0
    target_width: int = Field(default=640, gt=0)
    target_height: int = Field(default=360, gt=0)
    jpeg_quality: int = Field(default=50, ge=1, le=100)
    max_packet_size: int = Field(default=8192, gt=0)
    send_fps: float = Field(default=30.0, gt=0)
    smoothing_enabled: bool = True
    min_cutoff: float = Field(default=1.0, gt=0)
    beta: float = Field(default=0.0, ge=0)
    derivative_cutoff: float = Field(default=1.0, gt=0)
    max_matching_distance: float = Field(default=0.2, gt=0)
    body_timeout: float = Field(default=0.5, gt=0)
    max_tracked_persons: int = Field(default=5, ge=1, le=32)
    min_detection_score: float = Field(default=0.3, ge=0.0, le=1.0)
    tracking_keypoints: int = Field(default=17, ge=1)
    min_landmark_visibility: float = Field(default=0.5, ge=0.0, le=1.0)
    auto_hide_timeout: float = Field(default=0.5, gt=0)
    movement_scale: float = Field(default=1.0, ge=0)
    flip_horizontal: bool = False
    bone_mapping: str = "mirrored"
    landmark_layout: str = "auto"
    x_multiplier: float = Field(default=10.0, ge=0)
    x_offset: float = 0.0
    flip_x: bool = True
    move_speed: float = Field(default=5.0, ge=0)
    face_scale: float = Field(default=1.0, gt=0)
    tick_rate: float = Field(default=60.0, gt=0)

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
