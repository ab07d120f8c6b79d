"""Shared type definitions used across the bridge.

Small, stable types (detections, packets, tracked persons and per-tick
summaries) live here so the codec, tracker and retargeting code can stay
strongly typed.
"""

from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np

Frame = np.ndarray

Point = tuple[float, float]
Size = tuple[float, float]
Rect = tuple[float, float, float, float]


def empty_landmarks() -> np.ndarray:
    return np.zeros((0, 4), dtype=np.float32)


@dataclass
class PersonDetection:
    """One person as reported by the detector for a single frame.

    `id` is detector-assigned and only a hint; it may be reused or missing
    across frames. `score` is the aggregate detector confidence when the
    source provides one (it is not part of the wire format).
    """

    id: int
    center: Point = (0.0, 0.0)
    bbox_size: Size = (0.0, 0.0)
    face_rect: Rect = (0.0, 0.0, 0.0, 0.0)
    shoulder_center: Point = (0.0, 0.0)
    shoulder_visibility: float = 0.0
    landmarks: np.ndarray = field(default_factory=empty_landmarks)  # shape: (N, 4)
    score: float | None = None

    @property
    def num_landmarks(self) -> int:
        return int(self.landmarks.shape[0])


@dataclass
class PosePacket:
    """All people decoded from one datagram."""

    people: list[PersonDetection] = field(default_factory=list)


@dataclass
class TrackedPerson:
    """Stable-identity record maintained by the identity tracker."""

    id: int
    landmarks: np.ndarray  # filtered, shape: (N, 3)
    scores: np.ndarray  # raw visibility, shape: (N,)
    last_seen: float
    created_at: float
    detection: PersonDetection | None = None


@dataclass
class PersonSummary:
    """Per-person payload published after each tick."""

    id: int
    slot: int | None
    visible: bool
    last_seen: float
    hips_position: tuple[float, float, float] | None
    bone_rotations: dict[str, tuple[float, float, float, float]]
    root_x: float | None = None
    # (scale_u, scale_v, offset_u, offset_v) of the face inside the camera texture.
    face_window: tuple[float, float, float, float] | None = None


@dataclass
class TickSummary:
    """Metadata produced by one processing tick."""

    tick_id: int
    timestamp: float
    persons: list[PersonSummary]
    packets_processed: int
    decode_errors: int
    packets_received: int = 0
    packets_overwritten: int = 0
    fps: float = 0.0
