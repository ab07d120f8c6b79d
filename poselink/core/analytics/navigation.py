"""Screen-space helpers derived from raw detections.

Computes the horizontal navigation target of a character, the face texture
window used to paste the live camera face onto a character, and the mapping
from normalized image coordinates to a display surface.
"""

from __future__ import annotations

from dataclasses import dataclass

from poselink.core.types import PersonDetection, Point, Rect

SHOULDER_VISIBILITY = 0.5


def anchor_x(det: PersonDetection) -> float:
    """Pick the normalized x used for navigation.

    Priority: shoulder centre (when visible) > face centre (when a face was
    found) > detection centre.
    """

    if det.shoulder_visibility > SHOULDER_VISIBILITY:
        return float(det.shoulder_center[0])
    fx, _fy, fw, _fh = det.face_rect
    if fw > 0:
        return float(fx + fw * 0.5)
    return float(det.center[0])


def horizontal_target(
    det: PersonDetection, x_multiplier: float = 10.0, x_offset: float = 0.0, flip_x: bool = True
) -> float:
    """World-space x a character should walk to for this detection."""

    centered = anchor_x(det) - 0.5
    if flip_x:
        centered = -centered
    return centered * x_multiplier + x_offset


def step_towards(current: float | None, target: float, dt: float, move_speed: float) -> float:
    """Move `current` towards `target` by the frame-rate independent factor dt * move_speed."""

    if current is None:
        return target
    t = min(max(dt * move_speed, 0.0), 1.0)
    return current + (target - current) * t


@dataclass(frozen=True)
class TextureWindow:
    """UV scale and offset selecting the face inside the camera texture."""

    scale: tuple[float, float]
    offset: tuple[float, float]


def face_texture_rect(face_rect: Rect, face_scale: float = 1.0) -> TextureWindow | None:
    """Scale the face rect around its centre and convert it to texture UVs.

    Image rows grow downwards while texture V grows upwards, hence the flip.
    Returns None when the detector found no face.
    """

    fx, fy, fw, fh = face_rect
    if fw <= 0 or fh <= 0:
        return None
    cx = fx + fw * 0.5
    cy = fy + fh * 0.5
    w = fw * face_scale
    h = fh * face_scale
    left = cx - w * 0.5
    top = cy - h * 0.5
    return TextureWindow(scale=(w, h), offset=(left, 1.0 - (top + h)))


def normalized_to_local(point: Point, width: float, height: float) -> Point:
    """Map a normalized (top-left origin) point onto a centred display rect (y up)."""

    x, y = point
    return (x - 0.5) * width, (0.5 - y) * height
