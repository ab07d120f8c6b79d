"""Direction-based retargeting of tracked landmarks onto a rig.

For every mapped bone the rest pose gives a world rotation and a world
direction (bone joint -> child joint). At runtime the bone is rotated by the
minimal rotation taking that rest direction onto the direction between its two
landmarks, applied on top of the rest rotation. The rig's rest pose therefore
does not matter (T-pose, A-pose, anything else).
"""

from __future__ import annotations

import logging
import math
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

import numpy as np
from scipy.spatial.transform import Rotation

from poselink.core.retarget.mapping import (
    BoneMapping,
    Joint,
    LandmarkView,
    MIRRORED_MAPPING,
    layout_for,
    reference_landmarks,
    required_bones,
    to_rig_space,
    validate_mapping,
)
from poselink.core.retarget.rig import BoneId, MissingBoneError, Rig
from poselink.core.types import TrackedPerson

logger = logging.getLogger(__name__)

_EPS = 1e-9


def rotation_between(source: np.ndarray, target: np.ndarray) -> Rotation:
    """Minimal rotation mapping direction `source` onto direction `target`."""

    a = np.asarray(source, dtype=np.float64)
    b = np.asarray(target, dtype=np.float64)
    a = a / np.linalg.norm(a)
    b = b / np.linalg.norm(b)
    axis = np.cross(a, b)
    sin = float(np.linalg.norm(axis))
    cos = float(np.dot(a, b))
    if sin < _EPS:
        if cos > 0.0:
            return Rotation.identity()
        # Opposite directions: half turn about any axis orthogonal to `a`.
        ortho = np.cross(a, (1.0, 0.0, 0.0))
        if np.linalg.norm(ortho) < 1e-6:
            ortho = np.cross(a, (0.0, 1.0, 0.0))
        return Rotation.from_rotvec(ortho / np.linalg.norm(ortho) * math.pi)
    return Rotation.from_rotvec(axis / sin * math.atan2(sin, cos))


@dataclass(frozen=True)
class RestPoseCapture:
    """Rest rotations/directions of the mapped bones, captured once per rig."""

    rotations: Mapping[BoneId, Rotation]
    directions: Mapping[BoneId, np.ndarray]
    hips_position: np.ndarray


class RigBinding:
    """A rig checked against a mapping table, with its rest pose captured.

    Every bone the table needs is resolved up front; a missing bone fails here
    rather than on some later frame. The table is then checked against a
    reference pose (by default the one the table itself predicts for this rig)
    and disagreeing bones are logged.
    """

    def __init__(
        self,
        rig: Rig,
        mapping: tuple[BoneMapping, ...] = MIRRORED_MAPPING,
        flip_horizontal: bool = False,
        reference: np.ndarray | None = None,
    ) -> None:
        missing = sorted(b.value for b in required_bones(mapping) if not rig.has_bone(b))
        if missing:
            raise MissingBoneError(f"rig is missing bones: {', '.join(missing)}")
        self.rig = rig
        self.mapping = mapping
        self.rest = self._capture()
        logger.debug("Captured rest pose for %d mapped bones", len(mapping))
        self.mismatched = self._validate(flip_horizontal, reference)

    def _capture(self) -> RestPoseCapture:
        rotations: dict[BoneId, Rotation] = {}
        directions: dict[BoneId, np.ndarray] = {}
        for m in self.mapping:
            rotations[m.bone] = self.rig.bone_rotation(m.bone)
            direction = self.rig.bone_position(m.child) - self.rig.bone_position(m.bone)
            norm = np.linalg.norm(direction)
            if norm < _EPS:
                raise ValueError(f"bone {m.bone.value} has zero length in the rest pose")
            unit = direction / norm
            unit.setflags(write=False)
            directions[m.bone] = unit
        hips = self.rig.hips_position()
        hips.setflags(write=False)
        return RestPoseCapture(
            rotations=MappingProxyType(rotations),
            directions=MappingProxyType(directions),
            hips_position=hips,
        )

    def _validate(self, flip_horizontal: bool, reference: np.ndarray | None) -> list[BoneId]:
        if reference is None:
            reference = reference_landmarks(self.rig, self.mapping, flip_horizontal)
        mismatched = validate_mapping(self.mapping, self.rest.directions, reference, flip_horizontal)
        if mismatched:
            logger.warning(
                "Bone table disagrees with the reference pose for: %s",
                ", ".join(b.value for b in mismatched),
            )
        return mismatched


@dataclass
class RetargetResult:
    """What one `apply` call changed on the rig."""

    updated: list[BoneId] = field(default_factory=list)
    held: list[BoneId] = field(default_factory=list)
    hips_position: np.ndarray | None = None

    @property
    def any_update(self) -> bool:
        return bool(self.updated) or self.hips_position is not None


class RetargetingEngine:
    """Drives one bound rig from a tracked person's filtered landmarks."""

    def __init__(
        self,
        binding: RigBinding,
        min_landmark_visibility: float = 0.5,
        movement_scale: float = 1.0,
        flip_horizontal: bool = False,
        landmark_layout: str = "auto",
    ) -> None:
        self.binding = binding
        self.min_landmark_visibility = min_landmark_visibility
        self.movement_scale = movement_scale
        self.flip_horizontal = flip_horizontal
        self.landmark_layout = landmark_layout
        self.applied: dict[BoneId, Rotation] = dict(binding.rest.rotations)
        self.hips_position = binding.rest.hips_position.copy()

    @property
    def rig(self) -> Rig:
        return self.binding.rig

    def configure(self, settings) -> None:
        self.min_landmark_visibility = float(settings.min_landmark_visibility)
        self.movement_scale = float(settings.movement_scale)
        self.flip_horizontal = bool(settings.flip_horizontal)
        self.landmark_layout = str(settings.landmark_layout)

    def _visible(self, view: LandmarkView, *joints: Joint) -> bool:
        return all(view.visibility(j) >= self.min_landmark_visibility for j in joints)

    def target_rotation(self, m: BoneMapping, view: LandmarkView) -> Rotation | None:
        """Rotation for bone `m`, or None when its landmarks cannot be used."""

        start, end = view.point(m.start), view.point(m.end)
        if start is None or end is None:
            return None
        direction = end - start
        if np.linalg.norm(direction) < _EPS:
            return None
        rest = self.binding.rest
        return rotation_between(rest.directions[m.bone], direction) * rest.rotations[m.bone]

    def apply(self, person: TrackedPerson) -> RetargetResult:
        """Pose the rig from `person`; gated bones keep their last rotation."""

        layout = layout_for(person.landmarks.shape[0], self.landmark_layout)
        view = LandmarkView(
            to_rig_space(person.landmarks, self.flip_horizontal), person.scores, layout
        )
        result = RetargetResult()

        if self._visible(view, Joint.MID_HIP):
            mid_hip = view.point(Joint.MID_HIP)
            if mid_hip is not None:
                hips = self.binding.rest.hips_position + mid_hip * self.movement_scale
                self.rig.set_hips_position(hips)
                self.hips_position = hips
                result.hips_position = hips

        for m in self.binding.mapping:
            rotation = None
            if self._visible(view, m.start, m.end):
                rotation = self.target_rotation(m, view)
            if rotation is None:
                result.held.append(m.bone)
                continue
            self.rig.set_bone_rotation(m.bone, rotation)
            self.applied[m.bone] = rotation
            result.updated.append(m.bone)
        return result

    def quaternions(self) -> dict[str, tuple[float, float, float, float]]:
        """Last applied rotation per bone as (x, y, z, w)."""

        return {
            bone.value: tuple(float(v) for v in rot.as_quat()) for bone, rot in self.applied.items()
        }


class VisibilityMonitor:
    """Hides a rig after `timeout` seconds without a valid update.

    The rig is shown again on the next valid update; its pose is left as is.
    """

    def __init__(self, rig: Rig, timeout: float = 0.5) -> None:
        self.rig = rig
        self.timeout = timeout
        self.visible = False
        self.last_update: float | None = None
        rig.set_visible(False)

    def mark_updated(self, now: float) -> bool:
        """Record a valid update; return True if the rig was just shown."""

        self.last_update = now
        if self.visible:
            return False
        self.visible = True
        self.rig.set_visible(True)
        return True

    def check(self, now: float) -> bool:
        """Hide the rig if it timed out; return True if it was just hidden."""

        if not self.visible or self.last_update is None:
            return False
        if now - self.last_update <= self.timeout:
            return False
        self.hide()
        return True

    def hide(self) -> None:
        self.visible = False
        self.rig.set_visible(False)
