"""Rig abstraction consumed by the retargeting engine.

The scene graph that owns the real joint transforms lives outside this
package. It is reached through the small `Rig` protocol: per-bone world
rotation/position, a settable hip position and a visibility toggle.
`InMemoryRig` is a headless implementation that simply stores world
transforms; it backs the service's rig pool and the tests.
"""

from __future__ import annotations

import enum
from collections.abc import Iterable, Mapping
from typing import Protocol

import numpy as np
from scipy.spatial.transform import Rotation


class BoneId(str, enum.Enum):
    """Humanoid bones the retargeting tables can address."""

    HIPS = "hips"
    SPINE = "spine"
    NECK = "neck"
    HEAD = "head"
    LEFT_UPPER_ARM = "left_upper_arm"
    LEFT_LOWER_ARM = "left_lower_arm"
    LEFT_HAND = "left_hand"
    RIGHT_UPPER_ARM = "right_upper_arm"
    RIGHT_LOWER_ARM = "right_lower_arm"
    RIGHT_HAND = "right_hand"
    LEFT_UPPER_LEG = "left_upper_leg"
    LEFT_LOWER_LEG = "left_lower_leg"
    LEFT_FOOT = "left_foot"
    RIGHT_UPPER_LEG = "right_upper_leg"
    RIGHT_LOWER_LEG = "right_lower_leg"
    RIGHT_FOOT = "right_foot"


class MissingBoneError(LookupError):
    """A bone required by the mapping table is absent from the rig."""


class Rig(Protocol):
    """World-space view of an articulated skeleton."""

    def has_bone(self, bone: BoneId) -> bool: ...

    def bone_rotation(self, bone: BoneId) -> Rotation: ...

    def bone_position(self, bone: BoneId) -> np.ndarray: ...

    def set_bone_rotation(self, bone: BoneId, rotation: Rotation) -> None: ...

    def hips_position(self) -> np.ndarray: ...

    def set_hips_position(self, position: np.ndarray) -> None: ...

    def set_visible(self, visible: bool) -> None: ...


class InMemoryRig:
    """Rig that keeps world transforms in dictionaries.

    Rotations are stored as given; children are not re-posed when a parent
    rotates, matching how a scene graph exposes per-bone world rotations.
    """

    def __init__(
        self,
        positions: Mapping[BoneId, Iterable[float]],
        rotations: Mapping[BoneId, Rotation] | None = None,
    ) -> None:
        self.positions = {bone: np.asarray(pos, dtype=np.float64) for bone, pos in positions.items()}
        rotations = rotations or {}
        self.rotations = {bone: rotations.get(bone, Rotation.identity()) for bone in self.positions}
        self.visible = True

    def has_bone(self, bone: BoneId) -> bool:
        return bone in self.positions

    def _require(self, bone: BoneId) -> None:
        if bone not in self.positions:
            raise MissingBoneError(bone.value)

    def bone_rotation(self, bone: BoneId) -> Rotation:
        self._require(bone)
        return self.rotations[bone]

    def bone_position(self, bone: BoneId) -> np.ndarray:
        self._require(bone)
        return self.positions[bone].copy()

    def set_bone_rotation(self, bone: BoneId, rotation: Rotation) -> None:
        self._require(bone)
        self.rotations[bone] = rotation

    def hips_position(self) -> np.ndarray:
        return self.bone_position(BoneId.HIPS)

    def set_hips_position(self, position: np.ndarray) -> None:
        self._require(BoneId.HIPS)
        self.positions[BoneId.HIPS] = np.asarray(position, dtype=np.float64).copy()

    def set_visible(self, visible: bool) -> None:
        self.visible = bool(visible)


# Rest positions of a 1.7 m humanoid, metres, Y up, character facing -Z.
# Its left side is +X.
_T_POSE_POSITIONS: dict[BoneId, tuple[float, float, float]] = {
    BoneId.HIPS: (0.0, 1.0, 0.0),
    BoneId.SPINE: (0.0, 1.1, 0.0),
    BoneId.NECK: (0.0, 1.5, 0.0),
    BoneId.HEAD: (0.0, 1.6, 0.0),
    BoneId.LEFT_UPPER_ARM: (0.2, 1.45, 0.0),
    BoneId.LEFT_LOWER_ARM: (0.48, 1.45, 0.0),
    BoneId.LEFT_HAND: (0.73, 1.45, 0.0),
    BoneId.RIGHT_UPPER_ARM: (-0.2, 1.45, 0.0),
    BoneId.RIGHT_LOWER_ARM: (-0.48, 1.45, 0.0),
    BoneId.RIGHT_HAND: (-0.73, 1.45, 0.0),
    BoneId.LEFT_UPPER_LEG: (0.1, 0.95, 0.0),
    BoneId.LEFT_LOWER_LEG: (0.1, 0.5, 0.0),
    BoneId.LEFT_FOOT: (0.1, 0.08, 0.0),
    BoneId.RIGHT_UPPER_LEG: (-0.1, 0.95, 0.0),
    BoneId.RIGHT_LOWER_LEG: (-0.1, 0.5, 0.0),
    BoneId.RIGHT_FOOT: (-0.1, 0.08, 0.0),
}


def t_pose_rig() -> InMemoryRig:
    """Build a humanoid rig standing in a T-pose with identity rest rotations."""

    return InMemoryRig(_T_POSE_POSITIONS)


def a_pose_rig(arm_drop_deg: float = 45.0) -> InMemoryRig:
    """Build a humanoid rig with arms lowered by `arm_drop_deg` (an A-pose)."""

    positions = {bone: np.array(pos) for bone, pos in _T_POSE_POSITIONS.items()}
    rotations: dict[BoneId, Rotation] = {}
    for side, sign in (("LEFT", 1.0), ("RIGHT", -1.0)):
        # Rotating about Z by -sign*angle swings the arm from +-X towards -Y.
        rot = Rotation.from_euler("z", -sign * arm_drop_deg, degrees=True)
        shoulder = positions[BoneId[f"{side}_UPPER_ARM"]]
        for name in (f"{side}_UPPER_ARM", f"{side}_LOWER_ARM", f"{side}_HAND"):
            bone = BoneId[name]
            positions[bone] = shoulder + rot.apply(positions[bone] - shoulder)
            rotations[bone] = rot
    return InMemoryRig(positions, rotations)
