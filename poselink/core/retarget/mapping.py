"""Bone-to-joint tables and landmark helpers for retargeting.

Bone tables name anatomical joints, not landmark indices. A `LandmarkLayout`
says where a detector puts each joint: the 33-point body layout (0 = nose,
11/12 = shoulders, 23/24 = hips, ...) or the 17-point COCO layout produced by
MoveNet-style detectors (5/6 = shoulders, 11/12 = hips, ...). Two derived
points that no detector sends, mid-shoulder and mid-hip, are computed from
their source joints.

Whether the detector's left arm drives the rig's left or right arm depends on
the coordinate convention of the source (mirrored selfie view or not). Both
tables are provided and the choice is a setting; `validate_mapping` checks a
table against a reference pose instead of trusting either convention.
"""

from __future__ import annotations

import enum
from collections.abc import Mapping
from dataclasses import dataclass

import numpy as np

from poselink.core.retarget.rig import BoneId, Rig

# Indices in the 33-point body layout.
NOSE = 0
LEFT_SHOULDER = 11
RIGHT_SHOULDER = 12
LEFT_ELBOW = 13
RIGHT_ELBOW = 14
LEFT_WRIST = 15
RIGHT_WRIST = 16
LEFT_HIP = 23
RIGHT_HIP = 24
LEFT_KNEE = 25
RIGHT_KNEE = 26
LEFT_ANKLE = 27
RIGHT_ANKLE = 28

NUM_BODY_LANDMARKS = 33


class Joint(enum.Enum):
    NOSE = "nose"
    LEFT_SHOULDER = "left_shoulder"
    RIGHT_SHOULDER = "right_shoulder"
    LEFT_ELBOW = "left_elbow"
    RIGHT_ELBOW = "right_elbow"
    LEFT_WRIST = "left_wrist"
    RIGHT_WRIST = "right_wrist"
    LEFT_HIP = "left_hip"
    RIGHT_HIP = "right_hip"
    LEFT_KNEE = "left_knee"
    RIGHT_KNEE = "right_knee"
    LEFT_ANKLE = "left_ankle"
    RIGHT_ANKLE = "right_ankle"
    # Synthesized, never sent by a detector.
    MID_SHOULDER = "mid_shoulder"
    MID_HIP = "mid_hip"


VIRTUAL_JOINTS: dict[Joint, tuple[Joint, Joint]] = {
    Joint.MID_SHOULDER: (Joint.LEFT_SHOULDER, Joint.RIGHT_SHOULDER),
    Joint.MID_HIP: (Joint.LEFT_HIP, Joint.RIGHT_HIP),
}


@dataclass(frozen=True)
class LandmarkLayout:
    """Landmark index of each joint for one detector keypoint layout."""

    name: str
    size: int
    indices: Mapping[Joint, int]


BODY33 = LandmarkLayout(
    "body33",
    NUM_BODY_LANDMARKS,
    {
        Joint.NOSE: NOSE,
        Joint.LEFT_SHOULDER: LEFT_SHOULDER,
        Joint.RIGHT_SHOULDER: RIGHT_SHOULDER,
        Joint.LEFT_ELBOW: LEFT_ELBOW,
        Joint.RIGHT_ELBOW: RIGHT_ELBOW,
        Joint.LEFT_WRIST: LEFT_WRIST,
        Joint.RIGHT_WRIST: RIGHT_WRIST,
        Joint.LEFT_HIP: LEFT_HIP,
        Joint.RIGHT_HIP: RIGHT_HIP,
        Joint.LEFT_KNEE: LEFT_KNEE,
        Joint.RIGHT_KNEE: RIGHT_KNEE,
        Joint.LEFT_ANKLE: LEFT_ANKLE,
        Joint.RIGHT_ANKLE: RIGHT_ANKLE,
    },
)

COCO17 = LandmarkLayout(
    "coco17",
    17,
    {
        Joint.NOSE: 0,
        Joint.LEFT_SHOULDER: 5,
        Joint.RIGHT_SHOULDER: 6,
        Joint.LEFT_ELBOW: 7,
        Joint.RIGHT_ELBOW: 8,
        Joint.LEFT_WRIST: 9,
        Joint.RIGHT_WRIST: 10,
        Joint.LEFT_HIP: 11,
        Joint.RIGHT_HIP: 12,
        Joint.LEFT_KNEE: 13,
        Joint.RIGHT_KNEE: 14,
        Joint.LEFT_ANKLE: 15,
        Joint.RIGHT_ANKLE: 16,
    },
)

LAYOUTS: dict[str, LandmarkLayout] = {"body33": BODY33, "coco17": COCO17}


def layout_for(count: int, name: str = "auto") -> LandmarkLayout:
    """Layout named `name`, or for "auto" the one matching `count` landmarks."""

    if name != "auto":
        try:
            return LAYOUTS[name]
        except KeyError:
            raise ValueError(
                f"unknown landmark layout {name!r}; expected auto or one of {sorted(LAYOUTS)}"
            ) from None
    return BODY33 if count >= BODY33.size else COCO17


@dataclass(frozen=True)
class BoneMapping:
    """`bone` points from joint `start` towards joint `end`.

    `child` is the rig bone whose rest position gives the bone's rest
    direction.
    """

    bone: BoneId
    start: Joint
    end: Joint
    child: BoneId


MIRRORED_MAPPING: tuple[BoneMapping, ...] = (
    BoneMapping(BoneId.SPINE, Joint.MID_HIP, Joint.MID_SHOULDER, BoneId.NECK),
    # Rig right arm <- detector left arm.
    BoneMapping(BoneId.RIGHT_UPPER_ARM, Joint.LEFT_SHOULDER, Joint.LEFT_ELBOW, BoneId.RIGHT_LOWER_ARM),
    BoneMapping(BoneId.RIGHT_LOWER_ARM, Joint.LEFT_ELBOW, Joint.LEFT_WRIST, BoneId.RIGHT_HAND),
    BoneMapping(BoneId.LEFT_UPPER_ARM, Joint.RIGHT_SHOULDER, Joint.RIGHT_ELBOW, BoneId.LEFT_LOWER_ARM),
    BoneMapping(BoneId.LEFT_LOWER_ARM, Joint.RIGHT_ELBOW, Joint.RIGHT_WRIST, BoneId.LEFT_HAND),
    BoneMapping(BoneId.RIGHT_UPPER_LEG, Joint.LEFT_HIP, Joint.LEFT_KNEE, BoneId.RIGHT_LOWER_LEG),
    BoneMapping(BoneId.RIGHT_LOWER_LEG, Joint.LEFT_KNEE, Joint.LEFT_ANKLE, BoneId.RIGHT_FOOT),
    BoneMapping(BoneId.LEFT_UPPER_LEG, Joint.RIGHT_HIP, Joint.RIGHT_KNEE, BoneId.LEFT_LOWER_LEG),
    BoneMapping(BoneId.LEFT_LOWER_LEG, Joint.RIGHT_KNEE, Joint.RIGHT_ANKLE, BoneId.LEFT_FOOT),
)

DIRECT_MAPPING: tuple[BoneMapping, ...] = (
    BoneMapping(BoneId.SPINE, Joint.MID_HIP, Joint.MID_SHOULDER, BoneId.NECK),
    BoneMapping(BoneId.LEFT_UPPER_ARM, Joint.LEFT_SHOULDER, Joint.LEFT_ELBOW, BoneId.LEFT_LOWER_ARM),
    BoneMapping(BoneId.LEFT_LOWER_ARM, Joint.LEFT_ELBOW, Joint.LEFT_WRIST, BoneId.LEFT_HAND),
    BoneMapping(BoneId.RIGHT_UPPER_ARM, Joint.RIGHT_SHOULDER, Joint.RIGHT_ELBOW, BoneId.RIGHT_LOWER_ARM),
    BoneMapping(BoneId.RIGHT_LOWER_ARM, Joint.RIGHT_ELBOW, Joint.RIGHT_WRIST, BoneId.RIGHT_HAND),
    BoneMapping(BoneId.LEFT_UPPER_LEG, Joint.LEFT_HIP, Joint.LEFT_KNEE, BoneId.LEFT_LOWER_LEG),
    BoneMapping(BoneId.LEFT_LOWER_LEG, Joint.LEFT_KNEE, Joint.LEFT_ANKLE, BoneId.LEFT_FOOT),
    BoneMapping(BoneId.RIGHT_UPPER_LEG, Joint.RIGHT_HIP, Joint.RIGHT_KNEE, BoneId.RIGHT_LOWER_LEG),
    BoneMapping(BoneId.RIGHT_LOWER_LEG, Joint.RIGHT_KNEE, Joint.RIGHT_ANKLE, BoneId.RIGHT_FOOT),
)

MAPPINGS: dict[str, tuple[BoneMapping, ...]] = {
    "mirrored": MIRRORED_MAPPING,
    "direct": DIRECT_MAPPING,
}


def mapping_by_name(name: str) -> tuple[BoneMapping, ...]:
    try:
        return MAPPINGS[name]
    except KeyError:
        raise ValueError(f"unknown bone mapping {name!r}; expected one of {sorted(MAPPINGS)}") from None


def to_rig_space(points: np.ndarray, flip_horizontal: bool = False) -> np.ndarray:
    """Convert detector coordinates (x right, y down) to rig space (y up)."""

    out = np.asarray(points, dtype=np.float64)[:, :3].copy()
    out[:, 1] = -out[:, 1]
    if flip_horizontal:
        out[:, 0] = -out[:, 0]
    return out


class LandmarkView:
    """Joint positions and visibilities of one person, real and virtual."""

    def __init__(self, points: np.ndarray, scores: np.ndarray, layout: LandmarkLayout = BODY33) -> None:
        self.points = points
        self.scores = scores
        self.layout = layout

    def _index(self, joint: Joint) -> int | None:
        index = self.layout.indices.get(joint)
        if index is None or index >= min(self.points.shape[0], self.scores.shape[0]):
            return None
        return index

    def point(self, joint: Joint) -> np.ndarray | None:
        if joint in VIRTUAL_JOINTS:
            a, b = VIRTUAL_JOINTS[joint]
            pa, pb = self.point(a), self.point(b)
            if pa is None or pb is None:
                return None
            return (pa + pb) * 0.5
        index = self._index(joint)
        return None if index is None else self.points[index]

    def visibility(self, joint: Joint) -> float:
        if joint in VIRTUAL_JOINTS:
            a, b = VIRTUAL_JOINTS[joint]
            # Conservative: a derived point is only as visible as its weakest source.
            return min(self.visibility(a), self.visibility(b))
        index = self._index(joint)
        return 0.0 if index is None else float(self.scores[index])


def required_bones(mapping: tuple[BoneMapping, ...]) -> set[BoneId]:
    bones = {BoneId.HIPS}
    for m in mapping:
        bones.add(m.bone)
        bones.add(m.child)
    return bones


def reference_landmarks(
    rig: Rig,
    mapping: tuple[BoneMapping, ...],
    flip_horizontal: bool = False,
    layout: LandmarkLayout = BODY33,
) -> np.ndarray:
    """Landmarks (N, 4) a detector would report for the rig's own rest pose.

    Each mapped joint is placed on the rig joint it stands for, then converted
    back to detector coordinates with full visibility.
    """

    out = np.zeros((layout.size, 4), dtype=np.float64)
    for m in mapping:
        for joint, bone in ((m.start, m.bone), (m.end, m.child)):
            if joint in VIRTUAL_JOINTS:
                continue
            index = layout.indices[joint]
            out[index, :3] = rig.bone_position(bone)
            out[index, 3] = 1.0
    out[:, 1] = -out[:, 1]
    if flip_horizontal:
        out[:, 0] = -out[:, 0]
    return out


def validate_mapping(
    mapping: tuple[BoneMapping, ...],
    rest_directions: Mapping[BoneId, np.ndarray],
    landmarks: np.ndarray,
    flip_horizontal: bool = False,
    min_cosine: float = 0.9,
) -> list[BoneId]:
    """Return the bones whose direction in a reference pose disagrees with the rest pose.

    `landmarks` are (N, 4) detector-space landmarks of a person standing in the
    rig's rest pose, in either layout. An empty result means the table is
    consistent with the source's convention.
    """

    landmarks = np.asarray(landmarks)
    view = LandmarkView(
        to_rig_space(landmarks, flip_horizontal), landmarks[:, 3], layout_for(landmarks.shape[0])
    )
    mismatched: list[BoneId] = []
    for m in mapping:
        start, end = view.point(m.start), view.point(m.end)
        rest = rest_directions.get(m.bone)
        if start is None or end is None or rest is None:
            mismatched.append(m.bone)
            continue
        direction = end - start
        norm = np.linalg.norm(direction)
        if norm < 1e-9 or float(np.dot(direction / norm, rest)) < min_cosine:
            mismatched.append(m.bone)
    return mismatched
