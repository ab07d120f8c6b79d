import logging

import numpy as np
import pytest
from scipy.spatial.transform import Rotation

from poselink.core.retarget.engine import (
    RetargetingEngine,
    RigBinding,
    VisibilityMonitor,
    rotation_between,
)
from poselink.core.retarget.mapping import (
    BODY33,
    COCO17,
    DIRECT_MAPPING,
    LEFT_ELBOW,
    LEFT_HIP,
    LEFT_SHOULDER,
    LEFT_WRIST,
    MIRRORED_MAPPING,
    RIGHT_HIP,
    Joint,
    LandmarkView,
    layout_for,
    mapping_by_name,
    reference_landmarks,
    to_rig_space,
    validate_mapping,
)
from poselink.core.retarget.pool import RigPool
from poselink.core.retarget.rig import BoneId, InMemoryRig, MissingBoneError, a_pose_rig, t_pose_rig
from poselink.core.types import TrackedPerson


def _person(landmarks: np.ndarray, pid: int = 1) -> TrackedPerson:
    return TrackedPerson(
        id=pid,
        landmarks=np.asarray(landmarks[:, :3], dtype=np.float64),
        scores=np.asarray(landmarks[:, 3], dtype=np.float64),
        last_seen=0.0,
        created_at=0.0,
    )


def _same_rotation(a: Rotation, b: Rotation) -> bool:
    return (a * b.inv()).magnitude() < 1e-6


def test_rotation_between_cases():
    x, y = np.array([1.0, 0, 0]), np.array([0, 1.0, 0])
    assert rotation_between(x, x * 3).magnitude() < 1e-9
    assert np.allclose(rotation_between(x, y).apply(x), y)
    flipped = rotation_between(x, -x)
    assert np.allclose(flipped.apply(x), -x)
    assert flipped.magnitude() == pytest.approx(np.pi)


def test_rest_pose_input_keeps_rest_rotations():
    for rig in (t_pose_rig(), a_pose_rig(40.0)):
        binding = RigBinding(rig, MIRRORED_MAPPING)
        engine = RetargetingEngine(binding)
        result = engine.apply(_person(reference_landmarks(rig, MIRRORED_MAPPING)))

        assert sorted(result.updated) == sorted(m.bone for m in MIRRORED_MAPPING)
        for m in MIRRORED_MAPPING:
            assert _same_rotation(rig.bone_rotation(m.bone), binding.rest.rotations[m.bone])


def test_lowered_arm_points_down_on_any_rest_pose():
    for rig in (t_pose_rig(), a_pose_rig()):
        binding = RigBinding(rig, MIRRORED_MAPPING)
        engine = RetargetingEngine(binding)
        lm = reference_landmarks(rig, MIRRORED_MAPPING)
        # detector left arm hangs straight down (image y grows downwards)
        lm[LEFT_ELBOW, :3] = lm[LEFT_SHOULDER, :3] + (0.0, 0.3, 0.0)
        lm[LEFT_WRIST, :3] = lm[LEFT_ELBOW, :3] + (0.0, 0.25, 0.0)
        engine.apply(_person(lm))

        # rig right arm mirrors the detector left arm
        rot = rig.bone_rotation(BoneId.RIGHT_UPPER_ARM) * binding.rest.rotations[
            BoneId.RIGHT_UPPER_ARM
        ].inv()
        down = rot.apply(binding.rest.directions[BoneId.RIGHT_UPPER_ARM])
        assert np.allclose(down, (0.0, -1.0, 0.0), atol=1e-6)


def test_low_visibility_holds_previous_rotation():
    rig = t_pose_rig()
    engine = RetargetingEngine(RigBinding(rig), min_landmark_visibility=0.5)
    lm = reference_landmarks(rig, MIRRORED_MAPPING)
    lm[LEFT_ELBOW, :3] = lm[LEFT_SHOULDER, :3] + (0.0, 0.3, 0.0)
    engine.apply(_person(lm))
    before = rig.bone_rotation(BoneId.RIGHT_UPPER_ARM)

    moved = lm.copy()
    moved[LEFT_ELBOW, :3] = lm[LEFT_SHOULDER, :3] + (0.3, 0.0, 0.0)
    moved[LEFT_ELBOW, 3] = 0.2
    result = engine.apply(_person(moved))

    assert BoneId.RIGHT_UPPER_ARM in result.held
    assert BoneId.RIGHT_LOWER_ARM in result.held
    assert _same_rotation(rig.bone_rotation(BoneId.RIGHT_UPPER_ARM), before)
    assert _same_rotation(engine.applied[BoneId.RIGHT_UPPER_ARM], before)


def test_hips_follow_mid_hip_with_scale():
    rig = t_pose_rig()
    engine = RetargetingEngine(RigBinding(rig), movement_scale=2.0)
    lm = reference_landmarks(rig, MIRRORED_MAPPING)
    lm[LEFT_HIP, 0] += 0.1
    lm[RIGHT_HIP, 0] += 0.1
    result = engine.apply(_person(lm))

    mid = (to_rig_space(lm)[LEFT_HIP] + to_rig_space(lm)[RIGHT_HIP]) / 2
    expected = np.array([0.0, 1.0, 0.0]) + mid * 2.0
    assert np.allclose(result.hips_position, expected)
    assert np.allclose(rig.hips_position(), expected)


def test_hidden_hips_are_not_moved():
    rig = t_pose_rig()
    engine = RetargetingEngine(RigBinding(rig))
    lm = reference_landmarks(rig, MIRRORED_MAPPING)
    lm[RIGHT_HIP, 3] = 0.1
    result = engine.apply(_person(lm))
    assert result.hips_position is None
    assert np.allclose(rig.hips_position(), (0.0, 1.0, 0.0))


def test_missing_bone_fails_at_binding():
    positions = {b: p for b, p in t_pose_rig().positions.items() if b != BoneId.LEFT_HAND}
    with pytest.raises(MissingBoneError):
        RigBinding(InMemoryRig(positions))


def test_quaternions_are_xyzw():
    engine = RetargetingEngine(RigBinding(t_pose_rig()))
    quats = engine.quaternions()
    assert quats[BoneId.SPINE.value] == pytest.approx((0.0, 0.0, 0.0, 1.0))


def test_virtual_landmarks():
    points = np.zeros((33, 3))
    points[LEFT_HIP] = (1.0, 0.0, 0.0)
    points[RIGHT_HIP] = (3.0, 2.0, 0.0)
    scores = np.ones(33)
    scores[RIGHT_HIP] = 0.4
    view = LandmarkView(points, scores)
    assert np.allclose(view.point(Joint.MID_HIP), (2.0, 1.0, 0.0))
    assert view.visibility(Joint.MID_HIP) == 0.4

    short = LandmarkView(np.zeros((5, 3)), np.ones(5), COCO17)
    assert short.point(Joint.LEFT_HIP) is None
    assert short.visibility(Joint.MID_HIP) == 0.0


def test_layout_for():
    assert layout_for(33) is BODY33
    assert layout_for(17) is COCO17
    assert layout_for(33, "coco17") is COCO17
    with pytest.raises(ValueError):
        layout_for(17, "halpe26")


def test_coco_landmarks_drive_every_bone():
    rig = t_pose_rig()
    engine = RetargetingEngine(RigBinding(rig))
    idx = COCO17.indices
    lm = reference_landmarks(rig, MIRRORED_MAPPING, layout=COCO17)
    lm[idx[Joint.LEFT_ELBOW], :3] = lm[idx[Joint.LEFT_SHOULDER], :3] + (0.0, 0.3, 0.0)
    result = engine.apply(_person(lm))

    assert sorted(result.updated) == sorted(m.bone for m in MIRRORED_MAPPING)
    assert result.held == []
    assert result.hips_position is not None
    assert not _same_rotation(rig.bone_rotation(BoneId.RIGHT_UPPER_ARM), Rotation.identity())


def test_forced_layout_reads_other_indices():
    rig = t_pose_rig()
    engine = RetargetingEngine(RigBinding(rig), landmark_layout="body33")
    # 17 landmarks read as the 33-point layout: hips and legs are out of range
    result = engine.apply(_person(reference_landmarks(rig, MIRRORED_MAPPING, layout=COCO17)))
    assert BoneId.RIGHT_UPPER_LEG in result.held
    assert result.hips_position is None


def test_validate_mapping_flags_wrong_table():
    rig = t_pose_rig()
    rest = RigBinding(rig, MIRRORED_MAPPING).rest.directions
    lm = reference_landmarks(rig, MIRRORED_MAPPING)
    assert validate_mapping(MIRRORED_MAPPING, rest, lm) == []

    direct_rest = RigBinding(t_pose_rig(), DIRECT_MAPPING).rest.directions
    wrong = validate_mapping(DIRECT_MAPPING, direct_rest, lm)
    assert BoneId.LEFT_UPPER_ARM in wrong
    assert BoneId.RIGHT_UPPER_ARM in wrong
    assert BoneId.SPINE not in wrong


def test_binding_warns_when_table_disagrees_with_reference(caplog: pytest.LogCaptureFixture):
    caplog.set_level(logging.WARNING, logger="poselink.core.retarget.engine")
    assert RigBinding(t_pose_rig(), MIRRORED_MAPPING).mismatched == []
    assert caplog.records == []

    # a direct-convention source bound with the mirrored table swaps the arms
    binding = RigBinding(
        t_pose_rig(),
        MIRRORED_MAPPING,
        reference=reference_landmarks(t_pose_rig(), DIRECT_MAPPING),
    )
    assert BoneId.RIGHT_UPPER_ARM in binding.mismatched
    assert BoneId.LEFT_LOWER_ARM in binding.mismatched
    assert BoneId.SPINE not in binding.mismatched
    assert "right_upper_arm" in caplog.text


def test_mapping_by_name():
    assert mapping_by_name("direct") is DIRECT_MAPPING
    with pytest.raises(ValueError):
        mapping_by_name("sideways")


def test_visibility_monitor_hides_and_reappears():
    rig = t_pose_rig()
    monitor = VisibilityMonitor(rig, timeout=0.5)
    assert rig.visible is False
    assert monitor.mark_updated(0.0) is True
    assert rig.visible is True
    assert monitor.check(0.5) is False
    assert monitor.check(0.51) is True
    assert rig.visible is False
    assert monitor.mark_updated(1.0) is True
    assert monitor.mark_updated(1.1) is False


def test_auto_hide_keeps_pose():
    rig = t_pose_rig()
    engine = RetargetingEngine(RigBinding(rig))
    monitor = VisibilityMonitor(rig, timeout=0.5)
    lm = reference_landmarks(rig, MIRRORED_MAPPING)
    lm[LEFT_ELBOW, :3] = lm[LEFT_SHOULDER, :3] + (0.0, 0.3, 0.0)
    engine.apply(_person(lm))
    monitor.mark_updated(0.0)
    posed = rig.bone_rotation(BoneId.RIGHT_UPPER_ARM)

    monitor.check(1.0)
    assert rig.visible is False
    monitor.mark_updated(2.0)
    assert rig.visible is True
    assert _same_rotation(rig.bone_rotation(BoneId.RIGHT_UPPER_ARM), posed)


def test_pool_binds_and_releases_slots():
    pool = RigPool(t_pose_rig, capacity=2)
    a = pool.acquire(10)
    b = pool.acquire(11)
    assert (a.index, b.index) == (0, 1)
    assert pool.acquire(10) is a
    assert pool.acquire(12) is None

    a.monitor.mark_updated(0.0)
    assert pool.release_missing([11]) == [10]
    assert a.tracked_id is None
    assert a.rig.visible is False
    assert pool.acquire(12) is a
    assert [s.tracked_id for s in pool.bound()] == [12, 11]
