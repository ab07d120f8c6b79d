"""Parsing of MoveNet multipose output tensors.

The detector itself runs elsewhere; this module only turns its raw output into
`PersonDetection`s so they can be tracked locally or re-encoded as telemetry.

Output layout per person (56 floats): 17 keypoints as (y, x, score), then the
box (ymin, xmin, ymax, xmax), then the person score. All coordinates are
normalized to [0, 1].
"""

from __future__ import annotations

import numpy as np

from poselink.core.retarget.mapping import COCO17, Joint
from poselink.core.types import PersonDetection

NUM_KEYPOINTS = COCO17.size
VALUES_PER_PERSON = 56
_BOX_OFFSET = NUM_KEYPOINTS * 3

LEFT_SHOULDER = COCO17.indices[Joint.LEFT_SHOULDER]
RIGHT_SHOULDER = COCO17.indices[Joint.RIGHT_SHOULDER]
FACE_KEYPOINTS = (0, 1, 2, 3, 4)


def _face_rect(keypoints: np.ndarray, min_score: float) -> tuple[float, float, float, float]:
    face = keypoints[list(FACE_KEYPOINTS)]
    face = face[face[:, 3] >= min_score]
    if face.shape[0] < 2:
        return (0.0, 0.0, 0.0, 0.0)
    x0, y0 = face[:, 0].min(), face[:, 1].min()
    x1, y1 = face[:, 0].max(), face[:, 1].max()
    return (float(x0), float(y0), float(x1 - x0), float(y1 - y0))


def parse_multipose_output(output: np.ndarray, score_threshold: float = 0.3) -> list[PersonDetection]:
    """Convert a `[1, P, 56]` (or `[P, 56]`) output into detections.

    People below `score_threshold` are dropped. The detection `id` is the row
    index, which the detector does not keep stable between frames.
    """

    rows = np.asarray(output, dtype=np.float32).reshape(-1, VALUES_PER_PERSON)
    detections: list[PersonDetection] = []
    for row_index, row in enumerate(rows):
        score = float(row[VALUES_PER_PERSON - 1])
        if score < score_threshold:
            continue
        kps = row[:_BOX_OFFSET].reshape(NUM_KEYPOINTS, 3)
        # (y, x, score) -> (x, y, z, visibility)
        landmarks = np.zeros((NUM_KEYPOINTS, 4), dtype=np.float32)
        landmarks[:, 0] = kps[:, 1]
        landmarks[:, 1] = kps[:, 0]
        landmarks[:, 3] = kps[:, 2]

        ymin, xmin, ymax, xmax = (float(v) for v in row[_BOX_OFFSET : _BOX_OFFSET + 4])
        ls, rs = landmarks[LEFT_SHOULDER], landmarks[RIGHT_SHOULDER]
        detections.append(
            PersonDetection(
                id=row_index,
                center=((xmin + xmax) / 2.0, (ymin + ymax) / 2.0),
                bbox_size=(xmax - xmin, ymax - ymin),
                face_rect=_face_rect(landmarks, score_threshold),
                shoulder_center=(float(ls[0] + rs[0]) / 2.0, float(ls[1] + rs[1]) / 2.0),
                shoulder_visibility=float(min(ls[3], rs[3])),
                landmarks=landmarks,
                score=score,
            )
        )
    return detections
