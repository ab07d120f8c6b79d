from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass, field

import numpy as np

from poselink.core.filters.one_euro import LandmarkFilterBank
from poselink.core.types import PersonDetection, TrackedPerson

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 5
TRACKING_KEYPOINTS = 17


def keypoint_distance(a: np.ndarray, b: np.ndarray, count: int = TRACKING_KEYPOINTS) -> float:
    """Mean 2D Euclidean distance over the first `count` keypoint pairs.

    Both arrays hold normalized coordinates in their first two columns. When one
    side has fewer keypoints, only the shared prefix is compared; with nothing to
    compare the distance is infinite.
    """

    n = min(count, a.shape[0], b.shape[0])
    if n <= 0:
        return float("inf")
    diff = a[:n, :2].astype(np.float64) - b[:n, :2].astype(np.float64)
    return float(np.linalg.norm(diff, axis=1).mean())


@dataclass
class Track:
    """Internal tracker state for one person."""

    id: int
    created_at: float
    last_seen: float
    raw: np.ndarray  # last matched raw landmarks, shape: (N, 4)
    filtered: np.ndarray  # shape: (N, 3)
    scores: np.ndarray
    detection: PersonDetection
    filters: LandmarkFilterBank = field(repr=False, default_factory=LandmarkFilterBank)

    def to_person(self) -> TrackedPerson:
        return TrackedPerson(
            id=self.id,
            landmarks=self.filtered,
            scores=self.scores,
            last_seen=self.last_seen,
            created_at=self.created_at,
            detection=self.detection,
        )


class IdentityTracker:
    """Keypoint-distance multi-person tracker.

    Detections are assigned to existing tracks greedily: tracks are visited in
    creation order and each takes its nearest still-unclaimed detection closer
    than `max_matching_distance`. This is order-dependent rather than globally
    optimal, which can flicker IDs when people cross paths. Unclaimed detections
    open new tracks up to `capacity`. Only after matching are tracks unseen for
    longer than `body_timeout` seconds dropped, so a person who reappears on the
    frame they would have timed out keeps their ID.

    All tunables are plain attributes and are read on every call, so they can be
    changed between frames.
    """

    def __init__(
        self,
        max_matching_distance: float = 0.2,
        body_timeout: float = 0.5,
        capacity: int = DEFAULT_CAPACITY,
        min_detection_score: float = 0.0,
        tracking_keypoints: int = TRACKING_KEYPOINTS,
        min_cutoff: float = 1.0,
        beta: float = 0.0,
        derivative_cutoff: float = 1.0,
        smoothing_enabled: bool = True,
    ) -> None:
        self.max_matching_distance = max_matching_distance
        self.body_timeout = body_timeout
        self.capacity = capacity
        self.min_detection_score = min_detection_score
        self.tracking_keypoints = tracking_keypoints
        self.min_cutoff = min_cutoff
        self.beta = beta
        self.derivative_cutoff = derivative_cutoff
        self.smoothing_enabled = smoothing_enabled
        self.tracks: dict[int, Track] = {}
        self._id_iter = itertools.count(1)

    def configure(self, settings) -> None:
        """Copy tracker and filter tunables from a settings object."""

        self.max_matching_distance = float(settings.max_matching_distance)
        self.body_timeout = float(settings.body_timeout)
        self.capacity = int(settings.max_tracked_persons)
        self.min_detection_score = float(settings.min_detection_score)
        self.tracking_keypoints = int(settings.tracking_keypoints)
        self.min_cutoff = float(settings.min_cutoff)
        self.beta = float(settings.beta)
        self.derivative_cutoff = float(settings.derivative_cutoff)
        self.smoothing_enabled = bool(settings.smoothing_enabled)

    def persons(self) -> list[TrackedPerson]:
        return [track.to_person() for track in self.tracks.values()]

    def prune(self, now: float) -> list[int]:
        """Drop tracks unseen for longer than `body_timeout`; return their IDs."""

        removed = [
            tid for tid, track in self.tracks.items() if now - track.last_seen > self.body_timeout
        ]
        for tid in removed:
            del self.tracks[tid]
        if removed:
            logger.debug("Removed stale tracks %s", removed)
        return removed

    def _accept(self, det: PersonDetection) -> bool:
        if det.score is not None and det.score < self.min_detection_score:
            return False
        return det.num_landmarks > 0

    def _smooth(self, track: Track, det: PersonDetection, now: float) -> None:
        positions = det.landmarks[:, :3]
        if self.smoothing_enabled:
            track.filters.update_params(self.min_cutoff, self.beta, self.derivative_cutoff)
            track.filtered = track.filters.filter(positions, now)
        else:
            track.filtered = positions.astype(np.float64)
        track.scores = det.landmarks[:, 3].astype(np.float64)
        track.raw = det.landmarks
        track.detection = det
        track.last_seen = now

    def _spawn(self, det: PersonDetection, now: float) -> Track:
        track = Track(
            id=next(self._id_iter),
            created_at=now,
            last_seen=now,
            raw=det.landmarks,
            filtered=np.zeros((0, 3)),
            scores=np.zeros(0),
            detection=det,
            filters=LandmarkFilterBank(self.min_cutoff, self.beta, self.derivative_cutoff),
        )
        self._smooth(track, det, now)
        self.tracks[track.id] = track
        return track

    def update(self, detections: list[PersonDetection], now: float) -> list[TrackedPerson]:
        """Match one frame of detections and return the current tracked persons."""

        pool = [det for det in detections if self._accept(det)]

        # dicts keep insertion order, so this walks tracks oldest first.
        for track in self.tracks.values():
            if not pool:
                break
            best_index = None
            best_distance = self.max_matching_distance
            for index, det in enumerate(pool):
                distance = keypoint_distance(track.raw, det.landmarks, self.tracking_keypoints)
                if distance < best_distance:
                    best_index = index
                    best_distance = distance
            if best_index is None:
                continue
            self._smooth(track, pool.pop(best_index), now)

        for index, det in enumerate(pool):
            if len(self.tracks) >= self.capacity:
                logger.debug(
                    "Tracker full (%d); dropping %d detection(s)", self.capacity, len(pool) - index
                )
                break
            self._spawn(det, now)

        self.prune(now)
        return self.persons()
