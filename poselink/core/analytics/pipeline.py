"""Per-tick pose processing.

Ties the telemetry codec, the identity tracker and the rig pool into a single
`tick()` that the engine calls at a fixed rate. The tick never raises: decode
errors drop the packet and keep the previous state, anything unexpected is
logged and recorded in `last_error`.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from poselink.core.analytics.navigation import face_texture_rect, horizontal_target, step_towards
from poselink.core.config.settings import PoseLinkSettings
from poselink.core.protocol.telemetry import DecodeError, decode_packet
from poselink.core.retarget.mapping import mapping_by_name
from poselink.core.retarget.pool import RigPool, RigSlot
from poselink.core.retarget.rig import Rig, t_pose_rig
from poselink.core.trackers.identity_tracker import IdentityTracker
from poselink.core.types import PersonSummary, PosePacket, TickSummary, TrackedPerson

logger = logging.getLogger(__name__)


def build_tracker(settings: PoseLinkSettings) -> IdentityTracker:
    tracker = IdentityTracker()
    tracker.configure(settings)
    return tracker


def build_pool(settings: PoseLinkSettings, rig_factory: Callable[[], Rig]) -> RigPool:
    return RigPool(
        rig_factory,
        capacity=settings.max_tracked_persons,
        mapping=mapping_by_name(settings.bone_mapping),
        min_landmark_visibility=settings.min_landmark_visibility,
        movement_scale=settings.movement_scale,
        flip_horizontal=settings.flip_horizontal,
        auto_hide_timeout=settings.auto_hide_timeout,
        landmark_layout=settings.landmark_layout,
    )


class PosePipeline:
    """decode -> track -> retarget, one call per host tick.

    Single-threaded: only the engine's tick thread touches tracker and rig
    state, so no locking happens here.
    """

    def __init__(
        self,
        settings: PoseLinkSettings | None = None,
        tracker: IdentityTracker | None = None,
        pool: RigPool | None = None,
        rig_factory: Callable[[], Rig] = t_pose_rig,
    ) -> None:
        self.settings = settings or PoseLinkSettings()
        self.rig_factory = rig_factory
        self.tracker = tracker or build_tracker(self.settings)
        self.pool = pool or build_pool(self.settings, rig_factory)
        self.tick_id = 0
        self.packets_processed = 0
        self.decode_errors = 0
        self.last_packet: PosePacket | None = None
        self.last_error: str | None = None
        self._last_tick_at: float | None = None
        self._latest_summary: TickSummary | None = None

    def configure(self, settings: PoseLinkSettings, rebuild_rigs: bool = False) -> None:
        """Apply new tunables in place; rigs are rebuilt only when asked to."""

        self.settings = settings
        self.tracker.configure(settings)
        if rebuild_rigs:
            self.pool = build_pool(settings, self.rig_factory)
        else:
            self.pool.configure(settings)

    def _decode(self, data: bytes) -> PosePacket | None:
        try:
            packet = decode_packet(data)
        except DecodeError as exc:
            self.decode_errors += 1
            logger.warning("Dropping malformed pose packet (%d bytes): %s", len(data), exc)
            return None
        self.packets_processed += 1
        self.last_packet = packet
        return packet

    def _drive(self, slot: RigSlot, person: TrackedPerson, now: float, dt: float) -> None:
        result = slot.engine.apply(person)
        if not result.any_update:
            return
        if slot.monitor.mark_updated(now):
            logger.debug("Showing rig slot %s for tracked person %s", slot.index, person.id)
        if person.detection is not None:
            s = self.settings
            target = horizontal_target(person.detection, s.x_multiplier, s.x_offset, s.flip_x)
            slot.root_x = step_towards(slot.root_x, target, dt, s.move_speed)

    def tick(self, data: bytes | None, now: float) -> TickSummary:
        """Process at most one packet and advance all timeouts to `now`."""

        try:
            summary = self._tick(data, now)
        except Exception:
            self.last_error = "Pose processing failed"
            logger.exception(self.last_error)
            summary = self._latest_summary or self._summary()
        self._last_tick_at = now
        return summary

    def _tick(self, data: bytes | None, now: float) -> TickSummary:
        self.tick_id += 1
        dt = 0.0 if self._last_tick_at is None else max(0.0, now - self._last_tick_at)

        updated: list[TrackedPerson] = []
        packet = None if data is None else self._decode(data)
        if packet is not None:
            # Matches first, then drops tracks that stayed unmatched too long.
            persons = self.tracker.update(packet.people, now)
            updated = [p for p in persons if p.last_seen == now]
        else:
            self.tracker.prune(now)

        self.pool.release_missing(self.tracker.tracks.keys())
        for person in updated:
            slot = self.pool.acquire(person.id)
            if slot is None:
                continue
            self._drive(slot, person, now, dt)

        for slot in self.pool.slots:
            if slot.monitor.check(now):
                logger.debug(
                    "Hiding rig slot %s after %.2fs without updates", slot.index, slot.monitor.timeout
                )

        self.last_error = None
        summary = self._summary()
        self._latest_summary = summary
        return summary

    def _summary(self) -> TickSummary:
        persons = []
        for track in self.tracker.tracks.values():
            slot = self.pool.slot_for(track.id)
            window = face_texture_rect(track.detection.face_rect, self.settings.face_scale)
            persons.append(
                PersonSummary(
                    id=track.id,
                    slot=None if slot is None else slot.index,
                    visible=False if slot is None else slot.monitor.visible,
                    last_seen=track.last_seen,
                    hips_position=None
                    if slot is None
                    else tuple(float(v) for v in slot.engine.hips_position),
                    bone_rotations={} if slot is None else slot.engine.quaternions(),
                    root_x=None if slot is None else slot.root_x,
                    face_window=None if window is None else (*window.scale, *window.offset),
                )
            )
        return TickSummary(
            tick_id=self.tick_id,
            # Wall clock for the payload only; filters run on `now`.
            timestamp=time.time(),
            persons=persons,
            packets_processed=self.packets_processed,
            decode_errors=self.decode_errors,
        )
