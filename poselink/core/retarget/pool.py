"""Pre-allocated rig slots, one per possible tracked person."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from poselink.core.retarget.engine import RetargetingEngine, RigBinding, VisibilityMonitor
from poselink.core.retarget.mapping import BoneMapping, MIRRORED_MAPPING
from poselink.core.retarget.rig import Rig

logger = logging.getLogger(__name__)


@dataclass
class RigSlot:
    index: int
    engine: RetargetingEngine
    monitor: VisibilityMonitor
    tracked_id: int | None = None
    root_x: float | None = None

    @property
    def rig(self) -> Rig:
        return self.engine.rig


class RigPool:
    """Fixed set of rigs bound to tracked IDs on demand.

    Rigs are created and validated once; afterwards they are only assigned,
    shown, hidden and released, never rebuilt.
    """

    def __init__(
        self,
        rig_factory: Callable[[], Rig],
        capacity: int,
        mapping: tuple[BoneMapping, ...] = MIRRORED_MAPPING,
        min_landmark_visibility: float = 0.5,
        movement_scale: float = 1.0,
        flip_horizontal: bool = False,
        auto_hide_timeout: float = 0.5,
        landmark_layout: str = "auto",
    ) -> None:
        self.slots: list[RigSlot] = []
        for index in range(capacity):
            rig = rig_factory()
            engine = RetargetingEngine(
                RigBinding(rig, mapping, flip_horizontal),
                min_landmark_visibility=min_landmark_visibility,
                movement_scale=movement_scale,
                flip_horizontal=flip_horizontal,
                landmark_layout=landmark_layout,
            )
            self.slots.append(
                RigSlot(index=index, engine=engine, monitor=VisibilityMonitor(rig, auto_hide_timeout))
            )

    def __len__(self) -> int:
        return len(self.slots)

    def configure(self, settings) -> None:
        for slot in self.slots:
            slot.engine.configure(settings)
            slot.monitor.timeout = float(settings.auto_hide_timeout)

    def slot_for(self, tracked_id: int) -> RigSlot | None:
        for slot in self.slots:
            if slot.tracked_id == tracked_id:
                return slot
        return None

    def acquire(self, tracked_id: int) -> RigSlot | None:
        """Return the slot bound to `tracked_id`, binding a free one if needed."""

        slot = self.slot_for(tracked_id)
        if slot is not None:
            return slot
        for slot in self.slots:
            if slot.tracked_id is None:
                slot.tracked_id = tracked_id
                slot.root_x = None
                logger.debug("Bound tracked person %s to rig slot %s", tracked_id, slot.index)
                return slot
        return None

    def release_missing(self, active_ids: Iterable[int]) -> list[int]:
        """Hide and free slots whose tracked person no longer exists."""

        active = set(active_ids)
        released = []
        for slot in self.slots:
            if slot.tracked_id is not None and slot.tracked_id not in active:
                released.append(slot.tracked_id)
                slot.monitor.hide()
                slot.tracked_id = None
        return released

    def bound(self) -> list[RigSlot]:
        return [slot for slot in self.slots if slot.tracked_id is not None]
