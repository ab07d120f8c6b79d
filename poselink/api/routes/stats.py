"""Stats endpoint."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from poselink.api.schemas.models import StatsSchema
from poselink.api.services.engine import BridgeEngine
from poselink.api.services.state import get_engine

router = APIRouter()


@router.get("/stats", response_model=StatsSchema)
def stats(engine: BridgeEngine = Depends(get_engine)) -> StatsSchema:
    """Return packet counters and tracking totals."""

    summary = engine.latest_summary()
    sender = engine.streamer.sender if engine.streamer is not None else None
    frames = {
        "frames_sent": sender.frames_sent if sender else 0,
        "frames_dropped": sender.frames_dropped if sender else 0,
    }
    if summary is None:
        return StatsSchema(
            tracked_persons=0,
            visible_rigs=0,
            fps=0.0,
            packets_received=engine.slot.received,
            packets_processed=0,
            packets_overwritten=engine.slot.overwritten,
            decode_errors=0,
            error=engine.errors(),
            **frames,
        )
    return StatsSchema(
        tracked_persons=len(summary.persons),
        visible_rigs=sum(1 for p in summary.persons if p.visible),
        fps=summary.fps,
        packets_received=summary.packets_received,
        packets_processed=summary.packets_processed,
        packets_overwritten=summary.packets_overwritten,
        decode_errors=summary.decode_errors,
        error=engine.errors(),
        **frames,
    )
