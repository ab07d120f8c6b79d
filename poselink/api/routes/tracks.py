"""Tracked person snapshot endpoint."""

from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, Depends

from poselink.api.schemas.models import PersonSchema
from poselink.api.services.engine import BridgeEngine
from poselink.api.services.state import get_engine

router = APIRouter()


@router.get("/tracks", response_model=list[PersonSchema])
def tracks(engine: BridgeEngine = Depends(get_engine)) -> list[PersonSchema]:
    summary = engine.latest_summary()
    if summary is None:
        return []
    return [PersonSchema(**asdict(p)) for p in summary.persons]
