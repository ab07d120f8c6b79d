from __future__ import annotations

from typing import Any


# Filter / transport presets.
#
# Notes:
# - min_cutoff: higher = less jitter at rest, more lag
# - beta: higher = fast motion bypasses smoothing sooner
# - jpeg_quality + target size drive the chunk count of outgoing frames


PRESETS: dict[str, dict[str, Any]] = {
    # Heavy smoothing for presentation setups; slow but calm avatars.
    "smooth": {
        "min_cutoff": 0.5,
        "beta": 0.0,
        "derivative_cutoff": 1.0,
        "smoothing_enabled": True,
    },
    # Default trade-off between jitter and lag.
    "balanced": {
        "min_cutoff": 1.0,
        "beta": 0.007,
        "derivative_cutoff": 1.0,
        "smoothing_enabled": True,
    },
    # Dancing / sports: let quick motion through.
    "responsive": {
        "min_cutoff": 1.7,
        "beta": 0.3,
        "derivative_cutoff": 1.0,
        "smoothing_enabled": True,
    },
    # Congested links: fewer, smaller frames.
    "low_bandwidth": {
        "jpeg_quality": 35,
        "target_width": 480,
        "target_height": 270,
        "send_fps": 15.0,
    },
}


PRESET_LABELS: dict[str, str] = {
    "smooth": "Smooth",
    "balanced": "Balanced",
    "responsive": "Responsive",
    "low_bandwidth": "Low bandwidth",
}


def list_presets() -> list[dict[str, Any]]:
    return [
        {
            "id": preset_id,
            "label": PRESET_LABELS.get(preset_id, preset_id),
            "settings": PRESETS[preset_id],
        }
        for preset_id in PRESETS.keys()
    ]


def preset_patch(preset_id: str) -> dict[str, Any]:
    if preset_id not in PRESETS:
        raise KeyError(preset_id)
    return dict(PRESETS[preset_id])
