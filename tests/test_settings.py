from pathlib import Path

import pytest

from poselink.core.config import settings as cfg
from poselink.core.config.presets import PRESETS, list_presets, preset_patch


def test_load_settings_reads_updated_file(tmp_path: Path, monkeypatch):
    conf_path = tmp_path / "config.yml"
    conf_path.write_text("receive_port: 6000\nbeta: 0.3\n", encoding="utf-8")
    monkeypatch.setenv("POSELINK_CONFIG", str(conf_path))

    first = cfg.load_settings()
    assert first.receive_port == 6000
    assert first.beta == 0.3

    conf_path.write_text("receive_port: 6001\nbeta: 0.5\n", encoding="utf-8")

    second = cfg.load_settings()
    assert second.receive_port == 6001
    assert second.beta == 0.5


def test_env_overrides_yaml(tmp_path: Path, monkeypatch):
    conf_path = tmp_path / "config.yml"
    conf_path.write_text("receive_port: 6000\nmin_cutoff: 2.0\n", encoding="utf-8")
    monkeypatch.setenv("POSELINK_CONFIG", str(conf_path))
    monkeypatch.setenv("POSELINK_RECEIVE_PORT", "7000")

    s = cfg.load_settings()
    assert s.receive_port == 7000
    assert s.min_cutoff == 2.0


def test_missing_config_file_uses_defaults(tmp_path: Path, monkeypatch):
    monkeypatch.setenv("POSELINK_CONFIG", str(tmp_path / "nope.yml"))
    s = cfg.load_settings()
    assert s.receive_port == 5005
    assert s.max_packet_size == 8192
    assert s.bone_mapping == "mirrored"


@pytest.mark.parametrize(
    "field,value",
    [
        ("receive_port", 70000),
        ("jpeg_quality", 0),
        ("min_cutoff", 0.0),
        ("beta", -0.1),
        ("max_tracked_persons", 0),
        ("min_landmark_visibility", 1.5),
        ("body_timeout", 0.0),
        ("tick_rate", 0.0),
        ("bone_mapping", "sideways"),
        ("landmark_layout", "halpe26"),
    ],
)
def test_invalid_values_rejected(field, value):
    with pytest.raises(ValueError):
        cfg.PoseLinkSettings(**{field: value})


def test_bone_mapping_is_normalized():
    assert cfg.PoseLinkSettings(bone_mapping=" Direct ").bone_mapping == "direct"
    assert cfg.PoseLinkSettings(landmark_layout="COCO17").landmark_layout == "coco17"
    assert cfg.PoseLinkSettings().landmark_layout == "auto"


def test_changed_fields():
    a = cfg.PoseLinkSettings()
    b = cfg.PoseLinkSettings(beta=0.4, receive_port=6000)
    assert cfg.changed_fields(a, b) == {"beta", "receive_port"}
    assert cfg.changed_fields(a, cfg.PoseLinkSettings()) == set()


def test_presets_are_valid_settings():
    ids = [p["id"] for p in list_presets()]
    assert ids == list(PRESETS)
    for preset_id in ids:
        cfg.PoseLinkSettings(**preset_patch(preset_id))


def test_preset_patch_is_a_copy_and_unknown_raises():
    patch = preset_patch("balanced")
    patch["beta"] = 99
    assert PRESETS["balanced"]["beta"] != 99
    with pytest.raises(KeyError):
        preset_patch("nope")
