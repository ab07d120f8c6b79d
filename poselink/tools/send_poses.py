"""CLI: send pose telemetry datagrams to a running bridge.

Useful for exercising the receiver without a detector. By default it sends
synthetic people waving their arms; `--replay` sends packets recorded as JSON
lines instead (one JSON list of people per line).
"""

from __future__ import annotations

import argparse
import json
import math
import socket
import time
from pathlib import Path
from typing import Any

import numpy as np

from poselink.core.protocol.telemetry import encode_packet
from poselink.core.retarget.mapping import (
    BODY33,
    LAYOUTS,
    MIRRORED_MAPPING,
    Joint,
    LandmarkLayout,
    reference_landmarks,
)
from poselink.core.retarget.rig import t_pose_rig
from poselink.core.types import PersonDetection, PosePacket


def _rotate_about(point: np.ndarray, pivot: np.ndarray, angle: float) -> np.ndarray:
    c, s = math.cos(angle), math.sin(angle)
    dx, dy = point[0] - pivot[0], point[1] - pivot[1]
    return np.array([pivot[0] + c * dx - s * dy, pivot[1] + s * dx + c * dy])


def synthetic_person(
    person_id: int,
    people: int,
    t: float,
    scale: float = 0.2,
    layout: LandmarkLayout = BODY33,
) -> PersonDetection:
    """A T-posed person, spread across the image, waving both forearms."""

    idx = layout.indices
    lm = reference_landmarks(t_pose_rig(), MIRRORED_MAPPING, layout=layout)
    cx = (person_id + 0.5) / people
    # Rig hips sit at y=1 (image y=-1 after the flip); put them at image y=0.6.
    lm[:, 0] = cx + lm[:, 0] * scale
    lm[:, 1] = 0.6 + (lm[:, 1] + 1.0) * scale
    wave = 0.8 * math.sin(2.0 * math.pi * 0.5 * t + person_id)
    for side, sign in (("LEFT", 1.0), ("RIGHT", -1.0)):
        elbow, wrist = idx[Joint[f"{side}_ELBOW"]], idx[Joint[f"{side}_WRIST"]]
        lm[wrist, :2] = _rotate_about(lm[wrist, :2], lm[elbow, :2], sign * wave)

    xs, ys = lm[lm[:, 3] > 0, 0], lm[lm[:, 3] > 0, 1]
    shoulders = (lm[idx[Joint.LEFT_SHOULDER], :2] + lm[idx[Joint.RIGHT_SHOULDER], :2]) / 2.0
    return PersonDetection(
        id=person_id,
        center=(float(xs.mean()), float(ys.mean())),
        bbox_size=(float(xs.max() - xs.min()), float(ys.max() - ys.min())),
        face_rect=(float(shoulders[0] - 0.03), float(shoulders[1] - 0.1), 0.06, 0.07),
        shoulder_center=(float(shoulders[0]), float(shoulders[1])),
        shoulder_visibility=1.0,
        landmarks=lm.astype(np.float32),
    )


def _person_from_json(item: dict[str, Any], index: int) -> PersonDetection:
    return PersonDetection(
        id=int(item.get("id", index)),
        center=tuple(item.get("center", (0.0, 0.0))),
        bbox_size=tuple(item.get("bbox_size", (0.0, 0.0))),
        face_rect=tuple(item.get("face_rect", (0.0, 0.0, 0.0, 0.0))),
        shoulder_center=tuple(item.get("shoulder_center", (0.0, 0.0))),
        shoulder_visibility=float(item.get("shoulder_visibility", 0.0)),
        landmarks=np.asarray(item.get("landmarks", []), dtype=np.float32).reshape(-1, 4),
    )


def load_replay(path: Path) -> list[PosePacket]:
    packets = []
    with open(path, encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            people = json.loads(line)
            packets.append(PosePacket([_person_from_json(p, i) for i, p in enumerate(people)]))
    if not packets:
        raise SystemExit(f"No packets in replay file: {path}")
    return packets


def run(args: argparse.Namespace) -> None:
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    target = (args.host, args.port)
    replay = load_replay(Path(args.replay)) if args.replay else None
    layout = LAYOUTS[args.layout]
    interval = 1.0 / args.rate
    start = time.perf_counter()
    sent = 0
    try:
        while args.count <= 0 or sent < args.count:
            t = time.perf_counter() - start
            if replay is not None:
                packet = replay[sent % len(replay)]
            else:
                packet = PosePacket(
                    [synthetic_person(i, args.people, t, layout=layout) for i in range(args.people)]
                )
            sock.sendto(encode_packet(packet), target)
            sent += 1
            if sent % int(max(1, args.rate)) == 0:
                print(f"sent={sent} people={len(packet.people)} t={t:.1f}s")
            time.sleep(max(0.0, interval - ((time.perf_counter() - start) - t)))
    except KeyboardInterrupt:
        pass
    finally:
        sock.close()
    print(f"done: {sent} packets to {args.host}:{args.port}")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Send pose telemetry to the bridge")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=5005)
    parser.add_argument("--people", type=int, default=2, help="Synthetic people per packet")
    parser.add_argument(
        "--layout", choices=sorted(LAYOUTS), default="body33", help="Synthetic landmark layout"
    )
    parser.add_argument("--rate", type=float, default=30.0, help="Packets per second")
    parser.add_argument("--count", type=int, default=0, help="Stop after N packets (0 = forever)")
    parser.add_argument("--replay", default=None, help="JSON-lines file of recorded packets")
    run(parser.parse_args())
