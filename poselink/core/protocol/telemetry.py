"""Binary pose telemetry codec.

Each datagram carries every person seen by the detector in one frame. All
fields are little-endian and fixed width:

    int32   person_count
    person_count times:
        int32    id
        float32  center_x, center_y
        float32  bbox_w, bbox_h
        float32  face_x, face_y, face_w, face_h
        float32  shoulder_x, shoulder_y, shoulder_visibility
        int32    landmark_count
        landmark_count times: float32 x, y, z, visibility

The codec does no semantic validation (no clamping of normalized ranges).
Landmarks are read as one contiguous float32 block, so their order survives
decoding untouched.
"""

from __future__ import annotations

import struct

import numpy as np

from poselink.core.types import PersonDetection, PosePacket

_COUNT = struct.Struct("<i")
# id, center(2), bbox(2), face(4), shoulder(3)
_PERSON_HEADER = struct.Struct("<i2f2f4f3f")
_LANDMARK_DTYPE = np.dtype("<f4")
LANDMARK_SIZE = 4 * _LANDMARK_DTYPE.itemsize


class DecodeError(ValueError):
    """Raised when a datagram does not match the telemetry layout."""


class TruncatedPacketError(DecodeError):
    """Fewer bytes remain than the next field requires."""


class NegativeCountError(DecodeError):
    """A person or landmark count is negative."""


class _Reader:
    def __init__(self, data: bytes) -> None:
        self.view = memoryview(data)
        self.offset = 0

    def _require(self, size: int, what: str) -> None:
        remaining = len(self.view) - self.offset
        if remaining < size:
            raise TruncatedPacketError(
                f"truncated at offset {self.offset}: {what} needs {size} bytes, {remaining} left"
            )

    def unpack(self, fmt: struct.Struct, what: str) -> tuple:
        self._require(fmt.size, what)
        values = fmt.unpack_from(self.view, self.offset)
        self.offset += fmt.size
        return values

    def count(self, what: str) -> int:
        (n,) = self.unpack(_COUNT, what)
        if n < 0:
            raise NegativeCountError(f"{what} is negative ({n})")
        return n

    def landmarks(self, n: int) -> np.ndarray:
        size = n * LANDMARK_SIZE
        self._require(size, f"{n} landmarks")
        block = np.frombuffer(self.view, dtype=_LANDMARK_DTYPE, count=n * 4, offset=self.offset)
        self.offset += size
        # Copy so the packet does not pin the receive buffer.
        return block.reshape(n, 4).astype(np.float32, copy=True)


def decode_packet(data: bytes) -> PosePacket:
    """Decode one datagram into a `PosePacket`.

    Raises:
        TruncatedPacketError: the buffer ends inside a field.
        NegativeCountError: a person or landmark count is negative.
    """

    reader = _Reader(data)
    person_count = reader.count("person_count")
    people: list[PersonDetection] = []
    for _ in range(person_count):
        (
            pid,
            cx,
            cy,
            bw,
            bh,
            fx,
            fy,
            fw,
            fh,
            sx,
            sy,
            sv,
        ) = reader.unpack(_PERSON_HEADER, "person header")
        landmark_count = reader.count("landmark_count")
        people.append(
            PersonDetection(
                id=pid,
                center=(cx, cy),
                bbox_size=(bw, bh),
                face_rect=(fx, fy, fw, fh),
                shoulder_center=(sx, sy),
                shoulder_visibility=sv,
                landmarks=reader.landmarks(landmark_count),
            )
        )
    return PosePacket(people=people)


def encode_packet(packet: PosePacket) -> bytes:
    """Serialize a `PosePacket` into the telemetry wire format."""

    parts = [_COUNT.pack(len(packet.people))]
    for person in packet.people:
        parts.append(
            _PERSON_HEADER.pack(
                int(person.id),
                *person.center,
                *person.bbox_size,
                *person.face_rect,
                *person.shoulder_center,
                person.shoulder_visibility,
            )
        )
        landmarks = np.asarray(person.landmarks, dtype=_LANDMARK_DTYPE).reshape(-1, 4)
        parts.append(_COUNT.pack(landmarks.shape[0]))
        parts.append(landmarks.tobytes())
    return b"".join(parts)
