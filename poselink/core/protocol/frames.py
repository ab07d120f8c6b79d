"""Fragmented image frame format.

A compressed image is split into chunks that each fit in one datagram. Every
chunk starts with a 3-byte header followed by raw image bytes:

    uint8 frame_id      wraps 0..255
    uint8 chunk_index
    uint8 total_chunks

There is no acknowledgement, retransmission or reassembly on the sending side;
the receiver is expected to drop incomplete frames.
"""

from __future__ import annotations

import math

import cv2

from poselink.core.types import Frame

HEADER_SIZE = 3
MAX_CHUNKS = 255


class FrameTooLargeError(ValueError):
    """The frame needs more chunks than an 8-bit chunk index can address."""


def chunk_count(payload_size: int, max_payload: int) -> int:
    if max_payload <= 0:
        raise ValueError("max_payload must be > 0")
    return math.ceil(payload_size / max_payload)


def fragment_frame(payload: bytes, frame_id: int, max_payload: int) -> list[bytes]:
    """Split `payload` into datagrams of at most `max_payload` data bytes.

    Raises:
        FrameTooLargeError: when more than 255 chunks would be needed. Nothing
            is produced in that case.
    """

    total = chunk_count(len(payload), max_payload)
    if total > MAX_CHUNKS:
        raise FrameTooLargeError(
            f"frame of {len(payload)} bytes needs {total} chunks of {max_payload} bytes "
            f"(max {MAX_CHUNKS}); lower jpeg quality or resolution"
        )
    fid = frame_id & 0xFF
    view = memoryview(payload)
    chunks = []
    for index in range(total):
        start = index * max_payload
        data = view[start : start + max_payload]
        chunks.append(bytes((fid, index, total)) + data.tobytes())
    return chunks


def parse_chunk_header(chunk: bytes) -> tuple[int, int, int]:
    """Return (frame_id, chunk_index, total_chunks) of a chunk."""

    if len(chunk) < HEADER_SIZE:
        raise ValueError("chunk shorter than its header")
    return chunk[0], chunk[1], chunk[2]


class FrameFragmenter:
    """Fragments consecutive frames under a wrapping 8-bit frame counter."""

    def __init__(self, max_payload: int = 8192) -> None:
        if max_payload <= 0:
            raise ValueError("max_payload must be > 0")
        self.max_payload = max_payload
        self.frame_id = 0

    def next_frame_id(self) -> int:
        self.frame_id = (self.frame_id + 1) & 0xFF
        return self.frame_id

    def fragment(self, payload: bytes) -> list[bytes]:
        # The counter advances even when the frame is rejected.
        return fragment_frame(payload, self.next_frame_id(), self.max_payload)


def encode_jpeg(frame: Frame, quality: int, size: tuple[int, int] | None = None) -> bytes | None:
    """JPEG-encode a BGR frame, optionally resizing to `size` (width, height) first."""

    if size is not None:
        h, w = frame.shape[:2]
        if (w, h) != tuple(size):
            frame = cv2.resize(frame, tuple(size), interpolation=cv2.INTER_LINEAR)
    ok, jpg = cv2.imencode(".jpg", frame, [int(cv2.IMWRITE_JPEG_QUALITY), int(quality)])
    if not ok:
        return None
    return jpg.tobytes()
