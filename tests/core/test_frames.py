import numpy as np
import pytest

from poselink.core.protocol.frames import (
    HEADER_SIZE,
    FrameFragmenter,
    FrameTooLargeError,
    chunk_count,
    encode_jpeg,
    fragment_frame,
    parse_chunk_header,
)


def test_chunk_count_rounds_up():
    assert chunk_count(20000, 8192) == 3
    assert chunk_count(8192, 8192) == 1
    assert chunk_count(0, 8192) == 0
    with pytest.raises(ValueError):
        chunk_count(10, 0)


def test_fragment_splits_with_headers():
    payload = bytes(range(256)) * 80  # 20480 bytes
    chunks = fragment_frame(payload, 9, 8192)

    assert len(chunks) == 3
    assert [parse_chunk_header(c) for c in chunks] == [(9, 0, 3), (9, 1, 3), (9, 2, 3)]
    assert [len(c) - HEADER_SIZE for c in chunks] == [8192, 8192, 20480 - 2 * 8192]
    assert b"".join(c[HEADER_SIZE:] for c in chunks) == payload


def test_oversized_frame_is_rejected_whole():
    with pytest.raises(FrameTooLargeError):
        fragment_frame(b"x" * 256, 1, 1)
    assert len(fragment_frame(b"x" * 255, 1, 1)) == 255


def test_empty_payload_produces_nothing():
    assert fragment_frame(b"", 3, 8192) == []


def test_fragmenter_frame_id_wraps():
    fragmenter = FrameFragmenter(max_payload=4)
    ids = [parse_chunk_header(fragmenter.fragment(b"abc")[0])[0] for _ in range(257)]
    assert ids[0] == 1
    assert ids[254] == 255
    assert ids[255] == 0
    assert ids[256] == 1


def test_fragmenter_advances_on_rejected_frame():
    fragmenter = FrameFragmenter(max_payload=1)
    with pytest.raises(FrameTooLargeError):
        fragmenter.fragment(b"x" * 300)
    assert fragmenter.frame_id == 1
    assert parse_chunk_header(fragmenter.fragment(b"y")[0])[0] == 2


def test_parse_chunk_header_short():
    with pytest.raises(ValueError):
        parse_chunk_header(b"\x01\x02")


def test_encode_jpeg_resizes():
    frame = np.zeros((120, 160, 3), dtype=np.uint8)
    data = encode_jpeg(frame, 50, size=(64, 48))
    assert data is not None
    assert data[:2] == b"\xff\xd8"

    import cv2

    decoded = cv2.imdecode(np.frombuffer(data, dtype=np.uint8), cv2.IMREAD_COLOR)
    assert decoded.shape[:2] == (48, 64)
