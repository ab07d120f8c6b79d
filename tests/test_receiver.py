import socket
import time

import pytest

from poselink.core.net.receiver import LatestPacketSlot, UdpPoseReceiver


def _wait_for(predicate, timeout: float = 2.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False


def test_slot_is_last_write_wins():
    slot = LatestPacketSlot()
    assert slot.take() is None
    slot.put(b"a")
    slot.put(b"b")
    slot.put(b"c")
    assert slot.has_data
    assert slot.take() == b"c"
    assert slot.take() is None
    assert slot.received == 3
    assert slot.overwritten == 2


def test_receiver_delivers_datagrams():
    receiver = UdpPoseReceiver("127.0.0.1", 0, poll_timeout=0.05)
    receiver.start()
    try:
        host, port = receiver.address
        sender = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            sender.sendto(b"\x00\x00\x00\x00", (host, port))
            assert _wait_for(lambda: receiver.slot.has_data)
        finally:
            sender.close()
        assert receiver.slot.take() == b"\x00\x00\x00\x00"
    finally:
        receiver.stop()
    assert receiver.sock is None
    assert receiver.address is None


def test_start_twice_is_noop_and_stop_is_idempotent():
    receiver = UdpPoseReceiver("127.0.0.1", 0, poll_timeout=0.05)
    receiver.start()
    sock = receiver.sock
    receiver.start()
    assert receiver.sock is sock
    receiver.stop()
    receiver.stop()
    assert receiver.running is False


def test_bind_failure_raises():
    receiver = UdpPoseReceiver("256.0.0.1", 0)
    with pytest.raises(OSError):
        receiver.start()
    assert receiver.running is False
