"""Outbound camera stream: capture -> JPEG -> fragmented UDP datagrams."""

from __future__ import annotations

import logging
import socket
import threading
import time

from poselink.core.protocol.frames import FrameFragmenter, FrameTooLargeError, encode_jpeg
from poselink.core.types import Frame
from poselink.core.video_sources.base import SharedCapture

logger = logging.getLogger(__name__)


class UdpFrameSender:
    """Encodes frames and sends them as fragmented datagrams to `host:port`.

    Delivery is fire-and-forget. Frames that need more than 255 chunks are
    logged and dropped; callers must lower quality or resolution.
    """

    def __init__(
        self,
        host: str = "127.0.0.1",
        port: int = 5004,
        jpeg_quality: int = 50,
        max_packet_size: int = 8192,
        size: tuple[int, int] | None = (640, 360),
    ) -> None:
        self.target = (host, port)
        self.jpeg_quality = jpeg_quality
        self.size = size
        self.fragmenter = FrameFragmenter(max_packet_size)
        self.sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        self.frames_sent = 0
        self.frames_dropped = 0
        self.last_error: str | None = None

    def configure(self, settings) -> None:
        self.jpeg_quality = int(settings.jpeg_quality)
        self.fragmenter.max_payload = int(settings.max_packet_size)

    def send_payload(self, payload: bytes) -> int:
        """Fragment and send an already-compressed image; return the chunk count sent."""

        try:
            chunks = self.fragmenter.fragment(payload)
        except FrameTooLargeError as exc:
            self.frames_dropped += 1
            self.last_error = str(exc)
            logger.error("Dropping frame: %s", exc)
            return 0
        try:
            for chunk in chunks:
                self.sock.sendto(chunk, self.target)
        except OSError as exc:
            self.frames_dropped += 1
            self.last_error = f"UDP send error: {exc}"
            logger.error(self.last_error)
            return 0
        self.frames_sent += 1
        return len(chunks)

    def send_frame(self, frame: Frame) -> int:
        try:
            payload = encode_jpeg(frame, self.jpeg_quality, self.size)
        except Exception:
            self.frames_dropped += 1
            self.last_error = "JPEG encoding failed"
            logger.exception(self.last_error)
            return 0
        if payload is None:
            self.frames_dropped += 1
            return 0
        return self.send_payload(payload)

    def close(self) -> None:
        self.sock.close()


class FrameStreamer:
    """Pulls frames from a shared capture handle and streams them at `fps`."""

    def __init__(self, capture: SharedCapture, sender: UdpFrameSender, fps: float = 30.0) -> None:
        self.capture = capture
        self.sender = sender
        self.fps = fps
        self.running = False
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        if self.running:
            return
        self.capture.acquire()
        self.running = True
        self._thread = threading.Thread(target=self._stream_loop, name="frame-streamer", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        if not self.running:
            return
        self.running = False
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=2)
        self._thread = None
        self.capture.release()
        self.sender.close()

    def _stream_loop(self) -> None:
        logger.debug("Frame stream loop started")
        while self.running:
            start = time.perf_counter()
            frame = self.capture.read()
            if frame is None:
                time.sleep(0.005)
                continue
            self.sender.send_frame(frame)
            interval = 1.0 / self.fps - (time.perf_counter() - start)
            if interval > 0:
                time.sleep(interval)
