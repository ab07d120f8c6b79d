"""Video source abstractions.

Frames are consumed through a small interface (`VideoSource`) so the capture
implementation can be swapped (or faked in tests). A physical camera is owned
by one `SharedCapture` handle which consumers acquire and release explicitly.
"""

from __future__ import annotations

import logging
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Callable

import cv2

from poselink.core.types import Frame

logger = logging.getLogger(__name__)


class VideoSource(ABC):
    """Base interface for anything that can produce video frames."""

    @abstractmethod
    def read(self) -> Frame | None:
        """Return the next frame, or `None` when unavailable."""

        raise NotImplementedError

    @abstractmethod
    def close(self) -> None:
        """Release any underlying resources."""

        raise NotImplementedError


class OpenCVSource(VideoSource):
    """A `VideoSource` backed by `cv2.VideoCapture`."""

    def __init__(self, source: str | int) -> None:
        self.cap = cv2.VideoCapture(source)
        if not self.cap.isOpened():
            raise RuntimeError(f"Failed to open video source: {source}")

    def read(self) -> Frame | None:
        """Read the next frame from the underlying OpenCV capture."""

        ok, frame = self.cap.read()
        if not ok:
            return None
        return frame

    def close(self) -> None:
        """Release the underlying OpenCV capture."""

        self.cap.release()


class WebcamSource(OpenCVSource):
    """Webcam capture that keeps only the newest frame.

    A reader thread drains the driver buffer continuously so `read()` always
    returns the latest image instead of a queued, stale one.
    """

    def __init__(self, index: int = 0, width: int = 1920, height: int = 1080, fps: int = 30) -> None:
        super().__init__(index)
        # Reduce internal capture buffering; ignored by some backends.
        self.cap.set(cv2.CAP_PROP_BUFFERSIZE, 1)
        self.cap.set(cv2.CAP_PROP_FRAME_WIDTH, width)
        self.cap.set(cv2.CAP_PROP_FRAME_HEIGHT, height)
        self.cap.set(cv2.CAP_PROP_FPS, fps)
        logger.info("Opened camera index=%s requested=%sx%s@%s", index, width, height, fps)

        self._lock = threading.Lock()
        self._running = True
        self._latest_frame: Frame | None = None
        self._latest_seq = 0
        self._delivered_seq = 0
        self._reader_thread = threading.Thread(target=self._reader_loop, daemon=True)
        self._reader_thread.start()

    def _reader_loop(self) -> None:
        """Continuously drain the driver buffer and keep only the newest frame."""

        while self._running:
            ok, frame = self.cap.read()
            if not ok:
                time.sleep(0.01)
                continue
            with self._lock:
                self._latest_frame = frame
                self._latest_seq += 1

    def read(self) -> Frame | None:
        """Return the most recent frame, or None if nothing new arrived since the last call."""

        with self._lock:
            frame = self._latest_frame
            seq = self._latest_seq
        if frame is None or seq == self._delivered_seq:
            return None
        self._delivered_seq = seq
        return frame

    def close(self) -> None:
        """Stop the background reader thread and release the camera."""

        self._running = False
        try:
            if self._reader_thread.is_alive():
                self._reader_thread.join(timeout=1)
        finally:
            self.cap.release()


class SharedCapture:
    """Reference-counted ownership of one `VideoSource`.

    The source is opened by the first `acquire()` and closed by the last
    matching `release()`. Consumers receive the handle explicitly instead of
    reaching for a global camera instance.
    """

    def __init__(self, factory: Callable[[], VideoSource]) -> None:
        self._factory = factory
        self._lock = threading.Lock()
        self._source: VideoSource | None = None
        self._refs = 0

    @property
    def refcount(self) -> int:
        with self._lock:
            return self._refs

    def acquire(self) -> VideoSource:
        with self._lock:
            if self._source is None:
                self._source = self._factory()
            self._refs += 1
            return self._source

    def release(self) -> None:
        with self._lock:
            if self._refs == 0:
                raise RuntimeError("release() without matching acquire()")
            self._refs -= 1
            if self._refs == 0 and self._source is not None:
                source, self._source = self._source, None
                source.close()

    def read(self) -> Frame | None:
        with self._lock:
            source = self._source
        if source is None:
            return None
        return source.read()
