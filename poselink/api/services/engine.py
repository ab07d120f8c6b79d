from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections import deque
from collections.abc import AsyncGenerator, Callable
from dataclasses import replace

from poselink.core.analytics.pipeline import PosePipeline
from poselink.core.config.settings import (
    RECEIVER_FIELDS,
    RIG_FIELDS,
    SENDER_FIELDS,
    PoseLinkSettings,
    changed_fields,
)
from poselink.core.net.receiver import LatestPacketSlot, UdpPoseReceiver
from poselink.core.net.sender import FrameStreamer, UdpFrameSender
from poselink.core.retarget.rig import Rig, t_pose_rig
from poselink.core.types import TickSummary
from poselink.core.video_sources.base import SharedCapture, WebcamSource

logger = logging.getLogger(__name__)


class BridgeEngine:
    """Runs the receive -> tick -> (optional) camera stream loops.

    - receiver thread blocks on UDP and keeps only the newest datagram
    - tick thread decodes, tracks and retargets at `tick_rate`
    - streamer thread JPEG-encodes camera frames and sends them as fragments

    Settings changes are handed to the tick thread and applied at the start of
    its next tick, so tracker and rig state are only ever touched by that thread.
    """

    def __init__(
        self, settings: PoseLinkSettings, rig_factory: Callable[[], Rig] = t_pose_rig
    ) -> None:
        self.settings = settings
        self.slot = LatestPacketSlot()
        self.pipeline = PosePipeline(settings, rig_factory=rig_factory)
        self.receiver: UdpPoseReceiver | None = None
        self.capture: SharedCapture | None = None
        self.streamer: FrameStreamer | None = None
        self.running = False
        self.last_error: str | None = None
        self._tick_thread: threading.Thread | None = None
        self._lock = threading.Lock()
        self._latest_summary: TickSummary | None = None
        self._pending: tuple[PoseLinkSettings, bool] | None = None
        self._tick_times: deque[float] = deque()
        self._tick_fps = 0.0

    def _make_receiver(self) -> UdpPoseReceiver:
        s = self.settings
        return UdpPoseReceiver(
            s.receive_host, s.receive_port, slot=self.slot, buffer_size=s.receive_buffer_size
        )

    def _make_streamer(self) -> FrameStreamer:
        s = self.settings
        if self.capture is None:
            index = s.camera_index
            self.capture = SharedCapture(lambda: WebcamSource(index))
        sender = UdpFrameSender(
            s.send_host,
            s.send_port,
            jpeg_quality=s.jpeg_quality,
            max_packet_size=s.max_packet_size,
            size=(s.target_width, s.target_height),
        )
        return FrameStreamer(self.capture, sender, fps=s.send_fps)

    def _start_streamer(self) -> None:
        if not self.settings.sender_enabled:
            return
        streamer = None
        try:
            streamer = self._make_streamer()
            streamer.start()
        except Exception:
            if streamer is not None:
                streamer.sender.close()
            self.last_error = "Failed to start camera stream"
            logger.exception(self.last_error)
            return
        self.streamer = streamer

    def _stop_streamer(self) -> None:
        if self.streamer is not None:
            self.streamer.stop()
            self.streamer = None

    def start(self) -> None:
        """Start background threads.

        Safe to call multiple times; subsequent calls while running are ignored.
        """

        if self.running:
            return
        try:
            self.receiver = self._make_receiver()
            self.receiver.start()
        except Exception:
            self.receiver = None
            self.last_error = "Failed to start pose receiver"
            logger.exception(self.last_error)
            return
        self.running = True
        self.last_error = None
        self._tick_thread = threading.Thread(target=self._tick_loop, name="pose-tick", daemon=True)
        self._tick_thread.start()
        self._start_streamer()

    def stop(self) -> None:
        """Stop all threads and release sockets and the camera."""

        self.running = False
        if self._tick_thread and self._tick_thread.is_alive():
            self._tick_thread.join(timeout=2)
        if self.receiver is not None:
            self.receiver.stop()
            self.receiver = None
        self._stop_streamer()

    def apply_settings(self, settings: PoseLinkSettings) -> None:
        """Hot-apply new settings without restarting the pipeline.

        Sockets and the camera stream are only recreated when their own
        settings changed; filter, tracker and retargeting tunables are swapped
        in place on the next tick.
        """

        changed = changed_fields(self.settings, settings)
        self.settings = settings
        with self._lock:
            rebuild = bool(changed & RIG_FIELDS) or (self._pending is not None and self._pending[1])
            self._pending = (settings, rebuild)

        if not self.running:
            return
        if changed & RECEIVER_FIELDS:
            logger.info("Receiver settings changed; rebinding")
            if self.receiver is not None:
                self.receiver.stop()
            try:
                self.receiver = self._make_receiver()
                self.receiver.start()
            except Exception:
                self.receiver = None
                self.last_error = "Failed to restart pose receiver"
                logger.exception(self.last_error)
        if changed & SENDER_FIELDS:
            self._stop_streamer()
            self.capture = None
            self._start_streamer()
        elif self.streamer is not None:
            self.streamer.sender.configure(settings)
            self.streamer.fps = settings.send_fps

    def _apply_pending(self) -> None:
        with self._lock:
            pending, self._pending = self._pending, None
        if pending is not None:
            settings, rebuild = pending
            self.pipeline.configure(settings, rebuild_rigs=rebuild)

    def tick_once(self, now: float | None = None) -> TickSummary:
        """Run one processing tick on the calling thread."""

        try:
            self._apply_pending()
        except Exception:
            self.last_error = "Failed to apply settings"
            logger.exception(self.last_error)
        now = time.monotonic() if now is None else now
        summary = self.pipeline.tick(self.slot.take(), now)

        self._tick_times.append(now)
        while self._tick_times and (now - self._tick_times[0]) > 1.0:
            self._tick_times.popleft()
        if len(self._tick_times) >= 2:
            span = now - self._tick_times[0]
            if span > 0:
                self._tick_fps = float((len(self._tick_times) - 1) / span)

        summary = replace(
            summary,
            fps=self._tick_fps,
            packets_received=self.slot.received,
            packets_overwritten=self.slot.overwritten,
        )
        with self._lock:
            self._latest_summary = summary
        return summary

    def _tick_loop(self) -> None:
        logger.debug("Tick loop started")
        while self.running:
            start = time.perf_counter()
            self.tick_once()
            interval = 1.0 / self.settings.tick_rate - (time.perf_counter() - start)
            if interval > 0:
                time.sleep(interval)

    def errors(self) -> str | None:
        """Most relevant current error across engine, pipeline, receiver and sender."""

        for error in (
            self.last_error,
            self.pipeline.last_error,
            self.receiver.last_error if self.receiver else None,
            self.streamer.sender.last_error if self.streamer else None,
        ):
            if error:
                return error
        return None

    def latest_summary(self) -> TickSummary | None:
        with self._lock:
            return self._latest_summary

    def tick_fps(self) -> float:
        return float(self._tick_fps)

    async def summary_stream(self) -> AsyncGenerator[TickSummary, None]:
        """Yield each new tick summary for WebSocket streaming."""

        last_id = -1
        while True:
            summary = self.latest_summary()
            if summary and summary.tick_id != last_id:
                last_id = summary.tick_id
                yield summary
            await asyncio.sleep(0.02)
