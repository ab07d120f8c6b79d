"""Background UDP listener for pose telemetry.

A single thread blocks on the socket and drops each datagram into a
`LatestPacketSlot`. The processing side drains the slot on its own tick.
"""

from __future__ import annotations

import logging
import socket
import threading
import time

logger = logging.getLogger(__name__)


class LatestPacketSlot:
    """Single-slot, last-write-wins handoff between two threads.

    Not a queue: a packet that arrives before the
    consumer took the previous one replaces it, and the replaced packet is
    counted in `overwritten` and lost.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._data: bytes | None = None
        self.received = 0
        self.overwritten = 0

    def put(self, data: bytes) -> None:
        with self._lock:
            if self._data is not None:
                self.overwritten += 1
            self._data = data
            self.received += 1

    def take(self) -> bytes | None:
        """Return the newest unread packet (or None) and empty the slot."""

        with self._lock:
            data, self._data = self._data, None
            return data

    @property
    def has_data(self) -> bool:
        with self._lock:
            return self._data is not None


class UdpPoseReceiver:
    """Receives datagrams on `host:port` into a `LatestPacketSlot`.

    `stop()` sets the stop flag and closes the socket, which unblocks a pending
    receive; the socket error raised by that close is expected and ignored.
    """

    def __init__(
        self,
        host: str = "0.0.0.0",
        port: int = 5005,
        slot: LatestPacketSlot | None = None,
        buffer_size: int = 65535,
        poll_timeout: float = 0.5,
    ) -> None:
        self.host = host
        self.port = port
        self.slot = slot or LatestPacketSlot()
        self.buffer_size = buffer_size
        self.poll_timeout = poll_timeout
        self.sock: socket.socket | None = None
        self.running = False
        self.socket_errors = 0
        self.last_error: str | None = None
        self._thread: threading.Thread | None = None

    @property
    def address(self) -> tuple[str, int] | None:
        """Bound (host, port); useful when binding to port 0."""

        if self.sock is None:
            return None
        return self.sock.getsockname()[:2]

    def start(self) -> None:
        """Bind the socket and start the listener thread.

        Safe to call multiple times; subsequent calls while running are ignored.
        Raises OSError when the port cannot be bound.
        """

        if self.running:
            return
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((self.host, self.port))
            sock.settimeout(self.poll_timeout)
        except OSError:
            sock.close()
            raise
        self.sock = sock
        self.running = True
        self._thread = threading.Thread(target=self._receive_loop, name="pose-receiver", daemon=True)
        self._thread.start()
        logger.info("UDP pose receiver listening on %s:%s", *self.address)

    def stop(self) -> None:
        """Stop the listener thread and release the socket."""

        self.running = False
        sock, self.sock = self.sock, None
        if sock is not None:
            sock.close()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=2)
        self._thread = None

    def _receive_loop(self) -> None:
        logger.debug("Receive loop started")
        while self.running:
            sock = self.sock
            if sock is None:
                break
            try:
                data, _addr = sock.recvfrom(self.buffer_size)
            except socket.timeout:
                continue
            except OSError as exc:
                if not self.running:
                    # Socket closed by stop().
                    break
                self.socket_errors += 1
                self.last_error = f"UDP receive error: {exc}"
                logger.error(self.last_error)
                time.sleep(0.01)
                continue
            self.slot.put(data)
        logger.debug("Receive loop stopped")
