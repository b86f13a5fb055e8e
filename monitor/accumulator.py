"""Per-protocol byte accumulator.

Frames for one protocol channel arrive in fragments; the accumulator
buffers them until the channel's collection phase ends and the
dispatcher flushes it. append and flush are each one critical section,
so a flush can never interleave with a concurrent append.
"""

import threading


class FrameAccumulator:
    def __init__(self) -> None:
        self._buffer = bytearray()
        self._lock = threading.Lock()

    def append(self, data: bytes) -> None:
        with self._lock:
            self._buffer += data

    def flush(self) -> bytes | None:
        """Drain the buffer and reset it to empty.

        Returns None when nothing is buffered, so callers can tell
        "nothing to send" apart from an empty payload.
        """
        with self._lock:
            if not self._buffer:
                return None
            data = bytes(self._buffer)
            self._buffer.clear()
            return data

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._buffer)
