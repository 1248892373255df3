# frame_codec.py
"""
Cuts a raw byte stream into strap frames.

The codec only looks at the header: one marker byte and a little-endian
u16 length. A frame spans ``length + 4`` bytes from the marker; checksum
validation is left to :meth:`strap_packet.StrapPacket.from_data`.

Two callers use it:

* the live session, which accumulates notification chunks in a
  :class:`FrameBuffer` and waits when a frame is incomplete;
* the batch / replay paths, which walk a complete blob with
  :func:`iter_frames` and drop an incomplete tail.
"""

import struct
from typing import Iterator, List, Optional, Tuple, Union

from app_logger import logger

BytesLike = Union[bytes, bytearray, memoryview]

HEADER_PEEK = 3        # marker + length
TRAILER_LEN = 4


def next_frame(buffer: BytesLike, cursor: int = 0) -> Tuple[Optional[bytes], int]:
    """
    Try to extract the frame that starts at ``cursor``.

    Returns
    -------
    (frame, new_cursor)
        ``frame`` is the exact frame bytes and ``new_cursor`` points past it.
        When the frame is incomplete, ``frame`` is ``None`` and the cursor is
        returned unchanged.
    """
    remaining = len(buffer) - cursor
    if remaining < HEADER_PEEK:
        return None, cursor

    (length,) = struct.unpack_from("<H", buffer, cursor + 1)
    total = length + TRAILER_LEN
    if total > remaining:
        return None, cursor

    end = cursor + total
    return bytes(buffer[cursor:end]), end


def iter_frames(blob: BytesLike) -> Iterator[bytes]:
    """Yield every complete frame of a static buffer, in order."""
    cursor = 0
    while cursor < len(blob):
        frame, cursor_after = next_frame(blob, cursor)
        if frame is None:
            logger.debug("discarding %d trailing bytes (incomplete frame)", len(blob) - cursor)
            return
        cursor = cursor_after
        yield frame


class FrameBuffer:
    """
    Append-only accumulator for one notification stream.

    ``feed`` returns the frames completed by the new chunk; any partial
    frame stays buffered until the next chunk arrives.
    """

    def __init__(self) -> None:
        self._buffer = bytearray()

    def feed(self, chunk: BytesLike) -> List[bytes]:
        self._buffer.extend(chunk)
        frames: List[bytes] = []
        cursor = 0
        while True:
            frame, cursor = next_frame(self._buffer, cursor)
            if frame is None:
                break
            frames.append(frame)
        if cursor:
            del self._buffer[:cursor]
        return frames

    @property
    def pending(self) -> int:
        """Number of buffered bytes that do not form a complete frame yet."""
        return len(self._buffer)

    def clear(self) -> None:
        self._buffer.clear()
