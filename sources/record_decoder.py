# record_decoder.py
"""
Turns validated strap packets into :class:`models.TelemetryRecord` values.

Only ``HISTORICAL_DATA`` packets carry telemetry. Everything else
(command responses, metadata, events, console logs, realtime streams) is
classified as "not a history record" and returned as ``None``.

History payload layout (little-endian)::

    [4:8]    unix timestamp (u32)
    [8:10]   sub-second counter (u16, not surfaced)
    [11]     heart rate (u8)
    [15]     RR interval count n
    [16:24]  four u16 RR slots, the first n are valid (needs len >= 24)
"""

import struct
from typing import Optional, Union

from app_logger import logger
from models import TelemetryRecord
from strap_packet import MalformedFrame, PacketType, StrapPacket

MIN_HISTORY_PAYLOAD = 15
RR_SLOTS_END = 24
MAX_RR_COUNT = 4

_RR_SLOTS = struct.Struct("<4H")


def is_history_packet(packet: StrapPacket) -> bool:
    return packet.packet_type == PacketType.HISTORICAL_DATA


def decode_payload(payload: Union[bytes, bytearray]) -> Optional[TelemetryRecord]:
    """
    Decode a history payload.

    Returns ``None`` for a payload shorter than 15 bytes. An RR count outside
    0-4 is logged and the record is kept with no RR intervals.
    """
    if len(payload) < MIN_HISTORY_PAYLOAD:
        logger.warning("history payload too short (%d bytes), skipped", len(payload))
        return None

    unix, _subsec = struct.unpack_from("<IH", payload, 4)
    heart_rate = payload[11]

    rr_intervals = []
    if len(payload) > 15:
        rr_count = payload[15]
        if rr_count > MAX_RR_COUNT:
            logger.warning("unknown RR count %d at t=%d, keeping record without RR", rr_count, unix)
        elif len(payload) >= RR_SLOTS_END:
            rr_intervals = list(_RR_SLOTS.unpack_from(payload, 16)[:rr_count])

    return TelemetryRecord(timestamp=unix, heart_rate_bpm=heart_rate, rr_intervals=rr_intervals)


def decode_packet(packet: StrapPacket) -> Optional[TelemetryRecord]:
    """Decode a packet, or ``None`` if it is not a history record."""
    if not is_history_packet(packet):
        return None
    return decode_payload(packet.data)


def decode_frame(frame: bytes) -> Optional[TelemetryRecord]:
    """
    Validate and decode one raw frame. A malformed frame is logged and
    yields ``None`` so the surrounding stream keeps going.
    """
    try:
        packet = StrapPacket.from_data(frame)
    except MalformedFrame as exc:
        logger.warning("skipping malformed frame: %s", exc)
        return None
    return decode_packet(packet)
