"""strap_packet.py
Packet model for the strap's proprietary GATT protocol.

Contains the service / characteristic identifiers, the packet type and
command enumerations, the :class:`StrapPacket` class that validates and
builds frames, and the builders for every command the host sends.

Frame layout (all multi-byte fields little-endian)::

    0      marker 0xAA
    1..2   length = len(type .. data) + 4
    3      CRC-8 of the two length bytes
    4      packet type
    5      sequence number
    6      command / sub-type
    7..    data
    -4..   CRC-32 of type .. data

so the whole frame is always ``length + 4`` bytes long.
"""

import struct
from dataclasses import dataclass
from enum import IntEnum
from typing import Union

from crc_helper import CrcHelper

# ----------------------------------------------------------------------
# GATT identifiers
# ----------------------------------------------------------------------
STRAP_SERVICE_UUID = "61080001-8d6d-82b8-614a-1c8cb0f8dcc6"
CMD_TO_STRAP_UUID = "61080002-8d6d-82b8-614a-1c8cb0f8dcc6"
CMD_FROM_STRAP_UUID = "61080003-8d6d-82b8-614a-1c8cb0f8dcc6"
EVENTS_FROM_STRAP_UUID = "61080004-8d6d-82b8-614a-1c8cb0f8dcc6"
DATA_FROM_STRAP_UUID = "61080005-8d6d-82b8-614a-1c8cb0f8dcc6"

NOTIFY_CHARACTERISTICS = (
    CMD_FROM_STRAP_UUID,
    EVENTS_FROM_STRAP_UUID,
    DATA_FROM_STRAP_UUID,
)

# ----------------------------------------------------------------------
# Framing constants
# ----------------------------------------------------------------------
SOF = 0xAA
HEADER_LEN = 4          # marker + length + crc8
TRAILER_LEN = 4         # crc32
MIN_FRAME_LEN = HEADER_LEN + 3 + TRAILER_LEN


class PacketType(IntEnum):
    COMMAND = 0x23
    COMMAND_RESPONSE = 0x24
    REALTIME_DATA = 0x28
    REALTIME_RAW_DATA = 0x2B
    HISTORICAL_DATA = 0x2F
    EVENT = 0x30
    METADATA = 0x31
    CONSOLE_LOGS = 0x32
    REALTIME_IMU_DATA_STREAM = 0x33
    HISTORICAL_IMU_DATA_STREAM = 0x34


class MetadataType(IntEnum):
    HISTORY_START = 1
    HISTORY_END = 2
    HISTORY_COMPLETE = 3


class CommandNumber(IntEnum):
    LINK_VALID = 1
    GET_MAX_PROTOCOL_VERSION = 2
    TOGGLE_REALTIME_HR = 3
    REPORT_VERSION_INFO = 7
    SET_CLOCK = 10
    GET_CLOCK = 11
    ABORT_HISTORICAL_TRANSMITS = 20
    SEND_HISTORICAL_DATA = 22
    HISTORICAL_DATA_RESULT = 23
    GET_BATTERY_LEVEL = 26
    REBOOT_STRAP = 29
    GET_HELLO_HARVARD = 35
    GET_ADVERTISING_NAME_HARVARD = 76
    ENTER_HIGH_FREQ_SYNC = 96
    EXIT_HIGH_FREQ_SYNC = 97


class MalformedFrame(ValueError):
    """A complete frame whose marker, length or checksums do not match."""


@dataclass
class StrapPacket:
    packet_type: int
    seq: int
    cmd: int
    data: bytes = b""

    # ------------------------------------------------------------------
    # Wire → packet
    # ------------------------------------------------------------------
    @classmethod
    def from_data(cls, frame: Union[bytes, bytearray]) -> "StrapPacket":
        """
        Validate a complete frame (as cut by the frame codec) and split it
        into its fields.

        Raises
        ------
        MalformedFrame
            Wrong marker, inconsistent length, or a checksum mismatch.
        """
        frame = bytes(frame)
        if len(frame) < MIN_FRAME_LEN:
            raise MalformedFrame(f"frame too short: {len(frame)} bytes")
        if frame[0] != SOF:
            raise MalformedFrame(f"bad start marker 0x{frame[0]:02x}")

        (length,) = struct.unpack_from("<H", frame, 1)
        if length + HEADER_LEN != len(frame):
            raise MalformedFrame(
                f"length field {length} does not match frame size {len(frame)}"
            )
        if CrcHelper.crc8(frame[1:3]) != frame[3]:
            raise MalformedFrame("header CRC-8 mismatch")

        body = frame[HEADER_LEN:-TRAILER_LEN]
        if not CrcHelper.verify_crc32(body, frame[-TRAILER_LEN:]):
            raise MalformedFrame(
                f"CRC-32 mismatch (trailer {CrcHelper.to_hex_string(frame[-TRAILER_LEN:])})"
            )

        return cls(packet_type=body[0], seq=body[1], cmd=body[2], data=body[3:])

    # ------------------------------------------------------------------
    # Packet → wire
    # ------------------------------------------------------------------
    def to_bytes(self) -> bytes:
        body = bytes([self.packet_type & 0xFF, self.seq & 0xFF, self.cmd & 0xFF]) + bytes(self.data)
        length = struct.pack("<H", len(body) + TRAILER_LEN)
        header = bytes([SOF]) + length + bytes([CrcHelper.crc8(length)])
        return header + body + CrcHelper.crc32_trailer(body)

    def with_seq(self, seq: int) -> "StrapPacket":
        return StrapPacket(self.packet_type, seq & 0xFF, self.cmd, self.data)

    # ------------------------------------------------------------------
    # Classification helpers
    # ------------------------------------------------------------------
    @property
    def is_history(self) -> bool:
        return self.packet_type == PacketType.HISTORICAL_DATA

    @property
    def metadata_type(self):
        """``MetadataType`` of a metadata packet, else ``None``."""
        if self.packet_type != PacketType.METADATA:
            return None
        try:
            return MetadataType(self.cmd)
        except ValueError:
            return None

    def __repr__(self) -> str:
        try:
            kind = PacketType(self.packet_type).name
        except ValueError:
            kind = f"0x{self.packet_type:02x}"
        return f"StrapPacket({kind}, seq={self.seq}, cmd={self.cmd}, data={len(self.data)}B)"


# ----------------------------------------------------------------------
# Command builders
# ----------------------------------------------------------------------
def command(cmd: CommandNumber, data: bytes = b"", seq: int = 0) -> StrapPacket:
    return StrapPacket(PacketType.COMMAND, seq, int(cmd), data)


def hello_harvard() -> StrapPacket:
    return command(CommandNumber.GET_HELLO_HARVARD, b"\x00")


def set_clock(unix: int) -> StrapPacket:
    return command(CommandNumber.SET_CLOCK, struct.pack("<I", unix) + bytes(5))


def get_name() -> StrapPacket:
    return command(CommandNumber.GET_ADVERTISING_NAME_HARVARD, b"\x00")


def enter_high_freq_sync() -> StrapPacket:
    return command(CommandNumber.ENTER_HIGH_FREQ_SYNC)


def exit_high_freq_sync() -> StrapPacket:
    return command(CommandNumber.EXIT_HIGH_FREQ_SYNC)


def history_start() -> StrapPacket:
    return command(CommandNumber.SEND_HISTORICAL_DATA, b"\x00")


def history_end_ack(trim: int) -> StrapPacket:
    """Acknowledge one history batch so the strap can send the next one."""
    return command(
        CommandNumber.HISTORICAL_DATA_RESULT,
        b"\x01" + struct.pack("<I", trim) + bytes(4),
    )


def toggle_realtime_hr(enabled: bool) -> StrapPacket:
    return command(CommandNumber.TOGGLE_REALTIME_HR, b"\x01" if enabled else b"\x00")


def reboot() -> StrapPacket:
    return command(CommandNumber.REBOOT_STRAP, b"\x00")


def history_end_trim(packet: StrapPacket) -> int:
    """
    Batch marker carried by a HISTORY_END metadata packet (u32 at data
    offset 10); echoed back by :func:`history_end_ack`.
    """
    if len(packet.data) < 14:
        raise MalformedFrame(f"history end metadata too short: {len(packet.data)} bytes")
    (trim,) = struct.unpack_from("<I", packet.data, 10)
    return trim
