# test_strap_packet.py
import struct

import pytest

from crc_helper import CrcHelper
from frame_codec import next_frame
from strap_packet import (
    CommandNumber,
    MalformedFrame,
    MetadataType,
    PacketType,
    StrapPacket,
    enter_high_freq_sync,
    exit_high_freq_sync,
    get_name,
    hello_harvard,
    history_end_ack,
    history_end_trim,
    history_start,
    reboot,
    set_clock,
    toggle_realtime_hr,
)


# ----------------------------------------------------------------------
# 1️⃣ Checksums
# ----------------------------------------------------------------------
def test_crc_check_values():
    assert CrcHelper.crc8(b"123456789") == 0xF4
    assert CrcHelper.crc32(b"123456789") == 0xCBF43926
    assert CrcHelper.crc32_trailer(b"123456789") == bytes.fromhex("2639f4cb")


def test_hex_string():
    assert CrcHelper.to_hex_string(b"\x01\xab") == "01:ab"


# ----------------------------------------------------------------------
# 2️⃣ Building and parsing frames
# ----------------------------------------------------------------------
def test_built_command_survives_the_codec_byte_for_byte():
    wire = set_clock(1_700_000_000).with_seq(7).to_bytes()

    frame, cursor = next_frame(wire, 0)
    assert frame == wire
    assert cursor == len(wire)

    packet = StrapPacket.from_data(frame)
    assert packet.packet_type == PacketType.COMMAND
    assert packet.seq == 7
    assert packet.cmd == CommandNumber.SET_CLOCK
    assert packet.data[:4] == struct.pack("<I", 1_700_000_000)
    assert packet.to_bytes() == wire


def test_frame_header_layout():
    wire = history_start().to_bytes()
    assert wire[0] == 0xAA
    (length,) = struct.unpack_from("<H", wire, 1)
    assert length == 3 + 1 + 4            # type/seq/cmd + one data byte + crc32
    assert wire[3] == CrcHelper.crc8(wire[1:3])
    assert len(wire) == length + 4


def test_bad_crc32_is_rejected():
    wire = bytearray(history_start().to_bytes())
    wire[6] ^= 0x01
    with pytest.raises(MalformedFrame, match="CRC-32"):
        StrapPacket.from_data(bytes(wire))


def test_bad_header_crc_is_rejected():
    wire = bytearray(history_start().to_bytes())
    wire[3] ^= 0xFF
    with pytest.raises(MalformedFrame, match="CRC-8"):
        StrapPacket.from_data(bytes(wire))


def test_bad_marker_and_short_frames_are_rejected():
    wire = bytearray(history_start().to_bytes())
    wire[0] = 0x55
    with pytest.raises(MalformedFrame):
        StrapPacket.from_data(bytes(wire))
    with pytest.raises(MalformedFrame):
        StrapPacket.from_data(b"\xaa\x01\x00")


@pytest.mark.parametrize(
    "packet, cmd, data",
    [
        (hello_harvard(), CommandNumber.GET_HELLO_HARVARD, b"\x00"),
        (get_name(), CommandNumber.GET_ADVERTISING_NAME_HARVARD, b"\x00"),
        (enter_high_freq_sync(), CommandNumber.ENTER_HIGH_FREQ_SYNC, b""),
        (exit_high_freq_sync(), CommandNumber.EXIT_HIGH_FREQ_SYNC, b""),
        (toggle_realtime_hr(True), CommandNumber.TOGGLE_REALTIME_HR, b"\x01"),
        (toggle_realtime_hr(False), CommandNumber.TOGGLE_REALTIME_HR, b"\x00"),
        (reboot(), CommandNumber.REBOOT_STRAP, b"\x00"),
    ],
)
def test_command_builders(packet, cmd, data):
    assert packet.packet_type == PacketType.COMMAND
    assert packet.cmd == cmd
    assert packet.data == data


def test_sequence_number_wraps():
    assert history_start().with_seq(256).seq == 0
    assert history_start().with_seq(300).seq == 44


# ----------------------------------------------------------------------
# 3️⃣ Metadata helpers
# ----------------------------------------------------------------------
def test_metadata_type(metadata_frame):
    packet = StrapPacket.from_data(metadata_frame(MetadataType.HISTORY_COMPLETE))
    assert packet.metadata_type is MetadataType.HISTORY_COMPLETE
    assert not packet.is_history
    assert history_start().metadata_type is None


def test_history_end_trim_is_echoed_in_the_ack(metadata_frame):
    packet = StrapPacket.from_data(metadata_frame(MetadataType.HISTORY_END, trim=0x01020304))
    trim = history_end_trim(packet)
    assert trim == 0x01020304

    ack = history_end_ack(trim)
    assert ack.cmd == CommandNumber.HISTORICAL_DATA_RESULT
    assert ack.data == b"\x01" + struct.pack("<I", 0x01020304) + bytes(4)


def test_short_history_end_is_malformed():
    packet = StrapPacket(PacketType.METADATA, 0, MetadataType.HISTORY_END, bytes(8))
    with pytest.raises(MalformedFrame):
        history_end_trim(packet)


def test_repr_names_the_packet_type():
    assert "COMMAND" in repr(history_start())
    assert "0x99" in repr(StrapPacket(0x99, 0, 0))
