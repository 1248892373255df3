# conftest.py
"""Shared fixtures: frame builders, a throw-away SQLite repository and a scripted strap."""

import asyncio
import functools
import struct

import pytest
from bleak.exc import BleakError

from strap_db import StrapDB
from strap_packet import DATA_FROM_STRAP_UUID, CommandNumber, MetadataType, PacketType, StrapPacket
from strap_repository import StrapRepository

BASE_UNIX = 1_700_000_000


def build_history_payload(unix, bpm, rr=(), rr_count=None, length=24):
    """24-byte history payload; ``length`` truncates or zero-pads it."""
    slots = list(rr) + [0] * (4 - len(rr))
    count = len(rr) if rr_count is None else rr_count
    payload = struct.pack("<IIHBB3xB4H", 0, unix, 0x1234, 0, bpm, count, *slots)
    if length <= len(payload):
        return payload[:length]
    return payload + bytes(length - len(payload))


def build_history_frame(unix, bpm, rr=(), seq=0, **kwargs):
    data = build_history_payload(unix, bpm, rr, **kwargs)
    return StrapPacket(PacketType.HISTORICAL_DATA, seq, 0, data).to_bytes()


def build_metadata_frame(meta, trim=0, unix=BASE_UNIX):
    data = struct.pack("<I", unix) + bytes(6) + struct.pack("<I", trim) + bytes(4)
    return StrapPacket(PacketType.METADATA, 0, int(meta), data).to_bytes()


@pytest.fixture
def history_frame():
    return build_history_frame


@pytest.fixture
def history_payload():
    return build_history_payload


@pytest.fixture
def metadata_frame():
    return build_metadata_frame


@pytest.fixture
def repo(tmp_path):
    repository = StrapRepository(StrapDB(db_path=tmp_path / "strap_test.db"))
    yield repository
    repository.close()


class FakeStrap:
    """
    Minimal stand-in for ``BleakClient``.

    On every history request or batch acknowledgement it notifies the next
    scripted batch (followed by a HISTORY_END marker) split into
    ``chunk_size`` pieces; once the script is exhausted it sends
    HISTORY_COMPLETE followed by ``after_complete`` frames.
    """

    address = "AA:BB:CC:DD:EE:FF"

    def __init__(self, metadata_frame=None, batches=(), chunk_size=7, fail_connects=0,
                 fail_notifies=0, silent=False, after_complete=()):
        self.metadata_frame = metadata_frame
        self.is_connected = False
        self.batches = [list(batch) for batch in batches]
        self.chunk_size = chunk_size
        self.fail_connects = fail_connects
        self.fail_notifies = fail_notifies
        self.silent = silent
        self.after_complete = list(after_complete)
        self.handlers = {}
        self.writes = []
        self.connect_calls = 0
        self.on_disconnect = None
        self.drop_on_history_request = False
        self.write_delay = 0.0
        self.in_flight = 0
        self.max_in_flight = 0

    async def connect(self):
        self.connect_calls += 1
        if self.fail_connects:
            self.fail_connects -= 1
            raise BleakError("device not found")
        self.is_connected = True

    async def disconnect(self):
        self.is_connected = False

    async def start_notify(self, uuid, handler):
        if self.fail_notifies:
            self.fail_notifies -= 1
            raise BleakError("notify failed")
        self.handlers[uuid] = handler

    async def write_gatt_char(self, uuid, data, response=True):
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.write_delay:
                await asyncio.sleep(self.write_delay)
            packet = StrapPacket.from_data(data)
            self.writes.append(packet)
        finally:
            self.in_flight -= 1

        if packet.cmd == CommandNumber.SEND_HISTORICAL_DATA and self.drop_on_history_request:
            self.is_connected = False
            self.on_disconnect(self)
            return
        if self.silent:
            return
        if packet.cmd in (CommandNumber.SEND_HISTORICAL_DATA, CommandNumber.HISTORICAL_DATA_RESULT):
            self._send_next_batch()

    def _send_next_batch(self):
        if self.batches:
            frames = self.batches.pop(0)
            frames.append(self.metadata_frame(MetadataType.HISTORY_END, trim=len(self.writes)))
        else:
            frames = [self.metadata_frame(MetadataType.HISTORY_COMPLETE)] + self.after_complete
        blob = b"".join(frames)
        notify = self.handlers[DATA_FROM_STRAP_UUID]
        for i in range(0, len(blob), self.chunk_size):
            notify(None, bytearray(blob[i:i + self.chunk_size]))

    def commands(self):
        return [CommandNumber(p.cmd) for p in self.writes]


@pytest.fixture
def make_strap(metadata_frame):
    return functools.partial(FakeStrap, metadata_frame)
