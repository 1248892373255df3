# controller.py
"""
Glue between the codec and the repository.

The live session hands every complete frame to
:meth:`HistoryController.handle_frame`; the ``reprocess`` command hands
stored packets to :meth:`HistoryController.handle_packet`. Both go through
the same decode path, so replaying the packets table rebuilds exactly the
readings a live sync would have written.
"""

import uuid
from typing import Optional

from app_logger import logger
from config import REPLAY_PAGE_SIZE
from frame_codec import iter_frames
from models import HeartRateReading, PersistedPacket, TelemetryRecord
from record_decoder import decode_packet
from strap_packet import MalformedFrame, StrapPacket
from strap_repository import StrapRepository
from timing_decorator import timed


class HistoryController:
    def __init__(self, repo: StrapRepository, session_uuid: Optional[str] = None):
        self.repo = repo
        self.session_uuid = session_uuid or str(uuid.uuid4())
        self.records_decoded = 0
        self.frames_skipped = 0

    # ------------------------------------------------------------------
    # Shared decode path
    # ------------------------------------------------------------------
    def _parse(self, frame: bytes) -> Optional[StrapPacket]:
        try:
            return StrapPacket.from_data(frame)
        except MalformedFrame as exc:
            self.frames_skipped += 1
            logger.warning("skipping malformed frame (%d bytes): %s", len(frame), exc)
            return None

    def _store_record(self, record: TelemetryRecord) -> None:
        self.repo.insert_heart_rate_reading(HeartRateReading.from_record(record))
        self.records_decoded += 1
        logger.debug(
            "t=%d bpm=%d rr=%s", record.timestamp, record.heart_rate_bpm, record.rr_intervals
        )

    def _process(self, frame: bytes) -> Optional[StrapPacket]:
        packet = self._parse(frame)
        if packet is None:
            return None
        record = decode_packet(packet)
        if record is not None:
            self._store_record(record)
        return packet

    # ------------------------------------------------------------------
    # Live path – called by the device session
    # ------------------------------------------------------------------
    def handle_frame(self, frame: bytes) -> Optional[StrapPacket]:
        """
        Persist the raw frame, then decode it.

        Returns the validated packet so the session can react to metadata
        frames, or ``None`` if the frame was malformed.
        """
        self.repo.insert_packet(self.session_uuid, frame)
        return self._process(frame)

    # ------------------------------------------------------------------
    # Replay path – called by the reprocess command
    # ------------------------------------------------------------------
    def handle_packet(self, packet: PersistedPacket) -> int:
        """Re-decode one stored packet; returns the number of records written."""
        before = self.records_decoded
        for frame in iter_frames(packet.data):
            self._process(frame)
        return self.records_decoded - before

    @timed("replay")
    def replay(self, after_id: int = 0, page_size: int = REPLAY_PAGE_SIZE) -> int:
        """
        Feed every stored packet with ``id > after_id`` through the decoder,
        in insertion order. Returns the id of the last packet processed.
        """
        last_id = after_id
        while True:
            packets = self.repo.get_packets_after(last_id, page_size)
            if not packets:
                break
            for packet in packets:
                self.handle_packet(packet)
                last_id = packet.id
            logger.info("replayed up to packet %d (%d records so far)", last_id, self.records_decoded)
        return last_id
