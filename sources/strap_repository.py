# strap_repository.py
"""
Higher-level service that the session, the replay command and the
sleep pass depend on.
It knows *what* to store, not *how* to store it.
"""

from datetime import datetime
from typing import Dict, List, Optional, Sequence

from app_logger import logger
from config import REPLAY_PAGE_SIZE
from models import Activity, HeartRateReading, PersistedPacket
from strap_db import StrapDB


class StrapRepository:
    """
    Public API used by the controller (or any other component) to persist
    and query strap data.
    """

    def __init__(self, db: StrapDB):
        self.db = db
        self.counters: Dict[str, int] = {"packets": 0, "readings": 0}

    # ------------------------------------------------------------------
    # Raw packets – the replay source of truth
    # ------------------------------------------------------------------
    def insert_packet(self, uuid: str, data: bytes) -> int:
        packet_id = self.db.insert_packet(PersistedPacket(uuid=uuid, data=bytes(data)))
        self.counters["packets"] += 1
        return packet_id

    def get_packets_after(self, packet_id: int, limit: int = REPLAY_PAGE_SIZE) -> List[PersistedPacket]:
        return self.db.get_packets_after(packet_id, limit)

    # ------------------------------------------------------------------
    # Heart-rate readings
    # ------------------------------------------------------------------
    def insert_heart_rate_reading(self, reading: HeartRateReading) -> None:
        """
        Persist a decoded reading. Re-inserting the same sample time
        refreshes bpm / RR and leaves the activity label alone.
        """
        self.db.upsert_heart_rate(reading)
        self.counters["readings"] += 1

    def search_readings(
        self, time_lower_bound: Optional[datetime] = None, require_activity_absent: bool = False
    ) -> List[HeartRateReading]:
        return self.db.search_heart_rate(
            from_time=time_lower_bound, activity_missing=require_activity_absent
        )

    def set_activity(self, times: Sequence[datetime], activity: Activity) -> int:
        """Label still-unlabelled readings at ``times``; returns rows touched."""
        updated = self.db.set_activity_by_time(times, activity, only_missing=True)
        logger.debug("labelled %d readings as %s", updated, activity.name)
        return updated

    def close(self) -> None:
        logger.info(
            "repository closed: %d packets, %d readings written",
            self.counters["packets"],
            self.counters["readings"],
        )
        self.db.close()
