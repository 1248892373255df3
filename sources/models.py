# models.py
"""
Dataclasses shared by the codec, the metrics passes and the SQLite layer.
``PersistedPacket`` and ``HeartRateReading`` map 1-to-1 to the tables in
strap_db.py; the others only live in memory.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import IntEnum
from typing import List, Optional


class Activity(IntEnum):
    """Activity label written back by the sleep/activity pass."""
    UNKNOWN = 0
    ACTIVE = 1
    INACTIVE = 2
    SLEEP = 3
    AWAKE = 4


# ----------------------------------------------------------------------
# Decoded stream
# ----------------------------------------------------------------------
@dataclass
class TelemetryRecord:
    """One decoded history sample."""
    timestamp: int                                        # unix seconds (u32)
    heart_rate_bpm: int                                   # u8
    rr_intervals: List[int] = field(default_factory=list)  # 0-4 values, ms

    @property
    def time(self) -> datetime:
        return datetime.fromtimestamp(self.timestamp, tz=timezone.utc).replace(tzinfo=None)


@dataclass(frozen=True)
class HrvSample:
    """Time-domain HRV over one batch of RR intervals (both ``None`` if < 2)."""
    rmssd: Optional[float] = None
    sdnn: Optional[float] = None


# ----------------------------------------------------------------------
# Persisted rows
# ----------------------------------------------------------------------
@dataclass
class PersistedPacket:
    """Raw frame exactly as received, plus the id used for replay ordering."""
    uuid: str                      # correlation id of the download session
    data: bytes                    # exact frame bytes, header and trailer included
    id: Optional[int] = None       # autoincrement PK, assigned on insert


@dataclass
class HeartRateReading:
    time: datetime                                        # naive UTC
    bpm: int
    rr_intervals: List[int] = field(default_factory=list)
    activity: Optional[Activity] = None
    id: Optional[int] = None

    @classmethod
    def from_record(cls, record: TelemetryRecord) -> "HeartRateReading":
        return cls(
            time=record.time,
            bpm=record.heart_rate_bpm,
            rr_intervals=list(record.rr_intervals),
        )

    # RR intervals are stored as "800,810,790"; an empty string means none.
    @staticmethod
    def rr_to_text(rr_intervals: List[int]) -> str:
        return ",".join(str(rr) for rr in rr_intervals)

    @staticmethod
    def rr_from_text(text: Optional[str]) -> List[int]:
        if not text:
            return []
        values = []
        for item in text.split(","):
            try:
                values.append(int(item))
            except ValueError:
                values.append(0)
        return values


@dataclass(frozen=True)
class ActivitySegment:
    """A run of consecutive readings sharing one activity label."""
    start: datetime
    end: datetime
    activity: Activity
    readings: int = 0

    @property
    def duration_s(self) -> float:
        return (self.end - self.start).total_seconds()
