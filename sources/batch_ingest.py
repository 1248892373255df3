# batch_ingest.py
"""
Stateless ingestion of a complete capture (e.g. an uploaded ``.bin`` dump).

The blob goes through the same frame codec and record decoder as a live
sync, then through the windowed RMSSD pass. No device session and no
database are involved.
"""

from pathlib import Path
from typing import Any, Dict, List, Union

from app_logger import logger
from frame_codec import iter_frames
from hrv_metrics import windowed_rmssd
from models import TelemetryRecord
from record_decoder import decode_frame
from timing_decorator import timed


def decode_blob(blob: Union[bytes, bytearray]) -> List[TelemetryRecord]:
    """Every telemetry record found in ``blob``, in stream order."""
    records: List[TelemetryRecord] = []
    frames = 0
    for frame in iter_frames(blob):
        frames += 1
        record = decode_frame(frame)
        if record is not None:
            records.append(record)
    logger.debug("decoded %d records from %d frames (%d bytes)", len(records), frames, len(blob))
    return records


@timed("parse_history")
def parse_history(blob: Union[bytes, bytearray]) -> List[Dict[str, Any]]:
    """
    Decode ``blob`` into one dict per telemetry frame::

        {"timestamp": int, "heart_rate": int,
         "rr_intervals": [int, ...], "hrv_rmssd": float | None}
    """
    records = decode_blob(blob)
    rmssd_values = windowed_rmssd(records)
    return [
        {
            "timestamp": record.timestamp,
            "heart_rate": record.heart_rate_bpm,
            "rr_intervals": list(record.rr_intervals),
            "hrv_rmssd": rmssd,
        }
        for record, rmssd in zip(records, rmssd_values)
    ]


def parse_history_file(path: Union[str, Path]) -> List[Dict[str, Any]]:
    data = Path(path).read_bytes()
    logger.info("parsing %s (%d bytes)", path, len(data))
    return parse_history(data)
