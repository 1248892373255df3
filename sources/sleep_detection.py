# sleep_detection.py
"""
Batch activity / sleep segmentation over stored heart-rate readings.

Heuristic
---------
1. Resting reference = 10th percentile of the heart rate in the batch.
2. Centered 5-minute rolling median and standard deviation of the HR.
3. Per reading: ``SLEEP`` when the rolling median stays within 10 % of the
   resting reference and the rolling std-dev is low, ``ACTIVE`` when the
   median is 40 % above it, ``INACTIVE`` otherwise; zero bpm (strap off the
   wrist) is ``UNKNOWN``.
4. Readings are grouped into segments of equal label; a time gap longer
   than 10 minutes always starts a new segment.
5. Sleep segments shorter than 30 minutes become ``INACTIVE``; short
   non-sleep segments sandwiched between two sleep segments become
   ``AWAKE``.

Only readings without a label are selected, so running the pass twice
changes nothing the second time.
"""

from datetime import datetime
from typing import List, Optional, Sequence, Tuple

import pandas as pd

from app_logger import logger
from models import Activity, ActivitySegment, HeartRateReading
from strap_repository import StrapRepository
from timing_decorator import timed

# ----------------------------------------------------------------------
# Tuning constants
# ----------------------------------------------------------------------
ROLLING_WINDOW = "5min"
RESTING_QUANTILE = 0.10
SLEEP_HR_FACTOR = 1.10
ACTIVE_HR_FACTOR = 1.40
SLEEP_MAX_STD = 4.0
MAX_GAP = pd.Timedelta(minutes=10)
MIN_SLEEP = pd.Timedelta(minutes=30)
MAX_AWAKE = pd.Timedelta(minutes=30)

COLUMNS = ["time", "bpm", "activity"]


def _segment_table(df: pd.DataFrame) -> pd.DataFrame:
    new_segment = (df["activity"] != df["activity"].shift()) | (df["time"].diff() > MAX_GAP)
    df["segment"] = new_segment.cumsum()
    return df.groupby("segment").agg(
        start=("time", "first"),
        end=("time", "last"),
        activity=("activity", "first"),
        readings=("bpm", "size"),
    )


def _apply(df: pd.DataFrame, segments: pd.DataFrame) -> pd.DataFrame:
    df["activity"] = df["segment"].map(segments["activity"])
    return _segment_table(df)


def classify_readings(readings: Sequence[HeartRateReading]) -> pd.DataFrame:
    """
    Label every reading.

    Returns
    -------
    pandas.DataFrame
        Columns ``time``, ``bpm``, ``activity`` (int ``Activity`` values),
        sorted by time.
    """
    if not readings:
        return pd.DataFrame(columns=COLUMNS)

    df = pd.DataFrame(
        {
            "time": pd.to_datetime([r.time for r in readings]),
            "bpm": [int(r.bpm) for r in readings],
        }
    )
    df = df.sort_values("time", kind="mergesort").reset_index(drop=True)

    worn = df["bpm"] > 0
    resting = float(df.loc[worn, "bpm"].quantile(RESTING_QUANTILE)) if worn.any() else 0.0

    rolling = df.set_index("time")["bpm"].astype(float).rolling(
        ROLLING_WINDOW, center=True, min_periods=1
    )
    hr_median = rolling.median().to_numpy()
    hr_std = rolling.std().fillna(0.0).to_numpy()

    activity = pd.Series(int(Activity.INACTIVE), index=df.index)
    activity[hr_median >= resting * ACTIVE_HR_FACTOR] = int(Activity.ACTIVE)
    activity[(hr_median <= resting * SLEEP_HR_FACTOR) & (hr_std <= SLEEP_MAX_STD)] = int(Activity.SLEEP)
    activity[~worn] = int(Activity.UNKNOWN)
    df["activity"] = activity

    # ---- drop naps too short to count as sleep --------------------------
    segments = _segment_table(df)
    too_short = (segments["activity"] == int(Activity.SLEEP)) & (
        segments["end"] - segments["start"] < MIN_SLEEP
    )
    segments.loc[too_short, "activity"] = int(Activity.INACTIVE)
    segments = _apply(df, segments)

    # ---- short wake-ups inside a sleep period ---------------------------
    rows = list(segments.itertuples())
    for prev, seg, nxt in zip(rows, rows[1:], rows[2:]):
        if (
            prev.activity == int(Activity.SLEEP)
            and nxt.activity == int(Activity.SLEEP)
            and seg.activity in (int(Activity.INACTIVE), int(Activity.ACTIVE))
            and seg.end - seg.start <= MAX_AWAKE
            and seg.start - prev.end <= MAX_GAP
            and nxt.start - seg.end <= MAX_GAP
        ):
            segments.loc[seg.Index, "activity"] = int(Activity.AWAKE)
    _apply(df, segments)

    return df[COLUMNS]


def segments_from_labels(df: pd.DataFrame) -> List[ActivitySegment]:
    """Collapse labelled readings into :class:`ActivitySegment` runs."""
    if df.empty:
        return []
    segments = _segment_table(df.copy())
    return [
        ActivitySegment(
            start=row.start.to_pydatetime(),
            end=row.end.to_pydatetime(),
            activity=Activity(int(row.activity)),
            readings=int(row.readings),
        )
        for row in segments.itertuples()
    ]


def detect_segments(
    readings: Sequence[HeartRateReading],
) -> Tuple[pd.DataFrame, List[ActivitySegment]]:
    labelled = classify_readings(readings)
    return labelled, segments_from_labels(labelled)


@timed("detect_events")
def detect_events(
    repo: StrapRepository, since: Optional[datetime] = None
) -> List[ActivitySegment]:
    """
    Label every stored reading newer than ``since`` that has no activity
    yet, and write the labels back. Returns the detected segments.
    """
    readings = repo.search_readings(time_lower_bound=since, require_activity_absent=True)
    if not readings:
        logger.info("no unlabelled readings%s", f" after {since}" if since else "")
        return []

    labelled, segments = detect_segments(readings)
    for activity, group in labelled.groupby("activity"):
        times = [t.to_pydatetime() for t in group["time"]]
        repo.set_activity(times, Activity(int(activity)))

    sleeps = [s for s in segments if s.activity == Activity.SLEEP]
    logger.info(
        "labelled %d readings into %d segments (%d sleep periods)",
        len(labelled), len(segments), len(sleeps),
    )
    for sleep in sleeps:
        logger.info("sleep %s → %s (%.1f h)", sleep.start, sleep.end, sleep.duration_s / 3600)
    return segments
