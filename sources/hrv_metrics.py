# hrv_metrics.py
"""
Time-domain heart-rate-variability metrics.

RMSSD: root mean square of successive RR differences.
SDNN:  population standard deviation of the RR intervals (divide by N).

Both are undefined (``None``) for fewer than two intervals.
"""

import math
from typing import List, Optional, Sequence

from config import HRV_WINDOW_SIZE
from models import HrvSample, TelemetryRecord


def rmssd(rr_intervals: Sequence[float]) -> Optional[float]:
    if len(rr_intervals) < 2:
        return None
    diffs = [float(b) - float(a) for a, b in zip(rr_intervals, rr_intervals[1:])]
    return math.sqrt(sum(d * d for d in diffs) / len(diffs))


def sdnn(rr_intervals: Sequence[float]) -> Optional[float]:
    if len(rr_intervals) < 2:
        return None
    mean_rr = sum(rr_intervals) / len(rr_intervals)
    variance = sum((float(rr) - mean_rr) ** 2 for rr in rr_intervals) / len(rr_intervals)
    return math.sqrt(variance)


def time_domain_metrics(rr_intervals: Sequence[float]) -> HrvSample:
    """
    Compute RMSSD and SDNN over one batch of RR intervals (milliseconds).

    Example
    -------
    >>> time_domain_metrics([800, 810, 790])
    HrvSample(rmssd=15.811..., sdnn=8.164...)
    """
    return HrvSample(rmssd=rmssd(rr_intervals), sdnn=sdnn(rr_intervals))


def windowed_rmssd(
    records: Sequence[TelemetryRecord], window_size: int = HRV_WINDOW_SIZE
) -> List[Optional[float]]:
    """
    Pool the RR intervals of consecutive ``window_size`` records and give
    every record of a window that window's RMSSD.

    The last window may be shorter. A window with fewer than two pooled
    intervals leaves its records at ``None``.

    Returns
    -------
    list
        One value per input record, in the same order.
    """
    if window_size < 1:
        raise ValueError(f"window_size must be positive, got {window_size}")

    values: List[Optional[float]] = [None] * len(records)
    for start in range(0, len(records), window_size):
        window = records[start:start + window_size]
        pooled = [rr for record in window for rr in record.rr_intervals]
        if len(pooled) < 2:
            continue
        value = time_domain_metrics(pooled).rmssd
        for offset in range(len(window)):
            values[start + offset] = value
    return values
