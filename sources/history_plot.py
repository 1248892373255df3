#!/usr/bin/env python3
"""
Plot a downloaded heart-rate history.

Features
--------
* Heart rate (left y-axis) and RR intervals (right y-axis, scatter) against
  wall-clock time.
* Background spans for every labelled activity segment (sleep, awake,
  active...) once ``detect-events`` has run.
* Optional time window and PNG output; otherwise the figure is shown.
"""

import sqlite3
from datetime import datetime
from typing import Optional

import matplotlib.pyplot as plt
import pandas as pd
import seaborn as sns

from app_logger import logger
from models import Activity, HeartRateReading
from sleep_detection import segments_from_labels

ACTIVITY_COLOURS = {
    Activity.SLEEP: "#3f51b5",
    Activity.AWAKE: "#ffb74d",
    Activity.ACTIVE: "#e53935",
    Activity.INACTIVE: "#9e9e9e",
    Activity.UNKNOWN: "#eeeeee",
}


# ----------------------------------------------------------------------
# Helper – fetch readings in a time window
# ----------------------------------------------------------------------
def fetch_heart_rate(
    conn: sqlite3.Connection, since: Optional[datetime] = None, until: Optional[datetime] = None
) -> pd.DataFrame:
    sql = """
    SELECT time, bpm, rr_intervals, activity
    FROM heart_rate
    WHERE (? IS NULL OR time > ?)
      AND (? IS NULL OR time <= ?)
    ORDER BY time ASC
    """
    lo = None if since is None else since.isoformat(sep=" ", timespec="seconds")
    hi = None if until is None else until.isoformat(sep=" ", timespec="seconds")
    df = pd.read_sql_query(sql, conn, params=(lo, lo, hi, hi))
    if df.empty:
        return df
    df["time"] = pd.to_datetime(df["time"])
    return df


def explode_rr(df: pd.DataFrame) -> pd.DataFrame:
    """One row per RR interval, stamped with the reading time."""
    rr = df[["time", "rr_intervals"]].copy()
    rr["rr_ms"] = rr["rr_intervals"].map(HeartRateReading.rr_from_text)
    rr = rr.explode("rr_ms").dropna(subset=["rr_ms"])
    rr["rr_ms"] = rr["rr_ms"].astype(float)
    return rr[rr["rr_ms"] > 0][["time", "rr_ms"]]


# ----------------------------------------------------------------------
# Core class – draws heart rate, RR and activity spans on one canvas
# ----------------------------------------------------------------------
class HistoryPlot:
    """
    Parameters
    ----------
    db_path : str
        Path to the SQLite database.
    since, until : datetime, optional
        Time window to draw; everything when omitted.
    """

    def __init__(self, db_path, since=None, until=None):
        self.db_path = db_path
        conn = sqlite3.connect(self.db_path)
        try:
            self.data = fetch_heart_rate(conn, since, until)
        finally:
            conn.close()
        if self.data.empty:
            logger.warning("no heart-rate readings in %s for the requested window", db_path)

    def draw(self, save_path=None, show=True):
        sns.set_style("whitegrid")
        fig, ax_hr = plt.subplots(figsize=(14, 6))
        if self.data.empty:
            ax_hr.set_title("No heart-rate history")
            return fig

        df = self.data

        # ---- activity background ---------------------------------------
        labelled = df.dropna(subset=["activity"])[["time", "bpm", "activity"]].copy()
        labelled["activity"] = labelled["activity"].astype(int)
        seen = set()
        for segment in segments_from_labels(labelled):
            colour = ACTIVITY_COLOURS.get(segment.activity, "#eeeeee")
            label = segment.activity.name.title() if segment.activity not in seen else None
            seen.add(segment.activity)
            ax_hr.axvspan(segment.start, segment.end, color=colour, alpha=0.15, label=label)

        # ---- heart rate ------------------------------------------------
        ax_hr.plot(df["time"], df["bpm"], color="#d62728", linewidth=1, label="Heart rate (bpm)")
        ax_hr.set_xlabel("Time (UTC)")
        ax_hr.set_ylabel("Heart rate (bpm)", color="#d62728")
        ax_hr.tick_params(axis="y", labelcolor="#d62728")

        # ---- RR intervals ----------------------------------------------
        rr = explode_rr(df)
        ax_rr = ax_hr.twinx()
        if not rr.empty:
            ax_rr.scatter(rr["time"], rr["rr_ms"], s=2, color="#1f77b4", alpha=0.5, label="RR (ms)")
        ax_rr.set_ylabel("RR interval (ms)", color="#1f77b4")
        ax_rr.tick_params(axis="y", labelcolor="#1f77b4")
        ax_rr.grid(False)

        handles, labels = ax_hr.get_legend_handles_labels()
        rr_handles, rr_labels = ax_rr.get_legend_handles_labels()
        ax_hr.legend(handles + rr_handles, labels + rr_labels, loc="upper left")

        plt.title(f"Heart-rate history: {df['time'].iloc[0]:%Y-%m-%d %H:%M} → {df['time'].iloc[-1]:%Y-%m-%d %H:%M}")
        fig.tight_layout()

        if save_path:
            fig.savefig(save_path, dpi=300, bbox_inches="tight")
            logger.info("figure saved to %s", save_path)
        if show:
            plt.show()
        return fig
