#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
File: strap_db.py
Description:
    Low-level DAO (Data-Access-Object)
    A lightweight wrapper around an embedded SQLite database holding what a
    strap download produces. The module defines a `StrapDB` class with the
    CRUD operations used by the repository over two dataclasses:
    PersistedPacket and HeartRateReading.

    Key features:
        • Automatic schema creation (packets, heart_rate tables)
        • Parameterised SQL statements (SQL-injection safe)
        • Heart-rate upsert keyed on the sample time, so a replay never
          duplicates rows and never clears an activity label
        • Helper methods such as:
            `get_packets_after`,
            `search_heart_rate`,
            `set_activity_by_time`, etc.
        • Pure-standard-library implementation (no external dependencies)
"""
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

from models import Activity, HeartRateReading, PersistedPacket

TIME_FORMAT_SEP = " "


def _time_to_db(value: datetime) -> str:
    return value.isoformat(sep=TIME_FORMAT_SEP, timespec="seconds")


def _time_from_db(value: str) -> datetime:
    return datetime.fromisoformat(value)


class StrapDB:
    """CRUD wrapper for the packets and heart_rate tables."""

    def __init__(self, db_path: str | Path = "strap_sync.db"):
        self.db_path = db_path
        self.conn = sqlite3.connect(db_path)
        self.conn.row_factory = sqlite3.Row
        self._ensure_schema()

    # --------------------------------------------------------------
    # Schema creation
    # --------------------------------------------------------------
    def _ensure_schema(self) -> None:
        cur = self.conn.cursor()
        cur.executescript(
            """
            CREATE TABLE IF NOT EXISTS packets (
                id     INTEGER PRIMARY KEY AUTOINCREMENT,
                uuid   TEXT    NOT NULL,
                bytes  BLOB    NOT NULL
            );

            CREATE TABLE IF NOT EXISTS heart_rate (
                id           INTEGER PRIMARY KEY AUTOINCREMENT,
                time         TIMESTAMP NOT NULL UNIQUE,
                bpm          INTEGER   NOT NULL,
                rr_intervals TEXT      NOT NULL DEFAULT '',
                activity     INTEGER
            );

            CREATE INDEX IF NOT EXISTS idx_heart_rate_activity
                ON heart_rate(activity, time);
            """
        )
        self.conn.commit()

    # --------------------------------------------------------------
    # Helper: Row → dataclass
    # --------------------------------------------------------------
    @staticmethod
    def _row_to_packet(row: sqlite3.Row) -> PersistedPacket:
        return PersistedPacket(id=row["id"], uuid=row["uuid"], data=bytes(row["bytes"]))

    @staticmethod
    def _row_to_reading(row: sqlite3.Row) -> HeartRateReading:
        activity = row["activity"]
        return HeartRateReading(
            id=row["id"],
            time=_time_from_db(row["time"]),
            bpm=row["bpm"],
            rr_intervals=HeartRateReading.rr_from_text(row["rr_intervals"]),
            activity=Activity(activity) if activity is not None else None,
        )

    # ==============================================================
    #                     PACKETS
    # ==============================================================

    def insert_packet(self, packet: PersistedPacket) -> int:
        cur = self.conn.cursor()
        cur.execute(
            "INSERT INTO packets (uuid, bytes) VALUES (?, ?);",
            (packet.uuid, sqlite3.Binary(packet.data)),
        )
        self.conn.commit()
        return cur.lastrowid

    def get_packets_after(self, after_id: int, limit: int) -> List[PersistedPacket]:
        """
        Packets with ``id > after_id`` in insertion order, at most ``limit``.
        Replay pages through the table with this.
        """
        cur = self.conn.execute(
            "SELECT id, uuid, bytes FROM packets WHERE id > ? ORDER BY id LIMIT ?;",
            (after_id, limit),
        )
        return [self._row_to_packet(r) for r in cur]

    def count_packets(self) -> int:
        return self.conn.execute("SELECT COUNT(*) FROM packets;").fetchone()[0]

    # ==============================================================
    #                     HEART RATE
    # ==============================================================

    def upsert_heart_rate(self, reading: HeartRateReading) -> None:
        sql = """
            INSERT INTO heart_rate (time, bpm, rr_intervals)
            VALUES (?, ?, ?)
            ON CONFLICT(time) DO UPDATE SET
                bpm = excluded.bpm,
                rr_intervals = excluded.rr_intervals;
        """
        self.conn.execute(
            sql,
            (
                _time_to_db(reading.time),
                reading.bpm,
                HeartRateReading.rr_to_text(reading.rr_intervals),
            ),
        )
        self.conn.commit()

    def list_heart_rate(self) -> Iterable[HeartRateReading]:
        cur = self.conn.execute("SELECT * FROM heart_rate ORDER BY time;")
        for r in cur:
            yield self._row_to_reading(r)

    def get_heart_rate_by_time(self, time: datetime) -> Optional[HeartRateReading]:
        cur = self.conn.execute(
            "SELECT * FROM heart_rate WHERE time = ?;", (_time_to_db(time),)
        )
        row = cur.fetchone()
        return self._row_to_reading(row) if row else None

    def search_heart_rate(
        self, from_time: Optional[datetime] = None, activity_missing: bool = False
    ) -> List[HeartRateReading]:
        """
        Readings strictly after ``from_time`` (all if ``None``), oldest first.

        Parameters
        ----------
        from_time : datetime | None
            Exclusive lower bound on the sample time.
        activity_missing : bool
            Only return rows whose ``activity`` is still NULL.
        """
        clauses, params = [], []
        if from_time is not None:
            clauses.append("time > ?")
            params.append(_time_to_db(from_time))
        if activity_missing:
            clauses.append("activity IS NULL")
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        cur = self.conn.execute(
            f"SELECT * FROM heart_rate {where} ORDER BY time;", params
        )
        return [self._row_to_reading(r) for r in cur]

    # ------------------------------------------------------------------
    # Setter: label a set of readings with one activity
    # ------------------------------------------------------------------
    def set_activity_by_time(
        self, times: Sequence[datetime], activity: Activity, only_missing: bool = True
    ) -> int:
        """
        Update the ``activity`` column for the rows at ``times``.

        Returns
        -------
        int
            Number of rows updated.
        """
        sql = "UPDATE heart_rate SET activity = ? WHERE time = ?"
        if only_missing:
            sql += " AND activity IS NULL"
        cur = self.conn.executemany(
            sql + ";", [(int(activity), _time_to_db(t)) for t in times]
        )
        self.conn.commit()
        return cur.rowcount

    # ------------------------------------------------------------------
    # Clean shutdown
    # ------------------------------------------------------------------
    def close(self) -> None:
        self.conn.close()
