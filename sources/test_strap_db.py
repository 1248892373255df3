#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""test_strap_db.py
Exercises the StrapDB DAO and the StrapRepository façade against a
throw-away SQLite file.
"""

from datetime import datetime, timedelta

from models import Activity, HeartRateReading, PersistedPacket
from strap_db import StrapDB

T0 = datetime(2024, 3, 1, 23, 0, 0)


def _reading(minutes, bpm=60, rr=(1000,)):
    return HeartRateReading(time=T0 + timedelta(minutes=minutes), bpm=bpm, rr_intervals=list(rr))


# ----------------------------------------------------------------------
# 1️⃣ Packets
# ----------------------------------------------------------------------
def test_packets_keep_exact_bytes_and_order(tmp_path):
    db = StrapDB(tmp_path / "strap.db")
    ids = [db.insert_packet(PersistedPacket(uuid="s1", data=bytes([i, 0xAA, 0x00]))) for i in range(5)]
    assert ids == sorted(ids)

    page = db.get_packets_after(ids[1], limit=2)
    assert [p.id for p in page] == ids[2:4]
    assert page[0].data == bytes([2, 0xAA, 0x00])
    assert page[0].uuid == "s1"
    assert db.count_packets() == 5
    db.close()


# ----------------------------------------------------------------------
# 2️⃣ Heart-rate readings
# ----------------------------------------------------------------------
def test_reading_round_trip(tmp_path):
    db = StrapDB(tmp_path / "strap.db")
    db.upsert_heart_rate(_reading(0, bpm=58, rr=(1030, 1010)))

    stored = db.get_heart_rate_by_time(T0)
    assert stored.bpm == 58
    assert stored.rr_intervals == [1030, 1010]
    assert stored.activity is None
    assert stored.time == T0
    assert db.get_heart_rate_by_time(T0 + timedelta(hours=1)) is None
    db.close()


def test_upsert_keeps_activity_label(tmp_path):
    db = StrapDB(tmp_path / "strap.db")
    db.upsert_heart_rate(_reading(0, bpm=58))
    db.set_activity_by_time([T0], Activity.SLEEP)

    db.upsert_heart_rate(_reading(0, bpm=59))
    rows = list(db.list_heart_rate())
    assert len(rows) == 1
    assert rows[0].bpm == 59
    assert rows[0].activity is Activity.SLEEP
    db.close()


def test_search_filters(tmp_path):
    db = StrapDB(tmp_path / "strap.db")
    for minute in range(5):
        db.upsert_heart_rate(_reading(minute))
    db.set_activity_by_time([T0 + timedelta(minutes=3)], Activity.ACTIVE)

    after = db.search_heart_rate(from_time=T0 + timedelta(minutes=1))
    assert [r.time.minute for r in after] == [2, 3, 4]

    missing = db.search_heart_rate(from_time=T0 + timedelta(minutes=1), activity_missing=True)
    assert [r.time.minute for r in missing] == [2, 4]
    assert len(db.search_heart_rate()) == 5
    db.close()


def test_set_activity_only_missing(tmp_path):
    db = StrapDB(tmp_path / "strap.db")
    for minute in range(3):
        db.upsert_heart_rate(_reading(minute))
    times = [T0 + timedelta(minutes=m) for m in range(3)]

    assert db.set_activity_by_time(times[:1], Activity.AWAKE) == 1
    assert db.set_activity_by_time(times, Activity.SLEEP) == 2
    assert [r.activity for r in db.list_heart_rate()] == [Activity.AWAKE, Activity.SLEEP, Activity.SLEEP]

    assert db.set_activity_by_time(times, Activity.ACTIVE, only_missing=False) == 3
    db.close()


def test_schema_survives_reopen(tmp_path):
    path = tmp_path / "strap.db"
    db = StrapDB(path)
    db.upsert_heart_rate(_reading(0))
    db.close()

    db = StrapDB(path)
    assert len(list(db.list_heart_rate())) == 1
    db.close()


# ----------------------------------------------------------------------
# 3️⃣ RR text column
# ----------------------------------------------------------------------
def test_rr_text_conversion():
    assert HeartRateReading.rr_to_text([800, 810]) == "800,810"
    assert HeartRateReading.rr_to_text([]) == ""
    assert HeartRateReading.rr_from_text("800,810") == [800, 810]
    assert HeartRateReading.rr_from_text("") == []
    assert HeartRateReading.rr_from_text(None) == []
    assert HeartRateReading.rr_from_text("800,x,790") == [800, 0, 790]


# ----------------------------------------------------------------------
# 4️⃣ Repository
# ----------------------------------------------------------------------
def test_repository_counts_and_labels(repo):
    packet_id = repo.insert_packet("s1", bytearray(b"\xaa\x07\x00"))
    assert [p.id for p in repo.get_packets_after(0)] == [packet_id]

    repo.insert_heart_rate_reading(_reading(0))
    repo.insert_heart_rate_reading(_reading(1))
    assert repo.counters == {"packets": 1, "readings": 2}

    assert repo.set_activity([T0], Activity.INACTIVE) == 1
    unlabelled = repo.search_readings(require_activity_absent=True)
    assert [r.time for r in unlabelled] == [T0 + timedelta(minutes=1)]
