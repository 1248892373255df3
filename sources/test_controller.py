# test_controller.py
from batch_ingest import decode_blob
from controller import HistoryController
from models import Activity, HeartRateReading
from strap_db import StrapDB
from strap_packet import MetadataType
from strap_repository import StrapRepository


def _stored(repo):
    return [(r.time, r.bpm, r.rr_intervals) for r in repo.search_readings()]


def _capture(history_frame, metadata_frame):
    return (
        history_frame(1_700_000_000, 60, rr=(1000, 990))
        + history_frame(1_700_000_001, 61, rr=(985,))
        + metadata_frame(MetadataType.HISTORY_END, trim=3)
        + history_frame(1_700_000_002, 63)
        + history_frame(1_700_000_003, 64, rr=(940, 950, 945), length=30)
    )


# ----------------------------------------------------------------------
# 1️⃣ Live path
# ----------------------------------------------------------------------
def test_handle_frame_persists_packet_then_reading(repo, history_frame):
    controller = HistoryController(repo, session_uuid="session-1")
    frame = history_frame(1_700_000_000, 60, rr=(1000,))

    packet = controller.handle_frame(frame)
    assert packet.is_history
    stored = repo.get_packets_after(0)
    assert [(p.uuid, p.data) for p in stored] == [("session-1", frame)]
    assert controller.records_decoded == 1
    assert len(_stored(repo)) == 1


def test_malformed_frame_is_kept_but_not_decoded(repo, history_frame):
    controller = HistoryController(repo)
    frame = bytearray(history_frame(1_700_000_000, 60))
    frame[-1] ^= 0x01

    assert controller.handle_frame(bytes(frame)) is None
    assert controller.frames_skipped == 1
    assert len(repo.get_packets_after(0)) == 1
    assert _stored(repo) == []


def test_metadata_frame_is_returned_without_a_reading(repo, metadata_frame):
    controller = HistoryController(repo)
    packet = controller.handle_frame(metadata_frame(MetadataType.HISTORY_COMPLETE))
    assert packet.metadata_type is MetadataType.HISTORY_COMPLETE
    assert controller.records_decoded == 0


# ----------------------------------------------------------------------
# 2️⃣ Replay path
# ----------------------------------------------------------------------
def test_replay_of_a_single_blob_matches_batch_decode(tmp_path, history_frame, metadata_frame):
    blob = _capture(history_frame, metadata_frame)
    expected = [
        (r.time, r.heart_rate_bpm, r.rr_intervals) for r in decode_blob(blob)
    ]

    repo = StrapRepository(StrapDB(tmp_path / "replay.db"))
    repo.insert_packet("import", blob)
    last_id = HistoryController(repo).replay()

    assert last_id == 1
    assert _stored(repo) == expected
    repo.close()


def test_replay_rebuilds_live_readings(tmp_path, repo, history_frame, metadata_frame):
    live = HistoryController(repo)
    for frame in (
        history_frame(1_700_000_000, 60, rr=(1000, 990)),
        metadata_frame(MetadataType.HISTORY_END),
        history_frame(1_700_000_001, 61, rr=(985,)),
    ):
        live.handle_frame(frame)

    fresh = StrapRepository(StrapDB(tmp_path / "fresh.db"))
    for packet in repo.get_packets_after(0):
        fresh.insert_packet(packet.uuid, packet.data)
    HistoryController(fresh).replay()

    assert _stored(fresh) == _stored(repo)
    fresh.close()


def test_replay_is_idempotent_and_keeps_labels(repo, history_frame, metadata_frame):
    repo.insert_packet("import", _capture(history_frame, metadata_frame))
    HistoryController(repo).replay()
    first = _stored(repo)
    repo.set_activity([first[0][0]], Activity.SLEEP)

    HistoryController(repo).replay()
    assert _stored(repo) == first
    assert repo.search_readings()[0].activity is Activity.SLEEP


def test_replay_pages_and_resumes(repo, history_frame):
    for i in range(5):
        repo.insert_packet("s", history_frame(1_700_000_000 + i, 60 + i))

    controller = HistoryController(repo)
    assert controller.replay(after_id=2, page_size=2) == 5
    assert [r.bpm for r in repo.search_readings()] == [62, 63, 64]
    assert controller.replay(after_id=5) == 5


def test_handle_packet_returns_record_count(repo, history_frame, metadata_frame):
    repo.insert_packet("s", _capture(history_frame, metadata_frame))
    (packet,) = repo.get_packets_after(0)
    assert HistoryController(repo).handle_packet(packet) == 4
    assert isinstance(repo.search_readings()[0], HeartRateReading)
