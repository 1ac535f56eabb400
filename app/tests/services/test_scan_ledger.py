import os
import tempfile
from concurrent.futures import ThreadPoolExecutor

import pytest
from sqlalchemy import create_engine, event, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from app.core.errors import ScanNotFound, StorageFailure, TagNotFound
from app.db.base import Base
from app.models.tag import Tag
from app.models.tag_scan import TagScan
from app.services.interview import FirstScan, NoQuestion, SecondScan, ThirdScan
from app.services.scan_ledger import Observation, ScanLedgerService, compute_stats


def _scan(ledger, db, fp, code="T1", **obs):
    return ledger.record_scan(db, tag_code=code, fingerprint_id=fp, observation=Observation(**obs))


def test_first_scan_gets_number_one_and_first_question(db, make_tag):
    make_tag("T1")
    ledger = ScanLedgerService()

    out = _scan(ledger, db, "F1")

    assert out.scan_number == 1
    assert out.is_new_fingerprint is True
    assert out.previous_scans_from_fingerprint == 0
    assert isinstance(out.question, FirstScan)
    assert out.history is None
    assert out.scan_info() == {
        "scanNumber": 1,
        "totalScans": 1,
        "isNewFingerprint": True,
        "previousScansFromFingerprint": 0,
    }


def test_interview_progression_and_returning_device(db, make_tag):
    make_tag("T1")
    ledger = ScanLedgerService()

    first = _scan(ledger, db, "F1")
    second = _scan(ledger, db, "F2")
    again = _scan(ledger, db, "F1")

    assert isinstance(first.question, FirstScan)
    assert second.scan_number == 2
    assert second.unique_fingerprints_before == 1
    assert isinstance(second.question, SecondScan)

    assert again.scan_number == 3
    assert again.is_new_fingerprint is False
    assert again.previous_scans_from_fingerprint == 1
    assert isinstance(again.question, NoQuestion)
    # history shown because no question applies; current scan first
    assert [h["scanNumber"] for h in again.history] == [3, 2, 1]


def test_third_and_fourth_unique_observers(db, make_tag):
    make_tag("T1")
    ledger = ScanLedgerService()
    for fp in ("F1", "F2"):
        _scan(ledger, db, fp)

    third = _scan(ledger, db, "F3")
    fourth = _scan(ledger, db, "F4")

    assert isinstance(third.question, ThirdScan)
    assert third.history is None
    assert isinstance(fourth.question, NoQuestion)
    assert len(fourth.history) == 4


def test_scan_count_tracks_sequence(db, make_tag):
    tag = make_tag("T1")
    ledger = ScanLedgerService()
    for fp in ("F1", "F2", "F1"):
        _scan(ledger, db, fp)

    db.refresh(tag)
    assert tag.scan_count == 3
    numbers = db.execute(select(TagScan.scan_number).where(TagScan.tag_id == tag.id)).scalars().all()
    assert sorted(numbers) == [1, 2, 3]


def test_unknown_tag_raises_not_found(db):
    with pytest.raises(TagNotFound):
        _scan(ScanLedgerService(), db, "F1", code="NOPE")


def test_observation_is_stored(db, make_tag):
    make_tag("T1")
    out = _scan(
        ScanLedgerService(),
        db,
        "F1",
        ip_address="10.0.0.7",
        user_agent="x" * 600,
        latitude=-6.2,
        longitude=106.8,
        location_name="Jakarta, Indonesia",
    )
    assert out.scan.ip_address == "10.0.0.7"
    assert len(out.scan.user_agent) == 512
    assert out.scan.location_name == "Jakarta, Indonesia"
    assert out.scan.is_first_hand is None


def test_storage_failure_is_fatal(db, make_tag, monkeypatch):
    make_tag("T1")

    def boom():
        raise SQLAlchemyError("disk full")

    monkeypatch.setattr(db, "commit", boom)
    with pytest.raises(StorageFailure):
        _scan(ScanLedgerService(), db, "F1")


def test_compute_stats_orders_locations_by_recency(db, make_tag):
    make_tag("T1")
    ledger = ScanLedgerService()
    _scan(ledger, db, "F1", location_name="Bandung")
    _scan(ledger, db, "F2", location_name="Jakarta")
    _scan(ledger, db, "F1", location_name="Bandung")

    tag = ledger.get_tag(db, "T1")
    stats = compute_stats(ledger.list_scans(db, tag.id))

    assert stats.total_scans == 3
    assert stats.unique_scanners == 2
    assert stats.scan_locations == ["Bandung", "Jakarta"]
    assert stats.as_dict()["totalScans"] == 3


# ─────────────────────────────────────────────
# CLAIMS
# ─────────────────────────────────────────────


def test_claim_updates_latest_scan_of_fingerprint(db, make_tag):
    make_tag("T1")
    ledger = ScanLedgerService()
    _scan(ledger, db, "F1")
    _scan(ledger, db, "F2")
    _scan(ledger, db, "F1")

    scan = ledger.record_claim(
        db,
        tag_code="T1",
        fingerprint_id="F1",
        is_first_hand=True,
        source_info="Official store",
        observation=Observation(location_name="Surabaya"),
    )

    assert scan.scan_number == 3
    assert scan.is_claimed is True
    assert scan.is_first_hand is True
    assert scan.source_info == "Official store"
    assert scan.location_name == "Surabaya"


def test_claim_without_scan_is_rejected(db, make_tag):
    make_tag("T1")
    with pytest.raises(ScanNotFound):
        ScanLedgerService().record_claim(db, tag_code="T1", fingerprint_id="F9", is_first_hand=False)


# ─────────────────────────────────────────────
# CONCURRENCY
# ─────────────────────────────────────────────


@pytest.fixture
def file_engine():
    """
    File-backed SQLite where every transaction starts with BEGIN IMMEDIATE,
    so the first read of record_scan takes the write lock (SQLite has no
    SELECT ... FOR UPDATE).
    """
    fd, path = tempfile.mkstemp(suffix=".db")
    os.close(fd)
    eng = create_engine(
        f"sqlite:///{path}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )

    @event.listens_for(eng, "connect")
    def _no_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(eng, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    Base.metadata.create_all(eng)
    try:
        yield eng
    finally:
        eng.dispose()
        os.remove(path)


def test_concurrent_scans_get_gap_free_unique_numbers(file_engine):
    SessionLocal = sessionmaker(bind=file_engine, expire_on_commit=False)
    with SessionLocal() as s:
        s.add(Tag(code="T1", product_ids=[], is_stamped=True, metadata_json={}))
        s.commit()

    ledger = ScanLedgerService()
    workers, per_worker = 8, 5

    def run(worker):
        numbers = []
        with SessionLocal() as s:
            for _ in range(per_worker):
                out = ledger.record_scan(
                    s, tag_code="T1", fingerprint_id=f"F{worker}", observation=Observation()
                )
                numbers.append(out.scan_number)
        return numbers

    with ThreadPoolExecutor(max_workers=workers) as pool:
        results = list(pool.map(run, range(workers)))

    issued = sorted(n for r in results for n in r)
    total = workers * per_worker
    assert issued == list(range(1, total + 1))

    with SessionLocal() as s:
        stored = s.execute(select(TagScan.scan_number)).scalars().all()
        tag = s.execute(select(Tag).where(Tag.code == "T1")).scalar_one()
    assert sorted(stored) == list(range(1, total + 1))
    assert tag.scan_count == total
