# app/services/scan_ledger.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.errors import ScanNotFound, StorageFailure, TagNotFound
from app.models.tag import Tag
from app.models.tag_scan import TagScan
from app.services.interview import NoQuestion, Question, choose_question

logger = logging.getLogger(__name__)

USER_AGENT_MAX = 512


@dataclass(frozen=True)
class Observation:
    """What the presenting device tells us about itself."""

    ip_address: str = "127.0.0.1"
    user_agent: str = "Unknown"
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    location_name: Optional[str] = None

    @property
    def has_location(self) -> bool:
        return self.latitude is not None or self.longitude is not None or bool(self.location_name)


@dataclass(frozen=True)
class ScanStats:
    total_scans: int
    unique_scanners: int
    scan_locations: List[str]
    first_scan_at: Optional[datetime] = None
    last_scan_at: Optional[datetime] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "totalScans": self.total_scans,
            "uniqueScanners": self.unique_scanners,
            "firstScanAt": self.first_scan_at.isoformat() if self.first_scan_at else None,
            "lastScanAt": self.last_scan_at.isoformat() if self.last_scan_at else None,
            "scanLocations": self.scan_locations,
        }


@dataclass(frozen=True)
class ScanOutcome:
    tag: Tag
    scan: TagScan
    scan_number: int
    is_new_fingerprint: bool
    previous_scans_from_fingerprint: int
    unique_fingerprints_before: int
    question: Question
    history: Optional[List[Dict[str, Any]]]

    def scan_info(self) -> Dict[str, Any]:
        return {
            "scanNumber": self.scan_number,
            "totalScans": self.scan_number,
            "isNewFingerprint": self.is_new_fingerprint,
            "previousScansFromFingerprint": self.previous_scans_from_fingerprint,
        }


def compute_stats(scans: List[TagScan]) -> ScanStats:
    """`scans` must be ordered most recent first."""
    locations: List[str] = []
    for s in scans:
        if s.location_name and s.location_name not in locations:
            locations.append(s.location_name)
    return ScanStats(
        total_scans=len(scans),
        unique_scanners=len({s.fingerprint_id for s in scans}),
        scan_locations=locations,
        first_scan_at=scans[-1].created_at if scans else None,
        last_scan_at=scans[0].created_at if scans else None,
    )


def history_entry(scan: TagScan) -> Dict[str, Any]:
    return {
        "scanNumber": scan.scan_number,
        "createdAt": scan.created_at.isoformat() if scan.created_at else None,
        "isFirstHand": scan.is_first_hand,
        "sourceInfo": scan.source_info,
    }


class ScanLedgerService:
    """
    Append-only log of tag observations.

    scan_number assignment is serialized per tag: the tag row is locked
    (SELECT ... FOR UPDATE) before prior scans are counted, and released by
    the commit that inserts the new scan. Concurrent scans of the same tag
    therefore see each other's rows and get consecutive numbers; the
    (tag_id, scan_number) unique constraint backs this up.
    """

    # ─────────────────────────────────────────────
    # READS
    # ─────────────────────────────────────────────

    def get_tag(self, db: Session, tag_code: str) -> Tag:
        tag = db.execute(select(Tag).where(Tag.code == tag_code)).scalar_one_or_none()
        if not tag:
            raise TagNotFound(tag_code)
        return tag

    def list_scans(self, db: Session, tag_id: int) -> List[TagScan]:
        """Most recent first."""
        return (
            db.execute(
                select(TagScan)
                .where(TagScan.tag_id == tag_id)
                .order_by(TagScan.scan_number.desc())
            )
            .scalars()
            .all()
        )

    def _get_tag_for_update(self, db: Session, tag_code: str) -> Optional[Tag]:
        return (
            db.execute(
                select(Tag)
                .where(Tag.code == tag_code)
                .with_for_update()
            )
            .scalars()
            .one_or_none()
        )

    # ─────────────────────────────────────────────
    # MUTATIONS
    # ─────────────────────────────────────────────

    def record_scan(
        self,
        db: Session,
        *,
        tag_code: str,
        fingerprint_id: str,
        observation: Observation,
    ) -> ScanOutcome:
        try:
            # 🔒 SERIALIZE PER TAG
            tag = self._get_tag_for_update(db, tag_code)
            if not tag:
                db.rollback()
                raise TagNotFound(tag_code)

            # Re-read prior scans under lock
            prior = self.list_scans(db, tag.id)

            total_before = len(prior)
            fingerprints_before = {s.fingerprint_id for s in prior}
            previous_from_fingerprint = sum(1 for s in prior if s.fingerprint_id == fingerprint_id)
            is_new_fingerprint = previous_from_fingerprint == 0

            question = choose_question(is_new_fingerprint, len(fingerprints_before))

            scan_number = total_before + 1
            scan = TagScan(
                tag_id=tag.id,
                scan_number=scan_number,
                fingerprint_id=fingerprint_id,
                ip_address=observation.ip_address,
                user_agent=(observation.user_agent or "Unknown")[:USER_AGENT_MAX],
                latitude=observation.latitude,
                longitude=observation.longitude,
                location_name=observation.location_name or None,
            )
            db.add(scan)
            tag.scan_count = scan_number
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error(
                "[scan-ledger] failed to record scan tag=%s",
                tag_code,
                exc_info=True,
                extra={"subsystem": "scan_ledger", "tag_code": tag_code},
            )
            raise StorageFailure(tag_code, exc) from exc

        history = None
        if len(fingerprints_before) >= 3 or isinstance(question, NoQuestion):
            history = [history_entry(scan)] + [history_entry(s) for s in prior]

        logger.info(
            "[scan-ledger] tag=%s scan_number=%d new_fingerprint=%s question=%s",
            tag_code,
            scan_number,
            is_new_fingerprint,
            question.type.value,
        )

        return ScanOutcome(
            tag=tag,
            scan=scan,
            scan_number=scan_number,
            is_new_fingerprint=is_new_fingerprint,
            previous_scans_from_fingerprint=previous_from_fingerprint,
            unique_fingerprints_before=len(fingerprints_before),
            question=question,
            history=history,
        )

    def record_claim(
        self,
        db: Session,
        *,
        tag_code: str,
        fingerprint_id: str,
        is_first_hand: bool,
        source_info: Optional[str] = None,
        observation: Optional[Observation] = None,
    ) -> TagScan:
        """
        Store the presenter's interview answer on their most recent scan.
        """
        tag = self.get_tag(db, tag_code)

        latest = (
            db.execute(
                select(TagScan)
                .where(
                    TagScan.tag_id == tag.id,
                    TagScan.fingerprint_id == fingerprint_id,
                )
                .order_by(TagScan.scan_number.desc())
                .limit(1)
            )
            .scalars()
            .first()
        )
        if not latest:
            raise ScanNotFound(tag_code, fingerprint_id)

        latest.is_claimed = True
        latest.is_first_hand = bool(is_first_hand)
        latest.source_info = source_info or None
        if observation is not None:
            if observation.latitude is not None:
                latest.latitude = observation.latitude
            if observation.longitude is not None:
                latest.longitude = observation.longitude
            if observation.location_name:
                latest.location_name = observation.location_name

        try:
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error(
                "[scan-ledger] failed to record claim tag=%s",
                tag_code,
                exc_info=True,
                extra={"subsystem": "scan_ledger", "tag_code": tag_code},
            )
            raise StorageFailure(tag_code, exc) from exc

        logger.info(
            "[scan-ledger] claim tag=%s scan_number=%d first_hand=%s",
            tag_code,
            latest.scan_number,
            latest.is_first_hand,
        )
        return latest
