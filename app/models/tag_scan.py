# app/models/tag_scan.py
from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    String,
    DateTime,
    Integer,
    Float,
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    UniqueConstraint,
    false,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base


def _now():
    return datetime.now(timezone.utc)


class TagScan(Base):
    """
    One observation of a tag. Append-only.

    scan_number is 1-based and gap-free per tag (uq_tag_scans_seq backs the
    row-locked assignment). Only the interview fields (is_claimed,
    is_first_hand, source_info) and missing location fields may be filled in
    afterwards by a claim.
    """

    __tablename__ = "tag_scans"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    tag_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("tags.id", ondelete="CASCADE"), nullable=False
    )
    scan_number: Mapped[int] = mapped_column(Integer, nullable=False)

    fingerprint_id: Mapped[str] = mapped_column(String(128), nullable=False)
    ip_address: Mapped[str] = mapped_column(String(64), nullable=False)
    user_agent: Mapped[str] = mapped_column(String(512), nullable=False)

    latitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    longitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    location_name: Mapped[Optional[str]] = mapped_column(String(256), nullable=True)

    is_claimed: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=false(), default=False)
    is_first_hand: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)  # None = not answered
    source_info: Mapped[Optional[str]] = mapped_column(String(256), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now
    )

    tag = relationship("Tag", back_populates="scans")

    __table_args__ = (
        UniqueConstraint("tag_id", "scan_number", name="uq_tag_scans_seq"),
        CheckConstraint("scan_number >= 1", name="ck_tag_scans_scan_number_positive"),
        Index("ix_tag_scans_tag_created", "tag_id", "created_at"),
        Index("ix_tag_scans_tag_fingerprint", "tag_id", "fingerprint_id"),
    )
