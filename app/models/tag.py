# app/models/tag.py
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import String, DateTime, Integer, SmallInteger, Boolean, CheckConstraint, false, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base, JSONType


class Tag(Base):
    """
    Off-chain record of a physical product tag.

    chain_status is a cache of the registry's lifecycle status (ChainStatus
    ordinal); the registry is the source of truth and reconciliation only
    ever overwrites it. scan_count is the per-tag scan sequence counter,
    advanced under a row lock when a scan is recorded.
    """

    __tablename__ = "tags"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    code: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)

    product_ids: Mapped[List[int]] = mapped_column(JSONType, nullable=False, default=list)

    is_stamped: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=false(), default=False)
    hash_tx: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    chain_hash: Mapped[Optional[str]] = mapped_column(String(66), nullable=True, index=True)
    chain_status: Mapped[Optional[int]] = mapped_column(SmallInteger, nullable=True)
    publish_status: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=false(), default=False)

    # distribution_region / distribution_country / distribution_channel /
    # intended_market + batch and manufacturing fields
    metadata_json: Mapped[Dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)

    scan_count: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0", default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    scans = relationship(
        "TagScan",
        back_populates="tag",
        order_by="TagScan.scan_number.desc()",
        passive_deletes=True,
    )

    __table_args__ = (
        CheckConstraint(
            "chain_status IS NULL OR (chain_status >= 0 AND chain_status <= 5)",
            name="ck_tags_chain_status_range",
        ),
    )
