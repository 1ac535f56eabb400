# app/services/registry_reconciler.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import Settings
from app.core.resilience import RemoteResult, guarded_call
from app.models.enums import ChainStatus
from app.models.tag import Tag
from app.services.registry_client import (
    OnChainTagRecord,
    RegistryNotConfigured,
    TagRegistryReader,
)

logger = logging.getLogger(__name__)

NOT_STAMPED = "not_stamped"
VALIDATED = "validated"
UNVALIDATED = "unvalidated"


def _now():
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ReconciledStatus:
    """
    Outcome of reading a tag's lifecycle status from the registry.

    chain_status is the effective status: the on-chain value when the read
    succeeded, otherwise the stored (possibly stale) copy. `validation`
    distinguishes "registry confirmed" from "registry not reachable".
    """

    is_stamped: bool
    validation: str
    chain_status: Optional[ChainStatus]
    stored_status: Optional[ChainStatus]
    on_chain: Optional[OnChainTagRecord] = None

    @property
    def validated(self) -> bool:
        return self.validation == VALIDATED

    @property
    def is_valid_on_chain(self) -> bool:
        return self.validated and self.on_chain is not None and self.on_chain.is_valid

    @property
    def is_revoked(self) -> bool:
        return self.chain_status == ChainStatus.REVOKED

    @property
    def is_flagged(self) -> bool:
        return self.chain_status == ChainStatus.FLAGGED

    @property
    def overall_valid(self) -> bool:
        if not self.is_stamped:
            return False
        if self.chain_status is not None and self.chain_status.invalidates:
            return False
        if self.validated and (self.on_chain is None or not self.on_chain.exists):
            return False
        return True

    def as_validation_block(self, *, transaction_hash: Optional[str] = None) -> Optional[Dict[str, Any]]:
        if self.validation == NOT_STAMPED:
            return None
        if not self.validated:
            return {
                "status": UNVALIDATED,
                "isValidOnChain": False,
                "chainStatus": None,
                "chainStatusLabel": "Unvalidated",
            }
        rec = self.on_chain
        return {
            "status": VALIDATED,
            "isValidOnChain": self.is_valid_on_chain,
            "chainStatus": int(self.chain_status) if self.chain_status is not None else None,
            "chainStatusLabel": self.chain_status.label if self.chain_status is not None else "Unknown",
            "metadataUri": rec.metadata_uri if rec else None,
            "hash": rec.hash if rec else None,
            "createdAt": rec.created_at.isoformat() if rec and rec.created_at else None,
            "transactionHash": transaction_hash,
        }


class RegistryReconciler:
    """
    Mirrors the registry's authoritative lifecycle status into the tag row.

    The tag row's chain_status is a cache of the on-chain value: a successful
    read that disagrees with it overwrites it (cache invalidation, never a
    merge). A failed or slow read never fails the caller; it yields the
    stored status marked UNVALIDATED.

    fetch() and apply() are split so the orchestrator can run the remote read
    concurrently with other remote work and do the DB write afterwards.
    """

    def __init__(self, registry: TagRegistryReader, settings: Settings):
        self.registry = registry
        self.settings = settings

    async def fetch(self, tag_code: str, is_stamped: bool) -> Optional[RemoteResult[OnChainTagRecord]]:
        if not is_stamped:
            return None
        return await guarded_call(
            lambda: self.registry.validate_tag(tag_code),
            subsystem="registry",
            timeout=self.settings.chain_timeout_seconds,
            retries=self.settings.chain_retries,
            no_retry=(RegistryNotConfigured, ValueError),
            context={"tag_code": tag_code},
        )

    def apply(
        self,
        db: Session,
        tag: Tag,
        fetched: Optional[RemoteResult[OnChainTagRecord]],
    ) -> ReconciledStatus:
        stored = ChainStatus.parse(tag.chain_status)

        if fetched is None:
            return ReconciledStatus(
                is_stamped=False,
                validation=NOT_STAMPED,
                chain_status=stored,
                stored_status=stored,
            )

        if fetched.degraded or fetched.value is None:
            return ReconciledStatus(
                is_stamped=True,
                validation=UNVALIDATED,
                chain_status=stored,
                stored_status=stored,
            )

        record = fetched.value
        on_chain_status = record.status if record.exists else None

        if on_chain_status is not None and on_chain_status != stored:
            self._invalidate_cached_status(db, tag, on_chain_status)

        return ReconciledStatus(
            is_stamped=True,
            validation=VALIDATED,
            chain_status=on_chain_status,
            stored_status=stored,
            on_chain=record,
        )

    async def reconcile(self, db: Session, tag: Tag) -> ReconciledStatus:
        fetched = await self.fetch(tag.code, tag.is_stamped)
        return self.apply(db, tag, fetched)

    def _invalidate_cached_status(self, db: Session, tag: Tag, status: ChainStatus) -> None:
        previous = tag.chain_status
        try:
            tag.chain_status = int(status)
            tag.updated_at = _now()
            db.commit()
        except SQLAlchemyError:
            # The on-chain value is still returned to the caller; the cached
            # copy is refreshed by the next successful read.
            db.rollback()
            logger.warning(
                "[reconciler] failed to write chain status for tag=%s",
                tag.code,
                exc_info=True,
                extra={"subsystem": "registry", "tag_code": tag.code},
            )
            return
        logger.info(
            "[reconciler] tag=%s chain_status %s -> %s",
            tag.code,
            previous,
            int(status),
        )

    # ─────────────────────────────────────────────
    # HASH LOOKUP (read-only)
    # ─────────────────────────────────────────────

    async def lookup_by_hash(self, hash_hex: str) -> RemoteResult[Optional[OnChainTagRecord]]:
        """
        Returns value=None when no tag with this content hash exists on chain.
        """

        async def _lookup() -> Optional[OnChainTagRecord]:
            if not await self.registry.tag_exists_by_hash(hash_hex):
                return None
            return await self.registry.validate_by_hash(hash_hex)

        return await guarded_call(
            _lookup,
            subsystem="registry",
            timeout=self.settings.chain_timeout_seconds,
            retries=self.settings.chain_retries,
            no_retry=(RegistryNotConfigured, ValueError),
            context={"hash": hash_hex},
        )
