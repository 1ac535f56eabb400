# app/services/verification_service.py
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from app.core.config import Settings
from app.core.errors import RegistryUnavailable
from app.models.enums import FlagSeverity, RiskLevel, chain_status_label
from app.models.product import Product
from app.models.tag import Tag
from app.models.tag_scan import TagScan
from app.services.ai_risk_cache import AIRiskCache, AIRiskOutcome
from app.services.ai_risk_client import ScanSnapshot
from app.services.fraud_heuristics import (
    DistributionInfo,
    FraudAssessment,
    FraudFlag,
    FraudHeuristicsEvaluator,
)
from app.services.interview import question_payload
from app.services.registry_reconciler import ReconciledStatus, RegistryReconciler
from app.services.scan_ledger import (
    Observation,
    ScanLedgerService,
    ScanOutcome,
    ScanStats,
    compute_stats,
)

logger = logging.getLogger(__name__)

AI_RECENT_LOCATIONS = 5


def _iso(dt):
    return dt.isoformat() if dt else None


@dataclass
class VerificationResult:
    tag: Tag
    reconciled: ReconciledStatus
    products: List[Dict[str, Any]]
    distribution: DistributionInfo
    stats: ScanStats
    scans: List[TagScan]
    fraud: FraudAssessment
    ai: Optional[AIRiskOutcome]
    blockchain_metadata: Optional[Dict[str, Any]]

    @property
    def valid(self) -> bool:
        return self.reconciled.overall_valid

    def tag_block(self) -> Dict[str, Any]:
        status = self.reconciled.chain_status
        return {
            "code": self.tag.code,
            "isStamped": bool(self.tag.is_stamped),
            "chainStatus": int(status) if status is not None else None,
            "chainStatusLabel": chain_status_label(status),
            "isRevoked": self.reconciled.is_revoked,
            "createdAt": _iso(self.tag.created_at),
            "products": self.products,
            "distribution": self.distribution.as_dict(),
        }

    def scan_history(self) -> List[Dict[str, Any]]:
        return [
            {
                "scanNumber": s.scan_number,
                "createdAt": _iso(s.created_at),
                "locationName": s.location_name,
                "isFirstHand": s.is_first_hand,
                "sourceInfo": s.source_info,
            }
            for s in self.scans
        ]

    def as_dict(self) -> Dict[str, Any]:
        return {
            "success": True,
            "valid": self.valid,
            "tag": self.tag_block(),
            "blockchainValidation": self.reconciled.as_validation_block(
                transaction_hash=self.tag.hash_tx
            ),
            "blockchainMetadata": self.blockchain_metadata,
            "scanStats": self.stats.as_dict(),
            "scanHistory": self.scan_history(),
            "fraudAnalysis": self.fraud.as_dict(),
            "aiAnalysis": self.ai.as_dict() if self.ai else None,
        }


@dataclass
class ScanResult:
    outcome: ScanOutcome
    verification: VerificationResult

    def as_dict(self) -> Dict[str, Any]:
        v = self.verification
        return {
            "success": True,
            "valid": v.valid,
            "tag": v.tag_block(),
            "blockchainValidation": v.reconciled.as_validation_block(
                transaction_hash=v.tag.hash_tx
            ),
            "scanInfo": self.outcome.scan_info(),
            "question": question_payload(self.outcome.question),
            "history": self.outcome.history,
            "scanStats": v.stats.as_dict(),
            "fraudAnalysis": v.fraud.as_dict(),
            "aiAnalysis": v.ai.as_dict() if v.ai else None,
        }


def merge_ai_assessment(fraud: FraudAssessment, ai: AIRiskOutcome) -> None:
    """
    Fold an AI assessment into the heuristic one.

    The composite score is the larger of the two and overall_risk follows
    whichever source produced it. AI reasons become flags only when the AI
    calls the scan suspicious, skipping messages already present.
    """
    a = ai.assessment
    if a.riskScore > fraud.risk_score:
        fraud.risk_score = a.riskScore
        fraud.overall_risk = a.riskLevel

    if not (a.isSuspicious and a.reasons):
        return

    severity = (
        FlagSeverity.danger
        if a.riskLevel in (RiskLevel.high, RiskLevel.critical)
        else FlagSeverity.warning
    )
    seen = {f.message.lower() for f in fraud.flags}
    for reason in a.reasons:
        if reason.lower() in seen:
            continue
        seen.add(reason.lower())
        fraud.flags.append(FraudFlag("ai_analysis", severity, reason))


class VerificationService:
    """
    Composes reconciliation, the scan ledger, heuristics and the AI risk
    cache into the two public operations.

    Remote reads (registry, AI) are issued concurrently and are each bounded
    and degradable. Database work stays on the request's session and is the
    only part whose failure fails the request.
    """

    def __init__(
        self,
        settings: Settings,
        reconciler: RegistryReconciler,
        ai_cache: AIRiskCache,
        ledger: Optional[ScanLedgerService] = None,
        heuristics: Optional[FraudHeuristicsEvaluator] = None,
    ):
        self.settings = settings
        self.reconciler = reconciler
        self.ai_cache = ai_cache
        self.ledger = ledger or ScanLedgerService()
        self.heuristics = heuristics or FraudHeuristicsEvaluator()

    # ─────────────────────────────────────────────
    # PUBLIC OPERATIONS
    # ─────────────────────────────────────────────

    async def verify(
        self,
        db: Session,
        tag_code: str,
        observation: Optional[Observation] = None,
    ) -> VerificationResult:
        """Read-only: never appends to the scan ledger."""
        tag = self.ledger.get_tag(db, tag_code)
        scans = self.ledger.list_scans(db, tag.id)

        # Without explicit coordinates the latest recorded location stands in.
        obs = observation or Observation()
        if not obs.location_name and scans and scans[0].location_name:
            obs = Observation(
                ip_address=obs.ip_address,
                user_agent=obs.user_agent,
                latitude=obs.latitude,
                longitude=obs.longitude,
                location_name=scans[0].location_name,
            )

        return await self._compose(db, tag, scans, obs)

    async def scan(
        self,
        db: Session,
        *,
        tag_code: str,
        fingerprint_id: str,
        observation: Observation,
    ) -> ScanResult:
        # The write happens before stats are read so this scan is counted.
        outcome = self.ledger.record_scan(
            db,
            tag_code=tag_code,
            fingerprint_id=fingerprint_id,
            observation=observation,
        )
        scans = self.ledger.list_scans(db, outcome.tag.id)
        verification = await self._compose(db, outcome.tag, scans, observation)
        return ScanResult(outcome=outcome, verification=verification)

    async def lookup_hash(self, db: Session, hash_hex: str) -> Dict[str, Any]:
        fetched = await self.reconciler.lookup_by_hash(hash_hex)
        if fetched.degraded:
            raise RegistryUnavailable()

        record = fetched.value
        if record is None:
            return {
                "exists": False,
                "isValid": False,
                "chainStatus": None,
                "chainStatusLabel": "Unknown",
                "metadataUri": None,
                "createdAt": None,
                "tagCode": None,
            }

        normalized = hash_hex.lower()
        if not normalized.startswith("0x"):
            normalized = "0x" + normalized
        tag_code = db.execute(
            select(Tag.code).where(Tag.chain_hash == normalized).limit(1)
        ).scalar_one_or_none()
        return {
            "exists": record.exists,
            "isValid": record.is_valid,
            "chainStatus": int(record.status) if record.status is not None else None,
            "chainStatusLabel": chain_status_label(record.status),
            "metadataUri": record.metadata_uri,
            "createdAt": _iso(record.created_at),
            "tagCode": tag_code,
        }

    # ─────────────────────────────────────────────
    # COMPOSITION
    # ─────────────────────────────────────────────

    async def _compose(
        self,
        db: Session,
        tag: Tag,
        scans: List[TagScan],
        observation: Observation,
    ) -> VerificationResult:
        distribution = DistributionInfo.from_tag_metadata(tag.metadata_json)
        stats = compute_stats(scans)

        ai_task = None
        if observation.has_location or distribution.declared:
            snapshot = ScanSnapshot(
                total_scans=stats.total_scans,
                unique_scanners=stats.unique_scanners,
                recent_locations=stats.scan_locations[:AI_RECENT_LOCATIONS],
            )
            ai_task = self.ai_cache.get_or_compute(tag.code, distribution, observation, snapshot)

        if ai_task is not None:
            fetched, ai = await asyncio.gather(
                self.reconciler.fetch(tag.code, bool(tag.is_stamped)),
                ai_task,
            )
        else:
            fetched = await self.reconciler.fetch(tag.code, bool(tag.is_stamped))
            ai = None

        reconciled = self.reconciler.apply(db, tag, fetched)

        fraud = self.heuristics.evaluate(reconciled, scans, distribution)
        if ai is not None:
            merge_ai_assessment(fraud, ai)

        logger.info(
            "[verify] tag=%s valid=%s validation=%s risk=%s score=%d ai=%s",
            tag.code,
            reconciled.overall_valid,
            reconciled.validation,
            fraud.overall_risk.value,
            fraud.risk_score,
            "fallback" if ai and ai.fallback else ("cache" if ai and ai.from_cache else ("live" if ai else "skipped")),
        )

        return VerificationResult(
            tag=tag,
            reconciled=reconciled,
            products=self._products(db, tag),
            distribution=distribution,
            stats=stats,
            scans=scans,
            fraud=fraud,
            ai=ai,
            blockchain_metadata=self._blockchain_metadata(tag, reconciled),
        )

    def _products(self, db: Session, tag: Tag) -> List[Dict[str, Any]]:
        ids = [int(i) for i in (tag.product_ids or [])]
        if not ids:
            return []
        rows = (
            db.execute(
                select(Product)
                .options(selectinload(Product.brand))
                .where(Product.id.in_(ids))
                .order_by(Product.id)
            )
            .scalars()
            .all()
        )
        out = []
        for p in rows:
            md = p.metadata_json or {}
            out.append(
                {
                    "code": p.code,
                    "name": md.get("name") or p.code,
                    "description": md.get("description"),
                    "brand": p.brand.name if p.brand else None,
                    "brandLogo": (p.brand.logo_url or None) if p.brand else None,
                    "images": list(md.get("images") or []),
                }
            )
        return out

    def _blockchain_metadata(self, tag: Tag, reconciled: ReconciledStatus) -> Optional[Dict[str, Any]]:
        if not tag.is_stamped or reconciled.is_revoked:
            return None
        base = self.settings.public_base_url.rstrip("/")
        return {
            "transactionHash": tag.hash_tx,
            "network": self.settings.chain_network,
            "chainId": self.settings.chain_id,
            "contractAddress": self.settings.chain_contract_address or None,
            "verifyUrl": f"{base}/verify/{tag.code}",
        }
