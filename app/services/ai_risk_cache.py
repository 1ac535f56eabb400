# app/services/ai_risk_cache.py
from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

from app.core.config import Settings
from app.core.resilience import guarded_call
from app.services.ai_risk_client import (
    AIResponseError,
    AIRiskAssessment,
    AIServiceNotConfigured,
    RiskAssessor,
    ScanSnapshot,
    fallback_assessment,
)
from app.services.fraud_heuristics import DistributionInfo
from app.services.scan_ledger import Observation

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def location_bucket(observation: Observation) -> str:
    """Coarse (~1 km) location fingerprint: 2-decimal lat/lon plus the lowercased name."""
    lat = f"{observation.latitude:.2f}" if observation.latitude is not None else "0"
    lon = f"{observation.longitude:.2f}" if observation.longitude is not None else "0"
    name = (observation.location_name or "").lower()
    return hashlib.md5(f"{lat},{lon},{name}".encode()).hexdigest()[:12]


@dataclass(frozen=True)
class CachedAIRisk:
    assessment: AIRiskAssessment
    computed_at: datetime
    expires_at: datetime


@dataclass(frozen=True)
class AIRiskOutcome:
    assessment: AIRiskAssessment
    from_cache: bool = False
    expires_at: Optional[datetime] = None
    fallback: bool = False

    def as_dict(self) -> Dict[str, Any]:
        a = self.assessment
        return {
            "isSuspicious": a.isSuspicious,
            "riskLevel": a.riskLevel.value,
            "riskScore": a.riskScore,
            "reasons": list(a.reasons),
            "recommendation": a.recommendation,
            "details": a.details(),
            "fromCache": self.from_cache,
            "cacheExpiresAt": self.expires_at.isoformat() if self.expires_at else None,
            "fallback": self.fallback,
        }


class AIRiskCache:
    """
    Memoizes AI risk assessments per tag for a fixed TTL.

    Only successful assessments are stored. When the service fails or times
    out, the rule-only fallback is returned uncached so the next request
    retries the service. Per-process; a shared store is needed once the API
    runs behind more than one worker.
    """

    def __init__(
        self,
        assessor: RiskAssessor,
        settings: Settings,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.assessor = assessor
        self.settings = settings
        self._clock = clock
        self._entries: Dict[str, CachedAIRisk] = {}

    @property
    def ttl(self) -> timedelta:
        return timedelta(seconds=self.settings.fraud_cache_ttl_seconds)

    def key_for(self, tag_code: str, observation: Optional[Observation] = None) -> str:
        if self.settings.fraud_cache_bucket_by_location and observation is not None:
            return f"{tag_code}|{location_bucket(observation)}"
        return tag_code

    def get(self, key: str) -> Optional[CachedAIRisk]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() >= entry.expires_at:
            del self._entries[key]
            return None
        return entry

    async def get_or_compute(
        self,
        tag_code: str,
        distribution: DistributionInfo,
        observation: Observation,
        snapshot: ScanSnapshot,
    ) -> AIRiskOutcome:
        key = self.key_for(tag_code, observation)
        cached = self.get(key)
        if cached is not None:
            logger.debug("[ai-cache] hit tag=%s", tag_code)
            return AIRiskOutcome(cached.assessment, from_cache=True, expires_at=cached.expires_at)

        result = await guarded_call(
            lambda: self.assessor.assess(distribution, observation, snapshot),
            subsystem="ai_risk",
            timeout=self.settings.ai_timeout_seconds,
            no_retry=(AIResponseError, AIServiceNotConfigured),
            context={"tag_code": tag_code},
        )

        if result.degraded or result.value is None:
            return AIRiskOutcome(
                fallback_assessment(distribution, observation.location_name),
                fallback=True,
            )

        # expired entries for other keys are only dropped here
        self.cleanup_expired()
        now = self._clock()
        entry = CachedAIRisk(assessment=result.value, computed_at=now, expires_at=now + self.ttl)
        self._entries[key] = entry
        logger.info(
            "[ai-cache] stored tag=%s risk=%s score=%d",
            tag_code,
            entry.assessment.riskLevel.value,
            entry.assessment.riskScore,
        )
        return AIRiskOutcome(entry.assessment, from_cache=False, expires_at=entry.expires_at)

    # ─────────────────────────────────────────────
    # MAINTENANCE
    # ─────────────────────────────────────────────

    def invalidate(self, tag_code: str) -> int:
        """Drop every entry for a tag, location buckets included."""
        keys = [k for k in self._entries if k == tag_code or k.startswith(f"{tag_code}|")]
        for k in keys:
            del self._entries[k]
        return len(keys)

    def clear(self) -> None:
        self._entries.clear()

    def cleanup_expired(self) -> int:
        now = self._clock()
        expired = [k for k, e in self._entries.items() if now >= e.expires_at]
        for k in expired:
            del self._entries[k]
        if expired:
            logger.info("[ai-cache] removed %d expired entries", len(expired))
        return len(expired)

    def stats(self) -> Dict[str, Any]:
        now = self._clock()
        entries = [
            {
                "key": k,
                "expiresAt": e.expires_at.isoformat(),
                "isExpired": now >= e.expires_at,
            }
            for k, e in self._entries.items()
        ]
        return {
            "size": len(entries),
            "ttlSeconds": self.settings.fraud_cache_ttl_seconds,
            "entries": entries,
        }
