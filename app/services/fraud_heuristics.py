# app/services/fraud_heuristics.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence

from app.models.enums import FlagSeverity, RiskLevel
from app.models.tag_scan import TagScan
from app.services.registry_reconciler import ReconciledStatus

# Rule weights
REVOKED_WEIGHT = 50
NOT_STAMPED_WEIGHT = 40
LOCATION_MISMATCH_WEIGHT = 20
MANY_SCANNERS_WEIGHT = 15
RAPID_LOCATION_WEIGHT = 25

MANY_SCANNERS_THRESHOLD = 10
RAPID_WINDOW_SCANS = 5
RAPID_MIN_LOCATIONS = 3
RAPID_MAX_SPAN = timedelta(hours=24)

MAX_SCORE = 100


def _as_utc(dt: datetime) -> datetime:
    # SQLite hands back naive datetimes for timezone-aware columns
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class DistributionInfo:
    region: Optional[str] = None
    country: Optional[str] = None
    channel: Optional[str] = None
    intended_market: Optional[str] = None

    @classmethod
    def from_tag_metadata(cls, metadata: Optional[Dict[str, Any]]) -> "DistributionInfo":
        md = metadata or {}
        return cls(
            region=md.get("distribution_region") or None,
            country=md.get("distribution_country") or None,
            channel=md.get("distribution_channel") or None,
            intended_market=md.get("intended_market") or None,
        )

    @property
    def declared(self) -> bool:
        return bool(self.country or self.intended_market)

    def as_dict(self) -> Dict[str, Optional[str]]:
        return {
            "region": self.region,
            "country": self.country,
            "channel": self.channel,
            "intendedMarket": self.intended_market,
        }


@dataclass(frozen=True)
class FraudFlag:
    type: str
    severity: FlagSeverity
    message: str

    def as_dict(self) -> Dict[str, str]:
        return {"type": self.type, "severity": self.severity.value, "message": self.message}


@dataclass
class FraudAssessment:
    overall_risk: RiskLevel = RiskLevel.low
    risk_score: int = 0
    flags: List[FraudFlag] = field(default_factory=list)
    location_mismatch: bool = False
    suspicious_scan_pattern: bool = False
    multiple_locations_in_short_time: bool = False

    def as_dict(self) -> Dict[str, Any]:
        return {
            "overallRisk": self.overall_risk.value,
            "riskScore": self.risk_score,
            "flags": [f.as_dict() for f in self.flags],
            "locationMismatch": self.location_mismatch,
            "suspiciousScanPattern": self.suspicious_scan_pattern,
            "multipleLocationsInShortTime": self.multiple_locations_in_short_time,
        }


class FraudHeuristicsEvaluator:
    """
    Deterministic rule set over reconciled status, distribution metadata and
    recorded scans.

    Each rule is independent and contributes a fixed weight plus at most one
    flag. Flags come out in rule declaration order.
    """

    def evaluate(
        self,
        reconciled: ReconciledStatus,
        scans: Sequence[TagScan],
        distribution: DistributionInfo,
    ) -> FraudAssessment:
        """`scans` must be ordered most recent first."""
        result = FraudAssessment()
        score = 0

        if reconciled.is_revoked:
            result.flags.append(
                FraudFlag("revoked", FlagSeverity.danger, "Tag has been revoked on the blockchain")
            )
            score += REVOKED_WEIGHT

        if not reconciled.is_stamped:
            result.flags.append(
                FraudFlag("not_stamped", FlagSeverity.danger, "Tag has not been verified on the blockchain")
            )
            score += NOT_STAMPED_WEIGHT

        if self._location_mismatch(scans, distribution):
            result.location_mismatch = True
            result.flags.append(
                FraudFlag(
                    "location_mismatch",
                    FlagSeverity.warning,
                    f"Tag was scanned outside its official distribution area ({distribution.country})",
                )
            )
            score += LOCATION_MISMATCH_WEIGHT

        unique_scanners = len({s.fingerprint_id for s in scans})
        if unique_scanners > MANY_SCANNERS_THRESHOLD:
            result.suspicious_scan_pattern = True
            result.flags.append(
                FraudFlag(
                    "many_scanners",
                    FlagSeverity.warning,
                    f"Tag has been scanned by {unique_scanners} different devices",
                )
            )
            score += MANY_SCANNERS_WEIGHT

        if self._rapid_location_change(scans):
            result.multiple_locations_in_short_time = True
            result.flags.append(
                FraudFlag(
                    "rapid_location_change",
                    FlagSeverity.danger,
                    "Tag was scanned in many different locations within a short time",
                )
            )
            score += RAPID_LOCATION_WEIGHT

        result.risk_score = min(score, MAX_SCORE)
        result.overall_risk = RiskLevel.from_score(result.risk_score)

        if reconciled.overall_valid and not result.flags:
            result.flags.append(
                FraudFlag("verified", FlagSeverity.info, "Tag is verified and valid on the blockchain")
            )

        return result

    # ─────────────────────────────────────────────
    # RULES
    # ─────────────────────────────────────────────

    def _location_mismatch(self, scans: Sequence[TagScan], distribution: DistributionInfo) -> bool:
        """
        Case-insensitive substring test of the declared country against each
        recorded location name. A two-letter code such as "ID" does not occur
        in "Jakarta, Indonesia", so tags should declare the country name.
        """
        if not distribution.country:
            return False
        token = distribution.country.lower()
        locations = {s.location_name for s in scans if s.location_name}
        return any(token not in loc.lower() for loc in locations)

    def _rapid_location_change(self, scans: Sequence[TagScan]) -> bool:
        if len(scans) < 2:
            return False
        recent = list(scans[:RAPID_WINDOW_SCANS])
        locations = {s.location_name for s in recent if s.location_name}
        if len(locations) < RAPID_MIN_LOCATIONS:
            return False
        span = _as_utc(recent[0].created_at) - _as_utc(recent[-1].created_at)
        return span < RAPID_MAX_SPAN
