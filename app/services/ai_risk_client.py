# app/services/ai_risk_client.py
"""
External AI risk assessment (OpenAI-compatible chat completions endpoint)
plus the rule-only quick check used when the service is unavailable.
"""
from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Protocol

from openai import AsyncOpenAI
from pydantic import BaseModel, Field, field_validator

from app.core.config import Settings
from app.models.enums import RiskLevel
from app.services.fraud_heuristics import DistributionInfo
from app.services.scan_ledger import Observation


class AIServiceNotConfigured(RuntimeError):
    pass


class AIResponseError(ValueError):
    """The service answered, but not with a usable assessment."""


COUNTRY_NAMES: Dict[str, str] = {
    "ID": "Indonesia",
    "SG": "Singapore",
    "MY": "Malaysia",
    "TH": "Thailand",
    "VN": "Vietnam",
    "PH": "Philippines",
    "GLOBAL": "Global (Worldwide)",
}

CHANNEL_NAMES: Dict[str, str] = {
    "official_store": "Official Store",
    "authorized_retailer": "Authorized Retailer",
    "online_marketplace": "Online Marketplace",
    "distributor": "Distributor",
    "direct_sales": "Direct Sales",
}

MARKET_NAMES: Dict[str, str] = {
    "domestic": "Domestic",
    "export": "Export",
    "global": "Global",
    "southeast_asia": "Southeast Asia",
}

# Location-name tokens that place a scan inside a country.
COUNTRY_TOKENS: Dict[str, tuple] = {
    "ID": ("indonesia", "jakarta", "surabaya", "bandung", "medan", "jawa",
           "sumatra", "kalimantan", "sulawesi", "bali"),
    "SG": ("singapore",),
    "MY": ("malaysia", "kuala lumpur", "penang", "johor"),
    "TH": ("thailand", "bangkok", "chiang mai", "phuket"),
    "VN": ("vietnam", "viet nam", "ho chi minh", "hanoi"),
    "PH": ("philippines", "manila", "cebu", "davao"),
}

SOUTHEAST_ASIA = ("ID", "SG", "MY", "TH", "VN", "PH")

SYSTEM_PROMPT = """You are a fraud detection AI for a product authentication system. Your job is to analyze if a product scan location matches the intended distribution area and identify potential counterfeit or gray market products.

IMPORTANT RULES:
- NEVER ask questions or request more information
- Work ONLY with the data provided - make reasonable assumptions if data is incomplete
- If data is missing, use "Not specified" indicators to adjust your analysis accordingly

Respond ONLY with a valid JSON object in this exact format (no markdown, no extra text):
{
  "isSuspicious": boolean,
  "riskLevel": "low" | "medium" | "high" | "critical",
  "riskScore": number (0-100),
  "reasons": ["reason1", "reason2"],
  "recommendation": "concise, actionable recommendation (max 300 chars), no questions",
  "locationMatch": boolean,
  "channelMatch": boolean,
  "marketMatch": boolean
}

Risk Level Guidelines:
- low (0-25): Location matches or is within expected distribution area
- medium (26-50): Minor discrepancy, could be legitimate (e.g., traveler, gift)
- high (51-75): Significant location mismatch, likely gray market
- critical (76-100): Clear fraud indicators (e.g., wrong continent, excessive scans from different locations)

Consider:
- If distribution is "Global" or "Not specified", be lenient with location matching
- Southeast Asia market includes: Indonesia, Singapore, Malaysia, Thailand, Vietnam, Philippines
- Multiple scans from vastly different locations could indicate counterfeit tags being duplicated
- High scan count with few unique devices may indicate reselling (not necessarily fraud)"""

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")


@dataclass(frozen=True)
class ScanSnapshot:
    """Aggregate scan statistics sent to the risk service."""

    total_scans: int
    unique_scanners: int
    recent_locations: List[str]


class AIRiskAssessment(BaseModel):
    isSuspicious: bool = False
    riskLevel: RiskLevel = RiskLevel.low
    riskScore: int = Field(default=0, ge=0, le=100)
    reasons: List[str] = Field(default_factory=list)
    recommendation: str = "No issues detected."
    locationMatch: bool = True
    channelMatch: bool = True
    marketMatch: bool = True

    @field_validator("riskScore", mode="before")
    @classmethod
    def _clamp_score(cls, v):
        if v is None:
            return 0
        return max(0, min(100, int(round(float(v)))))

    @field_validator("riskLevel", mode="before")
    @classmethod
    def _normalize_level(cls, v):
        return v.strip().lower() if isinstance(v, str) else v

    def details(self) -> Dict[str, bool]:
        return {
            "locationMatch": self.locationMatch,
            "channelMatch": self.channelMatch,
            "marketMatch": self.marketMatch,
        }


class RiskAssessor(Protocol):
    async def assess(
        self,
        distribution: DistributionInfo,
        observation: Observation,
        snapshot: ScanSnapshot,
    ) -> AIRiskAssessment: ...


def _display(value: Optional[str], names: Dict[str, str]) -> str:
    if not value:
        return "Not specified"
    return names.get(value, value)


def build_user_prompt(distribution: DistributionInfo, observation: Observation, snapshot: ScanSnapshot) -> str:
    coords = (
        f"{observation.latitude}, {observation.longitude}"
        if observation.latitude is not None and observation.longitude is not None
        else "Not available"
    )
    recent = ", ".join(snapshot.recent_locations) if snapshot.recent_locations else "First scan"
    return (
        "Analyze this product scan for potential fraud:\n\n"
        "INTENDED DISTRIBUTION:\n"
        f"- Region: {distribution.region or 'Not specified'}\n"
        f"- Country: {_display(distribution.country, COUNTRY_NAMES)}\n"
        f"- Channel: {_display(distribution.channel, CHANNEL_NAMES)}\n"
        f"- Intended Market: {_display(distribution.intended_market, MARKET_NAMES)}\n\n"
        "ACTUAL SCAN LOCATION:\n"
        f"- Location Name: {observation.location_name or 'Unknown'}\n"
        f"- Coordinates: {coords}\n\n"
        "SCAN HISTORY:\n"
        f"- Total Scans: {snapshot.total_scans}\n"
        f"- Unique Devices: {snapshot.unique_scanners}\n"
        f"- Recent Scan Locations: {recent}\n\n"
        "Provide your fraud analysis as JSON."
    )


def parse_assessment(content: str) -> AIRiskAssessment:
    match = _JSON_OBJECT.search(content or "")
    if not match:
        raise AIResponseError("no JSON object in AI response")
    try:
        data = json.loads(match.group(0))
        return AIRiskAssessment.model_validate(data)
    except ValueError as exc:
        # json.JSONDecodeError and pydantic.ValidationError are both ValueErrors
        raise AIResponseError(f"unusable AI response: {exc}") from exc


class OpenAIRiskAssessor:
    def __init__(self, settings: Settings, client: Optional[AsyncOpenAI] = None):
        self.settings = settings
        self._client = client

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            if not self.settings.ai_api_key:
                raise AIServiceNotConfigured("ai_api_key not set")
            self._client = AsyncOpenAI(
                api_key=self.settings.ai_api_key,
                base_url=self.settings.ai_base_url,
                timeout=self.settings.ai_timeout_seconds,
                max_retries=0,
            )
        return self._client

    async def assess(
        self,
        distribution: DistributionInfo,
        observation: Observation,
        snapshot: ScanSnapshot,
    ) -> AIRiskAssessment:
        client = self._get_client()
        response = await client.chat.completions.create(
            model=self.settings.ai_model,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": build_user_prompt(distribution, observation, snapshot)},
            ],
            temperature=self.settings.ai_temperature,
            max_tokens=self.settings.ai_max_tokens,
        )
        content = response.choices[0].message.content if response.choices else ""
        return parse_assessment(content or "")


# ─────────────────────────────────────────────
# RULE-ONLY FALLBACK
# ─────────────────────────────────────────────


@dataclass(frozen=True)
class QuickCheck:
    is_suspicious: bool
    reason: Optional[str] = None


def _tokens_for(country: str) -> tuple:
    code = country.upper()
    if code in COUNTRY_TOKENS:
        return COUNTRY_TOKENS[code]
    return (COUNTRY_NAMES.get(code, country).lower(),)


def quick_fraud_check(distribution: DistributionInfo, location_name: Optional[str]) -> QuickCheck:
    """
    Is the presenting location absent from the declared country / market
    token set? Without a location name there is nothing to contradict.
    """
    if not distribution.declared:
        return QuickCheck(False)
    country = (distribution.country or "").upper()
    market = (distribution.intended_market or "").lower()
    if country == "GLOBAL" or market == "global":
        return QuickCheck(False)
    if not location_name:
        return QuickCheck(False)

    loc = location_name.lower()

    if market == "southeast_asia":
        tokens = tuple(t for c in SOUTHEAST_ASIA for t in COUNTRY_TOKENS[c])
        if not any(t in loc for t in tokens):
            return QuickCheck(
                True,
                "This product is intended for the Southeast Asia market but was scanned outside that region.",
            )
        return QuickCheck(False)

    if country or market == "domestic":
        target = country or "ID"
        if not any(t in loc for t in _tokens_for(target)):
            name = COUNTRY_NAMES.get(target, target)
            return QuickCheck(
                True,
                f"This product is intended for the {name} market but was scanned outside {name}.",
            )

    return QuickCheck(False)


def fallback_assessment(distribution: DistributionInfo, location_name: Optional[str]) -> AIRiskAssessment:
    quick = quick_fraud_check(distribution, location_name)
    if quick.is_suspicious:
        return AIRiskAssessment(
            isSuspicious=True,
            riskLevel=RiskLevel.medium,
            riskScore=40,
            reasons=[quick.reason] if quick.reason else [],
            recommendation="Scan location does not match the distribution area. Check the product's authenticity.",
            locationMatch=False,
            channelMatch=True,
            marketMatch=False,
        )
    return AIRiskAssessment(recommendation="No issues detected.")
