from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field


class ProductOut(BaseModel):
    code: str
    name: str
    description: Optional[str] = None
    brand: Optional[str] = None
    brandLogo: Optional[str] = None
    images: List[str] = Field(default_factory=list)


class DistributionOut(BaseModel):
    region: Optional[str] = None
    country: Optional[str] = None
    channel: Optional[str] = None
    intendedMarket: Optional[str] = None


class TagOut(BaseModel):
    code: str
    isStamped: bool
    chainStatus: Optional[int] = Field(default=None, ge=0, le=5)
    chainStatusLabel: str
    isRevoked: bool = False
    createdAt: Optional[str] = None
    products: List[ProductOut] = Field(default_factory=list)
    distribution: Optional[DistributionOut] = None


class BlockchainValidation(BaseModel):
    # "validated" = registry answered; "unvalidated" = registry unreachable,
    # stored status shown as-is
    status: str
    isValidOnChain: bool
    chainStatus: Optional[int] = None
    chainStatusLabel: str
    metadataUri: Optional[str] = None
    hash: Optional[str] = None
    createdAt: Optional[str] = None
    transactionHash: Optional[str] = None


class BlockchainMetadata(BaseModel):
    transactionHash: Optional[str] = None
    network: str
    chainId: int
    contractAddress: Optional[str] = None
    verifyUrl: str


class ScanStatsOut(BaseModel):
    totalScans: int = 0
    uniqueScanners: int = 0
    firstScanAt: Optional[str] = None
    lastScanAt: Optional[str] = None
    scanLocations: List[str] = Field(default_factory=list)


class ScanHistoryEntry(BaseModel):
    scanNumber: int
    createdAt: Optional[str] = None
    locationName: Optional[str] = None
    isFirstHand: Optional[bool] = None
    sourceInfo: Optional[str] = None


class FraudFlagOut(BaseModel):
    type: str
    severity: str
    message: str


class FraudAnalysis(BaseModel):
    overallRisk: str
    riskScore: int = Field(..., ge=0, le=100)
    flags: List[FraudFlagOut] = Field(default_factory=list)
    locationMismatch: bool = False
    suspiciousScanPattern: bool = False
    multipleLocationsInShortTime: bool = False


class AIDetails(BaseModel):
    locationMatch: bool
    channelMatch: bool
    marketMatch: bool


class AIAnalysis(BaseModel):
    isSuspicious: bool
    riskLevel: str
    riskScore: int = Field(..., ge=0, le=100)
    reasons: List[str] = Field(default_factory=list)
    recommendation: str
    details: AIDetails
    fromCache: bool
    cacheExpiresAt: Optional[str] = None
    # True when the AI service was unavailable and the rule-only check answered
    fallback: bool = False


class VerifyResponse(BaseModel):
    success: bool
    valid: bool
    tag: TagOut
    blockchainValidation: Optional[BlockchainValidation] = None
    blockchainMetadata: Optional[BlockchainMetadata] = None
    scanStats: ScanStatsOut
    scanHistory: List[ScanHistoryEntry] = Field(default_factory=list)
    fraudAnalysis: FraudAnalysis
    aiAnalysis: Optional[AIAnalysis] = None


class HashLookupResponse(BaseModel):
    exists: bool
    isValid: bool
    chainStatus: Optional[int] = None
    chainStatusLabel: str
    metadataUri: Optional[str] = None
    createdAt: Optional[str] = None
    tagCode: Optional[str] = None


class CsrfTokenResponse(BaseModel):
    csrfToken: str
