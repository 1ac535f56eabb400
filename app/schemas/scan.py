from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from app.schemas.verify import (
    AIAnalysis,
    BlockchainValidation,
    FraudAnalysis,
    ScanStatsOut,
    TagOut,
)


class ScanLocationIn(BaseModel):
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)
    locationName: Optional[str] = Field(default=None, max_length=256)


class ScanRequest(ScanLocationIn):
    # Emptiness is checked by the endpoint so it can answer with the domain 400.
    tagCode: str = ""
    fingerprintId: str = ""

    @field_validator("tagCode", "fingerprintId", mode="before")
    @classmethod
    def _strip(cls, v):
        return v.strip() if isinstance(v, str) else (v or "")


class ClaimRequest(ScanRequest):
    isFirstHand: bool
    sourceInfo: Optional[str] = Field(default=None, max_length=256)


class ScanInfo(BaseModel):
    scanNumber: int = Field(..., ge=1)
    totalScans: int = Field(..., ge=1)
    isNewFingerprint: bool
    previousScansFromFingerprint: int = Field(..., ge=0)


class QuestionOut(BaseModel):
    type: str
    message: str
    options: Optional[List[str]] = None


class HistoryEntry(BaseModel):
    scanNumber: int
    createdAt: Optional[str] = None
    isFirstHand: Optional[bool] = None
    sourceInfo: Optional[str] = None


class ScanResponse(BaseModel):
    success: bool
    valid: bool
    tag: TagOut
    blockchainValidation: Optional[BlockchainValidation] = None
    scanInfo: ScanInfo
    question: QuestionOut
    history: Optional[List[HistoryEntry]] = None
    scanStats: ScanStatsOut
    fraudAnalysis: FraudAnalysis
    aiAnalysis: Optional[AIAnalysis] = None


class ClaimResponse(BaseModel):
    success: bool
    message: str
    scanNumber: int
    isFirstHand: bool
    sourceInfo: Optional[str] = None
