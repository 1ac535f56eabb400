# app/api/v1/verify.py
from __future__ import annotations

import re
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from app.core.deps import client_ip, get_verification_service, http_error, user_agent
from app.core.errors import TagValidationError, VerificationError
from app.db.session import get_db
from app.schemas.verify import HashLookupResponse, VerifyResponse
from app.services.scan_ledger import Observation
from app.services.verification_service import VerificationService

router = APIRouter(prefix="/verify")

_HASH_RE = re.compile(r"^(0x)?[0-9a-fA-F]{64}$")


@router.get("", response_model=VerifyResponse)
async def verify_tag(
    request: Request,
    code: Optional[str] = Query(default=None),
    lat: Optional[float] = Query(default=None, ge=-90, le=90),
    lon: Optional[float] = Query(default=None, ge=-180, le=180),
    location: Optional[str] = Query(default=None, max_length=256),
    db: Session = Depends(get_db),
    svc: VerificationService = Depends(get_verification_service),
):
    """
    Read-only verification. lat / lon / location describe where the holder
    is now and feed the AI risk assessment; nothing is recorded.
    """
    if not code or not code.strip():
        raise http_error(TagValidationError("Tag code is required."))

    observation = Observation(
        ip_address=client_ip(request),
        user_agent=user_agent(request),
        latitude=lat,
        longitude=lon,
        location_name=location or None,
    )
    try:
        result = await svc.verify(db, code.strip(), observation)
    except VerificationError as e:
        raise http_error(e)

    return result.as_dict()


@router.get("/hash/{hash_hex}", response_model=HashLookupResponse)
async def verify_hash(
    hash_hex: str,
    db: Session = Depends(get_db),
    svc: VerificationService = Depends(get_verification_service),
):
    if not _HASH_RE.match(hash_hex):
        raise http_error(TagValidationError("hash must be 32 bytes of hex."))
    try:
        return await svc.lookup_hash(db, hash_hex)
    except VerificationError as e:
        raise http_error(e)
