# app/api/v1/scan.py
from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.orm import Session

from app.core.deps import (
    client_ip,
    enforce_rate_limit,
    get_scan_limiter,
    get_verification_service,
    http_error,
    require_csrf,
    user_agent,
)
from app.core.errors import StorageFailure, TagValidationError, VerificationError
from app.core.rate_limit import InMemoryRateLimiter
from app.db.session import get_db
from app.schemas.scan import ClaimRequest, ClaimResponse, ScanRequest, ScanResponse
from app.services.scan_ledger import Observation
from app.services.verification_service import VerificationService

router = APIRouter(prefix="/scan")


def _observation(request: Request, body: ScanRequest) -> Observation:
    return Observation(
        ip_address=client_ip(request),
        user_agent=user_agent(request),
        latitude=body.latitude,
        longitude=body.longitude,
        location_name=body.locationName or None,
    )


def _gate(request: Request, response: Response, body: ScanRequest, limiter: InMemoryRateLimiter) -> None:
    try:
        if not body.tagCode or not body.fingerprintId:
            raise TagValidationError("tagCode and fingerprintId are required.")
        decision = enforce_rate_limit(limiter, client_ip(request), body.fingerprintId)
    except VerificationError as e:
        raise http_error(e)
    response.headers["X-RateLimit-Remaining"] = str(decision.remaining)


@router.post("", response_model=ScanResponse, dependencies=[Depends(require_csrf)])
async def scan_tag(
    body: ScanRequest,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    svc: VerificationService = Depends(get_verification_service),
    limiter: InMemoryRateLimiter = Depends(get_scan_limiter),
):
    """
    Record an observation of a tag and return the composed verification,
    the ownership question for this device and, once enough devices have
    seen the tag, its scan history.
    """
    _gate(request, response, body, limiter)

    try:
        result = await svc.scan(
            db,
            tag_code=body.tagCode,
            fingerprint_id=body.fingerprintId,
            observation=_observation(request, body),
        )
    except StorageFailure:
        # handled app-wide: 500 with request id
        raise
    except VerificationError as e:
        raise http_error(e)

    return result.as_dict()


@router.post("/claim", response_model=ClaimResponse, dependencies=[Depends(require_csrf)])
async def claim_scan(
    body: ClaimRequest,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    svc: VerificationService = Depends(get_verification_service),
    limiter: InMemoryRateLimiter = Depends(get_scan_limiter),
):
    _gate(request, response, body, limiter)

    has_location = body.latitude is not None or body.longitude is not None or bool(body.locationName)
    try:
        scan = svc.ledger.record_claim(
            db,
            tag_code=body.tagCode,
            fingerprint_id=body.fingerprintId,
            is_first_hand=body.isFirstHand,
            source_info=body.sourceInfo,
            observation=_observation(request, body) if has_location else None,
        )
    except StorageFailure:
        raise
    except VerificationError as e:
        raise http_error(e)

    return {
        "success": True,
        "message": "Thank you! Your answer has been saved.",
        "scanNumber": scan.scan_number,
        "isFirstHand": bool(scan.is_first_hand),
        "sourceInfo": scan.source_info,
    }
