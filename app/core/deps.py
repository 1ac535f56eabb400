# /app/core/deps.py
from __future__ import annotations

from typing import Dict, Optional

from fastapi import Depends, HTTPException, Request

from app.core.config import Settings, get_settings
from app.core.csrf import check_csrf
from app.core.errors import CSRFRejected, RateLimited, VerificationError
from app.core.rate_limit import InMemoryRateLimiter, RateLimitDecision, per_minute
from app.services.ai_risk_cache import AIRiskCache
from app.services.ai_risk_client import OpenAIRiskAssessor
from app.services.registry_client import Web3TagRegistry
from app.services.registry_reconciler import RegistryReconciler
from app.services.verification_service import VerificationService

# Process-wide singletons: the AI cache and the rate limiter buckets must
# outlive a single request.
_verification_service: Optional[VerificationService] = None
_scan_limiter: Optional[InMemoryRateLimiter] = None


def client_ip(request: Request) -> str:
    """
    Resolution order:
    1. First hop of X-Forwarded-For
    2. X-Real-IP
    3. Socket peer
    """
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    if request.client and request.client.host:
        return request.client.host
    return "127.0.0.1"


def user_agent(request: Request) -> str:
    return request.headers.get("user-agent") or "Unknown"


def build_verification_service(settings: Settings) -> VerificationService:
    reconciler = RegistryReconciler(Web3TagRegistry(settings), settings)
    ai_cache = AIRiskCache(OpenAIRiskAssessor(settings), settings)
    return VerificationService(settings, reconciler, ai_cache)


def get_verification_service() -> VerificationService:
    global _verification_service
    if _verification_service is None:
        _verification_service = build_verification_service(get_settings())
    return _verification_service


def get_scan_limiter() -> InMemoryRateLimiter:
    global _scan_limiter
    if _scan_limiter is None:
        _scan_limiter = per_minute(get_settings().scan_rate_limit_per_minute)
    return _scan_limiter


# ─────────────────────────────────────────────
# GATES
# ─────────────────────────────────────────────


async def require_csrf(request: Request, settings: Settings = Depends(get_settings)) -> None:
    """
    Double-submit check for state-changing endpoints.
    """
    if not settings.csrf_enabled:
        return
    reason = check_csrf(
        settings,
        request.headers.get(settings.csrf_header_name),
        request.cookies.get(settings.csrf_cookie_name),
    )
    if reason:
        raise http_error(CSRFRejected(reason))


def enforce_rate_limit(limiter: InMemoryRateLimiter, ip: str, fingerprint_id: str) -> RateLimitDecision:
    decision = limiter.check(ip, fingerprint_id)
    if not decision.allowed:
        raise RateLimited(decision.retry_after or 60)
    return decision


def http_error(exc: VerificationError) -> HTTPException:
    """Translate a domain error into the API's HTTPException shape."""
    headers: Optional[Dict[str, str]] = None
    if isinstance(exc, RateLimited):
        headers = {"Retry-After": str(exc.retry_after)}
    return HTTPException(status_code=exc.status_code, detail=exc.message, headers=headers)
