# app/api/v1/csrf.py
from __future__ import annotations

from fastapi import APIRouter, Depends, Response

from app.core.config import Settings, get_settings
from app.core.csrf import issue_csrf_token
from app.schemas.verify import CsrfTokenResponse

router = APIRouter()


@router.get("/csrf", response_model=CsrfTokenResponse)
async def csrf_token(response: Response, settings: Settings = Depends(get_settings)):
    token = issue_csrf_token(settings)
    response.set_cookie(
        key=settings.csrf_cookie_name,
        value=token,
        max_age=settings.csrf_max_age_seconds,
        httponly=True,
        samesite="strict",
        secure=settings.environment == "production",
        path="/",
    )
    return {"csrfToken": token}
