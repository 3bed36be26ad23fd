"""Fidelity card endpoints: email validation, profile access and registration."""
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from fastapi.responses import PlainTextResponse
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import (
    get_async_session,
    get_card_service,
    get_identity_cache,
    get_verification_service,
)
from core.identity_cache import IdentityCache
from schemas.fidelity import (
    CacheStatusResponse,
    ClearEmailResponse,
    EmailValidationResponse,
    FidelityCreate,
    FidelityProfile,
)
from schemas.identity import normalize_email
from services.card_service import CardService
from services.exceptions import (
    IdentityNotFoundError,
    InvalidEmailError,
    InvalidStoreError,
    InvalidTokenError,
    MemberPersistenceError,
    RegistryUnavailableError,
)
from services.verification_service import VerificationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/fidelity-card", tags=["fidelity-card"])


@router.get("/email-validation", response_model=EmailValidationResponse)
async def validate_email(
    email: str = Query(default=""),
    store: str | None = Query(default=None),
    service: VerificationService = Depends(get_verification_service),
) -> EmailValidationResponse:
    """
    Check whether an email belongs to a member and send the matching link.

    Members receive a profile access link, everybody else a registration
    link. Either way the response only says which case applied.
    """
    try:
        result = await service.verify_email(email, store)
    except (InvalidEmailError, InvalidStoreError) as e:
        raise HTTPException(status_code=400, detail=str(e))
    return EmailValidationResponse(user_exists=result.user_exists)


@router.get("/email-confirmation", response_class=PlainTextResponse)
async def confirm_email(
    token: str = Query(default=""),
    service: VerificationService = Depends(get_verification_service),
) -> PlainTextResponse:
    """Return the raw payload of a live token, or an empty body."""
    payload = await service.confirm_token(token)
    return PlainTextResponse(payload or "")


@router.get("/profile", response_model=FidelityProfile)
async def get_profile(
    token: str = Query(default=""),
    service: VerificationService = Depends(get_verification_service),
) -> FidelityProfile:
    """Get the profile of the member a profile access token was issued for."""
    try:
        return await service.get_profile(token)
    except InvalidTokenError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except IdentityNotFoundError:
        raise HTTPException(status_code=404, detail="Member not found")


@router.get(
    "/qrcode/{code}",
    response_class=Response,
    responses={200: {"content": {"image/png": {}}}},
)
async def get_qr_code(
    code: str,
    cards: CardService = Depends(get_card_service),
) -> Response:
    """Render a PNG QR code encoding code."""
    try:
        png = await cards.qr_code(code)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return Response(content=png, media_type="image/png")


@router.post("/", response_model=FidelityProfile, status_code=201)
async def register_member(
    data: FidelityCreate,
    service: VerificationService = Depends(get_verification_service),
    db: AsyncSession = Depends(get_async_session),
) -> FidelityProfile:
    """
    Complete a registration.

    Members without an identity code are registered with the central
    registry first. The response carries the assigned identity code.
    """
    try:
        result = await service.register(db, data)
    except RegistryUnavailableError as e:
        raise HTTPException(status_code=502, detail=str(e))
    except MemberPersistenceError:
        raise HTTPException(status_code=500, detail="Failed to save registration")
    return result.profile


@router.get("/cache-status", response_model=CacheStatusResponse)
async def get_cache_status(
    cache: IdentityCache = Depends(get_identity_cache),
) -> CacheStatusResponse:
    """Number of emails in the identity cache."""
    return CacheStatusResponse(total_emails_in_cache=cache.count)


@router.delete("/clear-email-from-cache", response_model=ClearEmailResponse)
async def clear_email_from_cache(
    email: str = Query(default=""),
    cache: IdentityCache = Depends(get_identity_cache),
) -> ClearEmailResponse:
    """Remove one email from the identity cache."""
    normalized = normalize_email(email)
    if not normalized:
        raise HTTPException(status_code=400, detail="Email is required")
    if cache.remove(normalized):
        message = f"Email '{normalized}' removed from cache"
    else:
        message = f"Email '{normalized}' was not in cache"
    return ClearEmailResponse(message=message, current_count=cache.count)
