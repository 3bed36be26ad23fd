"""FastAPI dependencies for injection."""
from fastapi import Request

from core.identity_cache import IdentityCache
from db.session import get_async_session
from services.card_service import CardService
from services.token_store import TokenStore
from services.verification_service import VerificationService

__all__ = [
    "get_async_session",
    "get_card_service",
    "get_identity_cache",
    "get_token_store",
    "get_verification_service",
]


def get_identity_cache(request: Request) -> IdentityCache:
    """Identity cache built at startup."""
    return request.app.state.identity_cache


def get_token_store(request: Request) -> TokenStore:
    """Token store built at startup."""
    return request.app.state.token_store


def get_card_service(request: Request) -> CardService:
    """Card renderer built at startup."""
    return request.app.state.card_service


def get_verification_service(request: Request) -> VerificationService:
    """Verification service built at startup."""
    return request.app.state.verification_service
