"""
Email verification, profile access and registration flows.

Decides, for a submitted email, whether the customer is already a member (send
a profile access link) or a new customer (send a registration link), keeping
the identity cache coherent with the central registry along the way.
"""
import logging
from dataclasses import dataclass, replace
from urllib.parse import urlencode

from sqlalchemy.ext.asyncio import AsyncSession

from core.config import Settings
from core.identity_cache import IdentityCache
from schemas.fidelity import FidelityCreate, FidelityProfile
from schemas.identity import normalize_email
from schemas.validators import validate_store_code
from services.card_service import CardService
from services.email_service import EmailService
from services.exceptions import (
    IdentityNotFoundError,
    InvalidEmailError,
    InvalidStoreError,
    RegistryUnavailableError,
    TokenNotFoundError,
)
from services.member_service import save_member
from services.registry_client import RegistryClient
from services.side_effects import SideEffectResult, attempt
from services.token_store import TokenStore, decode_payload

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LinkBuilder:
    """Builds the client links sent by email."""

    base_url: str
    profile_path: str = "/profilo"
    registration_path: str = "/Fidelity-form"

    @classmethod
    def from_settings(cls, settings: Settings) -> "LinkBuilder":
        """Build links from application settings."""
        return cls(
            base_url=settings.client_base_url,
            profile_path=settings.profile_path,
            registration_path=settings.registration_path,
        )

    def profile_link(self, token: str) -> str:
        """Link to the member's profile page."""
        return f"{self.base_url}{self.profile_path}?{urlencode({'token': token})}"

    def registration_link(self, token: str) -> str:
        """Link to the registration form."""
        return f"{self.base_url}{self.registration_path}?{urlencode({'token': token})}"


@dataclass(frozen=True)
class VerificationResult:
    """
    Outcome of an email validation.

    source is where the decision came from: 'cache', 'registry' or 'new'.
    """

    user_exists: bool
    email: str
    store: str
    token: str
    source: str
    email_sent: SideEffectResult
    identity_code: str | None = None


@dataclass(frozen=True)
class RegistrationResult:
    """Outcome of a registration submission."""

    profile: FidelityProfile
    member_id: int
    created_in_registry: bool
    side_effects: tuple[SideEffectResult, ...] = ()

    @property
    def failed_side_effects(self) -> list[SideEffectResult]:
        """Side effects that did not complete."""
        return [effect for effect in self.side_effects if not effect.succeeded]


class VerificationService:
    """Coordinates the identity cache, registry, token store and emails."""

    def __init__(
        self,
        cache: IdentityCache,
        registry: RegistryClient,
        tokens: TokenStore,
        emails: EmailService,
        cards: CardService,
        links: LinkBuilder,
    ) -> None:
        self._cache = cache
        self._registry = registry
        self._tokens = tokens
        self._emails = emails
        self._cards = cards
        self._links = links

    async def verify_email(self, email: str | None, store: str | None = None) -> VerificationResult:
        """
        Decide between a profile access link and a registration link.

        1. Cached with an identity code: profile access link.
        2. Otherwise ask the registry; a member with a code is cached and gets
           a profile access link.
        3. Otherwise the email is cached provisionally and gets a
           registration link.

        Raises:
            InvalidEmailError: If email is blank or contains whitespace.
            InvalidStoreError: If store is given but is not a valid store code.
        """
        normalized = normalize_email(email)
        if not normalized:
            raise InvalidEmailError()
        if any(c.isspace() for c in normalized):
            raise InvalidEmailError("Invalid email address")
        store_hint = (store or "").strip() or None
        if store_hint is not None:
            try:
                store_hint = validate_store_code(store_hint)
            except ValueError as e:
                raise InvalidStoreError(str(e)) from e

        cached = self._cache.get(normalized)
        if cached is not None and cached.identity_code:
            logger.info(
                "Email '%s' found in cache with identity_code=%s", normalized, cached.identity_code,
            )
            return await self._send_profile_access(
                normalized,
                store_hint or cached.store,
                cached.identity_code,
                cached.name,
                source="cache",
            )

        remote = await self._registry.find_by_email(normalized)
        if remote is not None and remote.has_identity_code:
            member_store = store_hint or remote.store or self._cache.default_store
            self._cache.update_with_full_record(
                normalized, remote.to_identity_record(normalized, member_store),
            )
            logger.info(
                "Email '%s' found in registry with identity_code=%s",
                normalized,
                remote.identity_code,
            )
            return await self._send_profile_access(
                normalized, member_store, remote.identity_code, remote.name, source="registry",
            )

        new_store = store_hint or self._cache.default_store
        if cached is None:
            self._cache.add(normalized, new_store)
        token = await self._tokens.issue_token(new_store, normalized)
        sent = await self._emails.send_verification(
            normalized, self._links.registration_link(token),
        )
        logger.info("Email '%s' is new, registration link issued", normalized)
        return VerificationResult(
            user_exists=False,
            email=normalized,
            store=new_store,
            token=token,
            source="new",
            email_sent=sent,
        )

    async def _send_profile_access(
        self,
        email: str,
        store: str,
        identity_code: str,
        name: str | None,
        source: str,
    ) -> VerificationResult:
        token = await self._tokens.issue_profile_token(store, email, identity_code)
        sent = await self._emails.send_profile_access(email, self._links.profile_link(token), name)
        return VerificationResult(
            user_exists=True,
            email=email,
            store=store,
            token=token,
            source=source,
            email_sent=sent,
            identity_code=identity_code,
        )

    async def confirm_token(self, token: str | None) -> str | None:
        """Raw payload of a live token, None if unknown or expired."""
        return await self._tokens.read_token(token)

    async def get_profile(self, token: str | None) -> FidelityProfile:
        """
        Resolve the member a token was issued for.

        Tries the cache first, then the registry by identity code and by
        email. When the registry cannot be reached but the token carries an
        identity code, a minimal profile is assembled from what is known.

        Raises:
            TokenNotFoundError: If the token is unknown or expired.
            InvalidTokenError: If the token payload is malformed.
            IdentityNotFoundError: If the member cannot be resolved.
        """
        raw = await self._tokens.read_token(token)
        if raw is None:
            raise TokenNotFoundError()
        payload = decode_payload(raw)
        email = payload.email

        cached = self._cache.get(email)
        if cached is not None and cached.is_complete and cached.has_profile:
            logger.info("Profile for '%s' served from cache", email)
            return FidelityProfile.from_record(cached)

        remote = None
        if payload.identity_code:
            remote = await self._registry.find_by_identity_code(payload.identity_code)
        if remote is None or not remote.found:
            remote = await self._registry.find_by_email(email)

        if remote is not None and remote.found:
            if remote.identity_code:
                self._cache.update_with_full_record(
                    email, remote.to_identity_record(email, remote.store or payload.store),
                )
            logger.info(
                "Profile for '%s' served from registry (identity_code=%s)",
                email,
                remote.identity_code,
            )
            return FidelityProfile.from_remote(remote, email, payload.store)

        if payload.identity_code:
            logger.warning(
                "Registry unavailable for '%s', returning minimal profile for identity_code=%s",
                email,
                payload.identity_code,
            )
            if cached is not None:
                partial = replace(
                    cached,
                    identity_code=cached.identity_code or payload.identity_code,
                    is_complete=True,
                )
                return FidelityProfile.from_record(partial)
            return FidelityProfile(
                identity_code=payload.identity_code, email=email, store=payload.store,
            )

        raise IdentityNotFoundError(email, payload.identity_code)

    async def register(self, db: AsyncSession, data: FidelityCreate) -> RegistrationResult:
        """
        Complete a registration.

        Registers the member with the registry when no identity code was
        submitted, stores the local record and caches the full profile. The
        digital card and welcome email are best-effort.

        Raises:
            RegistryUnavailableError: If the registry does not assign a code.
            MemberPersistenceError: If the local record cannot be saved.
        """
        identity_code = data.identity_code
        created = False
        if not identity_code:
            identity_code = await self._registry.create_member(data.to_identity_record())
            if not identity_code:
                raise RegistryUnavailableError()
            created = True
        submitted = data.model_copy(update={"identity_code": identity_code})

        member = await save_member(db, submitted, identity_code)
        record = self._cache.update_with_full_record(submitted.email, submitted.to_identity_record())

        card_result, card_png = await attempt(
            "card", self._cards.card(identity_code, submitted.name, submitted.surname),
        )
        welcome_result = await self._emails.send_welcome(
            submitted.email, identity_code, submitted.name, card_png,
        )
        side_effects = (card_result, welcome_result)
        for effect in side_effects:
            if not effect.succeeded:
                logger.warning(
                    "Registration of '%s' completed but %s failed: %s",
                    submitted.email,
                    effect.name,
                    effect.error,
                )

        logger.info(
            "Registered '%s' with identity_code=%s (new=%s)", submitted.email, identity_code, created,
        )
        return RegistrationResult(
            profile=FidelityProfile.from_record(record),
            member_id=member.id,
            created_in_registry=created,
            side_effects=side_effects,
        )
