"""
Tests for the verification flow.

Tests cover:
- verify_email: cache hit, registry hit, unknown email
- get_profile: cache, registry by code and by email, degraded path, not found
- register: with and without an identity code, side effect failures
"""
from datetime import date
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from core.identity_cache import IdentityCache
from models.fidelity_member import FidelityMember
from schemas.fidelity import FidelityCreate
from schemas.identity import IdentityRecord
from schemas.registry import RemoteIdentity
from services.card_service import CardService
from services.email_service import EmailService
from services.exceptions import (
    IdentityNotFoundError,
    InvalidEmailError,
    InvalidStoreError,
    InvalidTokenError,
    MemberPersistenceError,
    RegistryUnavailableError,
    TokenNotFoundError,
)
from services.side_effects import SideEffectResult
from services.token_store import TokenStore, decode_payload, generate_token
from services.verification_service import LinkBuilder, VerificationService

BASE_URL = "https://fidelity.example.com"


@pytest.fixture
def emails() -> AsyncMock:
    """Email service whose sends always succeed."""
    service = AsyncMock(spec=EmailService)
    service.send_verification.return_value = SideEffectResult.ok("email:verification")
    service.send_profile_access.return_value = SideEffectResult.ok("email:profile_access")
    service.send_welcome.return_value = SideEffectResult.ok("email:welcome")
    return service


@pytest.fixture
def cards() -> AsyncMock:
    """Card service returning a placeholder image."""
    service = AsyncMock(spec=CardService)
    service.card.return_value = b"\x89PNG card"
    return service


@pytest.fixture
def service(
    identity_cache: IdentityCache,
    registry: AsyncMock,
    token_store: TokenStore,
    emails: AsyncMock,
    cards: AsyncMock,
) -> VerificationService:
    """Verification service wired to test collaborators."""
    return VerificationService(
        cache=identity_cache,
        registry=registry,
        tokens=token_store,
        emails=emails,
        cards=cards,
        links=LinkBuilder(base_url=BASE_URL),
    )


def remote_member(**overrides: object) -> RemoteIdentity:
    """Helper to build a registry hit."""
    values = {
        "found": True,
        "identity_code": "FID000999",
        "email": "anna@example.com",
        "store": "NE005",
        "name": "Anna",
        "surname": "Bianchi",
        "city": "Roma",
    }
    values.update(overrides)
    return RemoteIdentity(**values)


def registration(**overrides: object) -> FidelityCreate:
    """Helper to build a valid registration body."""
    values = {
        "store": "NE003",
        "surname": "Verdi",
        "name": "Luca",
        "birth_date": date(1975, 3, 9),
        "email": "Luca@Example.com",
        "sex": "M",
        "address": "Via Po 2",
        "city": "Torino",
        "postal_code": "10100",
        "province": "to",
        "country": "it",
        "phone": "333 111 2222",
    }
    values.update(overrides)
    return FidelityCreate(**values)


class TestLinkBuilder:
    """Client links."""

    def test__links__default_paths(self) -> None:
        links = LinkBuilder(base_url=BASE_URL)
        assert links.profile_link("abc") == f"{BASE_URL}/profilo?token=abc"
        assert links.registration_link("abc") == f"{BASE_URL}/Fidelity-form?token=abc"


class TestVerifyEmail:
    """The decision between registration and profile access links."""

    async def test__verify_email__unknown_everywhere(
        self,
        service: VerificationService,
        identity_cache: IdentityCache,
        token_store: TokenStore,
        registry: AsyncMock,
        emails: AsyncMock,
    ) -> None:
        """Scenario A: registration link and a provisional cache entry."""
        result = await service.verify_email("  New.Customer@Example.com ")

        assert result.user_exists is False
        assert result.source == "new"
        registry.find_by_email.assert_awaited_once_with("new.customer@example.com")

        record = identity_cache.get("new.customer@example.com")
        assert record is not None
        assert record.is_complete is False
        assert record.store == "NE001"

        raw = await token_store.read_token(result.token)
        assert raw == "NE001\r\nnew.customer@example.com"
        emails.send_verification.assert_awaited_once_with(
            "new.customer@example.com", f"{BASE_URL}/Fidelity-form?token={result.token}",
        )
        emails.send_profile_access.assert_not_awaited()

    async def test__verify_email__unknown_uses_store_hint(
        self, service: VerificationService, identity_cache: IdentityCache, token_store: TokenStore,
    ) -> None:
        result = await service.verify_email("new@example.com", store="NE042")
        assert result.store == "NE042"
        assert identity_cache.get("new@example.com").store == "NE042"
        assert await token_store.read_token(result.token) == "NE042\r\nnew@example.com"

    async def test__verify_email__cached_with_identity_code(
        self,
        service: VerificationService,
        identity_cache: IdentityCache,
        token_store: TokenStore,
        registry: AsyncMock,
        emails: AsyncMock,
    ) -> None:
        """Scenario B: cached member gets a profile token carrying the code."""
        identity_cache.add("mario@example.com", "NE002")
        identity_cache.update_with_identity_code("mario@example.com", "FID000123")

        result = await service.verify_email("MARIO@example.com")

        assert result.user_exists is True
        assert result.source == "cache"
        registry.find_by_email.assert_not_awaited()
        raw = await token_store.read_token(result.token)
        assert raw.split("\r\n")[2] == "FID000123"
        assert decode_payload(raw).store == "NE002"
        emails.send_profile_access.assert_awaited_once()
        link = emails.send_profile_access.await_args.args[1]
        assert link == f"{BASE_URL}/profilo?token={result.token}"

    async def test__verify_email__cached_store_hint_wins(
        self, service: VerificationService, identity_cache: IdentityCache, token_store: TokenStore,
    ) -> None:
        identity_cache.update_with_identity_code("mario@example.com", "FID000123")
        result = await service.verify_email("mario@example.com", store="NE077")
        raw = await token_store.read_token(result.token)
        assert raw == "NE077\r\nmario@example.com\r\nFID000123"

    async def test__verify_email__registry_only(
        self,
        service: VerificationService,
        identity_cache: IdentityCache,
        token_store: TokenStore,
        registry: AsyncMock,
    ) -> None:
        """Scenario C: registry member is cached complete."""
        registry.find_by_email.return_value = remote_member()

        result = await service.verify_email("anna@example.com")

        assert result.user_exists is True
        assert result.source == "registry"
        record = identity_cache.get("anna@example.com")
        assert record is not None
        assert record.is_complete is True
        assert record.identity_code == "FID000999"
        assert record.store == "NE005"
        assert record.name == "Anna"
        raw = await token_store.read_token(result.token)
        assert raw == "NE005\r\nanna@example.com\r\nFID000999"

    async def test__verify_email__registry_completes_provisional_entry(
        self,
        service: VerificationService,
        identity_cache: IdentityCache,
        registry: AsyncMock,
    ) -> None:
        identity_cache.add("anna@example.com")
        registry.find_by_email.return_value = remote_member(store=None)

        result = await service.verify_email("anna@example.com")

        assert result.user_exists is True
        record = identity_cache.get("anna@example.com")
        assert record.identity_code == "FID000999"
        assert record.store == "NE001"
        assert identity_cache.count == 1

    async def test__verify_email__registry_hit_without_code_is_new(
        self, service: VerificationService, registry: AsyncMock, emails: AsyncMock,
    ) -> None:
        registry.find_by_email.return_value = remote_member(identity_code=None)
        result = await service.verify_email("anna@example.com")
        assert result.user_exists is False
        emails.send_verification.assert_awaited_once()

    async def test__verify_email__provisional_entry_is_kept(
        self, service: VerificationService, identity_cache: IdentityCache,
    ) -> None:
        identity_cache.add("pending@example.com", "NE010")
        result = await service.verify_email("pending@example.com", store="NE020")
        assert result.user_exists is False
        assert identity_cache.get("pending@example.com").store == "NE010"
        assert identity_cache.count == 1

    async def test__verify_email__email_failure_still_answers(
        self, service: VerificationService, emails: AsyncMock,
    ) -> None:
        emails.send_verification.return_value = SideEffectResult.failed(
            "email:verification", "SMTPServerDisconnected: down",
        )
        result = await service.verify_email("new@example.com")
        assert result.user_exists is False
        assert result.email_sent.succeeded is False

    @pytest.mark.parametrize("email", ["", "   ", None])
    async def test__verify_email__blank_email_raises_before_side_effects(
        self,
        service: VerificationService,
        registry: AsyncMock,
        emails: AsyncMock,
        token_store: TokenStore,
        email: str | None,
    ) -> None:
        with pytest.raises(InvalidEmailError):
            await service.verify_email(email)
        registry.find_by_email.assert_not_awaited()
        emails.send_verification.assert_not_awaited()
        assert token_store.count() == 0

    @pytest.mark.parametrize(
        "store", ["NE001\r\nvictim@example.com", "NE001\nX", "NE-01", "NE00001"],
    )
    async def test__verify_email__invalid_store_raises_before_side_effects(
        self,
        service: VerificationService,
        identity_cache: IdentityCache,
        registry: AsyncMock,
        emails: AsyncMock,
        token_store: TokenStore,
        store: str,
    ) -> None:
        with pytest.raises(InvalidStoreError):
            await service.verify_email("attacker@example.com", store)
        registry.find_by_email.assert_not_awaited()
        emails.send_verification.assert_not_awaited()
        assert identity_cache.count == 0
        assert token_store.count() == 0

    async def test__verify_email__store_cannot_redirect_token_to_other_member(
        self,
        service: VerificationService,
        identity_cache: IdentityCache,
        emails: AsyncMock,
    ) -> None:
        identity_cache.update_with_full_record(
            "victim@example.com",
            IdentityRecord(
                email="victim@example.com",
                store="NE001",
                identity_code="FID000777",
                is_complete=True,
                name="Vera",
            ),
        )
        with pytest.raises(InvalidStoreError):
            await service.verify_email("attacker@example.com", "NE001\r\nvictim@example.com")
        emails.send_verification.assert_not_awaited()
        emails.send_profile_access.assert_not_awaited()

    @pytest.mark.parametrize(
        "email", ["a@example.com\r\nvictim@example.com", "a b@example.com", "a@exam\tple.com"],
    )
    async def test__verify_email__whitespace_inside_email_raises(
        self, service: VerificationService, token_store: TokenStore, email: str,
    ) -> None:
        with pytest.raises(InvalidEmailError):
            await service.verify_email(email)
        assert token_store.count() == 0


class TestGetProfile:
    """Resolving the member behind a token."""

    async def test__get_profile__unknown_token(self, service: VerificationService) -> None:
        with pytest.raises(TokenNotFoundError):
            await service.get_profile(generate_token())

    async def test__get_profile__malformed_payload(
        self, service: VerificationService, token_dir,
    ) -> None:
        token = generate_token()
        token_dir.mkdir(parents=True)
        (token_dir / token).write_text("only-one-line")
        with pytest.raises(InvalidTokenError):
            await service.get_profile(token)

    async def test__get_profile__served_from_cache(
        self,
        service: VerificationService,
        identity_cache: IdentityCache,
        token_store: TokenStore,
        registry: AsyncMock,
    ) -> None:
        identity_cache.update_with_full_record(
            "mario@example.com",
            IdentityRecord(
                email="mario@example.com",
                store="NE002",
                identity_code="FID000123",
                is_complete=True,
                name="Mario",
                surname="Rossi",
            ),
        )
        token = await token_store.issue_profile_token("NE002", "mario@example.com", "FID000123")

        profile = await service.get_profile(token)

        assert profile.identity_code == "FID000123"
        assert profile.name == "Mario"
        assert profile.phone == ""
        registry.find_by_identity_code.assert_not_awaited()
        registry.find_by_email.assert_not_awaited()

    async def test__get_profile__registry_by_identity_code(
        self,
        service: VerificationService,
        identity_cache: IdentityCache,
        token_store: TokenStore,
        registry: AsyncMock,
    ) -> None:
        registry.find_by_identity_code.return_value = remote_member()
        token = await token_store.issue_profile_token("NE001", "anna@example.com", "FID000999")

        profile = await service.get_profile(token)

        registry.find_by_identity_code.assert_awaited_once_with("FID000999")
        registry.find_by_email.assert_not_awaited()
        assert profile.name == "Anna"
        assert profile.store == "NE005"
        record = identity_cache.get("anna@example.com")
        assert record is not None and record.is_complete

    async def test__get_profile__falls_back_to_email_lookup(
        self,
        service: VerificationService,
        token_store: TokenStore,
        registry: AsyncMock,
    ) -> None:
        registry.find_by_email.return_value = remote_member(store=None)
        token = await token_store.issue_profile_token("NE009", "anna@example.com", "FID000999")

        profile = await service.get_profile(token)

        registry.find_by_email.assert_awaited_once_with("anna@example.com")
        assert profile.identity_code == "FID000999"
        assert profile.store == "NE009"

    async def test__get_profile__degraded_path_returns_minimal_profile(
        self, service: VerificationService, token_store: TokenStore,
    ) -> None:
        token = await token_store.issue_profile_token("NE001", "offline@example.com", "FID000555")

        profile = await service.get_profile(token)

        assert profile.identity_code == "FID000555"
        assert profile.email == "offline@example.com"
        assert profile.store == "NE001"
        assert profile.name == ""

    async def test__get_profile__degraded_path_uses_partial_cache_data(
        self,
        service: VerificationService,
        identity_cache: IdentityCache,
        token_store: TokenStore,
    ) -> None:
        identity_cache.update_with_full_record(
            "offline@example.com",
            IdentityRecord(email="offline@example.com", store="NE004", name="Sara"),
        )
        token = await token_store.issue_profile_token("NE004", "offline@example.com", "FID000556")

        profile = await service.get_profile(token)

        assert profile.identity_code == "FID000556"
        assert profile.name == "Sara"
        assert profile.store == "NE004"

    async def test__get_profile__degraded_path_keeps_cached_identity_code(
        self,
        service: VerificationService,
        identity_cache: IdentityCache,
        token_store: TokenStore,
    ) -> None:
        identity_cache.update_with_full_record(
            "offline@example.com",
            IdentityRecord(email="offline@example.com", store="NE004", identity_code="FID000111"),
        )
        token = await token_store.issue_profile_token("NE004", "offline@example.com", "FID000556")

        profile = await service.get_profile(token)

        assert profile.identity_code == "FID000111"
        assert profile.store == "NE004"

    async def test__get_profile__registration_token_without_member(
        self, service: VerificationService, token_store: TokenStore,
    ) -> None:
        token = await token_store.issue_token("NE001", "new@example.com")
        with pytest.raises(IdentityNotFoundError):
            await service.get_profile(token)


class TestRegister:
    """Registration submissions."""

    async def test__register__with_identity_code(
        self,
        service: VerificationService,
        identity_cache: IdentityCache,
        registry: AsyncMock,
        emails: AsyncMock,
        cards: AsyncMock,
        db_session: AsyncSession,
    ) -> None:
        result = await service.register(db_session, registration(identity_code="FID000321"))

        registry.create_member.assert_not_awaited()
        assert result.created_in_registry is False
        assert result.profile.identity_code == "FID000321"
        assert result.profile.email == "luca@example.com"
        assert result.failed_side_effects == []

        record = identity_cache.get("luca@example.com")
        assert record is not None
        assert record.is_complete is True
        assert record.province == "TO"

        member = (await db_session.execute(select(FidelityMember))).scalar_one()
        assert member.id == result.member_id
        assert member.identity_code == "FID000321"
        assert member.phone == "3331112222"

        cards.card.assert_awaited_once_with("FID000321", "Luca", "Verdi")
        emails.send_welcome.assert_awaited_once_with(
            "luca@example.com", "FID000321", "Luca", b"\x89PNG card",
        )

    async def test__register__without_identity_code_creates_member(
        self,
        service: VerificationService,
        registry: AsyncMock,
        db_session: AsyncSession,
    ) -> None:
        registry.create_member.return_value = "FID001000"

        result = await service.register(db_session, registration())

        registry.create_member.assert_awaited_once()
        sent = registry.create_member.await_args.args[0]
        assert sent.email == "luca@example.com"
        assert sent.store == "NE003"
        assert result.created_in_registry is True
        assert result.profile.identity_code == "FID001000"

    async def test__register__registry_unavailable(
        self,
        service: VerificationService,
        identity_cache: IdentityCache,
        emails: AsyncMock,
        db_session: AsyncSession,
    ) -> None:
        with pytest.raises(RegistryUnavailableError):
            await service.register(db_session, registration())
        assert identity_cache.count == 0
        emails.send_welcome.assert_not_awaited()
        assert (await db_session.execute(select(FidelityMember))).first() is None

    async def test__register__card_failure_still_sends_welcome(
        self,
        service: VerificationService,
        emails: AsyncMock,
        cards: AsyncMock,
        db_session: AsyncSession,
    ) -> None:
        cards.card.side_effect = OSError("font missing")

        result = await service.register(db_session, registration(identity_code="FID000321"))

        assert result.profile.identity_code == "FID000321"
        assert [e.name for e in result.failed_side_effects] == ["card"]
        emails.send_welcome.assert_awaited_once_with(
            "luca@example.com", "FID000321", "Luca", None,
        )

    async def test__register__welcome_failure_is_reported(
        self,
        service: VerificationService,
        emails: AsyncMock,
        db_session: AsyncSession,
    ) -> None:
        emails.send_welcome.return_value = SideEffectResult.failed("email:welcome", "timeout")
        result = await service.register(db_session, registration(identity_code="FID000321"))
        assert [e.name for e in result.failed_side_effects] == ["email:welcome"]

    async def test__register__commit_failure_skips_cache_and_side_effects(
        self,
        service: VerificationService,
        identity_cache: IdentityCache,
        emails: AsyncMock,
        cards: AsyncMock,
        db_session: AsyncSession,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        monkeypatch.setattr(
            AsyncSession,
            "commit",
            AsyncMock(side_effect=OperationalError("COMMIT", {}, Exception("disk I/O error"))),
        )

        with pytest.raises(MemberPersistenceError):
            await service.register(db_session, registration(identity_code="FID000321"))

        assert identity_cache.count == 0
        cards.card.assert_not_awaited()
        emails.send_welcome.assert_not_awaited()
