"""Pydantic schemas for fidelity card endpoints."""
from datetime import date

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from schemas.identity import IdentityRecord
from schemas.registry import RemoteIdentity
from schemas.validators import (
    validate_birth_date,
    validate_email_address,
    validate_person_name,
    validate_phone,
    validate_store_code,
    validate_two_letter_code,
)


class CamelModel(BaseModel):
    """Base model serializing to camelCase while accepting snake_case input."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class FidelityProfile(CamelModel):
    """
    A member profile as returned to the client.

    Missing fields are empty strings, so clients can bind the profile straight
    to a form.
    """

    identity_code: str = ""
    store: str = ""
    email: str = ""
    name: str = ""
    surname: str = ""
    phone: str = ""
    address: str = ""
    city: str = ""
    postal_code: str = ""
    province: str = ""
    country: str = ""
    sex: str = ""
    birth_date: date | None = None

    @classmethod
    def from_record(cls, record: IdentityRecord) -> "FidelityProfile":
        """Build a profile from a cache record."""
        return cls(
            identity_code=record.identity_code or "",
            store=record.store or "",
            email=record.email,
            name=record.name or "",
            surname=record.surname or "",
            phone=record.phone or "",
            address=record.address or "",
            city=record.city or "",
            postal_code=record.postal_code or "",
            province=record.province or "",
            country=record.country or "",
            sex=record.sex or "",
            birth_date=record.birth_date,
        )

    @classmethod
    def from_remote(cls, remote: RemoteIdentity, email: str, store: str) -> "FidelityProfile":
        """Build a profile from a registry row; email and store fill the gaps."""
        return cls(
            identity_code=remote.identity_code or "",
            store=remote.store or store,
            email=remote.email or email,
            name=remote.name or "",
            surname=remote.surname or "",
            phone=remote.phone or "",
            address=remote.address or "",
            city=remote.city or "",
            postal_code=remote.postal_code or "",
            province=remote.province or "",
            country=remote.country or "",
            sex=remote.sex or "",
            birth_date=remote.birth_date,
        )


class FidelityCreate(CamelModel):
    """Schema for submitting a completed registration."""

    identity_code: str | None = Field(
        default=None,
        max_length=20,
        description="Code already assigned by the registry. When absent the member is registered first.",
    )
    store: str = Field(..., min_length=1, max_length=6)
    surname: str = Field(..., min_length=1, max_length=50)
    name: str = Field(..., min_length=1, max_length=50)
    birth_date: date
    email: str = Field(..., max_length=100)
    sex: str = Field(..., min_length=1, max_length=1)
    address: str = Field(..., min_length=1, max_length=100)
    city: str = Field(..., min_length=1, max_length=100)
    postal_code: str = Field(..., min_length=1, max_length=10)
    province: str
    country: str
    phone: str = Field(..., min_length=1, max_length=20)

    @field_validator("email")
    @classmethod
    def check_email(cls, v: str) -> str:
        """Normalize (trim, lowercase) and validate the email."""
        return validate_email_address(v)

    @field_validator("store")
    @classmethod
    def check_store(cls, v: str) -> str:
        """One to six letters or digits."""
        return validate_store_code(v)

    @field_validator("name", "surname")
    @classmethod
    def check_person_name(cls, v: str) -> str:
        """Letters, spaces and apostrophes only."""
        return validate_person_name(v)

    @field_validator("province", "country")
    @classmethod
    def check_two_letter_code(cls, v: str) -> str:
        """Exactly two letters, stored uppercase."""
        return validate_two_letter_code(v)

    @field_validator("phone")
    @classmethod
    def check_phone(cls, v: str) -> str:
        """Digits with an optional leading '+'."""
        return validate_phone(v)

    @field_validator("birth_date")
    @classmethod
    def check_birth_date(cls, v: date) -> date:
        """Between 100 and 6 years ago."""
        return validate_birth_date(v)

    @field_validator("identity_code")
    @classmethod
    def blank_identity_code_is_none(cls, v: str | None) -> str | None:
        """Treat an empty identity code as absent."""
        if v is None:
            return None
        return v.strip() or None

    def to_identity_record(self) -> IdentityRecord:
        """Build a cache record from the submitted registration."""
        return IdentityRecord(
            email=self.email,
            store=self.store,
            identity_code=self.identity_code,
            is_complete=bool(self.identity_code),
            name=self.name,
            surname=self.surname,
            phone=self.phone,
            address=self.address,
            city=self.city,
            postal_code=self.postal_code,
            province=self.province,
            country=self.country,
            sex=self.sex,
            birth_date=self.birth_date,
        )


class EmailValidationResponse(CamelModel):
    """Outcome of an email validation request."""

    user_exists: bool


class CacheStatusResponse(CamelModel):
    """Identity cache diagnostics."""

    total_emails_in_cache: int
    message: str = "Cache active - email verification through cache and central registry"


class ClearEmailResponse(CamelModel):
    """Result of removing one email from the cache."""

    message: str
    current_count: int
