"""Schemas for the central registry ("Sede") request/response contract."""
from dataclasses import dataclass
from datetime import date

from pydantic import BaseModel, Field

from schemas.identity import IdentityRecord, normalize_email


class RegistryCall(BaseModel):
    """Stored procedure invocation header."""

    db_name: str
    sp_name: str
    called_from: str
    called_operator: str = ""


class RegistryParameter(BaseModel):
    """A single named stored procedure parameter."""

    name: str
    type: str | None = None
    value: str | None = None
    sequence: str | None = None


class RegistryRequest(BaseModel):
    """Request body POSTed to the registry endpoint."""

    request: RegistryCall
    parameters: list[RegistryParameter] = Field(default_factory=list)


@dataclass
class RemoteIdentity:
    """
    A member as known by the central registry.

    found=False means the registry answered without a match, which is
    different from a matching row whose fields happen to be empty.
    """

    found: bool = False
    identity_code: str | None = None
    email: str | None = None
    store: str | None = None
    name: str | None = None
    surname: str | None = None
    phone: str | None = None
    address: str | None = None
    city: str | None = None
    postal_code: str | None = None
    province: str | None = None
    country: str | None = None
    sex: str | None = None
    birth_date: date | None = None

    @property
    def has_identity_code(self) -> bool:
        """Whether this is a registry hit carrying an identity code."""
        return self.found and bool(self.identity_code)

    def to_identity_record(self, email: str, store: str) -> IdentityRecord:
        """Build a cache record for email under the given store."""
        return IdentityRecord(
            email=normalize_email(email),
            store=store,
            identity_code=self.identity_code or None,
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
