"""Cached identity representation for the email cache."""
from dataclasses import dataclass, field, fields, replace
from datetime import UTC, date, datetime


def normalize_email(email: str | None) -> str:
    """Trim and lowercase an email address; None becomes an empty string."""
    if email is None:
        return ""
    return email.strip().lower()


# Profile fields shared by cache entries, registry rows and API profiles
PROFILE_FIELDS: tuple[str, ...] = (
    "name",
    "surname",
    "phone",
    "address",
    "city",
    "postal_code",
    "province",
    "country",
    "sex",
    "birth_date",
)


@dataclass(frozen=True)
class IdentityRecord:
    """
    Cache entry for one email address.

    Records are immutable: every cache mutation swaps in a new record, so a
    reader never observes a half-updated entry.

    A provisional entry has no identity_code and is_complete=False. Once the
    central registry has assigned an identity code the entry is complete.
    """

    email: str
    store: str
    identity_code: str | None = None
    is_complete: bool = False
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
    added_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def __post_init__(self) -> None:
        if self.is_complete and not self.identity_code:
            raise ValueError("A complete identity record requires an identity code")

    @property
    def has_profile(self) -> bool:
        """Whether any profile field beyond email/store/code is known."""
        return any(getattr(self, name) for name in PROFILE_FIELDS)

    def merged_with(self, other: "IdentityRecord") -> "IdentityRecord":
        """
        Return a copy with non-empty values from other layered on top.

        The existing identity code survives when other carries none; added_at
        keeps the original insertion time.
        """
        changes = {}
        for f in fields(self):
            if f.name in ("email", "added_at", "is_complete"):
                continue
            value = getattr(other, f.name)
            if value not in (None, ""):
                changes[f.name] = value
        merged_code = changes.get("identity_code", self.identity_code)
        return replace(self, **changes, is_complete=bool(merged_code))
