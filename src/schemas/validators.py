"""
Shared validation functions for Pydantic schemas.

Patterns mirror the rules the registration form enforces on the client.
Backend validation is authoritative; keep both in sync.
"""
import re
from datetime import date

# Letters (including accented), spaces and apostrophes, e.g. "D'Amico", "De Luca"
PERSON_NAME_PATTERN = re.compile(r"^[^\W\d_]+(?:[\s'][^\W\d_]*)*$")

# Two-letter province / country codes
TWO_LETTER_PATTERN = re.compile(r"^[A-Za-z]{2}$")

# Optional leading '+', then digits only
PHONE_PATTERN = re.compile(r"^\+?[0-9]+$")

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

# Store codes such as "NE001"
STORE_CODE_PATTERN = re.compile(r"^[A-Za-z0-9]{1,6}$")

MIN_AGE_YEARS = 6
MAX_AGE_YEARS = 100


def _years_before(today: date, years: int) -> date:
    try:
        return today.replace(year=today.year - years)
    except ValueError:
        # Feb 29 on a non-leap target year
        return today.replace(year=today.year - years, day=28)


def validate_email_address(value: str) -> str:
    """
    Normalize and validate an email address.

    Raises:
        ValueError: If the address is empty or malformed.
    """
    normalized = value.strip().lower()
    if not normalized:
        raise ValueError("Email is required")
    if not EMAIL_PATTERN.match(normalized):
        raise ValueError(f"Invalid email address: '{normalized}'")
    return normalized


def validate_store_code(value: str) -> str:
    """
    Validate a store code: one to six letters or digits.

    Raises:
        ValueError: If the code is empty or contains anything else.
    """
    trimmed = value.strip()
    if not STORE_CODE_PATTERN.match(trimmed):
        raise ValueError("Store code must be 1-6 letters or digits")
    return trimmed


def validate_person_name(value: str) -> str:
    """Validate a first or last name: letters, spaces and apostrophes only."""
    trimmed = value.strip()
    if not PERSON_NAME_PATTERN.match(trimmed):
        raise ValueError("Only letters, spaces and apostrophes are allowed")
    return trimmed


def validate_two_letter_code(value: str) -> str:
    """Validate and uppercase a two-letter province or country code."""
    trimmed = value.strip()
    if not TWO_LETTER_PATTERN.match(trimmed):
        raise ValueError("Must be exactly two letters")
    return trimmed.upper()


def validate_phone(value: str) -> str:
    """Validate a phone number: digits with an optional leading '+'."""
    trimmed = value.strip().replace(" ", "")
    if not PHONE_PATTERN.match(trimmed):
        raise ValueError("Only digits and an optional leading '+' are allowed")
    return trimmed


def validate_birth_date(value: date, today: date | None = None) -> date:
    """
    Validate a birth date lies between 100 and 6 years ago.

    Raises:
        ValueError: If the date is out of range.
    """
    today = today or date.today()
    earliest = _years_before(today, MAX_AGE_YEARS)
    latest = _years_before(today, MIN_AGE_YEARS)
    if value < earliest or value > latest:
        raise ValueError(
            f"Birth date must be between {earliest.isoformat()} and {latest.isoformat()}",
        )
    return value
