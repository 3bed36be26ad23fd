"""
Defensive parsing of central registry responses.

The registry has answered in several shapes over time. Each shape has a
matcher; matchers are tried in order and the first one that recognizes the
document wins. A document no matcher recognizes means "no rows", never an
error.

Recognized shapes, in order:
1. {"response": [{"dataset": [row, ...]}, ...]}
2. {"dataset": [row, ...]}
3. [row, ...]
4. a bare row object: {"codice_fidelity": ..., "nome": ..., ...}
5. a bare identity code: "FID000123"
"""
import logging
import re
from collections.abc import Callable
from datetime import date, datetime
from typing import Any

from schemas.registry import RemoteIdentity

logger = logging.getLogger(__name__)

# Codes like "FID000123" always carry a digit; bare words ("OK", "NotFound") are status text
IDENTITY_CODE_PATTERN = re.compile(r"^(?=.*\d)[A-Za-z0-9\-]{3,20}$")

# Registry column -> RemoteIdentity attribute
FIELD_MAP: dict[str, str] = {
    "codice_fidelity": "identity_code",
    "email": "email",
    "nome": "name",
    "cognome": "surname",
    "cellulare": "phone",
    "indirizzo": "address",
    "localita": "city",
    "cap": "postal_code",
    "provincia": "province",
    "nazione": "country",
    "sesso": "sex",
}

DATE_FORMATS = ("%Y-%m-%d", "%Y%m%d", "%d/%m/%Y")

Row = dict[str, Any]
ShapeMatcher = Callable[[Any], list[Row] | None]


def _rows_only(items: Any) -> list[Row] | None:
    if not isinstance(items, list):
        return None
    return [item for item in items if isinstance(item, dict)]


def match_response_dataset(document: Any) -> list[Row] | None:
    """Shape 1: rows nested under response[0].dataset."""
    if not isinstance(document, dict):
        return None
    response = document.get("response")
    if not isinstance(response, list):
        return None
    if not response:
        return []
    first = response[0]
    if not isinstance(first, dict) or "dataset" not in first:
        return None
    return _rows_only(first["dataset"])


def match_top_level_dataset(document: Any) -> list[Row] | None:
    """Shape 2: rows under a top-level dataset key."""
    if not isinstance(document, dict) or "dataset" not in document:
        return None
    return _rows_only(document["dataset"])


def match_row_list(document: Any) -> list[Row] | None:
    """Shape 3: the document itself is a list of rows."""
    if not isinstance(document, list):
        return None
    rows = _rows_only(document)
    if document and not rows:
        return None
    return rows


def match_bare_row(document: Any) -> list[Row] | None:
    """Shape 4: a single row object carrying registry columns."""
    if not isinstance(document, dict):
        return None
    if not any(key in document for key in (*FIELD_MAP, "store", "cd_ne", "data_nascita")):
        return None
    return [document]


def match_bare_code(document: Any) -> list[Row] | None:
    """Shape 5: a bare identity code string."""
    if not isinstance(document, str):
        return None
    code = document.strip()
    if not IDENTITY_CODE_PATTERN.match(code):
        return None
    return [{"codice_fidelity": code}]


SHAPE_MATCHERS: tuple[ShapeMatcher, ...] = (
    match_response_dataset,
    match_top_level_dataset,
    match_row_list,
    match_bare_row,
    match_bare_code,
)


def extract_rows(document: Any) -> list[Row]:
    """Return the rows of a registry response, empty when no shape matches."""
    for matcher in SHAPE_MATCHERS:
        rows = matcher(document)
        if rows is not None:
            logger.debug("Registry response matched %s (%d rows)", matcher.__name__, len(rows))
            return rows
    logger.warning("Registry response matched no known shape")
    return []


def _string(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        value = value.strip()
        return value or None
    if isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        return str(value)
    return None


def parse_date(value: Any) -> date | None:
    """Parse a registry date: ISO (optionally with time), YYYYMMDD or DD/MM/YYYY."""
    text = _string(value)
    if not text:
        return None
    try:
        return datetime.fromisoformat(text).date()
    except ValueError:
        pass
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    logger.debug("Unparseable registry date: %r", text)
    return None


def row_to_identity(row: Row, email: str | None = None) -> RemoteIdentity:
    """Map one registry row to a RemoteIdentity, falling back to email for the address."""
    identity = RemoteIdentity(found=True)
    for column, attribute in FIELD_MAP.items():
        setattr(identity, attribute, _string(row.get(column)))
    identity.email = identity.email or email or None
    if identity.email:
        identity.email = identity.email.lower()
    identity.store = _string(row.get("store")) or _string(row.get("cd_ne"))
    identity.birth_date = parse_date(row.get("data_nascita"))
    return identity


def parse_identities(document: Any, email: str | None = None) -> list[RemoteIdentity]:
    """Parse every row of a registry response."""
    return [row_to_identity(row, email) for row in extract_rows(document)]


def parse_identity(document: Any, email: str | None = None) -> RemoteIdentity | None:
    """Parse the first row of a registry response, None when there is none."""
    rows = extract_rows(document)
    if not rows:
        return None
    return row_to_identity(rows[0], email)
