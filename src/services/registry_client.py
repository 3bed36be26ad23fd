"""HTTP client for the central registry ("Sede") stored procedure API."""
import logging
from typing import Any

import httpx

from core.config import Settings
from schemas.identity import IdentityRecord, normalize_email
from schemas.registry import RegistryCall, RegistryParameter, RegistryRequest, RemoteIdentity
from services.registry_parser import extract_rows, parse_identities, parse_identity

logger = logging.getLogger(__name__)

SP_FIND_BY_EMAIL = "xTSP_API_Get_Fidelity_ByEmail"
SP_FIND_BY_CODE = "xTSP_API_Get_Fidelity_ByCodice"
SP_CREATE = "xTSP_API_Put_Fidelity"

# Member type sent on creation ("D" = digital card)
MEMBER_TYPE_DIGITAL = "D"


class RegistryClient:
    """
    Looks members up in, and registers members with, the central registry.

    Every call is best-effort: timeouts, transport errors, non-2xx answers and
    bodies that are empty, not JSON, or of an unknown shape are logged and
    reported as "not found". Nothing here raises to the caller.
    """

    def __init__(
        self,
        endpoint: str,
        db_name: str,
        called_from: str = "APP FIDELITY",
        timeout: float = 10.0,
        list_all_procedure: str = "xTSP_API_Get_Fidelity_All",
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._endpoint = endpoint
        self._db_name = db_name
        self._called_from = called_from
        self._list_all_procedure = list_all_procedure
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    @classmethod
    def from_settings(cls, settings: Settings) -> "RegistryClient":
        """Build a client from application settings."""
        return cls(
            endpoint=settings.registry_endpoint,
            db_name=settings.registry_db_name,
            called_from=settings.registry_called_from,
            timeout=settings.registry_timeout_seconds,
            list_all_procedure=settings.registry_list_all_procedure,
        )

    @property
    def is_configured(self) -> bool:
        """Whether an endpoint and database name are set."""
        return bool(self._endpoint and self._db_name)

    async def close(self) -> None:
        """Close the underlying HTTP client if this instance created it."""
        if self._owns_client:
            await self._client.aclose()

    def _build_request(self, procedure: str, parameters: dict[str, str | None]) -> dict[str, Any]:
        body = RegistryRequest(
            request=RegistryCall(
                db_name=self._db_name,
                sp_name=procedure,
                called_from=self._called_from,
            ),
            parameters=[
                RegistryParameter(name=name, value=value) for name, value in parameters.items()
            ],
        )
        return body.model_dump()

    async def _call(self, procedure: str, parameters: dict[str, str | None]) -> Any | None:
        """
        Invoke a stored procedure and return the decoded JSON body.

        Returns None on any failure.
        """
        if not self.is_configured:
            logger.warning("Registry endpoint or database name not configured, skipping %s", procedure)
            return None
        try:
            response = await self._client.post(
                self._endpoint,
                json=self._build_request(procedure, parameters),
            )
        except httpx.TimeoutException:
            logger.warning("Registry call %s timed out", procedure)
            return None
        except httpx.HTTPError as e:
            logger.warning("Registry call %s failed: %s", procedure, e)
            return None

        if not response.is_success:
            logger.warning(
                "Registry call %s returned HTTP %d", procedure, response.status_code,
            )
            return None
        if not response.content.strip():
            logger.warning("Registry call %s returned an empty body", procedure)
            return None
        try:
            return response.json()
        except ValueError:
            logger.warning("Registry call %s returned a non-JSON body", procedure)
            return None

    async def find_by_email(self, email: str) -> RemoteIdentity | None:
        """Look a member up by email. None when not found or on failure."""
        normalized = normalize_email(email)
        if not normalized:
            return None
        logger.info("Registry lookup by email=%s", normalized)
        document = await self._call(SP_FIND_BY_EMAIL, {"email": normalized})
        if document is None:
            return None
        identity = parse_identity(document, email=normalized)
        if identity is None:
            logger.info("Registry has no member with email=%s", normalized)
            return None
        logger.info(
            "Registry member found: identity_code=%s email=%s", identity.identity_code, normalized,
        )
        return identity

    async def find_by_identity_code(self, identity_code: str) -> RemoteIdentity | None:
        """Look a member up by identity code. None when not found or on failure."""
        code = (identity_code or "").strip()
        if not code:
            return None
        logger.info("Registry lookup by identity_code=%s", code)
        document = await self._call(SP_FIND_BY_CODE, {"codice_fidelity": code})
        if document is None:
            return None
        identity = parse_identity(document)
        if identity is None:
            logger.info("Registry has no member with identity_code=%s", code)
            return None
        if not identity.identity_code:
            identity.identity_code = code
        return identity

    async def list_all(self) -> list[RemoteIdentity]:
        """
        Fetch every member, for warming the cache at startup.

        Returns an empty list on any failure.
        """
        document = await self._call(self._list_all_procedure, {})
        if document is None:
            return []
        try:
            identities = parse_identities(document)
        except Exception:
            logger.exception("Failed to parse registry member list")
            return []
        logger.info("Registry returned %d member(s)", len(identities))
        return identities

    async def create_member(self, record: IdentityRecord) -> str | None:
        """
        Register a new member and return the identity code the registry assigns.

        Returns None if the registry did not answer with a code.
        """
        parameters = {
            "store": record.store,
            "tipo": MEMBER_TYPE_DIGITAL,
            "nome": record.name,
            "cognome": record.surname,
            "sesso": record.sex,
            "data_nascita": record.birth_date.strftime("%Y%m%d") if record.birth_date else None,
            "indirizzo": record.address,
            "localita": record.city,
            "cap": record.postal_code,
            "provincia": record.province,
            "nazione": record.country,
            "cellulare": record.phone,
            "email": record.email,
        }
        logger.info("Registering member email=%s store=%s", record.email, record.store)
        document = await self._call(SP_CREATE, parameters)
        if document is None:
            return None
        for row in extract_rows(document):
            code = row.get("codice_fidelity")
            if isinstance(code, str) and code.strip():
                logger.info("Registry assigned identity_code=%s to %s", code.strip(), record.email)
                return code.strip()
        logger.warning("Registry did not return an identity code for %s", record.email)
        return None
