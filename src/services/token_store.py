"""File-backed store for email confirmation and profile access tokens."""
import asyncio
import logging
import os
import secrets
import string
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import Path

from services.exceptions import InvalidTokenError

logger = logging.getLogger(__name__)

TOKEN_ALPHABET = string.ascii_uppercase + string.ascii_lowercase + string.digits
TOKEN_LENGTH = 64
PAYLOAD_SEPARATOR = "\r\n"
DEFAULT_RETENTION = timedelta(minutes=15)


def generate_token() -> str:
    """Generate a random token of TOKEN_LENGTH alphanumeric characters (~381 bits)."""
    return "".join(secrets.choice(TOKEN_ALPHABET) for _ in range(TOKEN_LENGTH))


def is_well_formed(token: str | None) -> bool:
    """Check a token could have been issued here (and is safe as a file name)."""
    return bool(token) and len(token) <= 256 and all(c in TOKEN_ALPHABET for c in token)


@dataclass(frozen=True)
class TokenPayload:
    """Decoded token payload."""

    store: str
    email: str
    identity_code: str | None = None

    def encode(self) -> str:
        """
        Encode as CRLF-separated lines: store, email[, identity_code].

        Raises:
            ValueError: If a field contains a line break.
        """
        lines = [self.store, self.email]
        if self.identity_code:
            lines.append(self.identity_code)
        for line in lines:
            if "\r" in line or "\n" in line:
                raise ValueError(f"Token payload field contains a line break: {line!r}")
        return PAYLOAD_SEPARATOR.join(lines)


def decode_payload(raw: str | None) -> TokenPayload:
    """
    Parse a raw token payload.

    Accepts CRLF, LF or CR line endings. The email line is normalized.

    Raises:
        InvalidTokenError: If the payload has fewer than two non-empty lines.
    """
    lines = [line.strip() for line in (raw or "").splitlines()]
    lines = [line for line in lines if line]
    if len(lines) < 2:
        raise InvalidTokenError("Malformed token payload")
    identity_code = lines[2] if len(lines) >= 3 else None
    return TokenPayload(store=lines[0], email=lines[1].lower(), identity_code=identity_code)


class TokenStore:
    """
    Issues and redeems short-lived tokens, one file per token.

    Each token is a file named after the token under `directory`, holding the
    CRLF-joined payload. A token's age is the modification time of its file.
    Reading a token sweeps every other expired token; a live token is never
    deleted by reading it.
    """

    def __init__(self, directory: Path | str, retention: timedelta = DEFAULT_RETENTION) -> None:
        self._directory = Path(directory)
        self._retention = retention

    async def issue_token(self, store: str, email: str) -> str:
        """Issue a registration token carrying store and email."""
        return await self._issue(TokenPayload(store=store, email=email.strip().lower()))

    async def issue_profile_token(self, store: str, email: str, identity_code: str) -> str:
        """Issue a profile access token that also carries the identity code."""
        payload = TokenPayload(
            store=store, email=email.strip().lower(), identity_code=identity_code,
        )
        return await self._issue(payload)

    async def _issue(self, payload: TokenPayload) -> str:
        token = generate_token()
        path = await asyncio.to_thread(self._write, token, payload.encode())
        logger.info(
            "Token issued for email=%s store=%s profile=%s path=%s",
            payload.email,
            payload.store,
            payload.identity_code is not None,
            path,
        )
        return token

    def _write(self, token: str, content: str) -> Path:
        self._directory.mkdir(parents=True, exist_ok=True)
        path = self._directory / token
        # newline="" keeps the CRLF separators byte-exact on every platform
        with path.open("x", encoding="utf-8", newline="") as f:
            f.write(content)
        return path

    async def read_token(self, token: str | None, now: datetime | None = None) -> str | None:
        """
        Return the raw payload of a live token, None if unknown or expired.

        Sweeps all other expired tokens as a side effect.
        """
        if not is_well_formed(token):
            logger.warning("Rejected malformed token")
            return None
        return await asyncio.to_thread(self._read, token, now)

    def _read(self, token: str, now: datetime | None) -> str | None:
        now = now or datetime.now(UTC)
        self._sweep(self._retention, exclude=token, now=now)

        path = self._directory / token
        try:
            created_at = datetime.fromtimestamp(path.stat().st_mtime, UTC)
            if created_at < now - self._retention:
                logger.info("Token expired: %s", token)
                self._delete(path)
                return None
            with path.open(encoding="utf-8", newline="") as f:
                content = f.read()
        except FileNotFoundError:
            logger.warning("Token not found: %s", token)
            return None
        return content

    async def sweep_expired(
        self,
        max_age: timedelta | None = None,
        exclude: str | None = None,
        now: datetime | None = None,
    ) -> int:
        """
        Delete all tokens older than max_age (defaults to the retention window).

        Safe to run concurrently with issue and read: a failed delete is
        logged and the sweep moves on.

        Returns:
            Number of token files deleted.
        """
        return await asyncio.to_thread(
            self._sweep, max_age or self._retention, exclude, now or datetime.now(UTC),
        )

    def _sweep(self, max_age: timedelta, exclude: str | None, now: datetime) -> int:
        if not self._directory.is_dir():
            return 0
        cutoff = (now - max_age).timestamp()
        deleted = 0
        with os.scandir(self._directory) as it:
            for entry in it:
                if entry.name == exclude or not entry.is_file():
                    continue
                try:
                    if entry.stat().st_mtime >= cutoff:
                        continue
                except FileNotFoundError:
                    # Deleted by a concurrent sweep
                    continue
                if self._delete(Path(entry.path)):
                    deleted += 1
        if deleted:
            logger.info("Swept %d expired token(s) from %s", deleted, self._directory)
        return deleted

    def _delete(self, path: Path) -> bool:
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError:
            logger.exception("Failed to delete token file %s", path)
            return False
        logger.debug("Deleted expired token %s", path.name)
        return True

    def count(self) -> int:
        """Number of token files currently on disk."""
        if not self._directory.is_dir():
            return 0
        return sum(1 for p in self._directory.iterdir() if p.is_file())
