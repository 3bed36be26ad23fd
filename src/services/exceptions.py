"""Shared exceptions for service layer operations."""


class InvalidEmailError(Exception):
    """Raised when a request carries no usable email address."""

    def __init__(self, message: str = "Email is required") -> None:
        super().__init__(message)


class InvalidStoreError(Exception):
    """Raised when a request carries a store code that is not 1-6 letters or digits."""

    def __init__(self, message: str = "Invalid store code") -> None:
        super().__init__(message)


class InvalidTokenError(Exception):
    """
    Raised when a token cannot be redeemed.

    Covers unknown, expired and malformed tokens alike; callers report all of
    them to the client as "invalid or expired token".
    """

    def __init__(self, message: str = "Invalid or expired token") -> None:
        super().__init__(message)


class TokenNotFoundError(InvalidTokenError):
    """Raised when a token does not exist or has expired."""

    pass


class IdentityNotFoundError(Exception):
    """Raised when neither the cache nor the registry can resolve a member."""

    def __init__(self, email: str, identity_code: str | None = None) -> None:
        self.email = email
        self.identity_code = identity_code
        super().__init__(f"Member not found for email={email} identity_code={identity_code}")


class RegistryUnavailableError(Exception):
    """Raised when the central registry does not assign an identity code to a new member."""

    def __init__(self, message: str = "Unable to obtain an identity code from the registry") -> None:
        super().__init__(message)


class MemberPersistenceError(Exception):
    """Raised when the local member record cannot be saved."""

    def __init__(self, email: str) -> None:
        self.email = email
        super().__init__(f"Failed to save member record for {email}")
