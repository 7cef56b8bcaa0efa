"""Authentication provider interfaces."""

from abc import ABC, abstractmethod

from recolor.schemas.auth import AuthPrincipal


class AuthVerificationError(Exception):
    """Raised when a session token cannot be verified or normalized."""


class TokenVerifier(ABC):
    """Provider-neutral session token verification interface."""

    @abstractmethod
    def verify_token(self, token: str) -> AuthPrincipal:
        """Verify token and return the buyer principal."""


__all__ = ["AuthVerificationError", "TokenVerifier"]
