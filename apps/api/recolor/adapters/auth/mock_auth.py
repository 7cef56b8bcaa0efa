"""Mock session verifier for local development and tests."""

from recolor.adapters.auth.base import AuthVerificationError, TokenVerifier
from recolor.schemas.auth import AuthPrincipal


class MockTokenVerifier(TokenVerifier):
    """Accepts deterministic test tokens only.

    Expected token format:
    - ``test:<user_id>``
    - ``test:<user_id>:<email>``
    """

    def verify_token(self, token: str) -> AuthPrincipal:
        prefix, _, remainder = token.partition(":")
        if prefix != "test" or not remainder:
            raise AuthVerificationError("Invalid bearer token")

        user_id, _, email = remainder.partition(":")
        user_id = user_id.strip()
        if not user_id:
            raise AuthVerificationError("Bearer token missing user identity")

        return AuthPrincipal(user_id=user_id, email=email.strip() or None)


__all__ = ["MockTokenVerifier"]
