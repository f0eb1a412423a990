from __future__ import annotations

from typing import Any

from jose import ExpiredSignatureError, JWTError, jwt

from core.constants import Settings


class TokenExpired(ValueError):
    """The token signature is valid but its exp claim has passed."""


class AuthService:
    """Verifies bearer tokens issued by the identity provider."""

    def __init__(self, settings: Settings):
        self.settings = settings

    def decode_access_token(self, token: str) -> dict[str, Any]:
        """Decode and validate an access token.

        Raises:
            TokenExpired: The token is past its exp claim
            ValueError: Bad signature, malformed token or missing sub claim
        """
        try:
            payload: dict[str, Any] = jwt.decode(
                token,
                self.settings.jwt_secret,
                algorithms=[self.settings.jwt_algorithm],
                options={"verify_aud": False},
            )
        except ExpiredSignatureError as exc:
            raise TokenExpired("Token expired") from exc
        except JWTError as exc:
            raise ValueError("Invalid token") from exc

        if not payload.get("sub"):
            raise ValueError("Token has no subject")
        return payload

    def user_id_from_token(self, token: str) -> str:
        return str(self.decode_access_token(token)["sub"])
