"""Session token verification."""

from datetime import UTC, datetime, timedelta

import jwt
from jwt import InvalidTokenError

from app.core.config import settings
from app.exceptions.base import AuthenticationError


class SessionTokenVerifier:
    """
    Verifies session JWTs issued by the identity provider.

    Tokens are signed with the shared ``secret_key`` and must carry a ``sub``
    claim. Plan and usage claims, if present, are ignored: those are always
    re-read from the users table.

    :ivar secret_key: Key used to verify token signatures.
    :type secret_key: str
    :ivar algorithm: Accepted signing algorithm.
    :type algorithm: str
    """

    def __init__(self, secret_key: str | None = None, algorithm: str | None = None):
        self.secret_key = secret_key or settings.secret_key
        self.algorithm = algorithm or settings.algorithm

    def verify_token(self, token: str) -> dict:
        """
        Decode and validate a session token.

        :param token: The encoded JWT.
        :return: The decoded payload.
        :raises AuthenticationError: If the signature, expiry or subject is invalid.
        """
        try:
            payload = jwt.decode(
                token,
                key=self.secret_key,
                algorithms=[self.algorithm],
                options={"require": ["sub"]},
            )
        except InvalidTokenError as e:
            raise AuthenticationError(f"Invalid authentication token: {str(e)}") from e
        return payload

    def issue_token(self, subject: str, email: str, expires_minutes: int | None = None) -> str:
        """Create a signed session token (used by tooling and tests)."""
        expires = datetime.now(UTC) + timedelta(
            minutes=expires_minutes or settings.access_token_expire_minutes
        )
        return jwt.encode(
            {"sub": subject, "email": email, "exp": expires},
            self.secret_key,
            algorithm=self.algorithm,
        )
