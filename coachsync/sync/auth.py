"""
Credential Verification

Connection admission delegates to an identity collaborator. The sync server
only needs to turn a bearer credential into a principal (user, team, role)
or refuse it; issuing credentials happens elsewhere.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from jose import jwt, JWTError, ExpiredSignatureError

from ..common.errors import AuthenticationError

logger = logging.getLogger("coachsync.sync.auth")

WRITER_ROLES = ("admin", "coach")


@dataclass(frozen=True)
class Principal:
    """Authenticated caller"""
    user_id: str
    team_id: str
    role: str = "rep"

    @property
    def can_write(self) -> bool:
        """Admins and coaches may mutate shared content"""
        return self.role in WRITER_ROLES


class CredentialVerifier(ABC):
    """Turns a bearer credential into a Principal"""

    @abstractmethod
    def verify(self, token: Optional[str]) -> Principal:
        """
        Verify a credential.

        Raises:
            AuthenticationError: If the credential is missing, invalid or expired
        """
        pass


class JWTCredentialVerifier(CredentialVerifier):
    """
    Verifies HMAC-signed JWTs carrying userId / teamId / role claims.

    Usage:
        verifier = JWTCredentialVerifier(secret="...")
        principal = verifier.verify(token)
    """

    def __init__(self, secret: str, algorithm: str = "HS256"):
        if not secret:
            raise ValueError("JWT secret must not be empty")
        self._secret = secret
        self._algorithm = algorithm

    def verify(self, token: Optional[str]) -> Principal:
        if not token:
            raise AuthenticationError("Authentication required")

        try:
            claims = jwt.decode(token, self._secret, algorithms=[self._algorithm])
        except ExpiredSignatureError:
            raise AuthenticationError("Credential expired")
        except JWTError as e:
            logger.debug("Rejected credential: %s", e)
            raise AuthenticationError("Invalid credential")

        user_id = claims.get("userId") or claims.get("sub")
        team_id = claims.get("teamId")
        if not user_id or not team_id:
            raise AuthenticationError("Credential missing user or team claim")

        return Principal(
            user_id=str(user_id),
            team_id=str(team_id),
            role=str(claims.get("role", "rep")),
        )


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Extract the token from an 'Authorization: Bearer <token>' header"""
    if not authorization or not authorization.startswith("Bearer "):
        return None
    return authorization[len("Bearer "):].strip() or None
