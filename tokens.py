"""
Token service

Access and refresh tokens are HS256 JWTs signed with separate secrets. Tokens
are self-contained: nothing is stored server-side, so logout is client-side
and a token stays valid until it expires.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt

from config import Settings
from errors import InvalidTokenError
from schemas import Role

ALGORITHM = "HS256"
ACCESS = "access"
REFRESH = "refresh"


@dataclass(frozen=True)
class TokenClaims:
    subject: Optional[str]
    email: Optional[str]
    role: Role
    name: Optional[str]


class TokenService:
    def __init__(self, settings: Settings):
        self._secrets = {ACCESS: settings.SECRET_KEY, REFRESH: settings.REFRESH_SECRET_KEY}
        self._ttls = {
            ACCESS: timedelta(minutes=settings.ACCESS_TOKEN_MINUTES),
            REFRESH: timedelta(days=settings.REFRESH_TOKEN_DAYS),
        }

    def _mint(self, claims: TokenClaims, kind: str, now: Optional[datetime] = None) -> str:
        now = now or datetime.now(timezone.utc)
        payload: Dict[str, Any] = {
            "role": claims.role.value,
            "name": claims.name,
            "type": kind,
            "iat": now,
            "exp": now + self._ttls[kind],
        }
        if claims.subject:
            payload["sub"] = claims.subject
        if claims.email:
            payload["email"] = claims.email
        return jwt.encode(payload, self._secrets[kind], algorithm=ALGORITHM)

    @staticmethod
    def claims_for(user: dict) -> TokenClaims:
        return TokenClaims(
            subject=str(user["_id"]),
            email=user.get("email"),
            role=Role.parse(user.get("role", Role.USER)),
            name=user.get("name"),
        )

    def issue_access_token(self, user: dict, now: Optional[datetime] = None) -> str:
        return self._mint(self.claims_for(user), ACCESS, now)

    def issue_refresh_token(self, user: dict, now: Optional[datetime] = None) -> str:
        return self._mint(self.claims_for(user), REFRESH, now)

    def verify(self, token: str, kind: str = ACCESS) -> TokenClaims:
        """Decode a token of the given kind.

        Expired, malformed, wrongly signed or wrong-kind tokens all raise the
        same InvalidTokenError so clients cannot tell the cases apart.
        """
        if kind not in self._secrets:
            raise ValueError(f"Unknown token kind: {kind}")
        try:
            payload = jwt.decode(token, self._secrets[kind], algorithms=[ALGORITHM])
        except jwt.InvalidTokenError:
            raise InvalidTokenError()
        if payload.get("type") != kind:
            raise InvalidTokenError()
        try:
            role = Role.parse(payload.get("role"))
        except ValueError:
            raise InvalidTokenError()
        subject = payload.get("sub")
        email = payload.get("email")
        if not subject and not email:
            raise InvalidTokenError()
        return TokenClaims(subject=subject, email=email, role=role, name=payload.get("name"))

    def refresh(self, refresh_token: str) -> str:
        claims = self.verify(refresh_token, REFRESH)
        return self._mint(claims, ACCESS)


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Extract the token from an `Authorization: Bearer <token>` header."""
    if not authorization:
        return None
    parts = authorization.split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer" or not parts[1].strip():
        return None
    return parts[1].strip()
