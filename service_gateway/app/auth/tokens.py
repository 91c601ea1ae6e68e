"""
Signed bearer tokens for the Access Gateway.

Tokens are HS256 JWS compact strings. The payload carries the local role and
the orchestrator credentials of the user, so the gateway can call the
orchestrator on the user's behalf without a server-side session.
"""

import json
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Protocol

from jose import jws, jwt
from jose.exceptions import JWSError
from jose.utils import base64url_decode, base64url_encode
from pydantic import SecretStr

from shared.errors import MalformedTokenError, SignatureMismatchError, TokenExpiredError
from shared.logging import get_logger

from .principal import Role


class TokenSubject(Protocol):
    """What the token service needs from a user record."""

    username: str
    role: Role
    downstream_username: Optional[str]
    downstream_password: Optional[str]


@dataclass(frozen=True)
class TokenClaims:
    """Decoded token payload."""

    sub: str
    role: Role
    downstream_username: Optional[str]
    downstream_password: Optional[str] = field(repr=False)
    iat: int
    exp: int

    def to_payload(self) -> Dict[str, Any]:
        return {
            "sub": self.sub,
            "role": self.role.value,
            "downstreamUsername": self.downstream_username,
            "downstreamPassword": self.downstream_password,
            "iat": self.iat,
            "exp": self.exp,
        }

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "TokenClaims":
        sub = payload.get("sub")
        if not isinstance(sub, str) or not sub:
            raise MalformedTokenError("Token subject missing")

        try:
            role = Role(payload.get("role"))
        except ValueError:
            raise MalformedTokenError("Token role invalid")

        iat, exp = payload.get("iat"), payload.get("exp")
        for value in (iat, exp):
            if not isinstance(value, int) or isinstance(value, bool):
                raise MalformedTokenError("Token timestamps invalid")

        downstream_username = payload.get("downstreamUsername")
        downstream_password = payload.get("downstreamPassword")
        for value in (downstream_username, downstream_password):
            if value is not None and not isinstance(value, str):
                raise MalformedTokenError("Token downstream credentials invalid")

        return cls(
            sub=sub,
            role=role,
            downstream_username=downstream_username,
            downstream_password=downstream_password,
            iat=iat,
            exp=exp,
        )


class TokenService:
    """Issues and validates gateway tokens.

    Issuance is deterministic: the same subject at the same clock second
    yields the same token. Validation checks, in order, structure, signature
    and expiry, and raises the matching ``AuthenticationError`` subclass.
    """

    ALGORITHM = "HS256"

    def __init__(self, secret: SecretStr, ttl_seconds: int, clock: Callable[[], float] = time.time):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self._secret = secret
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self.logger = get_logger("gateway.tokens")

    def issue(self, user: TokenSubject) -> str:
        """Sign a token for ``user`` valid for the configured TTL."""
        now = int(self._clock())
        claims = TokenClaims(
            sub=user.username,
            role=Role(user.role),
            downstream_username=user.downstream_username,
            downstream_password=user.downstream_password,
            iat=now,
            exp=now + self.ttl_seconds,
        )
        token = jwt.encode(claims.to_payload(), self._secret.get_secret_value(), algorithm=self.ALGORITHM)
        self.logger.info("Token issued", username=claims.sub, role=claims.role.value, exp=claims.exp)
        return token

    def validate(self, token: str) -> TokenClaims:
        """Return the claims of a valid token or raise."""
        parts = token.split(".")
        if len(parts) != 3:
            raise MalformedTokenError()
        header_segment, payload_segment, signature_segment = parts

        header = self._decode_segment(header_segment)
        payload = self._decode_segment(payload_segment)
        if header.get("alg") != self.ALGORITHM:
            raise MalformedTokenError("Unsupported token algorithm")

        self._verify_signature(token, signature_segment)

        claims = TokenClaims.from_payload(payload)
        if claims.exp <= int(self._clock()):
            raise TokenExpiredError()
        return claims

    @staticmethod
    def _decode_segment(segment: str) -> Dict[str, Any]:
        try:
            decoded = json.loads(base64url_decode(segment.encode("ascii")))
        except ValueError:
            raise MalformedTokenError()
        if not isinstance(decoded, dict):
            raise MalformedTokenError()
        return decoded

    def _verify_signature(self, token: str, signature_segment: str) -> None:
        # Only the canonical encoding of a signature is accepted, so altered
        # padding bits or stray characters never pass as the same MAC.
        try:
            raw = base64url_decode(signature_segment.encode("ascii"))
        except ValueError:
            raise SignatureMismatchError()
        if not raw or base64url_encode(raw).decode("ascii") != signature_segment:
            raise SignatureMismatchError()

        try:
            jws.verify(token, self._secret.get_secret_value(), algorithms=[self.ALGORITHM])
        except JWSError:
            raise SignatureMismatchError()
