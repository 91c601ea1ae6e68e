"""
Unit tests for the gateway token service.
"""

import json

import pytest
from jose.utils import base64url_decode, base64url_encode
from pydantic import SecretStr

from service_gateway.app.auth.principal import Role
from service_gateway.app.auth.tokens import TokenClaims, TokenService
from shared.errors import (
    AuthenticationError,
    MalformedTokenError,
    SignatureMismatchError,
    TokenExpiredError,
)

SECRET = SecretStr("unit-test-secret-with-at-least-thirty-two-chars")
B64URL_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-_"


def _segment(data: dict) -> str:
    return base64url_encode(json.dumps(data).encode("utf-8")).decode("ascii")


class TestTokenService:
    """Test cases for TokenService."""

    @pytest.fixture
    def token_service(self, frozen_clock):
        """Token service with a one hour TTL."""
        return TokenService(SECRET, 3600, clock=frozen_clock)

    @pytest.fixture
    def user(self, user_factory):
        """Operator with downstream credentials."""
        return user_factory("olivia", Role.OP, downstream=("airflow", "s3cret!"))

    def test_validate_returns_issued_claims(self, token_service, user, frozen_clock):
        """Test that a freshly issued token validates to the same claims."""
        token = token_service.issue(user)
        claims = token_service.validate(token)

        assert claims == TokenClaims(
            sub="olivia",
            role=Role.OP,
            downstream_username="airflow",
            downstream_password="s3cret!",
            iat=int(frozen_clock.now),
            exp=int(frozen_clock.now) + 3600,
        )

    def test_token_is_three_base64url_segments(self, token_service, user):
        """Test the compact wire format and payload claim names."""
        token = token_service.issue(user)
        header_segment, payload_segment, signature_segment = token.split(".")

        header = json.loads(base64url_decode(header_segment.encode("ascii")))
        payload = json.loads(base64url_decode(payload_segment.encode("ascii")))

        assert header["alg"] == "HS256"
        assert set(payload) == {"sub", "role", "downstreamUsername", "downstreamPassword", "iat", "exp"}
        assert len(base64url_decode(signature_segment.encode("ascii"))) == 32

    def test_issue_is_deterministic_for_same_clock(self, token_service, user):
        """Test that issuance carries no nonce."""
        assert token_service.issue(user) == token_service.issue(user)

    def test_issue_differs_when_clock_moves(self, token_service, user, frozen_clock):
        """Test that iat/exp make tokens differ across seconds."""
        first = token_service.issue(user)
        frozen_clock.advance(1)
        assert token_service.issue(user) != first

    def test_flipping_any_signature_character_is_rejected(self, token_service, user):
        """Test that every single-character change in the signature fails."""
        token = token_service.issue(user)
        head, signature = token.rsplit(".", 1)

        for index, original in enumerate(signature):
            for replacement in (B64URL_ALPHABET[(B64URL_ALPHABET.index(original) + 1) % 64], "."):
                tampered = f"{head}.{signature[:index]}{replacement}{signature[index + 1:]}"
                with pytest.raises(SignatureMismatchError):
                    token_service.validate(tampered)

    def test_wrong_secret_is_signature_mismatch(self, token_service, user, frozen_clock):
        """Test that a token signed with another secret is rejected."""
        other = TokenService(SecretStr("another-secret-with-at-least-thirty-two-chars"), 3600, clock=frozen_clock)
        with pytest.raises(SignatureMismatchError):
            token_service.validate(other.issue(user))

    def test_tampered_payload_is_signature_mismatch(self, token_service, user):
        """Test that escalating the role in the payload breaks the signature."""
        header_segment, payload_segment, signature_segment = token_service.issue(user).split(".")
        payload = json.loads(base64url_decode(payload_segment.encode("ascii")))
        payload["role"] = "ADMIN"

        with pytest.raises(SignatureMismatchError):
            token_service.validate(f"{header_segment}.{_segment(payload)}.{signature_segment}")

    def test_expired_after_ttl(self, token_service, user, frozen_clock):
        """Test that a token is rejected once the TTL has elapsed."""
        token = token_service.issue(user)

        frozen_clock.advance(3599)
        assert token_service.validate(token).sub == "olivia"

        frozen_clock.advance(1)
        with pytest.raises(TokenExpiredError):
            token_service.validate(token)

        frozen_clock.advance(86400)
        with pytest.raises(TokenExpiredError):
            token_service.validate(token)

    @pytest.mark.parametrize("token", [
        "",
        "not-a-token",
        "only.two",
        "!!!.???.sig",
        f"{_segment({'alg': 'HS256'})}.bm90LWpzb24.sig",
        f"{_segment(['not', 'an', 'object'])}.{_segment({'sub': 'x'})}.sig",
    ])
    def test_unparseable_tokens_are_malformed(self, token_service, token):
        """Test that structurally broken tokens are malformed, not mismatched."""
        with pytest.raises(MalformedTokenError):
            token_service.validate(token)

    @pytest.mark.parametrize("suffix", [".extra", ".", ".a.b"])
    def test_extra_segments_are_malformed(self, token_service, user, suffix):
        """Test that a valid token with trailing segments is malformed."""
        token = token_service.issue(user)

        with pytest.raises(MalformedTokenError):
            token_service.validate(token + suffix)

    def test_alg_none_is_malformed(self, token_service, user):
        """Test that unsigned tokens are never accepted."""
        _, payload_segment, _ = token_service.issue(user).split(".")
        header = _segment({"alg": "none", "typ": "JWT"})

        with pytest.raises(MalformedTokenError):
            token_service.validate(f"{header}.{payload_segment}.")

    def test_unknown_role_is_malformed(self, frozen_clock):
        """Test that a correctly signed token with an unknown role is rejected."""
        from jose import jwt

        token = jwt.encode(
            {"sub": "mallory", "role": "ROOT", "iat": 1, "exp": int(frozen_clock.now) + 60},
            SECRET.get_secret_value(),
            algorithm="HS256",
        )
        with pytest.raises(MalformedTokenError):
            TokenService(SECRET, 3600, clock=frozen_clock).validate(token)

    def test_errors_are_authentication_errors(self):
        """Test that every validation failure maps to HTTP 401."""
        for error in (MalformedTokenError(), SignatureMismatchError(), TokenExpiredError()):
            assert isinstance(error, AuthenticationError)
            assert error.status_code == 401

    def test_downstream_password_not_in_repr(self, token_service, user):
        """Test that claims never print the downstream password."""
        claims = token_service.validate(token_service.issue(user))
        assert "s3cret!" not in repr(claims)

    def test_rejects_non_positive_ttl(self):
        """Test TTL validation."""
        with pytest.raises(ValueError):
            TokenService(SECRET, 0)
