"""Tests for state and PKCE generation."""

from __future__ import annotations

import base64
import hashlib
import re
from datetime import timedelta

import pytest

from loopauth.auth.challenge import derive_code_challenge, generate_pkce_pair, new_session
from loopauth.models import AuthConfig

_URLSAFE = re.compile(r"^[A-Za-z0-9_-]+$")


class TestDeriveCodeChallenge:
    def test_rfc7636_appendix_b_vector(self) -> None:
        verifier = "dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk"
        assert derive_code_challenge(verifier) == "E9Melhoa2OwvFrEMTJguCHaoeK1t8URWbuGJSstw-cM"

    def test_deterministic(self) -> None:
        assert derive_code_challenge("abc") == derive_code_challenge("abc")

    def test_unpadded_base64url_of_sha256(self) -> None:
        verifier = "some-verifier-value"
        expected = base64.urlsafe_b64encode(hashlib.sha256(verifier.encode()).digest())
        assert derive_code_challenge(verifier) == expected.decode().rstrip("=")
        assert "=" not in derive_code_challenge(verifier)


class TestGeneratePkcePair:
    def test_verifier_length_in_allowed_range(self) -> None:
        verifier, _ = generate_pkce_pair()
        assert 43 <= len(verifier) <= 128
        assert _URLSAFE.match(verifier)

    def test_challenge_matches_verifier(self) -> None:
        verifier, challenge = generate_pkce_pair()
        assert challenge == derive_code_challenge(verifier)

    def test_unique(self) -> None:
        verifiers = {generate_pkce_pair()[0] for _ in range(50)}
        assert len(verifiers) == 50


class TestNewSession:
    def test_fields(self, auth_config: AuthConfig) -> None:
        session = new_session(auth_config)
        assert len(session.state) >= 43
        assert _URLSAFE.match(session.state)
        assert session.code_challenge == derive_code_challenge(session.code_verifier)
        assert session.bound_port is None

    def test_deadline_from_timeout(self, auth_config: AuthConfig) -> None:
        session = new_session(auth_config)
        assert session.deadline - session.created_at == timedelta(seconds=auth_config.timeout)

    def test_every_session_is_fresh(self, auth_config: AuthConfig) -> None:
        sessions = [new_session(auth_config) for _ in range(20)]
        assert len({s.state for s in sessions}) == 20
        assert len({s.code_verifier for s in sessions}) == 20

    def test_secrets_not_in_repr(self, auth_config: AuthConfig) -> None:
        session = new_session(auth_config)
        text = repr(session)
        assert session.state not in text
        assert session.code_verifier not in text

    def test_redirect_uri_requires_bound_port(self, auth_config: AuthConfig) -> None:
        session = new_session(auth_config)
        with pytest.raises(RuntimeError):
            session.redirect_uri
        bound = session.model_copy(update={"bound_port": 50123})
        assert bound.redirect_uri == "http://127.0.0.1:50123/callback"
