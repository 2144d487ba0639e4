"""
Pytest configuration for notes_server. In-memory SQLite; tokens signed with a generated RSA key,
JWKS served by patching PyJWKClient.fetch_data, the single point where PyJWT fetches the key set.
"""
import os
import time
from unittest.mock import patch

# Must be set before notes_server.config is imported
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ.pop("DB_HOST", None)
os.environ["KEYCLOAK_URL"] = "http://keycloak:8080"
os.environ["KEYCLOAK_REALM"] = "demo-realm"
os.environ.pop("KEYCLOAK_ISSUER_BASES", None)

import jwt
import pytest
from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives.asymmetric.rsa import generate_private_key
from fastapi.testclient import TestClient
from jwt import PyJWKClientConnectionError

from notes_server import keys as keys_module
from notes_server.database import SessionLocal, init_db
from notes_server.main import app
from notes_server.models import Note

ISSUER_PUBLIC = "http://localhost:8080/realms/demo-realm"
ISSUER_INTERNAL = "http://keycloak:8080/realms/demo-realm"
KID = "test-key"


def _int_to_b64url(value: int) -> str:
    """Encode a positive int as base64url (JWK n/e)."""
    length = (value.bit_length() + 7) // 8
    s = jwt.utils.base64url_encode(value.to_bytes(length, "big"))
    return s.decode("utf-8") if isinstance(s, bytes) else s


def make_key_and_jwks(kid: str = KID):
    """Generate RSA key and JWKS dict for testing."""
    key = generate_private_key(65537, 2048, default_backend())
    pub = key.public_key().public_numbers()
    jwk = {
        "kty": "RSA",
        "kid": kid,
        "alg": "RS256",
        "use": "sig",
        "n": _int_to_b64url(pub.n),
        "e": _int_to_b64url(pub.e),
    }
    return key, {"keys": [jwk]}


def make_token(
    key,
    sub: str = "u1",
    *,
    iss: str = ISSUER_PUBLIC,
    kid: str = KID,
    exp_in: int = 3600,
    algorithm: str = "RS256",
    **claims,
) -> str:
    """Build a Keycloak-style access token."""
    now = int(time.time())
    payload = {
        "sub": sub,
        "iss": iss,
        "aud": "account",
        "exp": now + exp_in,
        "iat": now,
        "email": f"{sub}@example.com",
        "preferred_username": sub,
    }
    payload.update(claims)
    return jwt.encode(payload, key, algorithm=algorithm, headers={"kid": kid})


def mock_jwks(jwks):
    """Return a patch that makes PyJWKClient see the given JWKS document; .calls counts fetches."""

    def fake_fetch_data(self):
        fake_fetch_data.calls += 1
        return jwks

    fake_fetch_data.calls = 0
    return patch("jwt.PyJWKClient.fetch_data", fake_fetch_data)


def jwks_unreachable():
    """Return a patch that makes every JWKS fetch fail as a connection error."""

    def fake_fetch_data(self):
        raise PyJWKClientConnectionError("Fail to fetch data from the url, err: connection refused")

    return patch("jwt.PyJWKClient.fetch_data", fake_fetch_data)


@pytest.fixture
def key_and_jwks():
    return make_key_and_jwks()


@pytest.fixture(autouse=True)
def _fresh_keys():
    """Each test mints its own RSA key under the same kid; drop cached keys from earlier tests."""
    keys_module.get_key_resolver().invalidate()
    yield
    keys_module.get_key_resolver().invalidate()


@pytest.fixture
def db():
    init_db()
    session = SessionLocal()
    try:
        session.query(Note).delete()
        session.commit()
        yield session
    finally:
        session.close()


@pytest.fixture
def client(db):
    return TestClient(app)


@pytest.fixture
def jwks_served(key_and_jwks):
    """Serve the test JWKS for the duration of a test."""
    _, jwks = key_and_jwks
    with mock_jwks(jwks) as fake:
        yield fake


@pytest.fixture
def auth_headers(key_and_jwks, jwks_served):
    """Factory: subject -> Authorization header with a valid token."""
    key, _ = key_and_jwks

    def _headers(sub: str = "u1", **claims) -> dict:
        return {"Authorization": f"Bearer {make_token(key, sub, **claims)}"}

    return _headers
