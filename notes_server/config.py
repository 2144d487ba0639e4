"""
Notes server configuration. Values from environment; no secrets in this file.
Identity provider is a Keycloak realm; DB defaults to SQLite for development.
"""
import os
from urllib.parse import quote_plus


def _split(value: str) -> list[str]:
    return [v.strip().rstrip("/") for v in value.split(",") if v.strip()]


# Identity provider base URL as seen from this backend (used to fetch JWKS)
KEYCLOAK_URL = os.environ.get("KEYCLOAK_URL", "http://keycloak:8080").rstrip("/")
KEYCLOAK_REALM = os.environ.get("KEYCLOAK_REALM", "demo-realm")

# Browser and backend reach the provider under different hostnames; tokens carry the browser-side issuer.
# Every base listed here (plus KEYCLOAK_URL) is accepted as the same realm.
KEYCLOAK_ISSUER_BASES = _split(
    os.environ.get(
        "KEYCLOAK_ISSUER_BASES",
        "http://localhost:8080,http://keycloak:8080,https://localhost:8080",
    )
)

JWKS_URI = f"{KEYCLOAK_URL}/realms/{KEYCLOAK_REALM}/protocol/openid-connect/certs"

# Seconds a fetched signing key stays cached before it is refetched
JWKS_CACHE_LIFESPAN = int(os.environ.get("JWKS_CACHE_LIFESPAN", "300"))

# Only asymmetric RS256 is accepted (no HS256 / none)
TOKEN_ALGORITHMS = ["RS256"]


def valid_issuers() -> list[str]:
    """Issuer allow-list: {base}/realms/{realm} for each configured base, KEYCLOAK_URL first."""
    issuers = []
    for base in [KEYCLOAK_URL] + KEYCLOAK_ISSUER_BASES:
        issuer = f"{base}/realms/{KEYCLOAK_REALM}"
        if issuer not in issuers:
            issuers.append(issuer)
    return issuers


def _database_url() -> str:
    url = os.environ.get("DATABASE_URL")
    if url:
        return url
    host = os.environ.get("DB_HOST")
    if host:
        user = quote_plus(os.environ.get("DB_USER", "appuser"))
        password = quote_plus(os.environ.get("DB_PASSWORD", ""))
        port = os.environ.get("DB_PORT", "5432")
        name = os.environ.get("DB_NAME", "notesapp")
        return f"postgresql+psycopg2://{user}:{password}@{host}:{port}/{name}"
    return "sqlite:///./notes.db"


DATABASE_URL = _database_url()

# Connection pool (ignored for SQLite)
DB_POOL_SIZE = int(os.environ.get("DB_POOL_SIZE", "20"))
DB_POOL_TIMEOUT = int(os.environ.get("DB_POOL_TIMEOUT", "2"))
DB_POOL_RECYCLE = int(os.environ.get("DB_POOL_RECYCLE", "30"))

HOST = os.environ.get("HOST", "0.0.0.0")
PORT = int(os.environ.get("PORT", "3001"))

CORS_ORIGINS = _split(os.environ.get("CORS_ORIGINS", "*"))

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

# Realm role required for /api/admin routes
ROLE_ADMIN = "admin"
