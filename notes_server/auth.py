"""
Bearer token verification for the notes API.
Tokens are issued by the Keycloak realm; signature keys come from its JWKS (see keys.py).
"""
import enum
import logging
from dataclasses import dataclass, field
from typing import Annotated

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from notes_server.config import TOKEN_ALGORITHMS, valid_issuers
from notes_server.keys import KeyResolver, get_key_resolver

logger = logging.getLogger(__name__)


class AuthErrorKind(str, enum.Enum):
    MISSING_TOKEN = "MissingToken"
    MALFORMED_TOKEN = "MalformedToken"
    INVALID_ISSUER = "InvalidIssuer"
    INVALID_SIGNATURE = "InvalidSignature"
    EXPIRED = "Expired"


_MESSAGES = {
    AuthErrorKind.MISSING_TOKEN: "No token provided",
    AuthErrorKind.MALFORMED_TOKEN: "Invalid token format",
    AuthErrorKind.INVALID_ISSUER: "Invalid token issuer",
    AuthErrorKind.INVALID_SIGNATURE: "Invalid token",
    AuthErrorKind.EXPIRED: "Token expired",
}


class AuthError(Exception):
    """Token rejected. Always rendered as 401."""

    def __init__(self, kind: AuthErrorKind):
        super().__init__(kind.value)
        self.kind = kind

    @property
    def message(self) -> str:
        return _MESSAGES[self.kind]


@dataclass(frozen=True)
class Identity:
    subject: str
    email: str | None
    display_name: str
    roles: frozenset[str] = field(default_factory=frozenset)
    name: str | None = None
    preferred_username: str | None = None

    def to_dict(self) -> dict:
        return {
            "sub": self.subject,
            "email": self.email,
            "name": self.name,
            "preferred_username": self.preferred_username,
            "roles": sorted(self.roles),
        }


def _realm_roles(claims: dict) -> frozenset[str]:
    realm_access = claims.get("realm_access")
    if not isinstance(realm_access, dict):
        return frozenset()
    roles = realm_access.get("roles") or []
    if not isinstance(roles, list):
        return frozenset()
    return frozenset(str(r) for r in roles)


def identity_from_claims(claims: dict) -> Identity:
    sub = claims["sub"]
    preferred_username = claims.get("preferred_username")
    name = claims.get("name")
    return Identity(
        subject=sub,
        email=claims.get("email"),
        display_name=preferred_username or name or sub,
        roles=_realm_roles(claims),
        name=name,
        preferred_username=preferred_username,
    )


class TokenVerifier:
    """
    Verify a raw bearer token and return the caller's Identity.

    The issuer is read from the unverified payload only to pick which allow-listed issuer
    is passed to jwt.decode; the signed token must then carry exactly that issuer.
    """

    def __init__(self, resolver: KeyResolver, issuers: list[str], algorithms: list[str] = TOKEN_ALGORITHMS):
        self.resolver = resolver
        self.issuers = list(issuers)
        self.algorithms = list(algorithms)

    def verify(self, raw_token: str | None) -> Identity:
        if not raw_token:
            raise AuthError(AuthErrorKind.MISSING_TOKEN)

        try:
            header = jwt.get_unverified_header(raw_token)
            unverified = jwt.decode(raw_token, options={"verify_signature": False})
        except jwt.PyJWTError as e:
            logger.info("Failed to decode token: %s", e)
            raise AuthError(AuthErrorKind.MALFORMED_TOKEN)

        token_issuer = unverified.get("iss")
        expected_issuer = next((i for i in self.issuers if i == token_issuer), None)
        if expected_issuer is None:
            logger.warning("Invalid issuer: %s (expected one of: %s)", token_issuer, ", ".join(self.issuers))
            raise AuthError(AuthErrorKind.INVALID_ISSUER)

        # Reject alg confusion (HS256 with the public key, "none", ...) before any key lookup
        if header.get("alg") not in self.algorithms:
            logger.warning("Rejected token algorithm: %s", header.get("alg"))
            raise AuthError(AuthErrorKind.INVALID_SIGNATURE)

        kid = header.get("kid")
        if not kid or not isinstance(kid, str):
            raise AuthError(AuthErrorKind.MALFORMED_TOKEN)

        public_key = self.resolver.resolve(kid)

        try:
            claims = jwt.decode(
                raw_token,
                public_key,
                algorithms=self.algorithms,
                issuer=expected_issuer,
                options={
                    "require": ["exp", "iss", "sub"],
                    "verify_exp": True,
                    "verify_iss": True,
                    # Keycloak access tokens carry aud=account; no audience check here
                    "verify_aud": False,
                },
            )
        except jwt.ExpiredSignatureError:
            logger.info("Token expired")
            raise AuthError(AuthErrorKind.EXPIRED)
        except jwt.PyJWTError as e:
            logger.info("Token verification failed: %s", e)
            raise AuthError(AuthErrorKind.INVALID_SIGNATURE)

        identity = identity_from_claims(claims)
        logger.debug("Token verified for user: %s", identity.display_name)
        return identity


def get_token_verifier() -> TokenVerifier:
    return TokenVerifier(get_key_resolver(), valid_issuers())


security = HTTPBearer(auto_error=False)


def get_identity(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    verifier: Annotated[TokenVerifier, Depends(get_token_verifier)],
) -> Identity:
    """Dependency: Bearer token -> Identity. Raises AuthError (401 via app handler)."""
    if credentials is None or credentials.scheme.lower() != "bearer":
        logger.info("Auth failed: No token provided")
        raise AuthError(AuthErrorKind.MISSING_TOKEN)
    return verifier.verify(credentials.credentials)


CurrentIdentity = Annotated[Identity, Depends(get_identity)]


def require_role(required: str):
    """Dependency factory: require the given realm role on the caller."""

    def _check(identity: CurrentIdentity) -> Identity:
        if required not in identity.roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )
        return identity

    return Depends(_check)
