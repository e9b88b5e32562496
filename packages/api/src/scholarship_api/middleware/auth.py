"""
Bearer-token authentication against Keycloak.

Tokens are verified with the realm's published signing keys. The caller's
platform role comes from ``realm_access.roles`` and their committee seats
from the custom ``ssc_roles`` claim.

Set AUTH_DISABLED=true to bypass validation (tests / local dev without Keycloak).
"""

import logging
import time
from typing import Annotated

import httpx
import jwt
from fastapi import Depends, HTTPException, Request, status
from scholarship_db.enums import SscRole, UserRole

from ..core.auth import build_data_scope
from ..core.config import settings
from ..schemas.auth import DataScope, TokenPayload, UserContext

logger = logging.getLogger(__name__)


def _realm_url() -> str:
    return f"{settings.KEYCLOAK_URL}/realms/{settings.KEYCLOAK_REALM}"


class JwksCache:
    """Realm signing keys, refetched after ``ttl`` seconds or on an unknown kid."""

    def __init__(self, ttl: float):
        self.ttl = ttl
        self._keys: dict[str, jwt.PyJWK] = {}
        self._loaded_at = 0.0

    def _refresh(self) -> None:
        response = httpx.get(f"{_realm_url()}/protocol/openid-connect/certs", timeout=5)
        response.raise_for_status()
        key_set = jwt.PyJWKSet.from_dict(response.json())
        self._keys = {key.key_id: key for key in key_set.keys}
        self._loaded_at = time.monotonic()

    def key_for(self, kid: str | None) -> jwt.PyJWK:
        if not self._keys or time.monotonic() - self._loaded_at > self.ttl:
            self._refresh()
        if kid not in self._keys:
            # Keycloak rotated its keys since the last fetch.
            self._refresh()
        try:
            return self._keys[kid]
        except KeyError:
            raise jwt.InvalidTokenError(f"Unknown signing key {kid!r}") from None


_jwks = JwksCache(ttl=settings.JWKS_CACHE_TTL)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def _bearer_token(request: Request) -> str | None:
    scheme, _, token = request.headers.get("Authorization", "").partition(" ")
    if scheme != "Bearer" or not token:
        return None
    return token


def _verify(token: str) -> TokenPayload:
    kid = jwt.get_unverified_header(token).get("kid")
    try:
        signing_key = _jwks.key_for(kid)
    except httpx.HTTPError as exc:
        logger.error("Could not load signing keys from Keycloak: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Authentication service unavailable",
        ) from exc
    claims = jwt.decode(
        token,
        signing_key.key,
        algorithms=["RS256"],
        issuer=_realm_url(),
        options={"verify_aud": False},
    )
    return TokenPayload(**claims)


def _resolve_role(token_payload: TokenPayload) -> UserRole:
    """First platform role found in the realm roles; Keycloak built-ins are skipped."""
    matched = [UserRole(r) for r in token_payload.realm_access.get("roles", []) if r in UserRole._value2member_map_]
    if not matched:
        raise ValueError("No recognized role assigned")
    if len(matched) > 1:
        logger.warning("User %s holds roles %s; acting as %s", token_payload.sub, matched, matched[0])
    return matched[0]


def _resolve_ssc_roles(token_payload: TokenPayload) -> frozenset[SscRole]:
    return frozenset(SscRole(r) for r in token_payload.ssc_roles if r in SscRole._value2member_map_)


def _identity(payload: TokenPayload) -> UserContext:
    try:
        role = _resolve_role(payload)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
    return UserContext(
        user_id=payload.sub,
        role=role,
        email=payload.email,
        name=payload.name or payload.preferred_username,
        ssc_roles=_resolve_ssc_roles(payload),
        data_scope=build_data_scope(role, payload.sub),
    )


# ---------------------------------------------------------------------------
# FastAPI dependencies
# ---------------------------------------------------------------------------

_DISABLED_USER = UserContext(
    user_id="dev-user",
    role=UserRole.ADMIN,
    email="dev@scholarship.local",
    name="Dev User",
    ssc_roles=frozenset(SscRole),
    data_scope=DataScope(full_pipeline=True),
)


async def get_current_user(request: Request) -> UserContext:
    """Resolve the caller from the bearer token.

    With AUTH_DISABLED=true every request acts as a dev administrator that
    also sits on every committee seat.
    """
    if settings.AUTH_DISABLED:
        return _DISABLED_USER

    token = _bearer_token(request)
    if token is None:
        raise _unauthorized("Missing authentication token")
    try:
        payload = _verify(token)
    except jwt.ExpiredSignatureError as exc:
        raise _unauthorized("Token has expired") from exc
    except jwt.InvalidTokenError as exc:
        raise _unauthorized("Invalid token") from exc
    return _identity(payload)


CurrentUser = Annotated[UserContext, Depends(get_current_user)]


def require_roles(*allowed_roles: UserRole):
    """Dependency factory limiting a route to the given platform roles."""

    async def _check(user: CurrentUser) -> UserContext:
        if user.role in allowed_roles:
            return user
        logger.warning(
            "RBAC denied: user=%s role=%s needs one of %s",
            user.user_id,
            user.role.value,
            [r.value for r in allowed_roles],
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Insufficient permissions for role '{user.role.value}'",
        )

    return _check
