"""
storefront.auth.deps

FastAPI dependency functions for authentication and authorization.

Responsibilities:
- Convert a bearer token into a typed `Principal`.
- Enforce capability requirements via reusable dependency factories.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from storefront.auth.gate import Requirement, ensure
from storefront.auth.jwt import JwtConfig, JwtValidationError, decode_and_validate
from storefront.auth.models import Principal
from storefront.auth.roles import REGISTRY, RegistryError
from storefront.errors import Unauthenticated
from storefront.settings import Settings, get_settings

_bearer = HTTPBearer(auto_error=False)


def get_principal(
    creds: HTTPAuthorizationCredentials | None = Depends(_bearer),
    settings: Settings = Depends(get_settings),
) -> Principal:
    # Authn: require a bearer token.
    if creds is None or not creds.credentials:
        raise Unauthenticated("Missing bearer token")

    try:
        # Authn: validate signature and registered claims (iss/aud/exp/sub...).
        payload = decode_and_validate(cfg=JwtConfig.from_settings(settings), token=creds.credentials)
    except JwtValidationError as e:
        raise Unauthenticated(f"Invalid token: {e}") from e

    subject = str(payload.get("sub", ""))
    caps_raw = payload.get("caps")
    try:
        # Subjects are user ids; anything else was not issued by this service.
        uuid.UUID(subject)
    except ValueError:
        raise Unauthenticated("Invalid token subject") from None
    if not isinstance(caps_raw, int) or isinstance(caps_raw, bool):
        raise Unauthenticated("Invalid token capabilities")
    try:
        capabilities = REGISTRY.validate_mask(caps_raw)
    except RegistryError as e:
        raise Unauthenticated("Invalid token capabilities") from e

    return Principal(
        subject=subject,
        capabilities=capabilities,
        expires_at=datetime.fromtimestamp(int(payload["exp"]), tz=UTC),
    )


def require(requirement: Requirement | int):
    def _dep(principal: Principal = Depends(get_principal)) -> Principal:
        return ensure(principal, requirement)

    return _dep


# --- Module Notes -----------------------------------------------------------
# Route-level `require(...)` covers capability-only rules. Rules that depend on the entity
# (owner, assigned agent) are checked inside the lifecycle services after the entity is loaded.
