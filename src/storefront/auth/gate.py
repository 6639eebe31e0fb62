"""
storefront.auth.gate

Authorization decisions over a `Principal` and a requirement expression.

Responsibilities:
- Model requirements as small tagged values (`Has`, `AnyOf`, `AllOf`, `IsSubject`) that
  can be logged and compared in tests, instead of opaque predicates.
- Decide Allow/Deny without side effects (`authorize`).
- Turn a Deny into the matching typed failure for callers that must halt (`ensure`).
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from storefront.auth.models import Principal
from storefront.auth.permissions import has
from storefront.auth.roles import REGISTRY
from storefront.errors import Forbidden, Unauthenticated
from storefront.observability.logging import get_logger

log = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class Has:
    capability: int

    def describe(self) -> dict[str, Any]:
        return {"has": REGISTRY.names(self.capability)}


@dataclass(frozen=True, slots=True)
class IsSubject:
    """Satisfied when the principal is the given identity (owner, assigned agent)."""

    subject: str | None

    def describe(self) -> dict[str, Any]:
        return {"is_subject": self.subject}


@dataclass(frozen=True, slots=True)
class AnyOf:
    terms: tuple[Requirement, ...]

    def describe(self) -> dict[str, Any]:
        return {"any_of": [t.describe() for t in self.terms]}


@dataclass(frozen=True, slots=True)
class AllOf:
    terms: tuple[Requirement, ...]

    def describe(self) -> dict[str, Any]:
        return {"all_of": [t.describe() for t in self.terms]}


Requirement = Has | IsSubject | AnyOf | AllOf


def _term(value: Requirement | int) -> Requirement:
    # Bare capabilities are accepted for convenience: any_of(Capability.ADMIN, ...).
    if isinstance(value, int):
        return Has(value)
    return value


def any_of(*terms: Requirement | int) -> AnyOf:
    return AnyOf(tuple(_term(t) for t in terms))


def all_of(*terms: Requirement | int) -> AllOf:
    return AllOf(tuple(_term(t) for t in terms))


class DenyReason(enum.StrEnum):
    insufficient_role = "InsufficientRole"
    expired_principal = "ExpiredPrincipal"
    no_principal = "NoPrincipal"


@dataclass(frozen=True, slots=True)
class Allow:
    allowed = True


@dataclass(frozen=True, slots=True)
class Deny:
    reason: DenyReason
    allowed = False


Decision = Allow | Deny

ALLOW = Allow()


def _satisfies(principal: Principal, requirement: Requirement) -> bool:
    match requirement:
        case Has(capability=capability):
            return has(principal.capabilities, capability)
        case IsSubject(subject=subject):
            return subject is not None and principal.subject == subject
        case AnyOf(terms=terms):
            return any(_satisfies(principal, t) for t in terms)
        case AllOf(terms=terms):
            return all(_satisfies(principal, t) for t in terms)
    raise TypeError(f"unsupported requirement: {requirement!r}")


def authorize(
    principal: Principal | None,
    requirement: Requirement | int,
    *,
    now: datetime | None = None,
) -> Decision:
    if principal is None:
        return Deny(DenyReason.no_principal)
    # Expiry wins over capability bits: an expired admin is still denied.
    if principal.is_expired(now):
        return Deny(DenyReason.expired_principal)
    if not _satisfies(principal, _term(requirement)):
        return Deny(DenyReason.insufficient_role)
    return ALLOW


def ensure_authenticated(principal: Principal | None, *, now: datetime | None = None) -> Principal:
    if principal is None:
        raise Unauthenticated(DenyReason.no_principal.value)
    if principal.is_expired(now):
        raise Unauthenticated(DenyReason.expired_principal.value)
    return principal


def ensure(
    principal: Principal | None,
    requirement: Requirement | int,
    *,
    now: datetime | None = None,
) -> Principal:
    decision = authorize(principal, requirement, now=now)
    if isinstance(decision, Deny):
        log.info(
            "authorization_denied",
            reason=decision.reason.value,
            subject=None if principal is None else principal.subject,
            requirement=_term(requirement).describe(),
        )
        if decision.reason is DenyReason.insufficient_role:
            raise Forbidden(decision.reason.value)
        raise Unauthenticated(decision.reason.value)
    assert principal is not None
    return principal


# --- Module Notes -----------------------------------------------------------
# Lifecycle services call `ensure` with requirements built from the entity they are
# about to mutate (e.g. owner or assigned agent), so the whole rule stays loggable via
# `requirement.describe()`.
