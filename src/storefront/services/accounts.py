"""
storefront.services.accounts

User accounts: registration, login, role administration and cart self-service.

Responsibilities:
- Verify credentials and issue tokens carrying the stored capability mask.
- Apply ADMIN role grants/revocations with `combine`/`revoke`, audited.
- Confine cart mutations to the caller's own record.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from storefront.auth.gate import ensure
from storefront.auth.jwt import JwtConfig, issue_token
from storefront.auth.models import Principal
from storefront.auth.passwords import hash_password, verify_password
from storefront.auth.permissions import combine, has, revoke
from storefront.auth.roles import REGISTRY, Capability, RegistryError
from storefront.db.models import EntityType, User
from storefront.db.repositories.audit import AuditRepo
from storefront.db.repositories.users import UserRepo
from storefront.errors import (
    Conflict,
    Forbidden,
    InvalidCredentials,
    InvalidRequest,
    NotFound,
)
from storefront.observability.logging import get_logger
from storefront.services.delivery import DeliveryAssignment
from storefront.settings import Settings

log = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class IssuedToken:
    access_token: str
    expires_at: datetime
    subject: str
    capabilities: int


class AccountService:
    def __init__(self, *, session: AsyncSession, settings: Settings) -> None:
        self._session = session
        self._settings = settings

        self._users = UserRepo(session)
        self._audit = AuditRepo(session)

    async def register(self, *, email: str, password: str) -> User:
        email = email.strip().lower()
        if await self._users.get_by_email(email) is not None:
            raise Conflict("email is already registered")
        user = await self._users.create(
            email=email,
            password_hash=hash_password(password),
            capabilities=int(Capability.USER),
        )
        await self._session.commit()
        log.info("user_registered", user_id=str(user.id))
        return user

    async def login(self, *, email: str, password: str, now: datetime | None = None) -> IssuedToken:
        user = await self._users.get_by_email(email.strip().lower())
        if user is None or not verify_password(password, user.password_hash):
            log.info("login_failed")
            raise InvalidCredentials("invalid email or password")

        now = now or datetime.now(tz=UTC)
        ttl = timedelta(minutes=self._settings.token_ttl_minutes)
        token = issue_token(
            cfg=JwtConfig.from_settings(self._settings),
            subject=str(user.id),
            capabilities=user.capabilities,
            ttl=ttl,
            now=now,
        )
        log.info("login_succeeded", user_id=str(user.id))
        return IssuedToken(
            access_token=token,
            # JWT exp has second resolution.
            expires_at=datetime.fromtimestamp(int((now + ttl).timestamp()), tz=UTC),
            subject=str(user.id),
            capabilities=user.capabilities,
        )

    async def update_roles(
        self,
        user_id: uuid.UUID,
        *,
        grant: Iterable[str] = (),
        revoke_names: Iterable[str] = (),
        principal: Principal,
    ) -> User:
        """
        Grants are combined first, then revocations applied, so a capability named in
        both lists ends up revoked.
        """

        ensure(principal, Capability.ADMIN)
        try:
            grant_mask = REGISTRY.mask_of(grant)
            revoke_mask = REGISTRY.mask_of(revoke_names)
        except RegistryError as e:
            raise InvalidRequest(str(e)) from e

        if user_id == principal.subject_id and has(revoke_mask, Capability.ADMIN):
            raise Forbidden("admins cannot revoke their own ADMIN capability")

        user = await self._users.get(user_id)
        if user is None:
            raise NotFound("User not found")

        before = user.capabilities
        after = revoke(combine(before, grant_mask), revoke_mask)
        await self._users.set_capabilities(user, after)
        await self._audit.add(
            entity_type=EntityType.user,
            entity_id=user_id,
            actor=principal.subject,
            event_type="ROLES_UPDATED",
            details={"before": REGISTRY.names(before), "after": REGISTRY.names(after)},
        )

        delivery = DeliveryAssignment(session=self._session, settings=self._settings)
        released: list[uuid.UUID] = []
        if has(before, Capability.DELIVERY_AGENT) and not has(after, Capability.DELIVERY_AGENT):
            # A demoted agent must not keep work items.
            released = await delivery.mark_unavailable(user_id, actor=principal.subject)

        await self._session.commit()
        log.info(
            "roles_updated",
            user_id=str(user_id),
            before=before,
            after=after,
            actor=principal.subject,
        )
        await delivery.reassign(released)
        return user

    async def get_cart(self, *, principal: Principal) -> list[dict[str, Any]]:
        user = await self._own_record(principal)
        return list(user.cart or [])

    async def add_cart_item(
        self, item: dict[str, Any], *, principal: Principal
    ) -> list[dict[str, Any]]:
        user = await self._own_record(principal)
        cart = list(user.cart or [])
        for existing in cart:
            # Same product/size/color merges into one line.
            if all(existing.get(k) == item.get(k) for k in ("product_id", "size", "color")):
                existing_qty = int(existing.get("quantity", 0))
                cart[cart.index(existing)] = {
                    **existing,
                    "quantity": existing_qty + int(item["quantity"]),
                }
                break
        else:
            cart.append(dict(item))
        await self._users.set_cart(user, cart)
        await self._session.commit()
        return cart

    async def remove_cart_item(self, index: int, *, principal: Principal) -> list[dict[str, Any]]:
        user = await self._own_record(principal)
        cart = list(user.cart or [])
        if index < 0 or index >= len(cart):
            raise NotFound("Cart item not found")
        del cart[index]
        await self._users.set_cart(user, cart)
        await self._session.commit()
        return cart

    async def _own_record(self, principal: Principal) -> User:
        ensure(principal, Capability.USER)
        user = await self._users.get(principal.subject_id)
        if user is None:
            raise NotFound("User not found")
        return user


# --- Module Notes -----------------------------------------------------------
# Role changes land on the stored mask only; outstanding tokens keep the mask they were
# issued with until they expire.
