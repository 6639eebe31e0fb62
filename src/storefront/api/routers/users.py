"""
storefront.api.routers.users

Role administration and cart self-service.

Responsibilities:
- `PATCH /users/{id}/roles` (ADMIN): grant/revoke capabilities by name.
- `/users/me/cart`: read and mutate the caller's own cart.
"""

from __future__ import annotations

import uuid
from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from storefront.api.deps import account_service
from storefront.api.envelope import Envelope, ok
from storefront.auth.deps import get_principal
from storefront.auth.models import Principal
from storefront.auth.roles import REGISTRY
from storefront.services.accounts import AccountService

router = APIRouter(prefix="/users", tags=["users"])


class RolesPatch(BaseModel):
    grant: list[str] = Field(default_factory=list)
    revoke: list[str] = Field(default_factory=list)


class RolesResponse(BaseModel):
    id: uuid.UUID
    capabilities: list[str]
    mask: int


class CartItem(BaseModel):
    product_id: str = Field(min_length=1, max_length=128)
    size: str | None = Field(default=None, max_length=32)
    color: str | None = Field(default=None, max_length=32)
    quantity: int = Field(default=1, ge=1, le=999)


@router.patch("/{user_id}/roles", response_model=Envelope[RolesResponse])
async def update_roles(
    user_id: uuid.UUID,
    body: RolesPatch,
    principal: Principal = Depends(get_principal),
    accounts: AccountService = Depends(account_service),
) -> dict:
    # ADMIN is enforced inside the service so the rule is shared with non-HTTP callers.
    user = await accounts.update_roles(
        user_id, grant=body.grant, revoke_names=body.revoke, principal=principal
    )
    return ok(
        RolesResponse(
            id=user.id, capabilities=REGISTRY.names(user.capabilities), mask=user.capabilities
        )
    )


@router.get("/me/cart", response_model=Envelope[list[CartItem]])
async def get_cart(
    principal: Principal = Depends(get_principal),
    accounts: AccountService = Depends(account_service),
) -> dict:
    return ok(await accounts.get_cart(principal=principal))


@router.post("/me/cart/items", response_model=Envelope[list[CartItem]])
async def add_cart_item(
    body: CartItem,
    principal: Principal = Depends(get_principal),
    accounts: AccountService = Depends(account_service),
) -> dict:
    item: dict[str, Any] = body.model_dump()
    return ok(await accounts.add_cart_item(item, principal=principal))


@router.delete("/me/cart/items/{index}", response_model=Envelope[list[CartItem]])
async def remove_cart_item(
    index: int,
    principal: Principal = Depends(get_principal),
    accounts: AccountService = Depends(account_service),
) -> dict:
    return ok(await accounts.remove_cart_item(index, principal=principal))
