"""
storefront.api.routers.auth

Registration and login.

Responsibilities:
- Register a user with the USER capability.
- Exchange verified credentials for a signed bearer token `{sub, caps, exp}`.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from storefront.api.deps import account_service
from storefront.api.envelope import Envelope, ok
from storefront.auth.roles import REGISTRY
from storefront.services.accounts import AccountService

router = APIRouter(prefix="/auth", tags=["auth"])


class RegisterRequest(BaseModel):
    email: str = Field(min_length=3, max_length=320, pattern=r"^[^@\s]+@[^@\s]+$")
    password: str = Field(min_length=8, max_length=256)


class RegisterResponse(BaseModel):
    id: uuid.UUID
    email: str
    capabilities: list[str]


class LoginRequest(BaseModel):
    email: str = Field(min_length=3, max_length=320)
    password: str = Field(min_length=1, max_length=256)


class LoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_at: datetime
    capabilities: list[str]


@router.post("/register", response_model=Envelope[RegisterResponse], status_code=201)
async def register(
    body: RegisterRequest,
    accounts: AccountService = Depends(account_service),
) -> dict:
    user = await accounts.register(email=body.email, password=body.password)
    return ok(
        RegisterResponse(
            id=user.id, email=user.email, capabilities=REGISTRY.names(user.capabilities)
        )
    )


@router.post("/login", response_model=Envelope[LoginResponse])
async def login(
    body: LoginRequest,
    accounts: AccountService = Depends(account_service),
) -> dict:
    issued = await accounts.login(email=body.email, password=body.password)
    return ok(
        LoginResponse(
            access_token=issued.access_token,
            expires_at=issued.expires_at,
            capabilities=REGISTRY.names(issued.capabilities),
        )
    )
