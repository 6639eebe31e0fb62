"""
storefront.api.routers.health

Health and readiness endpoints.

Responsibilities:
- Provide liveness probe (`/healthz`).
- Provide readiness probe (`/readyz`): the store answers and the schema is in place.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from storefront import __version__
from storefront.api.deps import db_session, settings_dep
from storefront.db.models import DeliveryAgent
from storefront.settings import Settings

router = APIRouter()


@router.get("/healthz")
async def healthz(settings: Settings = Depends(settings_dep)) -> dict[str, str]:
    return {"status": "ok", "service": settings.service_name, "version": __version__}


@router.get("/readyz")
async def readyz(session: AsyncSession = Depends(db_session)) -> dict[str, str | int]:
    # Touches a real table so a missing migration reads as not-ready (500).
    available = await session.scalar(
        select(func.count()).select_from(DeliveryAgent).where(DeliveryAgent.available.is_(True))
    )
    return {"status": "ready", "available_agents": int(available or 0)}


# --- Module Notes -----------------------------------------------------------
# Probes stay outside the response envelope so load balancers can read them as-is.
