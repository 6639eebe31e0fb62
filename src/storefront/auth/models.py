"""
storefront.auth.models

Auth domain models.

Responsibilities:
- Define the authenticated identity type (`Principal`) threaded through the gate and services.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import UTC, datetime

from storefront.auth.permissions import has
from storefront.auth.roles import Capability


@dataclass(frozen=True, slots=True)
class Principal:
    """
    Authenticated caller identity, derived from a verified token.

    `capabilities` is the mask stored on the user when the token was issued; role
    changes take effect on the next login.
    """

    subject: str
    capabilities: int
    expires_at: datetime

    def is_expired(self, now: datetime | None = None) -> bool:
        now = now or datetime.now(tz=UTC)
        return now >= self.expires_at

    def has(self, capability: int) -> bool:
        return has(self.capabilities, capability)

    @property
    def subject_id(self) -> uuid.UUID:
        # Subjects are user ids; see `services.accounts.AccountService.login`.
        return uuid.UUID(self.subject)

    @property
    def is_admin(self) -> bool:
        return self.has(Capability.ADMIN)


# --- Module Notes -----------------------------------------------------------
# Keep this model minimal; it is used across API, gate, and lifecycle services.
