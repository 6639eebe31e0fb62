"""
storefront.services

Service layer (transaction owners).

Responsibilities:
- Load entities, consult `storefront.lifecycle` rules, and commit version-checked writes.
- Own commit/rollback; routers never commit on their own.
"""

# Package marker.


# --- Module Notes -----------------------------------------------------------
# One service instance per request/session; services hold no state between calls.
