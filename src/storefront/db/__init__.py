"""
storefront.db

Persistence package (SQLAlchemy async).

Responsibilities:
- Provide ORM models, engine/session setup, and repositories.
"""

# Package marker.


# --- Module Notes -----------------------------------------------------------
# Lifecycle rules live in `storefront.lifecycle`; this package only knows how to read
# records and apply version-checked writes.
