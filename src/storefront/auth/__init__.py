"""
storefront.auth

Authentication/authorization package.

Responsibilities:
- Capability registry and pure bitmask evaluation.
- Principal model, JWT helpers and password hashing.
- The authorization gate and its FastAPI dependencies.
"""

# Package marker.


# --- Module Notes -----------------------------------------------------------
# Nothing in this package touches the database; `services.accounts` owns user records.
