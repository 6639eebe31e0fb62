"""
storefront.db.repositories

Repository package.

Responsibilities:
- Group data-access repositories for the persistence layer.
"""

# Package marker; repositories are imported directly from submodules.


# --- Module Notes -----------------------------------------------------------
# Repositories are intentionally thin; transition rules belong in `storefront.lifecycle`
# and transaction boundaries in `storefront.services`.
