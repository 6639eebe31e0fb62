"""
storefront.api

API package for the storefront service.

Responsibilities:
- FastAPI app factory and router modules.
- API-layer dependency wiring, response envelope and error rendering.
"""

# Package marker.


# --- Module Notes -----------------------------------------------------------
# The API layer stays thin: request validation + authentication + delegation to services.
