"""
storefront.observability

Observability package.

Responsibilities:
- Structured logging configuration.
- Request context propagation for consistent log enrichment.
"""

# Package marker.


# --- Module Notes -----------------------------------------------------------
# Lifecycle services log through `get_logger`; request metadata arrives via contextvars.
