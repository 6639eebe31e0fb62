"""
storefront.lifecycle

State machines for orders and support tickets.

Responsibilities:
- Hold the fixed adjacency tables and the per-edge authority rules.
- Stay free of I/O so the graphs can be enumerated and tested exhaustively.
"""

# Package marker.


# --- Module Notes -----------------------------------------------------------
# Persistence and conditional writes live in `storefront.services`.
