"""
storefront.api.routers

HTTP routers, one module per resource.
"""
