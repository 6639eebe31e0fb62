"""
storefront.api.__main__

Entrypoint for running the storefront API via `python -m storefront.api`
(or the `storefront-api` console script).
"""

from __future__ import annotations

import uvicorn

from storefront.api.app import create_app
from storefront.settings import get_settings


def main() -> None:
    settings = get_settings()
    app = create_app(settings=settings)

    uvicorn.run(
        app,
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
        # structlog owns formatting; RequestContextMiddleware already emits one line per request.
        log_config=None,
        access_log=False,
    )


if __name__ == "__main__":
    main()
