"""CGELabs entry point."""

import uvicorn

from cgelabs.config import settings


def main():
    """Run the CGELabs local API server."""
    uvicorn.run(
        "cgelabs.api.app:build_default_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level="debug" if settings.debug else "info",
    )


if __name__ == "__main__":
    main()
