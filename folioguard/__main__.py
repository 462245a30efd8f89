"""``python -m folioguard`` runs the API under uvicorn."""

import uvicorn

from folioguard.config.loader import get_settings


def main() -> None:
    settings = get_settings()
    uvicorn.run(
        "folioguard.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
