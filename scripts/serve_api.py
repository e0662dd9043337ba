from __future__ import annotations

import uvicorn

from orgauthz.apps.api.main import create_app
from orgauthz.core.config import get_settings


def main() -> None:
    # Serve the authorization API with env-driven bind settings.
    settings = get_settings()
    uvicorn.run(create_app(), host=settings.host, port=settings.port, log_config=None)


if __name__ == "__main__":
    main()
