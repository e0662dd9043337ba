from __future__ import annotations

import argparse
import asyncio

from orgauthz.core.logging import configure_logging
from orgauthz.persistence.db import SessionLocal
from orgauthz.services.roles import bootstrap_super_admin


async def _bootstrap(user_id: str, email: str | None) -> None:
    # Give an identity the platform role; the only path that needs no acting user.
    async with SessionLocal() as session:
        row = await bootstrap_super_admin(session, user_id=user_id, email=email)
        print(f"user_id={row.user_id}")
        print(f"role={row.role}")


def main() -> None:
    parser = argparse.ArgumentParser(description="Grant the platform super admin role")
    parser.add_argument("--user-id", required=True)
    parser.add_argument("--email", default=None)
    args = parser.parse_args()
    configure_logging()
    asyncio.run(_bootstrap(args.user_id, args.email))


if __name__ == "__main__":
    main()
