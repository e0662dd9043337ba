from __future__ import annotations

import argparse
import asyncio

from orgauthz.core.logging import configure_logging
from orgauthz.persistence.db import SessionLocal
from orgauthz.persistence.repos import agency as agency_repo
from orgauthz.services.agency import create_agency_grant, set_agency_grant_active


async def _grant(actor: str, agency_org_id: str, client_org_id: str, deactivate: bool) -> None:
    async with SessionLocal() as session:
        existing = await agency_repo.get_grant_for_pair(
            session, agency_org_id=agency_org_id, client_org_id=client_org_id
        )
        if existing is None:
            if deactivate:
                print("grant=missing")
                return
            grant = await create_agency_grant(
                session,
                actor_user_id=actor,
                agency_org_id=agency_org_id,
                client_org_id=client_org_id,
            )
        else:
            # Re-running toggles the existing pair instead of failing on the unique constraint.
            grant = await set_agency_grant_active(
                session, actor_user_id=actor, grant_id=existing.id, is_active=not deactivate
            )
        print(f"grant_id={grant.id}")
        print(f"is_active={grant.is_active}")


def main() -> None:
    parser = argparse.ArgumentParser(description="Create or toggle an agency-client grant")
    parser.add_argument("--actor", required=True, help="user id of the acting super admin")
    parser.add_argument("--agency", required=True, help="agency organization id")
    parser.add_argument("--client", required=True, help="client organization id")
    parser.add_argument("--deactivate", action="store_true")
    args = parser.parse_args()
    configure_logging()
    asyncio.run(_grant(args.actor, args.agency, args.client, args.deactivate))


if __name__ == "__main__":
    main()
