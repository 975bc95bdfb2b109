"""
Maintenance: delete expired or used temporary credentials and mark lapsed registration tokens EXPIRED.

Safe to run repeatedly; reads already treat lapsed tokens as expired, this only tidies storage.
Usage: python -m app.scripts.cleanup_expired [--dry-run]
"""

import argparse
import asyncio
import logging

from sqlalchemy import func, or_, select

from app.api.v1.registration_tokens import service as token_service
from app.api.v1.temp_credentials import service as temp_credential_service
from app.auth.models import User  # noqa: F401  (registers users table for FK resolution)
from app.core.clock import utcnow
from app.core.config import settings
from app.core.enums import TokenStatus
from app.core.logging_config import setup_logging
from app.core.models import RegistrationToken, TemporaryCredential
from app.db import session as db_session

logger = logging.getLogger(__name__)


async def cleanup_expired(dry_run: bool = False) -> None:
    session_factory = db_session.init_engine(settings.database_url)
    now = utcnow()
    try:
        async with session_factory() as session:
            if dry_run:
                credentials = (await session.execute(
                    select(func.count()).select_from(TemporaryCredential).where(
                        or_(TemporaryCredential.expires_at < now, TemporaryCredential.is_used.is_(True))
                    )
                )).scalar_one()
                tokens = (await session.execute(
                    select(func.count()).select_from(RegistrationToken).where(
                        RegistrationToken.status == TokenStatus.ACTIVE.value,
                        RegistrationToken.expires_at < now,
                    )
                )).scalar_one()
                logger.info("Dry run: %s credential(s) would be removed, %s token(s) expired", credentials, tokens)
                return

            removed = await temp_credential_service.cleanup_expired_credentials(session, now=now)
            expired = await token_service.expire_stale_tokens(session, now=now)
            logger.info("Cleanup done: %s credential(s) removed, %s token(s) expired", removed, expired)
    finally:
        await db_session.dispose_engine()


def main() -> None:
    parser = argparse.ArgumentParser(description="Remove expired temporary credentials and expire lapsed registration tokens.")
    parser.add_argument("--dry-run", action="store_true", help="Only report what would change")
    args = parser.parse_args()
    setup_logging()
    asyncio.run(cleanup_expired(dry_run=args.dry_run))


if __name__ == "__main__":
    main()
