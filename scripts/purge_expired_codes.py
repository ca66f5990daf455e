import asyncio

from auth_provider.features.mfa.services.code_store import EmailMfaCodeStore
from auth_provider.platform.config import Settings
from auth_provider.platform.db.session import Database
from auth_provider.platform.logger import configure_logging, get_logger

logger = get_logger("scripts.purge_expired_codes")


async def purge_expired_codes():
    settings = Settings()
    configure_logging(settings.LOG_DIR, debug=settings.DEBUG)
    if not settings.DATABASE_URL:
        raise SystemExit("DATABASE_URL is not set")

    database = Database(settings.DATABASE_URL)
    try:
        async with database.session() as db:
            purged = await EmailMfaCodeStore(db).delete_expired()
        logger.info(f"Purged {purged} expired verification codes")
    finally:
        await database.dispose()


if __name__ == "__main__":
    asyncio.run(purge_expired_codes())
