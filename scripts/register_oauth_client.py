import argparse
import asyncio

from auth_provider.features.oauth.services.oauth import DEFAULT_SCOPES, OAuthService
from auth_provider.platform.config import Settings
from auth_provider.platform.db.session import Database
from auth_provider.platform.logger import configure_logging, get_logger

logger = get_logger("scripts.register_oauth_client")


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Register an OAuth client application")
    parser.add_argument("name", help="Display name of the client application")
    parser.add_argument(
        "--redirect-uri",
        dest="redirect_uris",
        action="append",
        required=True,
        help="Allowed redirect URI (repeat for several)",
    )
    parser.add_argument("--allowed-origin", required=True, help="Origin the client calls from")
    parser.add_argument(
        "--scope",
        dest="scopes",
        action="append",
        help=f"Allowed scope (repeatable, default: {' '.join(DEFAULT_SCOPES)})",
    )
    return parser.parse_args(argv)


async def register_oauth_client(args):
    settings = Settings()
    configure_logging(settings.LOG_DIR, debug=settings.DEBUG)
    if not settings.DATABASE_URL:
        raise SystemExit("DATABASE_URL is not set")

    database = Database(settings.DATABASE_URL)
    try:
        await database.create_all()
        async with database.session() as db:
            client, client_secret = await OAuthService(db, settings).register_client(
                args.name, args.redirect_uris, args.allowed_origin, scopes=args.scopes
            )
        logger.info(f"Registered OAuth client {client.id}")
        print(f"client_id={client.id}")
        print(f"client_secret={client_secret}")
    finally:
        await database.dispose()


if __name__ == "__main__":
    asyncio.run(register_oauth_client(parse_args()))
