from datetime import datetime, timezone

from sqlalchemy.orm import declarative_base

Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every DateTime column here stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)

# Note: Models will import this Base. Do not import models here to avoid circular imports.
# `auth_provider.platform.db.models` imports them all for metadata.create_all.
