from datetime import datetime, timezone

from sqlalchemy import DateTime, create_engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker
from sqlalchemy.types import TypeDecorator

from foodlink.core.config import settings


def sqlite_connect_args(url: str) -> dict:
    if url.startswith("sqlite"):
        # Required for SQLite when sessions cross FastAPI worker threads.
        return {"check_same_thread": False}
    return {}


class UTCDateTime(TypeDecorator):
    """Timezone-aware timestamp that always round-trips as UTC.

    SQLite drops tzinfo on write, so values are normalised to UTC before binding
    and re-tagged as UTC when they come back naive.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value: datetime | None, dialect) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


engine = create_engine(
    settings.database_url,
    echo=settings.database_echo,
    connect_args=sqlite_connect_args(settings.database_url),
)
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
