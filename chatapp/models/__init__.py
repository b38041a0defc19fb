from datetime import datetime, timezone

from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import NullPool

from ..config import settings

DATABASE_URL = settings.database_url


def make_engine(url: str):
    if url.startswith('sqlite'):
        # sqlite ignores ON DELETE CASCADE unless foreign keys are switched on per connection
        eng = create_async_engine(url, future=True, echo=settings.sql_echo, poolclass=NullPool)

        @event.listens_for(eng.sync_engine, 'connect')
        def _enable_foreign_keys(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute('PRAGMA foreign_keys=ON')
            cursor.close()

        return eng
    return create_async_engine(url, future=True, echo=settings.sql_echo, pool_pre_ping=True)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_dict(obj) -> dict:
    """Column values of an ORM row, keyed by column name."""
    return {c.key: getattr(obj, c.key) for c in obj.__table__.columns}


engine = make_engine(DATABASE_URL)
AsyncSessionLocal = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
Base = declarative_base()

# Import models to register tables
from .auth_users import AuthUser  # noqa: F401,E402
from .session_tokens import SessionToken  # noqa: F401,E402
from .profiles import Profile  # noqa: F401,E402
from .contacts import Contact  # noqa: F401,E402
from .conversations import Conversation  # noqa: F401,E402
from .participants import ConversationParticipant  # noqa: F401,E402
from .messages import Message  # noqa: F401,E402
