from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, declarative_base
from typing import Optional
import logging

from calmy.core.config import settings

logger = logging.getLogger(__name__)

Base = declarative_base()

_engine: Optional[Engine] = None
_session_factory: Optional[sessionmaker] = None


def build_database_url() -> str:
    """
    Returns DATABASE_URL when set, otherwise assembles the Supabase Postgres URL
    from the SUPABASE_DB_* settings.
    """
    if settings.DATABASE_URL:
        return settings.DATABASE_URL

    if not all([settings.SUPABASE_DB_HOST, settings.SUPABASE_DB_PASSWORD]):
        logger.error("Missing required Supabase database settings (SUPABASE_DB_HOST, SUPABASE_DB_PASSWORD).")
        raise ValueError("Missing required Supabase database settings.")

    # Connection string: postgresql://<user>:<pass>@<host>:<port>/<db>
    return (
        f"postgresql://{settings.SUPABASE_DB_USER}:{settings.SUPABASE_DB_PASSWORD}"
        f"@{settings.SUPABASE_DB_HOST}:{settings.SUPABASE_DB_PORT}/{settings.SUPABASE_DB_NAME}"
    )


def get_engine() -> Engine:
    """Creates the SQLAlchemy engine on first use and reuses it afterwards."""
    global _engine
    if _engine is None:
        url = build_database_url()
        connect_args = {}
        if url.startswith("postgresql") and settings.SUPABASE_DB_SSL_MODE != 'disable':
            connect_args["sslmode"] = settings.SUPABASE_DB_SSL_MODE

        logger.info(f"Connecting to database: {url.split('@')[-1]}")
        try:
            _engine = create_engine(
                url,
                connect_args=connect_args,
                pool_pre_ping=True,
            )
        except Exception as e:
            logger.error(f"Failed to create SQLAlchemy engine: {e}", exc_info=True)
            raise
        logger.info("SQLAlchemy engine configured successfully.")
    return _engine


def get_session_factory() -> sessionmaker:
    global _session_factory
    if _session_factory is None:
        _session_factory = sessionmaker(autocommit=False, autoflush=False, bind=get_engine())
    return _session_factory


def create_tables(engine: Optional[Engine] = None) -> None:
    # Registers the mapped tables on Base.metadata
    import calmy.models  # noqa: F401

    Base.metadata.create_all(bind=engine or get_engine())
