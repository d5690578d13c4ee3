import logging
from sqlalchemy import create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import sessionmaker

from projectflow.core.config import get_settings

logger = logging.getLogger(__name__)

settings = get_settings()

database_url = make_url(settings.database_url)
# SQLite connections are shared with the request threadpool
connect_args = (
    {"check_same_thread": False} if database_url.get_backend_name() == "sqlite" else {}
)
logger.debug(f"Database backend: {database_url.get_backend_name()}")
engine = create_engine(
    database_url,
    connect_args=connect_args,
    pool_pre_ping=database_url.get_backend_name() != "sqlite",
)

SessionLocal = sessionmaker(
    bind=engine,
    autocommit=False,
    autoflush=False,
)


def get_db():
    """Request-scoped session for FastAPI dependencies."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
