import logging
import socket

from sqlalchemy import create_engine
from sqlalchemy.engine.url import make_url
from sqlalchemy.exc import ArgumentError
from sqlalchemy.orm import declarative_base, sessionmaker

from videogen.core.settings import settings

logger = logging.getLogger(__name__)


def _postgres_connect_args(database_url: str) -> dict:
    """Pin Supabase Postgres to its IPv4 address; some hosts cannot route the default IPv6 record."""
    try:
        url = make_url(database_url)
    except ArgumentError:
        return {}
    if not (url.drivername or "").startswith("postgresql") or not url.host:
        return {}
    try:
        infos = socket.getaddrinfo(url.host, int(url.port or 5432), family=socket.AF_INET, type=socket.SOCK_STREAM)
    except OSError as e:
        logger.warning("database.ipv4_lookup_failed host=%s error=%s", url.host, e)
        return {}
    if not infos:
        return {}
    return {"sslmode": "require", "hostaddr": infos[0][4][0]}


def connect_args_for(database_url: str) -> dict:
    if database_url.startswith("sqlite"):
        # Writers queue on the sqlite lock instead of failing fast.
        return {"check_same_thread": False, "timeout": 30}
    return _postgres_connect_args(database_url)


engine = create_engine(settings.database_url, connect_args=connect_args_for(settings.database_url), pool_pre_ping=True)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
