from sqlalchemy.orm import DeclarativeBase, sessionmaker
from sqlalchemy import create_engine
from coffeeon.core.config import settings

class Base(DeclarativeBase): pass


def build_engine(url: str):
    # every statement is bounded by DB_TIMEOUT_SECONDS; a timeout surfaces as a DBAPI error
    if url.startswith("sqlite"):
        connect_args = {"check_same_thread": False, "timeout": settings.DB_TIMEOUT_SECONDS}
    elif url.startswith("postgresql"):
        connect_args = {"options": f"-c statement_timeout={settings.DB_TIMEOUT_SECONDS * 1000}"}
    else:
        connect_args = {}
    return create_engine(url, pool_pre_ping=True, connect_args=connect_args)


engine = build_engine(settings.DATABASE_URL)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)
