from contextlib import contextmanager
from typing import Iterator
import logging

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from .config import settings

logger = logging.getLogger(__name__)

def build_engine(url: str) -> Engine:
    """Engine for ``url``; in-process SQLite shares one connection across threads."""
    if url.startswith("sqlite"):
        return create_engine(
            url,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    return create_engine(url, pool_pre_ping=True)

engine = build_engine(settings.database_url)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

from .models.database import Base

def create_tables():
    Base.metadata.create_all(bind=engine)
    logger.info(f"Created {len(Base.metadata.tables)} tables")

def drop_tables():
    Base.metadata.drop_all(bind=engine)

def get_db() -> Iterator[Session]:
    """Request-scoped session dependency."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

@contextmanager
def session_scope() -> Iterator[Session]:
    """Session for work outside a request; rolled back if the block raises."""
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()

def database_is_healthy() -> bool:
    try:
        with session_scope() as db:
            db.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error(f"Database health check failed: {str(e)}")
        return False

def init_db():
    """Create the schema and, when configured, a starter firm with its admin."""
    create_tables()

    if not settings.seed_default_admin:
        return

    from .models.database import Firm
    from .services.tenancy_service import tenancy_service

    with session_scope() as db:
        if db.query(Firm).count():
            return
        firm, admin = tenancy_service.register_firm(
            db,
            firm_name="Default Law Firm",
            username="admin",
            email="admin@lawpractice.cn",
            password="admin12345",
        )
        logger.warning(f"Seeded firm '{firm.name}' with admin '{admin.username}'; change its password")
