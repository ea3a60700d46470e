import logging
import os
import time
from typing import Optional

from fastapi import Request
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

# Get environment-specific pool settings
POOL_SIZE = int(os.getenv("DB_POOL_SIZE", "20"))
MAX_OVERFLOW = int(os.getenv("DB_MAX_OVERFLOW", "30"))
POOL_TIMEOUT = int(os.getenv("DB_POOL_TIMEOUT", "30"))
POOL_RECYCLE = int(os.getenv("DB_POOL_RECYCLE", "300"))
ENABLE_QUERY_LOGGING = os.getenv("DB_LOG_SLOW_QUERIES", "true").lower() == "true"
SLOW_QUERY_THRESHOLD = float(os.getenv("DB_SLOW_QUERY_THRESHOLD", "1.0"))

Base = declarative_base()


class Database:
    """
    Owns the engine and session factory for one process.

    Constructed explicitly at startup (app lifespan, scheduler runner, tests)
    and passed to whoever needs sessions; dispose() closes the pool on shutdown.
    """

    def __init__(self, url: str, echo: bool = False):
        if not url:
            raise ValueError("DATABASE_URL is not configured")

        self.url = url
        try:
            self.engine = self._create_engine(url, echo)
            logger.info("✅ Database engine created successfully")
        except Exception as e:
            logger.error(f"❌ Failed to create database engine: {e}")
            raise

        if ENABLE_QUERY_LOGGING:
            self._install_slow_query_logging(self.engine)

        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)

    @staticmethod
    def _create_engine(url: str, echo: bool) -> Engine:
        if url.startswith("sqlite"):
            # Single shared connection so in-memory databases survive across sessions
            return create_engine(
                url,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
                echo=echo,
            )

        engine = create_engine(
            url,
            pool_pre_ping=True,  # Test connections before using
            pool_recycle=POOL_RECYCLE,
            pool_size=POOL_SIZE,
            max_overflow=MAX_OVERFLOW,
            pool_timeout=POOL_TIMEOUT,
            echo=echo,
        )
        logger.info(
            f"📊 Connection pool: size={POOL_SIZE}, max_overflow={MAX_OVERFLOW}, timeout={POOL_TIMEOUT}s"
        )
        return engine

    @staticmethod
    def _install_slow_query_logging(engine: Engine) -> None:
        @event.listens_for(engine, "before_cursor_execute")
        def before_cursor_execute(conn, _cursor, statement, _parameters, context, _executemany):
            conn.info.setdefault("query_start_time", []).append(time.time())

        @event.listens_for(engine, "after_cursor_execute")
        def after_cursor_execute(conn, _cursor, statement, _parameters, context, _executemany):
            total = time.time() - conn.info["query_start_time"].pop(-1)
            if total > SLOW_QUERY_THRESHOLD:
                logger.warning(f"🐌 Slow query ({total:.2f}s): {statement[:200]}...")

    def create_all(self) -> None:
        """Create tables for every registered model"""
        from . import models_plan  # noqa: F401

        Base.metadata.create_all(bind=self.engine, checkfirst=True)

    def session(self) -> Session:
        return self.SessionLocal()

    def dispose(self) -> None:
        self.engine.dispose()
        logger.info("Database engine disposed")


def get_db(request: Request):
    database: Optional[Database] = getattr(request.app.state, "database", None)
    if database is None:
        raise RuntimeError("Database is not initialised on the application")

    db = database.session()
    try:
        yield db
    finally:
        db.close()
