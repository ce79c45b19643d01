"""
Database connection and session management for the backend service
"""
from contextlib import contextmanager
from typing import Generator, Iterator
import logging

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from .env import Env

logger = logging.getLogger(__name__)

PG_DIALECT = "postgresql+psycopg"


def normalize_database_url(url: str) -> str:
    """
    Point Postgres URLs at the psycopg driver.

    ``postgres://`` is not accepted by SQLAlchemy, and a bare ``postgresql://``
    would pick psycopg2. Any other URL is returned unchanged.
    """
    for scheme in ("postgres://", "postgresql://"):
        if url.startswith(scheme):
            return f"{PG_DIALECT}://{url[len(scheme):]}"
    return url


class Database:
    """Persistence handle handed to the auth provider."""

    def __init__(self, url: str, echo: bool = False):
        self.url = normalize_database_url(url)
        connect_args = {"check_same_thread": False} if self.url.startswith("sqlite") else {}
        self.engine: Engine = create_engine(
            self.url,
            connect_args=connect_args,
            pool_pre_ping=True,
            echo=echo,
        )
        self.SessionLocal = sessionmaker(bind=self.engine, autocommit=False, autoflush=False)

    @contextmanager
    def session(self) -> Iterator[Session]:
        db = self.SessionLocal()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def get_db(self) -> Generator[Session, None, None]:
        """
        Dependency function to get database session.

        Yields:
            Session: SQLAlchemy database session
        """
        db = self.SessionLocal()
        try:
            yield db
        finally:
            db.close()

    def check_connection(self) -> bool:
        """
        Check if database connection is working.

        Returns:
            bool: True if connection is successful, False otherwise
        """
        try:
            with self.session() as db:
                db.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as e:
            logger.error(f"Database connection check failed: {e}")
            return False

    def dispose(self) -> None:
        self.engine.dispose()


def create_database(env: Env) -> Database:
    # Only DATABASE_URL is taken from configuration; SQL echo follows NODE_ENV
    database = Database(env.DATABASE_URL, echo=env.is_development)
    logger.info("Database engine created for dialect %s", database.engine.dialect.name)
    return database
