"""Database connection and unit-of-work management."""

from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from .config import settings
from .errors import ConflictError, translate_storage_error
from .logging_config import get_logger
from .tables import Base

logger = get_logger(__name__)


def _sqlite_on_connect(dbapi_connection, connection_record) -> None:
    # Take over transaction control from pysqlite so "begin" below is honoured
    dbapi_connection.isolation_level = None
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _sqlite_on_begin(conn) -> None:
    # Only the serializable scope takes the write lock up front; reads stay deferred
    if conn.get_execution_options().get("sqlite_begin") == "IMMEDIATE":
        conn.exec_driver_sql("BEGIN IMMEDIATE")
    else:
        conn.exec_driver_sql("BEGIN")


class Database:
    """Engine plus two session factories.

    ``session()`` runs at the store's default isolation and is used for
    reads. ``transaction()`` runs SERIALIZABLE and is used for every
    mutation of balances and ledgers.
    """

    def __init__(self, database_url: Optional[str] = None, echo: Optional[bool] = None):
        self.database_url = database_url or settings.database_url
        self.engine = self._create_engine(
            self.database_url,
            settings.database_echo if echo is None else echo,
        )

        if self.engine.dialect.name == "sqlite":
            # BEGIN IMMEDIATE serializes writers at the database level
            serializable_engine = self.engine.execution_options(sqlite_begin="IMMEDIATE")
        else:
            serializable_engine = self.engine.execution_options(isolation_level="SERIALIZABLE")

        self.SessionLocal = sessionmaker(
            autoflush=False,
            expire_on_commit=False,
            bind=self.engine,
        )
        self.SerializableSession = sessionmaker(
            autoflush=False,
            expire_on_commit=False,
            bind=serializable_engine,
        )
        logger.info("database_initialized", dialect=self.engine.dialect.name)

    @staticmethod
    def _create_engine(database_url: str, echo: bool) -> Engine:
        if database_url.startswith("sqlite"):
            engine = create_engine(
                database_url,
                echo=echo,
                connect_args={"check_same_thread": False, "timeout": 30},
            )
            event.listen(engine, "connect", _sqlite_on_connect)
            event.listen(engine, "begin", _sqlite_on_begin)
            return engine
        return create_engine(database_url, echo=echo, pool_pre_ping=True)

    def create_tables(self) -> None:
        Base.metadata.create_all(bind=self.engine)
        logger.info("tables_created")

    def dispose(self) -> None:
        self.engine.dispose()

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        """Provide a transactional scope at the default isolation level."""
        with self._scope(self.SessionLocal) as session:
            yield session

    @contextmanager
    def transaction(self) -> Generator[Session, None, None]:
        """Provide a SERIALIZABLE transactional scope.

        Everything done inside the block commits together or is rolled
        back. Serialization aborts surface as ``ConflictError``, other
        database errors as ``StorageFailureError``.
        """
        with self._scope(self.SerializableSession) as session:
            yield session

    @contextmanager
    def _scope(self, factory: sessionmaker) -> Generator[Session, None, None]:
        session = factory()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            error = translate_storage_error(exc)
            if isinstance(error, ConflictError):
                logger.warning("storage_conflict", error=exc.__class__.__name__)
            else:
                logger.error("storage_failure", error=str(exc))
            raise error from exc
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
