from sqlmodel import SQLModel, create_engine, Session
from sqlalchemy import text
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import NullPool, QueuePool, StaticPool
from app.core.config import settings
import logging
import threading

import app.models

logger = logging.getLogger(__name__)


def _quote_identifier(identifier: str) -> str:
    if not identifier or not identifier.strip():
        raise ValueError("Identifier cannot be empty")
    return '"' + identifier.replace('"', '""') + '"'


def build_engine(database_url: str, schema: str = "public", echo: bool = False) -> Engine:
    # Convert postgresql:// to postgresql+psycopg:// for psycopg v3
    database_url = database_url.replace("postgresql://", "postgresql+psycopg://")
    url = make_url(database_url)

    if url.get_backend_name() == "sqlite":
        in_memory = url.database in (None, "", ":memory:")
        engine = create_engine(
            database_url,
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool if in_memory else None,
        )
        return engine

    engine = create_engine(
        database_url,
        echo=echo,
        poolclass=QueuePool,
        pool_size=5,
        max_overflow=10,
        pool_timeout=30,
        pool_pre_ping=True,
        pool_recycle=3600,
    )
    if schema != "public":
        engine = engine.execution_options(schema_translate_map={None: schema})
    return engine


logger.info("Creating database engine...")
engine = build_engine(settings.DATABASE_URL, settings.DB_SCHEMA, settings.DB_ECHO)
logger.info("Database engine created successfully")


class DatabaseProvisioner:
    """
    Creates the database, schema, tables and reference data exactly once per
    process. Concurrent first callers block on the lock; later callers return
    on the readiness flag without touching the database.
    """

    def __init__(self, engine: Engine, schema: str = "public"):
        self.engine = engine
        self.schema = schema
        self._lock = threading.Lock()
        self._ready = False

    @property
    def ready(self) -> bool:
        return self._ready

    def ensure_ready(self) -> None:
        if self._ready:
            return
        with self._lock:
            if self._ready:
                return
            self._ensure_database_exists()
            self._ensure_schema()
            self._seed()
            self._ready = True

    def reset(self) -> None:
        with self._lock:
            self._ready = False

    def _ensure_database_exists(self) -> None:
        url = self.engine.url
        if url.get_backend_name() != "postgresql":
            return
        target = url.database
        if not target:
            raise ValueError("Database name is required in connection string")

        logger.info(f"Ensuring PostgreSQL database exists: {target}")
        admin_engine = create_engine(
            url.set(database="postgres"),
            isolation_level="AUTOCOMMIT",
            poolclass=NullPool,
        )
        try:
            with admin_engine.connect() as conn:
                exists = conn.execute(
                    text("SELECT 1 FROM pg_database WHERE datname = :name"),
                    {"name": target},
                ).scalar()
                if exists is None:
                    conn.execute(text(f"CREATE DATABASE {_quote_identifier(target)}"))
                    logger.info(f"Created PostgreSQL database: {target}")
                else:
                    logger.debug(f"PostgreSQL database already exists: {target}")
        finally:
            admin_engine.dispose()

    def _ensure_schema(self) -> None:
        logger.info(f"Ensuring schema and tables exist. Schema: {self.schema}")
        if self.engine.url.get_backend_name() == "postgresql" and self.schema != "public":
            with self.engine.begin() as conn:
                conn.execute(text(f"CREATE SCHEMA IF NOT EXISTS {_quote_identifier(self.schema)}"))
        SQLModel.metadata.create_all(self.engine)

    def _seed(self) -> None:
        from app.core.startup import seed_payment_channels

        with Session(self.engine) as session:
            inserted = seed_payment_channels(session)
        logger.info(f"Payment channels seed completed. RowsInserted: {inserted}")


provisioner = DatabaseProvisioner(engine, settings.DB_SCHEMA)


def ensure_ready() -> None:
    provisioner.ensure_ready()


def get_session():
    ensure_ready()
    logger.debug("Creating new database session...")
    session = Session(engine)
    try:
        yield session
    except Exception as e:
        logger.error(f"Database session error: {str(e)}")
        session.rollback()
        raise
    finally:
        logger.debug("Closing database session...")
        session.close()


def create_db_and_tables():
    try:
        logger.info("Provisioning database and tables...")
        ensure_ready()
        logger.info("Database and tables ready")
    except SQLAlchemyError as e:
        logger.error(f"Error provisioning database and tables: {str(e)}")
        raise
