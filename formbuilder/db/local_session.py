import logging
from os import environ

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from formbuilder.models.models import Base

logger = logging.getLogger(__name__)

DB_USER = environ.get('DB_USER', "postgres")
DB_PASSWORD = environ.get('DB_PASSWORD', "postgres")
DB_HOST = environ.get('DB_HOST')
DB_PORT = environ.get('DB_PORT', "5432")
DB_NAME = environ.get('DB_NAME', "formbuilder_db")


def get_database_url() -> str:
    """DATABASE_URL wins; otherwise PostgreSQL when DB_HOST is set, else a local SQLite file"""
    url = environ.get('DATABASE_URL')
    if url:
        return url
    if DB_HOST:
        return f"postgresql+psycopg2://{DB_USER}:{DB_PASSWORD}@{DB_HOST}:{DB_PORT}/{DB_NAME}"
    return "sqlite:///./formbuilder.db"


def create_engine_with_proper_pooling(database_url: str) -> Engine:
    """Create SQLAlchemy engine with a pool suited to the backend"""
    if database_url.startswith("sqlite"):
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            # One shared connection, or every session would see its own empty database
            return create_engine(
                database_url,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        return create_engine(database_url, connect_args={"check_same_thread": False})

    return create_engine(
        database_url,
        poolclass=QueuePool,
        pool_size=5,
        max_overflow=10,
        pool_timeout=30,
        pool_recycle=1800,  # Recycle connections after 30 minutes
        pool_pre_ping=True  # Check connection validity before using
    )


class DatabaseManager:
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            database_url = get_database_url()
            cls._instance = super(DatabaseManager, cls).__new__(cls)
            cls._instance.engine = create_engine_with_proper_pooling(database_url)
            cls._instance.session_factory = sessionmaker(
                autocommit=False,
                autoflush=False,
                bind=cls._instance.engine
            )
            cls._instance._initialize_database()
            logger.info(f"Database ready ({cls._instance.engine.url.get_backend_name()})")
        return cls._instance

    def _initialize_database(self):
        """Create the forms and tables tables if they are missing"""
        Base.metadata.create_all(bind=self.engine)

    def reset_database(self):
        """Drop and recreate every table. Used by the test suite."""
        Base.metadata.drop_all(bind=self.engine)
        Base.metadata.create_all(bind=self.engine)

    def get_session(self):
        """Get a database session"""
        session = self.session_factory()
        try:
            yield session
        finally:
            session.close()
