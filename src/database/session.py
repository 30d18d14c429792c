"""Database session management."""

from typing import Dict, Any, Optional
from contextlib import contextmanager

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from src.utils.logger import setup_worker_logger
from src.utils.config import load_config


class Session:
    """Database session manager that handles connection configuration and pooling."""

    _instance = None
    _engine: Optional[Engine] = None
    _session_factory = None

    def __new__(cls):
        """Ensure singleton pattern for session manager."""
        if cls._instance is None:
            cls._instance = super(Session, cls).__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        """Initialize session manager if not already initialized."""
        if self._initialized:
            return

        self.logger = setup_worker_logger('database')
        self.config = self._load_config()

        connection_url = self.config['url']
        safe_url = connection_url.replace(self.config['password'], '****') if self.config.get('password') else connection_url
        self.logger.info(f"Creating engine with URL: {safe_url}")

        try:
            self._engine = create_engine(connection_url, **self._engine_kwargs(connection_url))
        except Exception as e:
            self.logger.error(f"Failed to create database engine: {str(e)}")
            raise

        with self._engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        self.logger.info("Successfully tested database connection")

        # Rows are read after their session closes (detached), so keep loaded attributes
        self._session_factory = sessionmaker(bind=self._engine, expire_on_commit=False)
        self._initialized = True

    def _engine_kwargs(self, connection_url: str) -> Dict[str, Any]:
        if not connection_url.startswith('postgresql'):
            return {}
        pool = self.config.get('pool', {})
        connection = self.config.get('connection', {})
        kwargs = {
            'pool_pre_ping': True,
            'connect_args': {
                'connect_timeout': connection.get('timeout', 10),
                'application_name': connection.get('application_name', 'fanhub_ingest'),
            },
        }
        if pool.get('enabled', True):
            self.logger.info(f"Pool size: {pool.get('size', 5)}, max overflow: {pool.get('max_overflow', 10)}")
            kwargs.update(
                pool_size=pool.get('size', 5),
                max_overflow=pool.get('max_overflow', 10),
                pool_timeout=pool.get('timeout', 30),
                pool_recycle=pool.get('recycle', 1800),
            )
        return kwargs

    def _load_config(self) -> Dict[str, Any]:
        """Load database configuration; an explicit url wins over the postgres fields."""
        db_config = dict(load_config().get('database', {}))

        if not db_config.get('url'):
            required_fields = ['user', 'password', 'host', 'database']
            missing_fields = [field for field in required_fields if not db_config.get(field)]
            if missing_fields:
                raise ValueError(f"Missing required database config fields: {missing_fields}")
            db_config['url'] = (
                f"postgresql://{db_config['user']}:{db_config['password']}"
                f"@{db_config['host']}:{db_config.get('port', 5432)}/{db_config['database']}"
            )

        safe_config = {k: v for k, v in db_config.items() if k not in ('password', 'url')}
        self.logger.info(f"Using database config: {safe_config}")
        return db_config

    def get_session(self):
        """Get a database session from the pool."""
        if not self._session_factory:
            raise RuntimeError("Session factory not initialized")
        return self._session_factory()

    def get_session_factory(self):
        return self._session_factory

    def dispose(self):
        """Dispose of the engine and all pooled connections."""
        if self._engine:
            self.logger.info("Disposing database engine and connection pool")
            self._engine.dispose()


# Global session manager instance (lazy initialized)
session_manager = None


def _get_session_manager() -> Session:
    """Get or create the global session manager instance."""
    global session_manager
    if session_manager is None:
        session_manager = Session()
    return session_manager


def get_engine() -> Engine:
    """Get the SQLAlchemy engine."""
    manager = _get_session_manager()
    if not manager._engine:
        raise RuntimeError("Engine not initialized")
    return manager._engine


def get_session_factory():
    """Get the configured sessionmaker, used to build a CatalogStore."""
    return _get_session_manager().get_session_factory()


@contextmanager
def get_session():
    """Context manager for database sessions."""
    session = _get_session_manager().get_session()
    try:
        yield session
    finally:
        session.close()


def init_db():
    """Initialize the database schema."""
    logger = setup_worker_logger('database')
    try:
        from .models import Base
        Base.metadata.create_all(get_engine())
        logger.info("Successfully initialized database schema")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise
