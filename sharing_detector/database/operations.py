# sharing_detector/database/operations.py
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from sharing_detector.database.models import Base


class DatabaseManager:
    """
    Handles DB connection, sessions, and setup
    """
    def __init__(self, db_url='sqlite:///sharing_detector.db'):
        engine_args = {'echo': False}
        if db_url.startswith('sqlite'):
            # Scans and API requests use the engine from different threads
            engine_args['connect_args'] = {'check_same_thread': False}
            if db_url in ('sqlite://', 'sqlite:///:memory:'):
                engine_args['poolclass'] = StaticPool
        self.engine = create_engine(db_url, **engine_args)
        self.Session = sessionmaker(bind=self.engine, expire_on_commit=False)
        self._create_schema()

    def _create_schema(self):
        """Create tables"""
        Base.metadata.create_all(self.engine)

    @contextmanager
    def session_scope(self):
        """Session that commits on success and rolls back on error"""
        session = self.Session()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
