from rankbeam.db.base import Base
from rankbeam.db.session import create_db_engine, create_session_factory

__all__ = ["Base", "create_db_engine", "create_session_factory"]
