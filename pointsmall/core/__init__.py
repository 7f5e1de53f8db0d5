from .config import settings
from .database import engine, SessionLocal, get_db, Base, build_engine, transaction, utcnow

__all__ = ["settings", "engine", "SessionLocal", "get_db", "Base", "build_engine", "transaction", "utcnow"]
