from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from approval_engine.config import settings

# SQLite writers queue on the database lock for up to `timeout` seconds
connect_args = {"check_same_thread": False, "timeout": 30} if settings.DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(settings.DATABASE_URL, connect_args=connect_args)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)


class Base(DeclarativeBase):
    pass


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
