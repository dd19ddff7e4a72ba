# marketplace/data/database.py
from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from marketplace.utils.settings import DATABASE_URL


def build_engine(url: str = DATABASE_URL):
    connect_args = {}
    if url.startswith("sqlite"):
        #sqlite: sessions from many threads, wait on the write lock instead of failing fast
        connect_args = {"check_same_thread": False, "timeout": 30}
    return create_engine(url, future=True, pool_pre_ping=True, connect_args=connect_args)


engine = build_engine()
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
