from pathlib import Path
from sqlalchemy import create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import sessionmaker, DeclarativeBase
from .settings import settings

class Base(DeclarativeBase):
    pass

def make_engine(url: str):
    u = make_url(url)
    if u.get_backend_name() != "sqlite":
        return create_engine(url, future=True)
    if u.database and u.database != ":memory:":
        Path(u.database).parent.mkdir(parents=True, exist_ok=True)
    # the catalog is written from the event loop and read from API worker threads
    return create_engine(url, future=True, connect_args={"check_same_thread": False})

engine = make_engine(settings.DB_URL)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
