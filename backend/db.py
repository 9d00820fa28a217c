from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, declarative_base
from config import DATABASE_URL, VISUAL_DATABASE_URL


def make_engine(url):
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    engine = create_engine(url, connect_args=connect_args, pool_pre_ping=True)

    # ensure ON DELETE CASCADE is respected at DB level
    if url.startswith("sqlite"):
        @event.listens_for(engine, "connect")
        def _set_sqlite_pragma(dbapi_conn, connection_record):
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return engine


# main API store
engine = make_engine(DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()

# visualization API store
visual_engine = make_engine(VISUAL_DATABASE_URL)
VisualSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=visual_engine)
VisualBase = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_visual_db():
    db = VisualSessionLocal()
    try:
        yield db
    finally:
        db.close()
