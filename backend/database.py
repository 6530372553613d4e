# backend/database.py
from datetime import datetime, timezone
from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from config import settings
from utils.retry import retry_with_backoff

# 1. Database URL from settings (.env / environment), SQLite by default
SQLALCHEMY_DATABASE_URL = settings.DATABASE_URL

# 2. Heroku/Azure style URLs use postgres://, SQLAlchemy needs postgresql://
if SQLALCHEMY_DATABASE_URL and SQLALCHEMY_DATABASE_URL.startswith("postgres://"):
    SQLALCHEMY_DATABASE_URL = SQLALCHEMY_DATABASE_URL.replace("postgres://", "postgresql://", 1)

# 3. Dialect specific connection arguments
if "sqlite" in SQLALCHEMY_DATABASE_URL:
    connect_args = {"check_same_thread": False} # SQLite only
else:
    connect_args = {}

engine = create_engine(
    SQLALCHEMY_DATABASE_URL, connect_args=connect_args
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()

def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

def init_db():
    # Import models so every table is registered on Base.metadata
    import models.users, models.product, models.inventory, models.stock, models.log  # noqa: F401
    Base.metadata.create_all(bind=engine)

def utcnow() -> datetime:
    """Naive UTC timestamp, the form stored in every DateTime column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)

def run_in_transaction(db: Session, work, **retry_options):
    """Run work(db) and commit as one unit, retrying the whole unit on transient conflicts.

    A failed attempt is rolled back before the next one starts, so work must
    re-read whatever state it depends on.
    """
    def attempt():
        try:
            result = work(db)
            db.commit()
            return result
        except Exception:
            db.rollback()
            raise

    return retry_with_backoff(attempt, **retry_options)
