"""
Relational store setup for Campus Enterprise Hub

- engine / SessionLocal are process-wide; a request holds one session
  for its lifetime (see get_db)
- init_db() creates the schema and seeds the default categories
"""

import logging
from typing import Iterator, Optional

from sqlalchemy import create_engine, event, inspect, select, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from config import DATABASE_URL

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


def make_engine(url: str, **kwargs) -> Engine:
    if url.startswith("sqlite"):
        kwargs.setdefault("connect_args", {"check_same_thread": False})
    eng = create_engine(url, pool_pre_ping=True, **kwargs)
    if eng.dialect.name == "sqlite":
        @event.listens_for(eng, "connect")
        def _enable_foreign_keys(dbapi_conn, _record):
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()
    return eng


engine = make_engine(DATABASE_URL)
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def get_db() -> Iterator[Session]:
    """FastAPI dependency: one session per request, always closed."""
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


DEFAULT_CATEGORIES = [
    ("Food & Drinks", "Restaurants, cafes, and food delivery services", "fas fa-utensils"),
    ("Fashion", "Clothing, accessories, and beauty products", "fas fa-tshirt"),
    ("Electronics", "Gadgets, repairs, and tech services", "fas fa-laptop"),
    ("Services", "Tutoring, cleaning, and other services", "fas fa-tools"),
    ("Books & Stationery", "Academic books and school supplies", "fas fa-book"),
    ("Health & Wellness", "Fitness, health products, and wellness services", "fas fa-heartbeat"),
    ("Transportation", "Ride sharing and delivery services", "fas fa-car"),
    ("Other", "Miscellaneous products and services", "fas fa-ellipsis-h"),
]


def schema_exists(bind: Optional[Engine] = None) -> bool:
    return inspect(bind or engine).has_table("users")


def seed_categories(session: Session) -> int:
    from models import Category

    existing = set(session.scalars(select(Category.name)))
    added = 0
    for name, description, icon in DEFAULT_CATEGORIES:
        if name in existing:
            continue
        session.add(Category(name=name, description=description, icon_class=icon))
        added += 1
    session.commit()
    return added


def init_db(bind: Optional[Engine] = None) -> None:
    """Create every table that is missing and seed the default categories."""
    import models  # noqa: F401  (registers tables on Base.metadata)

    bind = bind or engine
    Base.metadata.create_all(bind=bind)
    with Session(bind=bind) as session:
        added = seed_categories(session)
    logger.info("Schema ready (%d categories seeded)", added)


def ping(bind: Optional[Engine] = None) -> None:
    """Round-trip to the store; raises on failure."""
    with (bind or engine).connect() as conn:
        conn.execute(text("SELECT 1"))
