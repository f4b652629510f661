from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from stayledger.core.config import settings


class Base(DeclarativeBase):
    pass


def make_engine(url: str | None = None, **kwargs) -> Engine:
    """Engine with a bounded lock wait so no atomic unit can hang indefinitely."""
    url = url or settings.DATABASE_URL
    connect_args = kwargs.pop("connect_args", {})
    if url.startswith("sqlite"):
        connect_args.setdefault("check_same_thread", False)
        connect_args.setdefault("timeout", settings.LOCK_TIMEOUT_SECONDS)
    elif url.startswith("postgresql"):
        connect_args.setdefault("options", f"-c lock_timeout={settings.LOCK_TIMEOUT_SECONDS * 1000}")
    return create_engine(url, connect_args=connect_args, pool_pre_ping=True, **kwargs)


engine = make_engine()
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(bind: Engine | None = None) -> None:
    # Import all models so they register on Base.metadata
    import stayledger.models  # noqa: F401
    Base.metadata.create_all(bind=bind or engine)
