# storage/db.py
from __future__ import annotations

from pathlib import Path
from typing import Optional

from sqlalchemy.engine import Engine
from sqlmodel import SQLModel, create_engine, Session

from core.settings import DB_PATH

# Ensure SQLModel metadata is populated
import models.pending_item  # noqa: F401
import models.cached_response  # noqa: F401
from storage import migrations


_engine: Optional[Engine] = None


def create_offline_engine(path: Optional[Path] = None) -> Engine:
    target = Path(path or DB_PATH)
    target.parent.mkdir(parents=True, exist_ok=True)
    return create_engine(
        f"sqlite:///{target.as_posix()}",
        echo=False,
        connect_args={"check_same_thread": False},
    )


def init_db(engine: Optional[Engine] = None) -> Engine:
    engine = engine or get_engine()
    SQLModel.metadata.create_all(engine)
    migrations.run_all(engine)
    return engine


def get_engine() -> Engine:
    global _engine
    if _engine is None:
        _engine = create_offline_engine()
    return _engine


def get_session(engine: Optional[Engine] = None) -> Session:
    return Session(engine or get_engine())
