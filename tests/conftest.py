import os
import tempfile

# Settings are cached on first use and database.py builds its engine at
# import time, so the environment has to be in place before either loads.
os.environ.setdefault("BUDGETWISE_DATA_DIR", tempfile.mkdtemp(prefix="budgetwise-"))
os.environ.setdefault("BUDGETWISE_TIMEZONE", "Europe/Berlin")
os.environ.setdefault("BUDGETWISE_SCHEDULER_ENABLED", "0")

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from database import Base  # noqa: E402
import models  # noqa: E402,F401


def make_session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


@pytest.fixture
def session():
    session = make_session()
    try:
        yield session
    finally:
        session.close()
