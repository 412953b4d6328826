import os
from pathlib import Path

from dotenv import load_dotenv
from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

# .env at the repo root, never overriding variables already set in the shell
load_dotenv(Path(__file__).resolve().parent.parent / ".env", override=False)

# Absolute default path anchored to this file so it works regardless of CWD
_DB_PATH = Path(__file__).resolve().parent / "consensus.db"
DATABASE_URL = os.environ.get("CONSENSUS_DATABASE_URL", f"sqlite:///{_DB_PATH}")

_connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(DATABASE_URL, connect_args=_connect_args)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
