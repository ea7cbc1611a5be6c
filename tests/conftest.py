from __future__ import annotations

import sys
from pathlib import Path

import pytest
from sqlalchemy.orm import Session

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from cache_layer import cache_clear  # noqa: E402
from config import Config  # noqa: E402
from db import Base, make_engine  # noqa: E402
import models  # noqa: E402,F401


def _set_env(monkeypatch, db_url: str) -> None:
    monkeypatch.setenv("DATABASE_URL", db_url)
    monkeypatch.setenv("APP_ENV", "test")
    monkeypatch.setenv("APP_TIMEZONE", "America/New_York")
    monkeypatch.setenv("PUBLIC_BASE_URL", "https://hire.example.com")
    monkeypatch.setenv("INTERVIEW_MEETING_URL", "https://meet.example.com/interview-room")
    monkeypatch.setenv("INTERNAL_CRON_TOKEN", "cron-secret")
    monkeypatch.setenv("ENABLE_SCHEDULER", "0")
    monkeypatch.setenv("RATE_LIMIT_PUBLIC", "1000/60")
    monkeypatch.setenv("RATE_LIMIT_DEFAULT", "1000/60")
    monkeypatch.setenv("RATE_LIMIT_GLOBAL", "5000/60")
    monkeypatch.delenv("RESEND_API_KEY", raising=False)


@pytest.fixture()
def app_client(tmp_path, monkeypatch):
    _set_env(monkeypatch, f"sqlite:///{tmp_path / 'app.db'}")
    cache_clear()

    from web_app import create_app

    app = create_app()
    app.config["TESTING"] = True
    client = app.test_client()
    yield app, client
    cache_clear()


@pytest.fixture()
def cfg(tmp_path, monkeypatch) -> Config:
    _set_env(monkeypatch, f"sqlite:///{tmp_path / 'unit.db'}")
    return Config()


@pytest.fixture()
def engine(cfg):
    eng = make_engine(cfg.DATABASE_URL)
    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture()
def db_session(engine):
    db = Session(bind=engine, expire_on_commit=False)
    yield db
    db.rollback()
    db.close()
