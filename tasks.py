"""
Celery app and background jobs.

Usage:
    celery -A tasks.celery_app worker --loglevel=INFO
    celery -A tasks.celery_app beat --loglevel=INFO
"""
from __future__ import annotations

import logging
import os

from celery import Celery
from dotenv import load_dotenv

from actions.onboarding import repair_onboarding_tasks
from actions.reminders import send_interview_reminders
from config import Config
from db import SessionLocal, init_engine


log = logging.getLogger("scheduler")


def make_celery() -> Celery:
    """
    Create and configure the Celery app with a Redis broker.

    Environment variables:
        REDIS_URL: Redis connection URL (default: redis://localhost:6379/0)
        CELERY_RESULT_BACKEND: Optional separate result backend
        REMINDER_SWEEP_SECONDS: Beat interval for interview reminders (default 300)
    """
    redis_url = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    result_backend = os.getenv("CELERY_RESULT_BACKEND", redis_url)

    app = Celery("hiring_core", broker=redis_url, backend=result_backend)
    app.conf.update(
        task_serializer="json",
        accept_content=["json"],
        result_serializer="json",
        timezone=os.getenv("APP_TIMEZONE", "America/New_York"),
        enable_utc=True,
        result_expires=86400,
        task_acks_late=True,
        task_reject_on_worker_lost=True,
        worker_prefetch_multiplier=1,
        worker_concurrency=int(os.getenv("CELERY_CONCURRENCY", "2")),
        task_default_retry_delay=60,
        beat_schedule={
            "interview-reminders": {
                "task": "tasks.send_interview_reminders_task",
                "schedule": float(os.getenv("REMINDER_SWEEP_SECONDS", "300")),
            },
        },
    )
    return app


celery_app = make_celery()

_cfg: Config | None = None


def _job_config() -> Config:
    """Workers run without the Flask app; bind the engine on first use."""
    global _cfg
    if _cfg is None:
        load_dotenv()
        cfg = Config()
        cfg.validate()
        init_engine(cfg.DATABASE_URL)
        _cfg = cfg
    return _cfg


def reset_job_config() -> None:
    global _cfg
    _cfg = None


@celery_app.task(bind=True, max_retries=3, default_retry_delay=30)
def send_interview_reminders_task(self):
    cfg = _job_config()
    db = SessionLocal()
    try:
        out = send_interview_reminders(db, cfg)
        db.commit()
    except Exception as e:
        db.rollback()
        log.exception("reminder task failed task_id=%s", self.request.id)
        raise self.retry(exc=e)
    finally:
        db.close()
    return {"task_id": self.request.id, **out}


@celery_app.task(bind=True)
def repair_onboarding_tasks_task(self):
    _job_config()
    db = SessionLocal()
    try:
        out = repair_onboarding_tasks(db)
        db.commit()
    except Exception:
        db.rollback()
        log.exception("onboarding repair task failed task_id=%s", self.request.id)
        raise
    finally:
        db.close()
    log.info("onboarding repair repaired=%s total=%s", out["repairedCount"], out["totalCount"])
    return {"task_id": self.request.id, **out}
