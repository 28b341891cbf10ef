"""
Central Celery application object for the stock engine.

Usage
-----
* **Worker**: ``celery -A stockroom.core.celery_app worker --loglevel=info -Q default,stock``
* **Beat (scheduled jobs)**: ``celery -A stockroom.core.celery_app beat --loglevel=info``

Broker/result backend come from :mod:`stockroom.core.config`
(``CELERY_BROKER_URL`` / ``CELERY_RESULT_BACKEND``, falling back to
``REDIS_URL``).
"""

from __future__ import annotations

from datetime import timedelta

from celery import Celery
from kombu import Exchange, Queue

from stockroom.core.config import settings

# --------------------------------------------------------------------------- #
# Celery application                                                          #
# --------------------------------------------------------------------------- #

celery_app = Celery(
    "stockroom",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=[
        "stockroom.services.low_stock",
    ],
)

# --------------------------------------------------------------------------- #
# Default settings                                                            #
# --------------------------------------------------------------------------- #

celery_app.conf.update(
    # Serialisation
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    # Reliability
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    # Time
    timezone=settings.timezone,
    enable_utc=True,
    # Queues / routing
    task_default_queue="default",
    task_default_exchange="default",
    task_default_routing_key="default",
    task_queues=(
        Queue("default", Exchange("default"), routing_key="default"),
        Queue("stock", Exchange("stock"), routing_key="stock"),
    ),
    task_routes={"stock.*": {"queue": "stock"}},
    # Result expiry
    result_expires=timedelta(hours=6),
    # Periodic low-stock sweep; one entry covers every tenant
    beat_schedule={
        "low-stock-sweep": {
            "task": "stock.low_stock_sweep",
            "schedule": timedelta(seconds=settings.low_stock_scan_interval_s),
        },
    },
)

# --------------------------------------------------------------------------- #
# Helper for FastAPI integration                                              #
# --------------------------------------------------------------------------- #


def init_celery() -> None:  # called from the FastAPI lifespan
    """Import the task modules so ``apply_async`` works from the API process."""
    from importlib import import_module

    for module in celery_app.conf.include:
        import_module(module)
