"""
CSI Portal
Scheduler Service.

Lightweight background job runner built on a single daemon thread: every
``SCHEDULER_INTERVAL_SECONDS`` it runs each registered job inside the
Flask app context. Jobs can also be triggered manually via the API or the
``flask process-scheduled`` command.

Architecture:
    - register_job: decorator that adds a job function to the registry
    - SchedulerService: init, start/stop of the polling thread, run_job
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable

from flask import Flask

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  Job Registry
# ═══════════════════════════════════════════════════════════════════════════

_job_registry: dict[str, Callable] = {}


def register_job(name: str):
    """Decorator to register a job function.

    Usage:
        @register_job("scheduled_operations")
        def process_scheduled_operations(app):
            ...
    """
    def decorator(fn: Callable) -> Callable:
        _job_registry[name] = fn
        return fn
    return decorator


def get_registered_jobs() -> dict[str, Callable]:
    """Return all registered job functions."""
    return dict(_job_registry)


class SchedulerService:
    """
    Periodic job runner.

    One polling thread per process. Jobs execute serially within the Flask
    app context; a failing job is logged and does not stop the loop.
    """

    _app: Flask | None = None
    _thread: threading.Thread | None = None
    _stop_event: threading.Event | None = None
    _interval: float = 60.0

    @classmethod
    def init_app(cls, app: Flask) -> None:
        """Initialize scheduler with Flask app context."""
        cls._app = app
        cls._interval = float(app.config.get("SCHEDULER_INTERVAL_SECONDS", 60))
        app.extensions["scheduler"] = cls
        logger.info("SchedulerService initialized with %d registered jobs",
                    len(_job_registry))

    @classmethod
    def is_scheduled(cls) -> bool:
        return cls._thread is not None and cls._thread.is_alive()

    @classmethod
    def start(cls) -> bool:
        """Start the polling thread. Returns False if already running."""
        if cls._app is None:
            raise RuntimeError("SchedulerService.init_app() must be called first")
        if cls.is_scheduled():
            return False

        cls._stop_event = threading.Event()
        cls._thread = threading.Thread(
            target=cls._loop, args=(cls._stop_event,),
            name="csi-scheduler", daemon=True,
        )
        cls._thread.start()
        logger.info("Scheduler started (interval %.0fs)", cls._interval)
        return True

    @classmethod
    def stop(cls, timeout: float = 5.0) -> None:
        if cls._stop_event is not None:
            cls._stop_event.set()
        if cls._thread is not None:
            cls._thread.join(timeout=timeout)
        cls._thread = None
        cls._stop_event = None
        logger.info("Scheduler stopped")

    @classmethod
    def _loop(cls, stop_event: threading.Event) -> None:
        while not stop_event.wait(cls._interval):
            for job_name in list(_job_registry):
                cls.run_job(job_name)

    @classmethod
    def run_job(cls, job_name: str) -> dict:
        """
        Execute a single job by name.

        Returns:
            Dict with status, duration_ms, result or error.
        """
        fn = _job_registry.get(job_name)
        if not fn:
            return {"job_name": job_name, "status": "error", "error": f"Unknown job: {job_name}"}

        if not cls._app:
            return {"job_name": job_name, "status": "error", "error": "Scheduler not initialized"}

        start = time.monotonic()
        result = None
        error = None
        status = "success"

        try:
            with cls._app.app_context():
                result = fn(cls._app)
        except Exception as exc:
            status = "failed"
            error = str(exc)
            logger.exception("Job %s failed: %s", job_name, exc)

        duration_ms = int((time.monotonic() - start) * 1000)
        return {
            "job_name": job_name,
            "status": status,
            "duration_ms": duration_ms,
            "result": result,
            "error": error,
        }

    @classmethod
    def list_jobs(cls) -> list[str]:
        return sorted(_job_registry)
