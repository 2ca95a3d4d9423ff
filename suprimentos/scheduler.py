from __future__ import annotations

import logging
import os
import threading
import time
import uuid

from flask import Flask

from suprimentos.observability import bind_request_id


logger = logging.getLogger("suprimentos.scheduler")


class ReplyPollingScheduler:
    """Consulta periodica do repositorio remoto como reserva da assinatura de snapshots."""

    def __init__(self, app: Flask, listener) -> None:
        self.app = app
        self.listener = listener
        self.interval_seconds = _int_config(app, "REPLY_POLL_INTERVAL_SECONDS", 60, 5, 3600)
        self.min_backoff_seconds = _int_config(app, "REPLY_POLL_MIN_BACKOFF_SECONDS", 30, 5, 3600)
        self.max_backoff_seconds = _int_config(
            app,
            "REPLY_POLL_MAX_BACKOFF_SECONDS",
            600,
            self.min_backoff_seconds,
            86_400,
        )

        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._failure_count = 0
        self._next_run_at: float | None = None

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run_loop, name="reply-poller", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            self.run_once()
            self._stop_event.wait(self.interval_seconds)

    def run_once(self) -> bool:
        if not self._is_due():
            return False
        with self.app.app_context(), bind_request_id(f"reply-poll-{uuid.uuid4().hex[:12]}"):
            try:
                self.listener.poll_once()
            except Exception as exc:  # noqa: BLE001 - o proximo ciclo tenta de novo com backoff
                self._register_failure()
                logger.warning(
                    "reply_poll_failed",
                    extra={"failures": self._failure_count, "details": str(exc)[:200]},
                )
                return False
        self._clear_backoff()
        return True

    def _is_due(self) -> bool:
        if self._next_run_at is None:
            return True
        return time.monotonic() >= self._next_run_at

    def _clear_backoff(self) -> None:
        self._failure_count = 0
        self._next_run_at = None

    def _register_failure(self) -> None:
        self._failure_count += 1
        backoff_seconds = min(
            self.max_backoff_seconds,
            self.min_backoff_seconds * (2 ** (self._failure_count - 1)),
        )
        self._next_run_at = time.monotonic() + backoff_seconds


def start_reply_scheduler(app: Flask, listener) -> ReplyPollingScheduler | None:
    if not _should_start_scheduler(app):
        return None
    scheduler = ReplyPollingScheduler(app, listener)
    scheduler.start()
    app.extensions["reply_scheduler"] = scheduler
    app.logger.info("Reply poller started: interval=%ss", scheduler.interval_seconds)
    return scheduler


def _should_start_scheduler(app: Flask) -> bool:
    if not app.config.get("REPLY_POLL_ENABLED", False):
        return False
    if app.config.get("TESTING"):
        return False
    if app.debug:
        run_main = os.environ.get("WERKZEUG_RUN_MAIN")
        if run_main and run_main.lower() != "true":
            return False
    return True


def _int_config(app: Flask, key: str, default: int, min_value: int, max_value: int) -> int:
    try:
        value = int(app.config.get(key, default))
    except (TypeError, ValueError):
        value = default
    return max(min_value, min(value, max_value))
