# Overview: Fire-and-forget background work outside the request transaction.

"""
BackgroundTaskRunner runs best-effort follow-up work (e.g. product rating
recomputation) on a small thread pool. Each task gets its own application
context and database session. Failures are logged and never reach the
request that submitted the task.

With synchronous=True (tests, CLI) tasks run inline before submit() returns,
still in a fresh application context so a failure never rolls back the
caller's session. The pool is shut down at interpreter exit.
"""

from __future__ import annotations

import atexit
import logging
from concurrent.futures import Future, ThreadPoolExecutor

from flask import Flask, current_app

from ..extensions import db

logger = logging.getLogger(__name__)


class BackgroundTaskRunner:
    def __init__(self, app: Flask, max_workers: int = 2, synchronous: bool = False):
        self._app = app
        self._synchronous = synchronous
        self._executor = None if synchronous else ThreadPoolExecutor(
            max_workers=max(1, int(max_workers)),
            thread_name_prefix="canteen-bg",
        )
        if self._executor is not None:
            atexit.register(self.shutdown)

    @property
    def synchronous(self) -> bool:
        return self._synchronous

    def submit(self, name: str, fn, *args, **kwargs) -> Future | None:
        if self._synchronous:
            self._run(name, fn, args, kwargs)
            return None
        return self._executor.submit(self._run, name, fn, args, kwargs)

    def _run(self, name: str, fn, args, kwargs) -> None:
        with self._app.app_context():
            try:
                fn(*args, **kwargs)
            except Exception:
                db.session.rollback()
                logger.exception("Background task %s failed", name)
            finally:
                db.session.remove()

    def shutdown(self, wait: bool = True) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=wait)


def get_runner() -> BackgroundTaskRunner:
    return current_app.extensions["background_tasks"]
