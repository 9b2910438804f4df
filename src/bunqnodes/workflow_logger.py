"""
Run-level logging for node executions and webhook deliveries.

A WorkflowSession brackets one run: it logs when the run starts and ends,
counts processed and failed items, and writes a summary of everything that
went wrong.
"""
import functools
import inspect
import logging
import time
from typing import Callable, List, Optional

from .logging_config import setup_session_logger


class WorkflowSession:
    """
    Usage:
        with WorkflowSession("bunq payment.list") as run:
            for i, item in enumerate(items):
                ...
                run.item_done()
    """

    def __init__(self, name: str = "Workflow", logger: Optional[logging.Logger] = None):
        self.name = name
        self.log = logger or setup_session_logger()
        self.started_at: Optional[float] = None
        self.finished_at: Optional[float] = None
        self.items_done = 0
        self.errors: List[str] = []
        self.warnings: List[str] = []

    @property
    def duration(self) -> float:
        if self.started_at is None:
            return 0.0
        return (self.finished_at or time.monotonic()) - self.started_at

    def _start(self, suffix: str = "") -> None:
        self.started_at = time.monotonic()
        self.log.info("run %s started%s", self.name, suffix)

    def _stop(self, exc_type, exc_val, exc_tb) -> None:
        self.finished_at = time.monotonic()
        if exc_type is None:
            self.log.info("run %s finished in %.2fs (%d items)", self.name, self.duration, self.items_done)
        else:
            self.errors.append(f"{exc_type.__name__}: {exc_val}")
            self.log.error("run %s aborted after %.2fs: %s", self.name, self.duration, exc_val,
                           exc_info=(exc_type, exc_val, exc_tb))
        self._summary()

    def __enter__(self):
        self._start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self._stop(exc_type, exc_val, exc_tb)
        return False

    def item_done(self) -> None:
        self.items_done += 1

    def log_event(self, message: str, level: str = "info") -> None:
        level = level.lower()
        getattr(self.log, level, self.log.info)("  %s", message)
        if level == "error":
            self.errors.append(message)
        elif level == "warning":
            self.warnings.append(message)

    def _summary(self) -> None:
        if not (self.errors or self.warnings):
            return
        self.log.warning("run %s: %d errors, %d warnings", self.name, len(self.errors), len(self.warnings))
        for line in self.errors:
            self.log.warning("  error: %s", line)
        for line in self.warnings:
            self.log.warning("  warning: %s", line)


class AsyncWorkflowSession(WorkflowSession):
    """Same bookkeeping for coroutines (the webhook receiver)."""

    async def __aenter__(self):
        self._start(" (async)")
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        self._stop(exc_type, exc_val, exc_tb)
        return False


def log_workflow(func: Callable) -> Callable:
    """
    Log start, completion time and failure of a sync or async function.
    Arguments are not logged, they may hold credentials.
    """
    log = logging.getLogger(func.__module__)

    def finished(started: float) -> None:
        log.info("%s done in %.2fs", func.__name__, time.monotonic() - started)

    def failed(started: float, e: Exception) -> None:
        log.error("%s failed after %.2fs: %s", func.__name__, time.monotonic() - started, e, exc_info=True)

    if inspect.iscoroutinefunction(func):
        @functools.wraps(func)
        async def run_async(*args, **kwargs):
            log.info("%s starting", func.__name__)
            started = time.monotonic()
            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                failed(started, e)
                raise
            finished(started)
            return result
        return run_async

    @functools.wraps(func)
    def run(*args, **kwargs):
        log.info("%s starting", func.__name__)
        started = time.monotonic()
        try:
            result = func(*args, **kwargs)
        except Exception as e:
            failed(started, e)
            raise
        finished(started)
        return result
    return run
