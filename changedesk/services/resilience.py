"""
Bounded waits on the backend.

``ResilientExecutor.call(operation, timeout, fallback)`` runs ``operation`` on
a shared worker pool and waits at most ``timeout`` seconds. On expiry the
caller gets ``fallback`` and the worker is left to finish on its own; nothing
is retried. Exceptions listed in ``fallback_on`` also produce the fallback,
any other exception propagates to the caller.
"""
import logging
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from dataclasses import dataclass
from typing import Any

from flask import current_app

logger = logging.getLogger(__name__)


@dataclass
class CallOutcome:
    value: Any
    degraded: bool = False
    reason: str = ''


class ResilientExecutor:

    def __init__(self, max_workers=8, default_timeout=4.0):
        self.default_timeout = default_timeout
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix='resilient')

    def call(self, operation, timeout=None, fallback=None, fallback_on=(), label=None) -> CallOutcome:
        """Run ``operation()`` with a bounded wait. ``fallback`` may be a value or a callable."""
        timeout = self.default_timeout if timeout is None else timeout
        label = label or getattr(operation, '__name__', 'operation')
        future = self._pool.submit(operation)
        try:
            return CallOutcome(future.result(timeout=timeout))
        except FutureTimeout:
            logger.warning('%s did not answer within %.1fs, using fallback', label, timeout)
            return CallOutcome(_fallback_value(fallback), degraded=True, reason='timeout')
        except fallback_on as exc:
            logger.warning('%s failed (%s), using fallback', label, exc)
            return CallOutcome(_fallback_value(fallback), degraded=True, reason='error')

    def shutdown(self):
        self._pool.shutdown(wait=False, cancel_futures=True)


def _fallback_value(fallback):
    return fallback() if callable(fallback) else fallback


def in_app_context(operation, app=None):
    """Wrap ``operation`` so it runs inside its own application context on a worker thread."""
    app = app or current_app._get_current_object()

    def run():
        with app.app_context():
            return operation()

    run.__name__ = getattr(operation, '__name__', 'operation')
    return run


def resilient_call(operation, timeout=None, fallback=None, fallback_on=(), label=None) -> CallOutcome:
    """Run a store operation through the app's executor, in its own application context."""
    executor = current_app.extensions['resilient_executor']
    return executor.call(
        in_app_context(operation),
        timeout=timeout,
        fallback=fallback,
        fallback_on=fallback_on,
        label=label or getattr(operation, '__name__', None),
    )
