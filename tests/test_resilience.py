import threading
import time

import pytest

from changedesk.services.resilience import ResilientExecutor, resilient_call


@pytest.fixture
def executor():
    executor = ResilientExecutor(max_workers=2, default_timeout=1.0)
    yield executor
    executor.shutdown()


def test_returns_value_when_operation_is_fast(executor):
    outcome = executor.call(lambda: 42, timeout=1.0, fallback=0)
    assert outcome.value == 42
    assert not outcome.degraded


def test_timeout_returns_fallback_without_waiting_for_operation(executor):
    release = threading.Event()

    def slow():
        release.wait(5)
        return 'late'

    started = time.monotonic()
    outcome = executor.call(slow, timeout=0.1, fallback='fallback')
    elapsed = time.monotonic() - started
    release.set()

    assert outcome.value == 'fallback'
    assert outcome.degraded
    assert outcome.reason == 'timeout'
    assert elapsed < 2


def test_callable_fallback_is_built_on_demand(executor):
    calls = []

    def fallback():
        calls.append(1)
        return []

    assert executor.call(lambda: ['x'], fallback=fallback).value == ['x']
    assert calls == []
    outcome = executor.call(lambda: time.sleep(0.5), timeout=0.05, fallback=fallback)
    assert outcome.value == []
    assert calls == [1]


def test_listed_errors_degrade_to_fallback(executor):
    def broken():
        raise ConnectionError('backend down')

    outcome = executor.call(broken, fallback=None, fallback_on=(ConnectionError,))
    assert outcome.value is None
    assert outcome.reason == 'error'


def test_other_errors_propagate(executor):
    def broken():
        raise KeyError('boom')

    with pytest.raises(KeyError):
        executor.call(broken, fallback=None, fallback_on=(ConnectionError,))


def test_resilient_call_runs_inside_an_app_context(app):
    from flask import current_app

    with app.app_context():
        outcome = resilient_call(lambda: current_app.config['INSTITUTION_DOMAIN'], timeout=1.0)
    assert outcome.value == 'inst.edu'
