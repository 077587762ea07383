"""Tests for background simulation tasks and stale-result handling."""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from strategy_engine.models import MarketParams, SimulationResult
from strategy_engine.tasks import (
    SimulationRequest,
    SimulationResponse,
    SimulationRunner,
    run_request,
)


def small_request(**overrides):
    params = dict(spot=100.0, volatility=0.2, risk_free_rate=0.05, horizon_years=0.5,
                  path_count=200, step_count=5, seed=42)
    params.update(overrides)
    return SimulationRequest(**params)


def test_request_runs_simulation():
    result = small_request().run()
    assert isinstance(result, SimulationResult)
    assert result.path_count == 200


def test_request_from_market():
    market = MarketParams(spot=50.0, risk_free_rate=0.02, dividend_yield=0.01,
                          volatility=0.3, time_horizon_years=0.25)
    request = SimulationRequest.from_market(market, path_count=100, seed=9)
    assert request.spot == 50.0
    assert request.horizon_years == 0.25
    assert request.dividend_yield == 0.01
    assert request.path_count == 100


def test_failures_become_error_payloads():
    response = run_request(3, small_request(spot=-1.0))
    assert not response.ok
    assert response.result is None
    assert "InvalidInput" in response.error
    assert response.sequence == 3


def test_sequence_numbers_increase():
    with SimulationRunner() as runner:
        handles = [runner.submit(small_request(seed=s)) for s in range(3)]
        assert [h.sequence for h in handles] == [1, 2, 3]
        assert runner.latest_sequence == 3
        for h in handles:
            assert h.response(timeout=30).ok


def test_only_latest_response_is_accepted():
    with SimulationRunner() as runner:
        first = runner.submit(small_request(seed=1))
        second = runner.submit(small_request(seed=2))
        old = first.response(timeout=30)
        new = second.response(timeout=30)
        assert first.is_stale()
        assert not second.is_stale()
        assert runner.accept(old) is None
        assert runner.accept(new) == new.result
        assert runner.accept(new) == small_request(seed=2).run()


def test_failed_latest_response_is_not_accepted():
    with SimulationRunner() as runner:
        handle = runner.submit(small_request(volatility="abc"))
        response = handle.response(timeout=30)
        assert not response.ok
        assert runner.accept(response) is None


def test_stale_response_object_is_discarded():
    runner = SimulationRunner()
    try:
        runner.submit(small_request())
        fake = SimulationResponse(sequence=0, result=SimulationResult(1.0, 1.0, 1.0, 1))
        assert runner.accept(fake) is None
    finally:
        runner.shutdown()


def test_done_callback_receives_response():
    received = []
    event = threading.Event()

    def on_done(response):
        received.append(response)
        event.set()

    with SimulationRunner() as runner:
        handle = runner.submit(small_request())
        handle.add_done_callback(on_done)
        assert event.wait(timeout=30)
    assert received[0].sequence == handle.sequence
    assert handle.done()


def test_queued_work_can_be_cancelled():
    gate = threading.Event()
    executor = ThreadPoolExecutor(max_workers=1)
    try:
        executor.submit(gate.wait, 30)  # occupy the only worker
        runner = SimulationRunner(executor=executor)
        handle = runner.submit(small_request())
        assert handle.cancel()
        assert handle.cancelled()
        gate.set()
        # runner does not own the executor
        runner.shutdown()
        assert executor.submit(sum, [1, 2]).result(timeout=30) == 3
    finally:
        gate.set()
        executor.shutdown(wait=True)


def test_request_is_immutable():
    request = small_request()
    with pytest.raises(AttributeError):
        request.spot = 1.0
