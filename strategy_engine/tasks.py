"""Simulation tasks - request/response boundary for background Monte Carlo runs.

A SimulationRunner stamps each request with a monotonically increasing
sequence number and runs it on a concurrent.futures executor. Inputs are
copied into the task (frozen request) and outputs come back as an immutable
SimulationResponse carrying either a result or an error message.

A newer submission makes every older one stale: `runner.accept(response)`
hands back the result only for the latest sequence number. Runs are never
interrupted once started; `handle.cancel()` only drops work still queued.

Author: Options Strategy Lab
Created: 2025-11-15
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Optional

from .models import MarketParams, SimulationResult
from .monte_carlo import simulate

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SimulationRequest:
    """Inputs of one simulation run (copied into the task)."""

    spot: float
    volatility: float
    risk_free_rate: float
    horizon_years: float
    path_count: Optional[int] = None
    step_count: Optional[int] = None
    seed: Optional[int] = None
    dividend_yield: float = 0.0

    @classmethod
    def from_market(cls, market: MarketParams, path_count: Optional[int] = None,
                    step_count: Optional[int] = None,
                    seed: Optional[int] = None) -> "SimulationRequest":
        return cls(
            spot=market.spot,
            volatility=market.volatility,
            risk_free_rate=market.risk_free_rate,
            horizon_years=market.time_horizon_years,
            path_count=path_count,
            step_count=step_count,
            seed=seed,
            dividend_yield=market.dividend_yield,
        )

    def run(self) -> SimulationResult:
        return simulate(
            self.spot,
            self.volatility,
            self.risk_free_rate,
            self.horizon_years,
            path_count=self.path_count,
            step_count=self.step_count,
            seed=self.seed,
            dividend_yield=self.dividend_yield,
        )


@dataclass(frozen=True)
class SimulationResponse:
    """Outcome of one run: exactly one of `result` / `error` is set."""

    sequence: int
    result: Optional[SimulationResult] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def run_request(sequence: int, request: SimulationRequest) -> SimulationResponse:
    """Execute a request, turning any failure into an error payload."""
    try:
        return SimulationResponse(sequence=sequence, result=request.run())
    except Exception as e:
        logger.warning(f"Simulation #{sequence} failed: {e}")
        return SimulationResponse(sequence=sequence, error=f"{type(e).__name__}: {e}")


class SimulationHandle:
    """Future-backed handle returned by SimulationRunner.submit."""

    def __init__(self, runner: "SimulationRunner", sequence: int,
                 request: SimulationRequest, future: Future):
        self._runner = runner
        self.sequence = sequence
        self.request = request
        self._future = future

    def done(self) -> bool:
        return self._future.done()

    def cancel(self) -> bool:
        """Drop the run if it has not started yet. Running work always completes."""
        return self._future.cancel()

    def cancelled(self) -> bool:
        return self._future.cancelled()

    def response(self, timeout: Optional[float] = None) -> SimulationResponse:
        """Block until the run finishes (raises CancelledError if it was cancelled)."""
        return self._future.result(timeout=timeout)

    def is_stale(self) -> bool:
        return not self._runner.is_current(self.sequence)

    def add_done_callback(self, fn) -> None:
        """Call fn(response) when the run completes (skipped when cancelled)."""

        def _forward(future: Future):
            if not future.cancelled():
                fn(future.result())

        self._future.add_done_callback(_forward)


class SimulationRunner:
    """Submits simulation requests to an executor and tracks the newest one."""

    def __init__(self, executor: Optional[Executor] = None, max_workers: int = 1):
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="mc-sim"
        )
        self._lock = threading.Lock()
        self._latest = 0

    @property
    def latest_sequence(self) -> int:
        with self._lock:
            return self._latest

    def submit(self, request: SimulationRequest) -> SimulationHandle:
        with self._lock:
            self._latest += 1
            sequence = self._latest
        future = self._executor.submit(run_request, sequence, request)
        return SimulationHandle(self, sequence, request, future)

    def is_current(self, sequence: int) -> bool:
        return sequence == self.latest_sequence

    def accept(self, response: SimulationResponse) -> Optional[SimulationResult]:
        """Result of `response` if it is the newest and succeeded; None otherwise."""
        if not self.is_current(response.sequence):
            logger.debug(
                f"Discarding stale simulation #{response.sequence} "
                f"(latest #{self.latest_sequence})"
            )
            return None
        return response.result if response.ok else None

    def shutdown(self, wait: bool = True) -> None:
        if self._owns_executor:
            self._executor.shutdown(wait=wait)

    def __enter__(self) -> "SimulationRunner":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown(wait=True)
