"""Monte Carlo runner.

Drives N independent evaluations of one scenario and aggregates the results.

Randomness:
- Serial mode shares one RandomSource stream across iterations; the source
  is never reseeded per iteration.
- Parallel mode (max_workers > 1) splits the run into fixed-size chunks;
  chunk i draws from RandomSource.spawn(i). Chunk layout depends only on
  the iteration count and chunk size, so a seeded parallel run gives the
  same results for any number of workers.

Failure policy (see simforge.config.FailurePolicy):
- SKIP records each failed iteration and keeps going; the failure count is
  always reported. A run in which every iteration fails raises
  SimulationAbortedError.
- ABORT raises SimulationAbortedError at the first failure, carrying the
  partial results with failed_iterations == 1.
Configuration errors (missing return, missing outputs) are always fatal.

Usage:
    runner = MonteCarloRunner(config)
    results = runner.run(overrides={"investment": 5000}, iterations=1000, seed=42)
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import FIRST_COMPLETED, ProcessPoolExecutor, wait
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional

from simforge.config import EngineSettings, FailurePolicy
from simforge.engine.evaluator import ScenarioEvaluator
from simforge.engine.random_source import RandomSource, derive_seed
from simforge.engine.statistics import summarize_columns, tally_columns
from simforge.errors import (
    EvaluationError,
    InvalidIterationCountError,
    SimulationAbortedError,
)
from simforge.models.parameters import resolve_values
from simforge.models.results import (
    IterationFailure,
    IterationResult,
    RunStatus,
    SimulationResults,
)
from simforge.models.scenario import ScenarioConfig

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float, int], None]
"""on_progress(fraction_done, iteration_index) with a 0-based index."""

SAMPLE_STREAM = -1
"""Sub-stream index of the reservoir sampler (chunks use 0, 1, 2, ...)."""

CANCEL_POLL_INTERVAL = 0.05
"""Seconds between cancellation checks while waiting on worker chunks."""


class CancellationToken:
    """Thread-safe cancellation flag checked by the runner between iterations.

    Usage:
        token = CancellationToken()
        threading.Timer(5.0, token.cancel).start()
        results = run_simulation(config, cancel_token=token)
        if results.status == RunStatus.CANCELLED: ...
    """

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        """Request cancellation."""
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


def validate_iterations(iterations: Any) -> int:
    """Return iterations if it is a positive integer.

    Raises:
        InvalidIterationCountError: For 0, negatives, bools and non-integers
    """
    if isinstance(iterations, bool) or not isinstance(iterations, int) or iterations <= 0:
        raise InvalidIterationCountError(iterations)
    return iterations


@dataclass(frozen=True)
class Chunk:
    """A contiguous block of iterations with its own random sub-stream."""

    index: int
    start: int
    count: int
    seed: int


def plan_chunks(iterations: int, chunk_size: int, seed: int) -> list[Chunk]:
    """Split iterations into fixed-size chunks seeded from `seed`."""
    if chunk_size <= 0:
        raise ValueError(f"chunk_size must be positive, got {chunk_size}")
    chunks = []
    for index, start in enumerate(range(0, iterations, chunk_size)):
        chunks.append(
            Chunk(
                index=index,
                start=start,
                count=min(chunk_size, iterations - start),
                seed=derive_seed(seed, index),
            )
        )
    return chunks


class _Collector:
    """Accumulates iteration outcomes for one run.

    Every value is kept per output key for statistics. Whole iteration
    results are kept either all, or as a reservoir sample drawn with its
    own random stream.
    """

    def __init__(self, retain: bool, sample_size: int, sample_source: RandomSource):
        self.retain = retain
        self.sample_size = sample_size
        self.sample_source = sample_source
        self.columns: dict[str, list[Any]] = {}
        self.results: list[IterationResult] = []
        self.failures: list[IterationFailure] = []
        self.completed = 0

    def add(self, result: IterationResult) -> None:
        self.completed += 1
        for key, value in result.items():
            self.columns.setdefault(key, []).append(value)
        if self.retain or len(self.results) < self.sample_size:
            self.results.append(result)
            return
        slot = int(self.sample_source.random() * self.completed)
        if slot < self.sample_size:
            self.results[slot] = result

    def fail(self, failure: IterationFailure) -> None:
        self.failures.append(failure)


def _failure(iteration: int, error: EvaluationError) -> IterationFailure:
    return IterationFailure(iteration=iteration, error_type=type(error).__name__, message=str(error))


def _run_chunk(args: tuple) -> dict:
    """Worker function for running one chunk in a subprocess.

    Args:
        args: Tuple of (config, values, chunk, max_steps, iteration_timeout,
            stop_on_failure)

    Returns:
        {"index", "results", "failures"} with failures as IterationFailure
    """
    config, values, chunk, max_steps, iteration_timeout, stop_on_failure = args

    evaluator = ScenarioEvaluator(config, max_steps=max_steps, timeout=iteration_timeout)
    source = RandomSource(chunk.seed)
    results: list[IterationResult] = []
    failures: list[IterationFailure] = []

    for iteration in range(chunk.start, chunk.start + chunk.count):
        try:
            result = evaluator.evaluate(values, source, iteration=iteration)
        except EvaluationError as exc:
            failures.append(_failure(iteration, exc))
            if stop_on_failure:
                break
            continue
        evaluator.check_outputs(result, iteration=iteration)
        results.append(result)

    return {"index": chunk.index, "results": results, "failures": failures}


def _stop_executor(executor: ProcessPoolExecutor) -> None:
    """Shut down a pool without waiting and terminate workers still running chunks."""
    workers = list(executor._processes.values()) if executor._processes else []
    executor.shutdown(wait=False, cancel_futures=True)
    for process in workers:
        if process.is_alive():
            process.terminate()
    logger.debug(f"Stopped worker pool ({len(workers)} workers)")


class MonteCarloRunner:
    """Runs a ScenarioConfig many times and aggregates the outputs.

    A runner holds no state between runs; each run() owns its random
    source exclusively for its duration.

    Args:
        config: Validated configuration
        settings: Engine settings (default: EngineSettings.from_env())
    """

    def __init__(self, config: ScenarioConfig, settings: Optional[EngineSettings] = None):
        self.config = config
        self.settings = settings if settings is not None else EngineSettings.from_env()

    def run(
        self,
        overrides: Optional[Mapping[str, Any]] = None,
        iterations: int = 1000,
        on_progress: Optional[ProgressCallback] = None,
        *,
        seed: Optional[int] = None,
        random_source: Optional[RandomSource] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> SimulationResults:
        """Run the simulation.

        Args:
            overrides: {parameter_key: value} replacing defaults
            iterations: Number of iterations (positive integer)
            on_progress: Called every progress_interval iterations and
                after the last one
            seed: Seed for a new RandomSource (ignored if random_source given)
            random_source: Source to draw from; owned by this run
            cancel_token: Checked between iterations

        Returns:
            SimulationResults; check .status for cancelled / timed-out runs

        Raises:
            InvalidIterationCountError: iterations is not a positive integer
            ParameterError: An override is invalid (before any iteration)
            ScenarioSyntaxError, ForbiddenConstructError: The calculation
                is rejected (before any iteration)
            MissingReturnError, OutputMismatchError: The calculation does
                not produce the declared outputs
            SimulationAbortedError: ABORT policy hit a failure, or every
                iteration failed
        """
        validate_iterations(iterations)
        values = resolve_values(self.config.effective_parameters(), overrides)
        evaluator = ScenarioEvaluator(
            self.config,
            max_steps=self.settings.max_steps,
            timeout=self.settings.iteration_timeout,
        )
        source = random_source if random_source is not None else RandomSource(seed)
        collector = _Collector(
            retain=self.settings.retain_results,
            sample_size=self.settings.sample_size,
            sample_source=source.spawn(SAMPLE_STREAM),
        )

        parallel = self.settings.max_workers > 1
        mode = f"{self.settings.max_workers} workers" if parallel else "serial"
        logger.info(
            f"Running '{self.config.name}': {iterations} iterations ({mode}, seed={source.seed})"
        )

        start = time.monotonic()
        if parallel:
            status = self._run_parallel(
                evaluator, values, iterations, source, collector, on_progress, cancel_token, start
            )
        else:
            status = self._run_serial(evaluator, values, iterations, source, collector, on_progress, cancel_token, start)

        results = self._build_results(collector, iterations, status, source, values, start)

        if status == RunStatus.ABORTED:
            first = collector.failures[0]
            raise SimulationAbortedError(
                f"Run aborted at iteration {first.iteration}: {first.message}",
                iteration=first.iteration,
                results=results,
            )
        if collector.completed == 0 and collector.failures:
            first = collector.failures[0]
            raise SimulationAbortedError(
                f"All {len(collector.failures)} attempted iterations failed; first failure: {first.message}",
                iteration=first.iteration,
                results=results,
            )

        logger.info(
            f"Finished '{self.config.name}': {results.completed_iterations}/{iterations} iterations "
            f"in {results.duration_ms:.1f}ms ({status.value}, {results.failed_iterations} failed)"
        )
        return results

    # ------------------------------------------------------------------
    # Serial execution
    # ------------------------------------------------------------------

    def _run_serial(
        self,
        evaluator: ScenarioEvaluator,
        values: dict[str, Any],
        iterations: int,
        source: RandomSource,
        collector: _Collector,
        on_progress: Optional[ProgressCallback],
        cancel_token: Optional[CancellationToken],
        start: float,
    ) -> RunStatus:
        interval = self.settings.progress_interval
        for iteration in range(iterations):
            stopped = self._check_stop(cancel_token, start, iteration)
            if stopped is not None:
                return stopped

            try:
                result = evaluator.evaluate(values, source, iteration=iteration)
            except EvaluationError as exc:
                collector.fail(_failure(iteration, exc))
                if self.settings.failure_policy == FailurePolicy.ABORT:
                    logger.warning(f"Aborting '{self.config.name}' at iteration {iteration}: {exc}")
                    return RunStatus.ABORTED
                logger.warning(f"Skipping failed iteration {iteration}: {exc}")
            else:
                evaluator.check_outputs(result, iteration=iteration)
                collector.add(result)

            done = iteration + 1
            if on_progress is not None and (done % interval == 0 or done == iterations):
                on_progress(done / iterations, iteration)

        return RunStatus.COMPLETED

    def _check_stop(
        self,
        cancel_token: Optional[CancellationToken],
        start: float,
        iteration: int,
    ) -> Optional[RunStatus]:
        if cancel_token is not None and cancel_token.cancelled:
            logger.warning(f"Run of '{self.config.name}' cancelled after {iteration} iterations")
            return RunStatus.CANCELLED
        run_timeout = self.settings.run_timeout
        if run_timeout is not None and time.monotonic() - start > run_timeout:
            logger.warning(
                f"Run of '{self.config.name}' timed out after {iteration} iterations ({run_timeout}s budget)"
            )
            return RunStatus.TIMED_OUT
        return None

    # ------------------------------------------------------------------
    # Parallel execution
    # ------------------------------------------------------------------

    def _run_parallel(
        self,
        evaluator: ScenarioEvaluator,
        values: dict[str, Any],
        iterations: int,
        source: RandomSource,
        collector: _Collector,
        on_progress: Optional[ProgressCallback],
        cancel_token: Optional[CancellationToken],
        start: float,
    ) -> RunStatus:
        """Run chunks in worker processes and merge them in chunk order.

        Cancellation and the run timeout are checked whenever a chunk
        finishes and every CANCEL_POLL_INTERVAL seconds in between. On a
        stop the pool is shut down without waiting and its workers are
        terminated; only chunks finished before the stop are counted.
        """
        chunks = plan_chunks(iterations, self.settings.chunk_size, source.seed)
        if len(chunks) == 1:
            # One chunk runs in-process on its own sub-stream.
            chunk_source = RandomSource(chunks[0].seed)
            return self._run_serial(
                evaluator, values, iterations, chunk_source, collector, on_progress, cancel_token, start
            )

        stop_on_failure = self.settings.failure_policy == FailurePolicy.ABORT
        chunk_args = [
            (
                self.config,
                values,
                chunk,
                self.settings.max_steps,
                self.settings.iteration_timeout,
                stop_on_failure,
            )
            for chunk in chunks
        ]

        finished: dict[int, dict] = {}
        status = RunStatus.COMPLETED
        done_iterations = 0
        executor = ProcessPoolExecutor(max_workers=self.settings.max_workers)
        pending = {}
        try:
            pending = {executor.submit(_run_chunk, args): chunk for args, chunk in zip(chunk_args, chunks)}
            while pending:
                done, _ = wait(pending, timeout=self._wait_timeout(cancel_token, start), return_when=FIRST_COMPLETED)

                for future in done:
                    chunk = pending.pop(future)
                    outcome = future.result()
                    finished[chunk.index] = outcome
                    done_iterations += chunk.count
                    if on_progress is not None:
                        on_progress(done_iterations / iterations, chunk.start + chunk.count - 1)
                    if stop_on_failure and outcome["failures"]:
                        status = RunStatus.ABORTED

                if status == RunStatus.COMPLETED and pending:
                    stopped = self._check_stop(cancel_token, start, done_iterations)
                    if stopped is not None:
                        status = stopped
                if status != RunStatus.COMPLETED:
                    break
        finally:
            if pending:
                _stop_executor(executor)
            else:
                executor.shutdown(wait=True)

        ordered = [finished[index] for index in sorted(finished)]
        if status == RunStatus.ABORTED:
            # Keep chunks up to and including the first failing one.
            first_failed = next(i for i, outcome in enumerate(ordered) if outcome["failures"])
            ordered = ordered[: first_failed + 1]
        for outcome in ordered:
            for result in outcome["results"]:
                collector.add(result)
            for failure in outcome["failures"]:
                collector.fail(failure)
                if status == RunStatus.ABORTED:
                    logger.warning(f"Aborting '{self.config.name}' at iteration {failure.iteration}: {failure.message}")
                else:
                    logger.warning(f"Skipped failed iteration {failure.iteration}: {failure.message}")
        return status

    def _wait_timeout(self, cancel_token: Optional[CancellationToken], start: float) -> Optional[float]:
        timeout = None
        if self.settings.run_timeout is not None:
            timeout = max(self.settings.run_timeout - (time.monotonic() - start), 0.0)
        if cancel_token is not None:
            timeout = CANCEL_POLL_INTERVAL if timeout is None else min(timeout, CANCEL_POLL_INTERVAL)
        return timeout

    # ------------------------------------------------------------------
    # Aggregation
    # ------------------------------------------------------------------

    def _build_results(
        self,
        collector: _Collector,
        iterations: int,
        status: RunStatus,
        source: RandomSource,
        values: dict[str, Any],
        start: float,
    ) -> SimulationResults:
        return SimulationResults(
            results=collector.results,
            summary=summarize_columns(collector.columns),
            categories=tally_columns(collector.columns),
            duration_ms=(time.monotonic() - start) * 1000.0,
            iteration_count=iterations,
            completed_iterations=collector.completed,
            failed_iterations=len(collector.failures),
            failures=collector.failures,
            status=status,
            seed=source.seed,
            scenario=self.config.name,
            parameters=dict(values),
        )
