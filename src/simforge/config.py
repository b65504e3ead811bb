"""Runtime configuration for simforge.

Settings come from environment variables with defaults from simforge.defaults.
Invalid values fall back to the default and log a warning.

Configuration via environment variables:
    SIMFORGE_ITERATIONS: Default iteration count (default: 1000)
    SIMFORGE_MAX_STEPS: Interpreter steps per iteration (default: 100000)
    SIMFORGE_ITERATION_TIMEOUT: Seconds per iteration (default: 1.0)
    SIMFORGE_RUN_TIMEOUT: Optional seconds per run (default: unset)
    SIMFORGE_FAILURE_POLICY: "skip" or "abort" (default: "skip")
    SIMFORGE_PROGRESS_INTERVAL: Iterations between callbacks (default: 100)
    SIMFORGE_MAX_WORKERS: Worker processes, 1 = serial (default: 1)
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from enum import Enum

from simforge.defaults import (
    DEFAULT_CHUNK_SIZE,
    DEFAULT_ITERATION_TIMEOUT,
    DEFAULT_ITERATIONS,
    DEFAULT_MAX_STEPS,
    DEFAULT_PROGRESS_INTERVAL,
    DEFAULT_SAMPLE_SIZE,
)

logger = logging.getLogger(__name__)


class FailurePolicy(Enum):
    """What the runner does when a single iteration fails."""

    SKIP = "skip"
    ABORT = "abort"


DEFAULT_FAILURE_POLICY = FailurePolicy.SKIP
DEFAULT_MAX_WORKERS = 1


def _read_int(name: str, default: int, minimum: int = 1) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning(f"Ignoring {name}={raw!r}: not an integer")
        return default
    if value < minimum:
        logger.warning(f"Ignoring {name}={raw!r}: must be >= {minimum}")
        return default
    return value


def _read_float(name: str, default: float | None) -> float | None:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning(f"Ignoring {name}={raw!r}: not a number")
        return default
    if value <= 0:
        logger.warning(f"Ignoring {name}={raw!r}: must be positive")
        return default
    return value


def get_default_iterations() -> int:
    """Get the default iteration count from environment."""
    return _read_int("SIMFORGE_ITERATIONS", DEFAULT_ITERATIONS)


def get_max_steps() -> int:
    """Get the per-iteration step budget from environment."""
    return _read_int("SIMFORGE_MAX_STEPS", DEFAULT_MAX_STEPS)


def get_iteration_timeout() -> float:
    """Get the per-iteration wall-clock budget in seconds."""
    return _read_float("SIMFORGE_ITERATION_TIMEOUT", DEFAULT_ITERATION_TIMEOUT)


def get_run_timeout() -> float | None:
    """Get the optional overall run budget in seconds (None = unlimited)."""
    return _read_float("SIMFORGE_RUN_TIMEOUT", None)


def get_failure_policy() -> FailurePolicy:
    """Get the iteration failure policy from environment.

    Returns:
        FailurePolicy enum value
    """
    raw = os.environ.get("SIMFORGE_FAILURE_POLICY", DEFAULT_FAILURE_POLICY.value).strip().lower()
    try:
        return FailurePolicy(raw)
    except ValueError:
        logger.warning(f"Ignoring SIMFORGE_FAILURE_POLICY={raw!r}: expected 'skip' or 'abort'")
        return DEFAULT_FAILURE_POLICY


def get_progress_interval() -> int:
    """Get the number of iterations between progress callbacks."""
    return _read_int("SIMFORGE_PROGRESS_INTERVAL", DEFAULT_PROGRESS_INTERVAL)


def get_max_workers() -> int:
    """Get the worker process count (1 runs serially)."""
    return _read_int("SIMFORGE_MAX_WORKERS", DEFAULT_MAX_WORKERS)


@dataclass(frozen=True)
class EngineSettings:
    """Resolved engine settings for one run.

    Attributes:
        max_steps: Interpreter step budget per iteration
        iteration_timeout: Wall-clock seconds per iteration
        run_timeout: Optional wall-clock seconds per run
        failure_policy: Skip or abort on iteration failure
        progress_interval: Iterations between progress callbacks
        max_workers: Worker processes (1 = serial, in-process)
        chunk_size: Iterations per parallel work unit
        retain_results: Keep every IterationResult (else a reservoir sample)
        sample_size: Size of the reservoir sample when not retaining all
    """

    max_steps: int = DEFAULT_MAX_STEPS
    iteration_timeout: float = DEFAULT_ITERATION_TIMEOUT
    run_timeout: float | None = None
    failure_policy: FailurePolicy = DEFAULT_FAILURE_POLICY
    progress_interval: int = DEFAULT_PROGRESS_INTERVAL
    max_workers: int = DEFAULT_MAX_WORKERS
    chunk_size: int = DEFAULT_CHUNK_SIZE
    retain_results: bool = True
    sample_size: int = DEFAULT_SAMPLE_SIZE

    @classmethod
    def from_env(cls) -> EngineSettings:
        """Build settings from SIMFORGE_* environment variables."""
        return cls(
            max_steps=get_max_steps(),
            iteration_timeout=get_iteration_timeout(),
            run_timeout=get_run_timeout(),
            failure_policy=get_failure_policy(),
            progress_interval=get_progress_interval(),
            max_workers=get_max_workers(),
        )
