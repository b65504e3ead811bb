"""Simulation run results.

SimulationResults is handed back to the caller as an in-memory structure;
to_dict() / to_json() produce plain JSON for export layers.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from simforge.engine.statistics import CategoricalSummary, Statistics

IterationResult = dict[str, Any]
"""One evaluation's outputs: {output_key: float | str}."""


class RunStatus(str, Enum):
    """How a run ended.

    Only COMPLETED means every requested iteration was attempted. ABORTED
    results are only seen on SimulationAbortedError.results.
    """

    COMPLETED = "completed"
    CANCELLED = "cancelled"
    TIMED_OUT = "timed_out"
    ABORTED = "aborted"


@dataclass(frozen=True)
class IterationFailure:
    """A skipped iteration and why it failed."""

    iteration: int
    error_type: str
    message: str

    def to_dict(self) -> dict:
        return {"iteration": self.iteration, "error_type": self.error_type, "message": self.message}


@dataclass
class SimulationResults:
    """Results of one Monte Carlo run.

    Attributes:
        results: Retained iteration results (all of them, or a reservoir
            sample when full retention is off)
        summary: Statistics per numeric output key
        categories: Tallies per non-numeric output key
        duration_ms: Wall-clock duration of the run
        iteration_count: Iterations requested
        completed_iterations: Iterations that produced a result
        failed_iterations: Iterations that raised and were skipped
        failures: One IterationFailure per failed iteration
        status: completed, cancelled, timed_out or aborted
        seed: Seed of the run's random source
        scenario: Name of the configuration that was run
        parameters: Resolved parameter values used by every iteration
    """

    results: list[IterationResult] = field(default_factory=list)
    summary: dict[str, Statistics] = field(default_factory=dict)
    categories: dict[str, CategoricalSummary] = field(default_factory=dict)
    duration_ms: float = 0.0
    iteration_count: int = 0
    completed_iterations: int = 0
    failed_iterations: int = 0
    failures: list[IterationFailure] = field(default_factory=list)
    status: RunStatus = RunStatus.COMPLETED
    seed: int | None = None
    scenario: str = ""
    parameters: dict[str, Any] = field(default_factory=dict)

    @property
    def is_complete(self) -> bool:
        """True when every requested iteration was attempted."""
        return self.status == RunStatus.COMPLETED

    @property
    def is_partial(self) -> bool:
        """True for cancelled and timed-out runs."""
        return not self.is_complete

    @property
    def attempted_iterations(self) -> int:
        return self.completed_iterations + self.failed_iterations

    def values(self, key: str) -> list[Any]:
        """Retained values of one output, in iteration order."""
        return [result[key] for result in self.results if key in result]

    def to_dict(self, include_results: bool = True) -> dict:
        """Convert to dictionary for JSON serialization."""
        data = {
            "scenario": self.scenario,
            "status": self.status.value,
            "seed": self.seed,
            "parameters": dict(self.parameters),
            "iteration_count": self.iteration_count,
            "completed_iterations": self.completed_iterations,
            "failed_iterations": self.failed_iterations,
            "duration_ms": round(self.duration_ms, 3),
            "summary": {k: v.to_dict() for k, v in self.summary.items()},
            "categories": {k: v.to_dict() for k, v in self.categories.items()},
            "failures": [f.to_dict() for f in self.failures],
        }
        if include_results:
            data["results"] = [dict(result) for result in self.results]
        return data

    def to_json(self, indent: int = 2, include_results: bool = True) -> str:
        """Convert to JSON string."""
        return json.dumps(self.to_dict(include_results=include_results), indent=indent)
