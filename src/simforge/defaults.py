"""Engine defaults for simforge.

This module is the single source of truth for tunable engine constants.
Environment overrides for the run-level values live in simforge.config.

Categories:
- Run: iteration counts, progress cadence, parallel chunking
- Sandbox: step and wall-clock budgets, resource guards
- Statistics: summary percentiles and confidence level
- Business context: ARR parameter defaults

Usage:
    from simforge.defaults import DEFAULT_ITERATIONS, DEFAULT_MAX_STEPS
"""

# =============================================================================
# RUN PARAMETERS
# =============================================================================

DEFAULT_ITERATIONS = 1000
"""Iterations per run when the caller does not specify a count.

Analysis:
    For a uniform multiplier the standard error of the mean is about
    sigma / sqrt(N); at N=1000 that is ~3% of sigma, which is enough to
    read a P10/P90 band with confidence.
"""

DEFAULT_PROGRESS_INTERVAL = 100
"""Iterations between progress callbacks (the last iteration always reports)."""

DEFAULT_CHUNK_SIZE = 250
"""Iterations per work unit in parallel mode.

Chunk i always draws from sub-stream i of the run seed, so the chunk size
(not the worker count) determines the random draws of a parallel run.
"""

DEFAULT_SAMPLE_SIZE = 1000
"""Iteration results kept when full retention is off (reservoir sample)."""


# =============================================================================
# SANDBOX PARAMETERS
# =============================================================================

DEFAULT_MAX_STEPS = 100_000
"""Interpreter steps allowed per iteration.

Every evaluated AST node costs one step. Typical business scenarios use
50-500 steps; a loop over 12 months with a dozen expressions stays
under 2,000.
"""

DEFAULT_ITERATION_TIMEOUT = 1.0
"""Wall-clock seconds allowed per iteration."""

MAX_SEQUENCE_LENGTH = 100_000
"""Largest container or string a calculation may build.

Elements are counted through nested containers, so a list holding the same
100,000-item list twice counts as 200,002. Library calls such as str(),
min() or comparisons walk the whole nested structure in one host call that
the step budget cannot interrupt; this bound keeps each such call short.
"""

MAX_INT_BITS = 100_000
"""Largest integer (in bits) produced by exact arithmetic; larger results use floats."""

MAX_RANGE_LENGTH = 1_000_000
"""Largest range() a calculation may create."""

MAX_ROUND_DECIMALS = 308
"""Largest number of decimals accepted by round(), the float exponent range."""


# =============================================================================
# STATISTICS PARAMETERS
# =============================================================================

SUMMARY_PERCENTILES = (10, 25, 50, 75, 90)
"""Percentiles precomputed on every Statistics summary."""

DEFAULT_CONFIDENCE_LEVEL = 0.95
"""Confidence level used when none is given."""

HISTOGRAM_BINS = 20
"""Default histogram bin count."""

NEVER_PAYS_BACK = 999.0
"""Sentinel returned by payback and runway helpers when returns are <= 0."""


# =============================================================================
# BUSINESS CONTEXT PARAMETERS
# =============================================================================

ARR_PARAMETER_KEY = "annualRecurringRevenue"
BUDGET_PARAMETER_KEY = "budgetPercent"

DEFAULT_ARR = 5_000_000
"""Default annual recurring revenue injected by business context.

Range: 100,000 to 1,000,000,000 in steps of 50,000.
"""

DEFAULT_BUDGET_PERCENT = 10.0
"""Default share of ARR allocated to the analysed initiative (1-50%)."""
