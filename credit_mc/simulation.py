"""Parallel Monte Carlo simulation engine for credit portfolio losses."""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Hashable, List, Optional, Sequence, Union
import numpy as np
import pandas as pd

from .aggregation import Aggregator, KeyLike
from .config import SimulationConfig
from .exceptions import ConfigurationError, NumericDomainError
from .model import ScenarioSet, default_thresholds, obligor_losses
from .portfolio import Portfolio
from .streams import RandomStreams

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class LossMatrix:
    """Aggregated losses of a simulation run.

    Attributes:
        values: Read-only array of shape (rows, groups); entry [i, g] is the
            total loss of group g in scenario-draw pair ``mk_indices[i]``
        mk_indices: Global scenario-draw index of each row
        groups: Aggregation group label of each column
        num_scenarios: Number of scenarios M of the simulated domain
        draws_per_scenario: Draws per scenario K of the simulated domain
    """
    values: np.ndarray
    mk_indices: np.ndarray
    groups: List[Hashable]
    num_scenarios: int
    draws_per_scenario: int

    @property
    def shape(self):
        return self.values.shape

    @property
    def num_rows(self) -> int:
        return self.values.shape[0]

    @property
    def total_losses(self) -> np.ndarray:
        """Portfolio loss per row, summed over groups."""
        return self.values.sum(axis=1)

    @property
    def scenario_indices(self) -> np.ndarray:
        """Scenario index m of each row."""
        return self.mk_indices // self.draws_per_scenario

    @property
    def draw_indices(self) -> np.ndarray:
        """Draw index k of each row."""
        return self.mk_indices % self.draws_per_scenario

    @property
    def expected_loss(self) -> float:
        """Average portfolio loss across rows."""
        return float(np.mean(self.total_losses))

    def column(self, group: Hashable) -> np.ndarray:
        """Loss column of one aggregation group."""
        try:
            return self.values[:, self.groups.index(group)]
        except ValueError:
            raise KeyError(f"Group {group!r} not in loss matrix") from None

    def rows_for(self, mk: Sequence[int]) -> np.ndarray:
        """Rows for the given global scenario-draw indices, in that order."""
        position = {int(v): i for i, v in enumerate(self.mk_indices)}
        try:
            return self.values[[position[int(v)] for v in mk]]
        except KeyError as exc:
            raise KeyError(f"Scenario-draw index {exc.args[0]} not in loss matrix") from None

    def to_frame(self) -> pd.DataFrame:
        """DataFrame view indexed by global scenario-draw index."""
        return pd.DataFrame(
            self.values,
            index=pd.Index(self.mk_indices, name="mk"),
            columns=list(self.groups)
        )


class _ChunkKernel:
    """Read-only state shared by all workers of one simulation call."""

    def __init__(self, mk: np.ndarray, factors: np.ndarray, loadings: np.ndarray,
                 thresholds: np.ndarray, severities: np.ndarray,
                 streams: RandomStreams, aggregator: Aggregator, output: np.ndarray):
        self.mk = mk
        self.draws_per_scenario = streams.draws_per_scenario
        # Column-major so each obligor's scenario column is contiguous
        self.factors = np.asfortranarray(factors)
        self.loadings = np.asfortranarray(loadings)
        self.idio_weights = np.asfortranarray(np.sqrt(1.0 - loadings * loadings))
        self.thresholds = thresholds
        self.severities = severities
        self.streams = streams
        self.aggregator = aggregator
        self.output = output

    def run(self, start: int, stop: int) -> None:
        """Simulate output rows ``start:stop``; writes only those rows."""
        mk = self.mk[start:stop]
        m = mk // self.draws_per_scenario
        num_obligors = self.factors.shape[1]
        losses = np.empty((mk.shape[0], num_obligors), dtype=np.float64, order="F")

        for j in range(num_obligors):
            eps = self.streams.normals(j, mk)
            obligor_losses(
                self.factors[:, j].take(m),
                self.loadings[:, j].take(m),
                self.idio_weights[:, j].take(m),
                eps,
                self.thresholds[j],
                self.severities[j],
                out=losses[:, j]
            )

        self.aggregator.aggregate(losses, out=self.output[start:stop])


class MonteCarloEngine:
    """Thread-parallel Monte Carlo engine with coordinate-addressed randomness.

    Every idiosyncratic draw is addressed by (scenario, draw, obligor id), so
    results are bit-for-bit identical across thread counts, across obligor
    subsets (for shared obligors) and across scenario-draw subsets (for shared
    rows).
    """

    def __init__(self, config: Optional[SimulationConfig] = None, *,
                 seed: Optional[int] = None, num_threads: Optional[int] = None,
                 chunk_size: Optional[int] = None):
        """Initialize the simulation engine.

        Args:
            config: Run configuration; defaults to ``SimulationConfig()``
            seed: Overrides ``config.seed``
            num_threads: Overrides ``config.num_threads``
            chunk_size: Overrides ``config.chunk_size``
        """
        self.config = config if config is not None else SimulationConfig()
        self.seed = self.config.seed if seed is None else seed
        self.num_threads = self.config.num_threads if num_threads is None else num_threads
        self.chunk_size = self.config.chunk_size if chunk_size is None else chunk_size
        if self.num_threads < 1:
            raise ConfigurationError(f"num_threads must be >= 1, got {self.num_threads}")
        if self.chunk_size < 1:
            raise ConfigurationError(f"chunk_size must be >= 1, got {self.chunk_size}")

    def simulate(self, portfolio: Portfolio,
                 scenario_matrix: Union[np.ndarray, ScenarioSet],
                 loading_matrix: Optional[np.ndarray] = None,
                 num_scenarios: Optional[int] = None,
                 draws_per_scenario: Optional[int] = None,
                 aggregation: KeyLike = None,
                 subset: Optional[Sequence[int]] = None) -> LossMatrix:
        """Run the Monte Carlo simulation.

        Args:
            portfolio: The portfolio slice to simulate
            scenario_matrix: Scenario matrix Z of shape (scenarios, obligors),
                or a ScenarioSet from which the portfolio's columns are taken
            loading_matrix: Loading matrix r, same shape as Z; omitted when a
                ScenarioSet is given
            num_scenarios: Scenarios M to use (first M rows of Z); defaults to
                ``config.num_scenarios`` or all rows
            draws_per_scenario: Idiosyncratic draws K per scenario; defaults
                to ``config.draws_per_scenario``
            aggregation: Aggregation key; None keeps one column per obligor
            subset: Optional global scenario-draw indices ``m * K + k`` to
                simulate, in output row order

        Returns:
            LossMatrix with one row per scenario-draw pair

        Raises:
            ConfigurationError: On inconsistent dimensions, sizing or subset
            NumericDomainError: On factor loadings outside [-1, 1]
        """
        if isinstance(scenario_matrix, ScenarioSet):
            if loading_matrix is not None:
                raise ConfigurationError(
                    "Pass either a ScenarioSet or scenario and loading matrices, not both"
                )
            scenario_matrix, loading_matrix = scenario_matrix.for_portfolio(portfolio)
        elif loading_matrix is None:
            raise ConfigurationError("A loading matrix is required with a scenario matrix")

        if num_scenarios is None:
            num_scenarios = self.config.num_scenarios
        if draws_per_scenario is None:
            draws_per_scenario = self.config.draws_per_scenario

        factors, loadings, num_scenarios = _validate_inputs(
            portfolio, scenario_matrix, loading_matrix, num_scenarios, draws_per_scenario
        )
        total = num_scenarios * draws_per_scenario
        mk = _resolve_subset(subset, total)

        aggregator = Aggregator.for_portfolio(portfolio, aggregation)
        streams = RandomStreams(self.seed, num_scenarios, draws_per_scenario,
                                portfolio.obligor_ids)
        output = np.zeros((mk.shape[0], aggregator.num_groups), dtype=np.float64)
        kernel = _ChunkKernel(
            mk, factors, loadings,
            default_thresholds(portfolio.pds), portfolio.severities,
            streams, aggregator, output
        )

        bounds = [(lo, min(lo + self.chunk_size, mk.shape[0]))
                  for lo in range(0, mk.shape[0], self.chunk_size)]
        workers = min(self.num_threads, len(bounds)) if bounds else 1

        logger.info(
            "Simulating %d scenario-draw rows x %d obligors into %d groups on %d threads",
            mk.shape[0], len(portfolio), aggregator.num_groups, workers
        )
        started = time.perf_counter()
        if workers == 1:
            for lo, hi in bounds:
                kernel.run(lo, hi)
        else:
            with ThreadPoolExecutor(max_workers=workers,
                                    thread_name_prefix="credit-mc") as executor:
                futures = [executor.submit(kernel.run, lo, hi) for lo, hi in bounds]
                for future in futures:
                    future.result()
        logger.debug("Simulated %d chunks in %.3fs", len(bounds),
                     time.perf_counter() - started)

        output.flags.writeable = False
        mk.flags.writeable = False
        return LossMatrix(
            values=output,
            mk_indices=mk,
            groups=aggregator.groups,
            num_scenarios=num_scenarios,
            draws_per_scenario=draws_per_scenario
        )


def _validate_inputs(portfolio: Portfolio, scenario_matrix, loading_matrix,
                     num_scenarios: Optional[int], draws_per_scenario: int):
    """Check dimensions and domains before any simulation work starts."""
    factors = np.asarray(scenario_matrix, dtype=np.float64)
    loadings = np.asarray(loading_matrix, dtype=np.float64)

    issues = []
    if len(portfolio) == 0:
        issues.append("Portfolio is empty")
    if factors.ndim != 2:
        issues.append(f"Scenario matrix must be 2-D, got {factors.ndim}-D")
    if loadings.ndim != 2:
        issues.append(f"Loading matrix must be 2-D, got {loadings.ndim}-D")
    if factors.shape != loadings.shape:
        issues.append(
            f"Scenario matrix shape {factors.shape} does not match "
            f"loading matrix shape {loadings.shape}"
        )
    if factors.ndim == 2 and factors.shape[1] != len(portfolio):
        issues.append(
            f"Scenario matrix has {factors.shape[1]} obligor columns but the "
            f"portfolio has {len(portfolio)} obligors"
        )
    if _bad_count(draws_per_scenario):
        issues.append(f"draws_per_scenario must be a positive integer, got {draws_per_scenario!r}")
    if num_scenarios is not None and _bad_count(num_scenarios):
        issues.append(f"num_scenarios must be a positive integer, got {num_scenarios!r}")
    if issues:
        raise ConfigurationError(issues)

    available = factors.shape[0]
    if num_scenarios is None:
        num_scenarios = available
    if num_scenarios > available:
        raise ConfigurationError(
            f"Requested {num_scenarios} scenarios but the scenario matrix has {available} rows"
        )
    if num_scenarios < 1:
        raise ConfigurationError("Scenario matrix has no rows")

    factors = factors[:num_scenarios]
    loadings = loadings[:num_scenarios]
    if not np.all(np.isfinite(factors)):
        bad_row, bad_col = np.argwhere(~np.isfinite(factors))[0]
        raise ConfigurationError(
            f"Scenario matrix holds a non-finite value for obligor "
            f"{portfolio.obligor_ids[bad_col]!r} in scenario {bad_row}"
        )
    bad = ~(np.abs(loadings) <= 1)
    if np.any(bad):
        bad_row, bad_col = np.argwhere(bad)[0]
        raise NumericDomainError(
            f"Factor loading {loadings[bad_row, bad_col]} in scenario {bad_row} "
            f"is outside [-1, 1]",
            portfolio.obligor_ids[bad_col]
        )
    return factors, loadings, int(num_scenarios)


def _bad_count(value) -> bool:
    return isinstance(value, bool) or not isinstance(value, (int, np.integer)) or value < 1


def _resolve_subset(subset: Optional[Sequence[int]], total: int) -> np.ndarray:
    if subset is None:
        return np.arange(total, dtype=np.int64)
    raw = np.asarray(subset)
    if raw.ndim != 1:
        raise ConfigurationError(f"Subset indices must be one-dimensional, got {raw.ndim}-D")
    if raw.shape[0] == 0:
        return np.empty(0, dtype=np.int64)
    if not np.issubdtype(raw.dtype, np.integer):
        raise ConfigurationError(f"Subset indices must be integers, got dtype {raw.dtype}")
    mk = raw.astype(np.int64)
    out_of_bounds = (mk < 0) | (mk >= total)
    if np.any(out_of_bounds):
        raise ConfigurationError(
            f"Subset index {mk[out_of_bounds][0]} outside [0, {total})"
        )
    return mk.copy()


def simulate(portfolio: Portfolio, scenario_matrix: np.ndarray, loading_matrix: np.ndarray,
             num_scenarios: Optional[int], draws_per_scenario: int,
             aggregation: KeyLike = None, subset: Optional[Sequence[int]] = None,
             seed: int = 0, num_threads: Optional[int] = None) -> LossMatrix:
    """Simulate the loss matrix of a portfolio slice.

    Convenience wrapper around :class:`MonteCarloEngine`; see
    :meth:`MonteCarloEngine.simulate` for the arguments.
    """
    engine = MonteCarloEngine(seed=seed, num_threads=num_threads)
    return engine.simulate(
        portfolio, scenario_matrix, loading_matrix,
        num_scenarios=num_scenarios,
        draws_per_scenario=draws_per_scenario,
        aggregation=aggregation,
        subset=subset
    )
