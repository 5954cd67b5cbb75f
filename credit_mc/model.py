"""Single-factor Merton model: scenarios, default thresholds and losses."""

import math
from typing import Hashable, List, Optional, Sequence, Tuple
import numpy as np
from scipy.stats import norm

from .exceptions import ConfigurationError, NumericDomainError
from .portfolio import Obligor, Portfolio


def default_threshold(pd: float) -> float:
    """Calculate the default threshold for a probability of default.

    Default occurs when X_i < Φ⁻¹(PD_i)

    Args:
        pd: Probability of default

    Returns:
        Default threshold (inverse normal CDF of PD), -inf for PD 0 and
        +inf for PD 1
    """
    if not 0 <= pd <= 1:
        raise NumericDomainError(f"PD must be between 0 and 1, got {pd}")
    if pd <= 0:
        return -np.inf
    elif pd >= 1:
        return np.inf
    return float(norm.ppf(pd))


def default_thresholds(pds: np.ndarray) -> np.ndarray:
    """Vectorized :func:`default_threshold`."""
    pds = np.asarray(pds, dtype=np.float64)
    if np.any(~((pds >= 0) & (pds <= 1))):
        raise NumericDomainError("PD must be between 0 and 1")
    thresholds = np.empty_like(pds)
    interior = (pds > 0) & (pds < 1)
    thresholds[interior] = norm.ppf(pds[interior])
    thresholds[pds <= 0] = -np.inf
    thresholds[pds >= 1] = np.inf
    return thresholds


def unit_loss(obligor: Obligor, z: float, loading: float, eps: float) -> float:
    """Loss of one obligor for one (scenario, draw) pair.

    The latent asset value is

        X = r × Z + √(1 - r²) × ε

    and the obligor defaults when X falls below Φ⁻¹(PD), losing EAD × LGD.

    Args:
        obligor: The obligor
        z: Systematic factor realization
        loading: Factor loading r, |r| <= 1
        eps: Idiosyncratic standard normal draw

    Returns:
        EAD × LGD on default, otherwise 0
    """
    if not abs(loading) <= 1:
        raise NumericDomainError(
            f"Factor loading must be between -1 and 1, got {loading}", obligor.id
        )
    latent = loading * z + math.sqrt(1.0 - loading * loading) * eps
    if latent < default_threshold(obligor.pd):
        return obligor.severity
    return 0.0


def obligor_losses(z: np.ndarray, loading: np.ndarray, idio_weight: np.ndarray,
                   eps: np.ndarray, threshold: float, severity: float,
                   out: Optional[np.ndarray] = None) -> np.ndarray:
    """Vectorized, branch-free form of :func:`unit_loss` for one obligor.

    ``idio_weight`` is √(1 - loading²), precomputed by the caller.
    """
    latent = loading * z
    latent += idio_weight * eps
    defaulted = latent < threshold
    if out is None:
        out = np.empty(defaulted.shape, dtype=np.float64)
    np.multiply(defaulted, severity, out=out)
    return out


class ScenarioSet:
    """Systematic scenarios and factor loadings for a set of obligors.

    Holds the scenario matrix Z and loading matrix r, both of shape
    (num_scenarios, num_obligors), with columns labelled by obligor id so
    that any sub-portfolio can pick out its own columns.

    Args:
        factors: Scenario matrix Z
        loadings: Loading matrix r, same shape as Z
        obligor_ids: Obligor id of each column
    """

    def __init__(self, factors: np.ndarray, loadings: np.ndarray,
                 obligor_ids: Sequence[Hashable]):
        factors = np.asarray(factors, dtype=np.float64)
        loadings = np.asarray(loadings, dtype=np.float64)
        obligor_ids = list(obligor_ids)

        issues = []
        if factors.ndim != 2:
            issues.append(f"Scenario matrix must be 2-D, got {factors.ndim}-D")
        if factors.shape != loadings.shape:
            issues.append(
                f"Scenario matrix shape {factors.shape} does not match "
                f"loading matrix shape {loadings.shape}"
            )
        if factors.ndim == 2 and factors.shape[1] != len(obligor_ids):
            issues.append(
                f"Scenario matrix has {factors.shape[1]} columns for "
                f"{len(obligor_ids)} obligor ids"
            )
        if len(set(obligor_ids)) != len(obligor_ids):
            issues.append("Obligor ids labelling scenario columns must be unique")
        if issues:
            raise ConfigurationError(issues)

        self.factors = factors
        self.loadings = loadings
        self.obligor_ids: List[Hashable] = obligor_ids
        self._column = {oid: j for j, oid in enumerate(obligor_ids)}

    @property
    def num_scenarios(self) -> int:
        return self.factors.shape[0]

    @property
    def num_obligors(self) -> int:
        return self.factors.shape[1]

    @classmethod
    def single_factor(cls, portfolio: Portfolio, num_scenarios: int,
                      random_state: Optional[int] = None) -> "ScenarioSet":
        """Generate one standard normal systematic factor per scenario.

        Every obligor sees the same factor value within a scenario, and each
        column of the loading matrix is the obligor's own loading.

        Args:
            portfolio: Portfolio whose obligors label the columns
            num_scenarios: Number of scenarios to generate
            random_state: Random seed for reproducibility

        Returns:
            ScenarioSet with column-constant loadings
        """
        rng = np.random.default_rng(random_state)
        factor = rng.standard_normal(num_scenarios)
        return cls.from_factor(factor, portfolio)

    @classmethod
    def from_factor(cls, factor: np.ndarray, portfolio: Portfolio) -> "ScenarioSet":
        """Broadcast a vector of factor realizations across a portfolio."""
        factor = np.asarray(factor, dtype=np.float64)
        if factor.ndim != 1:
            raise ConfigurationError("Factor realizations must be one-dimensional")
        n = len(portfolio)
        factors = np.repeat(factor[:, np.newaxis], n, axis=1)
        loadings = np.tile(portfolio.loadings, (factor.shape[0], 1))
        return cls(factors, loadings, portfolio.obligor_ids)

    def columns(self, obligor_ids: Sequence[Hashable]) -> np.ndarray:
        """Column positions of the given obligor ids."""
        try:
            return np.array([self._column[oid] for oid in obligor_ids], dtype=np.intp)
        except KeyError as exc:
            raise ConfigurationError(
                f"Obligor {exc.args[0]!r} has no column in the scenario set"
            ) from None

    def for_portfolio(self, portfolio: Portfolio) -> Tuple[np.ndarray, np.ndarray]:
        """Scenario and loading matrices restricted to a portfolio's obligors.

        Returns:
            Tuple ``(Z, r)`` with columns in the portfolio's order
        """
        cols = self.columns(portfolio.obligor_ids)
        return self.factors[:, cols], self.loadings[:, cols]
