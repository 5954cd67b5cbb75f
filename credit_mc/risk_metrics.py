"""Tail risk measures, risk contributions and incremental risk."""

import logging
from dataclasses import dataclass
from typing import Dict, Hashable, List, Optional
import numpy as np
import pandas as pd

from .aggregation import AggregationKey, KeyLike
from .exceptions import ConfigurationError
from .model import ScenarioSet
from .portfolio import ObligorId, Portfolio
from .simulation import LossMatrix, MonteCarloEngine

logger = logging.getLogger(__name__)


def _as_losses(losses) -> np.ndarray:
    losses = np.asarray(losses, dtype=np.float64)
    if losses.ndim != 1:
        raise ConfigurationError(f"Loss vector must be one-dimensional, got {losses.ndim}-D")
    if losses.shape[0] == 0:
        raise ConfigurationError("Loss vector is empty")
    return losses


def _check_confidence(confidence: float) -> None:
    if not 0 < confidence < 1:
        raise ConfigurationError(f"Confidence must be in (0, 1), got {confidence}")


def value_at_risk(losses: np.ndarray, confidence: float = 0.99) -> float:
    """Empirical loss quantile at the given confidence level."""
    _check_confidence(confidence)
    return float(np.percentile(_as_losses(losses), confidence * 100))


def tail_positions(losses: np.ndarray, confidence: float = 0.99) -> np.ndarray:
    """Positions of losses at or above the VaR, worst first.

    Ties are broken by ascending position, so the ordering is deterministic.
    """
    losses = _as_losses(losses)
    var = value_at_risk(losses, confidence)
    positions = np.flatnonzero(losses >= var)
    order = np.argsort(-losses[positions], kind="stable")
    return positions[order]


def expected_shortfall(losses: np.ndarray, confidence: float = 0.99) -> float:
    """Expected Shortfall: mean of the losses at or above the VaR."""
    losses = _as_losses(losses)
    return float(np.mean(losses[tail_positions(losses, confidence)]))


@dataclass
class TailResult:
    """Tail statistics of one loss vector.

    Attributes:
        confidence: Quantile level
        value_at_risk: Empirical quantile of the losses
        expected_shortfall: Mean loss over the tail
        tail_indices: Global scenario-draw indices of the tail, worst first;
            usable as the ``subset`` of a follow-up simulation
        num_observations: Number of losses analyzed
    """
    confidence: float
    value_at_risk: float
    expected_shortfall: float
    tail_indices: np.ndarray
    num_observations: int

    @property
    def tail_size(self) -> int:
        return int(self.tail_indices.shape[0])


class TailRiskAnalyzer:
    """Expected Shortfall and tail extraction for loss matrices."""

    def __init__(self, confidence: float = 0.99):
        _check_confidence(confidence)
        self.confidence = confidence

    def analyze_losses(self, losses: np.ndarray,
                       mk_indices: Optional[np.ndarray] = None) -> TailResult:
        """Tail statistics of a loss vector.

        Args:
            losses: Loss per scenario-draw row
            mk_indices: Global index of each row; positions are used if omitted
        """
        losses = _as_losses(losses)
        positions = tail_positions(losses, self.confidence)
        if mk_indices is None:
            tail = positions
        else:
            tail = np.asarray(mk_indices)[positions]
        return TailResult(
            confidence=self.confidence,
            value_at_risk=value_at_risk(losses, self.confidence),
            expected_shortfall=float(np.mean(losses[positions])),
            tail_indices=tail,
            num_observations=int(losses.shape[0])
        )

    def analyze(self, loss_matrix: LossMatrix) -> TailResult:
        """Tail statistics of the portfolio total of a loss matrix."""
        return self.analyze_losses(loss_matrix.total_losses, loss_matrix.mk_indices)

    def analyze_groups(self, loss_matrix: LossMatrix) -> Dict[Hashable, TailResult]:
        """Tail statistics of each aggregation column on its own."""
        return {
            group: self.analyze_losses(loss_matrix.values[:, g], loss_matrix.mk_indices)
            for g, group in enumerate(loss_matrix.groups)
        }


@dataclass
class ContributionResult:
    """Expected Shortfall and its decomposition over aggregation groups.

    Attributes:
        tail: Tail statistics of the parent (full portfolio) run
        contributions: Mean group loss over the parent's tail scenarios;
            sums to the parent Expected Shortfall
    """
    tail: TailResult
    contributions: pd.Series

    @property
    def expected_shortfall(self) -> float:
        return self.tail.expected_shortfall

    @property
    def total_contribution(self) -> float:
        return float(self.contributions.sum())


@dataclass
class IncrementalRiskResult:
    """Results from incremental risk contribution analysis.

    Attributes:
        obligor_id: Id of the obligor
        irc_expected_loss: Incremental contribution to expected loss
        irc_var: Incremental contribution to VaR
        irc_es: Incremental contribution to Expected Shortfall
        es_contribution: Mean obligor loss over the portfolio's tail scenarios
        standalone_el: Analytic expected loss of the obligor
        standalone_var: Standalone VaR of the obligor
        simulated_default_rate: Fraction of rows in which the obligor defaulted
    """
    obligor_id: ObligorId
    irc_expected_loss: float
    irc_var: float
    irc_es: float
    es_contribution: float
    standalone_el: float
    standalone_var: float
    simulated_default_rate: float


@dataclass
class RiskDecomposition:
    """Risk decomposition by category.

    Attributes:
        category: Name of the category (rating, sector, ...)
        total_exposure: Total EAD in this category
        expected_loss: Expected loss contribution
        var_contribution: Standalone VaR of the category's losses
        es_contribution: ES contribution
        obligor_count: Number of obligors in category
    """
    category: Hashable
    total_exposure: float
    expected_loss: float
    var_contribution: float
    es_contribution: float
    obligor_count: int


class RiskCalculator:
    """Calculate risk metrics and risk contributions of a portfolio.

    All runs share one engine and one scenario set, so every sub-portfolio
    or tail-subset run reuses exactly the draws of the full run.
    """

    def __init__(self, scenarios: ScenarioSet, engine: Optional[MonteCarloEngine] = None,
                 num_scenarios: Optional[int] = None,
                 draws_per_scenario: Optional[int] = None):
        """Initialize risk calculator.

        Args:
            scenarios: Scenario and loading matrices for every obligor analyzed
            engine: Simulation engine; a default engine is created if omitted
            num_scenarios: Scenarios to use; defaults to the engine config
            draws_per_scenario: Draws per scenario; defaults to the engine config
        """
        self.scenarios = scenarios
        self.engine = engine if engine is not None else MonteCarloEngine()
        self.num_scenarios = num_scenarios
        self.draws_per_scenario = draws_per_scenario

    def _confidence(self, confidence: Optional[float]) -> float:
        return self.engine.config.confidence if confidence is None else confidence

    def simulate(self, portfolio: Portfolio, aggregation: KeyLike = None,
                 subset: Optional[np.ndarray] = None) -> LossMatrix:
        """Run the engine on a portfolio with this calculator's sizing."""
        return self.engine.simulate(
            portfolio, self.scenarios,
            num_scenarios=self.num_scenarios,
            draws_per_scenario=self.draws_per_scenario,
            aggregation=aggregation,
            subset=subset
        )

    def calculate_portfolio_metrics(self, portfolio: Portfolio,
                                    confidence: Optional[float] = None) -> Dict:
        """Calculate comprehensive portfolio risk metrics.

        Args:
            portfolio: The portfolio to analyze
            confidence: Confidence level; defaults to the engine config

        Returns:
            Dictionary with all portfolio metrics
        """
        confidence = self._confidence(confidence)
        result = self.simulate(portfolio, aggregation=AggregationKey.TOTAL)
        losses = result.total_losses
        tail = TailRiskAnalyzer(confidence).analyze(result)
        total_ead = portfolio.total_ead

        return {
            'total_ead': total_ead,
            'expected_loss': result.expected_loss,
            'expected_loss_rate': result.expected_loss / total_ead if total_ead > 0 else 0.0,
            'loss_volatility': float(np.std(losses)),
            'var': tail.value_at_risk,
            'var_rate': tail.value_at_risk / total_ead if total_ead > 0 else 0.0,
            'expected_shortfall': tail.expected_shortfall,
            'es_rate': tail.expected_shortfall / total_ead if total_ead > 0 else 0.0,
            'unexpected_loss': tail.value_at_risk - result.expected_loss,
            'max_loss': float(np.max(losses)),
            'num_scenarios': result.num_scenarios,
            'draws_per_scenario': result.draws_per_scenario,
            'confidence_level': confidence
        }

    def es_contributions(self, portfolio: Portfolio, aggregation: KeyLike = None,
                         confidence: Optional[float] = None) -> ContributionResult:
        """Decompose the portfolio Expected Shortfall over aggregation groups.

        Runs the full portfolio once to find the tail scenario-draw indices,
        then re-simulates only those rows with the requested aggregation.

        Args:
            portfolio: The portfolio to analyze
            aggregation: Grouping of the contributions; per obligor by default
            confidence: Confidence level; defaults to the engine config

        Returns:
            ContributionResult whose contributions sum to the portfolio ES
        """
        confidence = self._confidence(confidence)
        parent = self.simulate(portfolio, aggregation=AggregationKey.TOTAL)
        tail = TailRiskAnalyzer(confidence).analyze(parent)
        logger.info("ES%.0f = %.2f over %d tail rows; drilling down",
                    confidence * 100, tail.expected_shortfall, tail.tail_size)

        drill_down = self.simulate(portfolio, aggregation=aggregation,
                                   subset=tail.tail_indices)
        contributions = pd.Series(
            drill_down.values.mean(axis=0),
            index=pd.Index(drill_down.groups, name="group"),
            name="es_contribution"
        )
        return ContributionResult(tail=tail, contributions=contributions)

    def calculate_incremental_loss(self, portfolio: Portfolio, obligor_id: ObligorId,
                                   confidence: Optional[float] = None) -> IncrementalRiskResult:
        """Calculate incremental risk contribution for a single obligor.

        IRC_i = Risk(portfolio) - Risk(portfolio without obligor i)

        Both runs draw on identical streams, so the difference carries no
        re-sampling noise.

        Args:
            portfolio: The full portfolio
            obligor_id: Id of the obligor to analyze
            confidence: Confidence level for VaR/ES

        Returns:
            IncrementalRiskResult with all IRC metrics
        """
        confidence = self._confidence(confidence)
        obligor = portfolio.get_obligor(obligor_id)
        analyzer = TailRiskAnalyzer(confidence)

        full = self.simulate(portfolio)
        remainder = portfolio.without(obligor_id)
        if len(remainder) == 0:
            reduced_losses = np.zeros(full.num_rows)
        else:
            reduced_losses = self.simulate(
                remainder, aggregation=AggregationKey.TOTAL
            ).total_losses
        full_tail = analyzer.analyze(full)
        reduced_tail = analyzer.analyze_losses(reduced_losses, full.mk_indices)
        return self._incremental_result(
            obligor, full, full_tail, reduced_losses, reduced_tail, confidence
        )

    def calculate_all_incremental_losses(self, portfolio: Portfolio,
                                         confidence: Optional[float] = None
                                         ) -> List[IncrementalRiskResult]:
        """Calculate IRC for all obligors in the portfolio.

        A run without obligor i reproduces the full run's other columns
        exactly, so reduced portfolio losses are summed from the full run
        instead of re-simulated.

        Args:
            portfolio: The portfolio to analyze
            confidence: Confidence level for VaR/ES

        Returns:
            List of IncrementalRiskResult for each obligor
        """
        confidence = self._confidence(confidence)
        analyzer = TailRiskAnalyzer(confidence)
        full = self.simulate(portfolio)
        full_tail = analyzer.analyze(full)

        results = []
        for obligor in portfolio:
            keep = np.ones(len(portfolio), dtype=bool)
            keep[portfolio.positions([obligor.id])] = False
            reduced_losses = full.values[:, keep].sum(axis=1)
            reduced_tail = analyzer.analyze_losses(reduced_losses, full.mk_indices)
            results.append(self._incremental_result(
                obligor, full, full_tail, reduced_losses, reduced_tail, confidence
            ))
        return results

    def _incremental_result(self, obligor, full: LossMatrix, full_tail: TailResult,
                            reduced_losses: np.ndarray, reduced_tail: TailResult,
                            confidence: float) -> IncrementalRiskResult:
        column = full.column(obligor.id)
        tail_rows = np.isin(full.mk_indices, full_tail.tail_indices)
        return IncrementalRiskResult(
            obligor_id=obligor.id,
            irc_expected_loss=full.expected_loss - float(np.mean(reduced_losses)),
            irc_var=full_tail.value_at_risk - reduced_tail.value_at_risk,
            irc_es=full_tail.expected_shortfall - reduced_tail.expected_shortfall,
            es_contribution=float(np.mean(column[tail_rows])),
            standalone_el=obligor.expected_loss,
            standalone_var=value_at_risk(column, confidence),
            simulated_default_rate=float(np.mean(column > 0)) if obligor.severity > 0 else 0.0
        )

    def risk_decomposition_by_rating(self, portfolio: Portfolio,
                                     confidence: Optional[float] = None
                                     ) -> List[RiskDecomposition]:
        """Decompose portfolio risk by rating."""
        return self._risk_decomposition(portfolio, AggregationKey.RATING,
                                        self._confidence(confidence))

    def risk_decomposition_by_sector(self, portfolio: Portfolio,
                                     confidence: Optional[float] = None
                                     ) -> List[RiskDecomposition]:
        """Decompose portfolio risk by sector."""
        return self._risk_decomposition(portfolio, AggregationKey.SECTOR,
                                        self._confidence(confidence))

    def _risk_decomposition(self, portfolio: Portfolio, key: AggregationKey,
                            confidence: float) -> List[RiskDecomposition]:
        """Internal method for risk decomposition by any category.

        Obligors without the category attribute are left out.
        """
        attribute = key.value
        covered = portfolio.filter(lambda o: getattr(o, attribute) is not None)
        if len(covered) == 0:
            return []
        if len(covered) < len(portfolio):
            logger.warning("%d obligors have no %s and are excluded from the decomposition",
                           len(portfolio) - len(covered), attribute)

        result = self.simulate(covered, aggregation=key)
        tail = tail_positions(result.total_losses, confidence)

        decompositions = []
        for g, category in enumerate(result.groups):
            members = [o for o in covered if getattr(o, attribute) == category]
            category_losses = result.values[:, g]
            decompositions.append(RiskDecomposition(
                category=category,
                total_exposure=sum(o.ead for o in members),
                expected_loss=float(np.mean(category_losses)),
                var_contribution=value_at_risk(category_losses, confidence),
                es_contribution=float(np.mean(category_losses[tail])),
                obligor_count=len(members)
            ))
        return decompositions


def _ranked_frame(records: List[Dict], columns: List[str]) -> pd.DataFrame:
    """Report table ranked by ES contribution, largest first."""
    df = pd.DataFrame.from_records(records, columns=columns)
    return df.sort_values('ES_Contribution', ascending=False, kind='stable',
                          ignore_index=True)


def create_irc_report(irc_results: List[IncrementalRiskResult],
                      portfolio: Portfolio) -> pd.DataFrame:
    """Create a DataFrame report of IRC results.

    Args:
        irc_results: List of IncrementalRiskResult
        portfolio: The portfolio (for additional obligor info)

    Returns:
        DataFrame with IRC analysis, largest ES contribution first
    """
    columns = ['Obligor', 'Rating', 'Sector', 'EAD', 'PD', 'LGD', 'Loading',
               'Standalone_EL', 'IRC_EL', 'IRC_VaR', 'IRC_ES', 'ES_Contribution',
               'Default_Rate']
    records = []
    for result in irc_results:
        obligor = portfolio.get_obligor(result.obligor_id)
        records.append(dict(zip(columns, (
            result.obligor_id, obligor.rating, obligor.sector, obligor.ead,
            obligor.pd, obligor.lgd, obligor.loading, result.standalone_el,
            result.irc_expected_loss, result.irc_var, result.irc_es,
            result.es_contribution, result.simulated_default_rate
        ))))
    return _ranked_frame(records, columns)


def create_decomposition_report(decompositions: List[RiskDecomposition],
                                category_name: str) -> pd.DataFrame:
    """Tabulate a rating or sector decomposition.

    ``EL_Rate`` is expected loss per unit of exposure and ``ES_Share`` the
    category's fraction of the summed ES contributions.
    """
    records = [
        {
            category_name: d.category,
            'Obligor_Count': d.obligor_count,
            'Total_Exposure': d.total_exposure,
            'Expected_Loss': d.expected_loss,
            'VaR_Contribution': d.var_contribution,
            'ES_Contribution': d.es_contribution,
        }
        for d in decompositions
    ]
    df = _ranked_frame(records, [category_name, 'Obligor_Count', 'Total_Exposure',
                                 'Expected_Loss', 'VaR_Contribution', 'ES_Contribution'])
    exposure = df['Total_Exposure'].where(df['Total_Exposure'] > 0)
    df['EL_Rate'] = (df['Expected_Loss'] / exposure).fillna(0.0)
    total_es = df['ES_Contribution'].sum()
    df['ES_Share'] = df['ES_Contribution'] / total_es if total_es > 0 else 0.0
    return df
