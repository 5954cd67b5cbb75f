"""Single-factor Merton credit portfolio simulator with consistent random streams.

This package computes portfolio loss distributions by Monte Carlo and derives
Expected Shortfall and its contributions. Random draws are addressed by
(scenario, draw, obligor id), so full-portfolio, sub-portfolio and
tail-subset runs agree exactly on every shared coordinate.

Main components:
- portfolio: Obligor and Portfolio data structures
- model: Scenario matrices, default thresholds and the loss model
- streams: Coordinate-addressed random streams
- aggregation: Grouping of obligor losses by obligor, rating or sector
- simulation: Thread-parallel Monte Carlo engine
- risk_metrics: Expected Shortfall, tail extraction and risk contributions
"""

from .aggregation import AggregationKey, Aggregator
from .config import SimulationConfig
from .exceptions import (
    ConfigurationError,
    CreditSimulationError,
    NumericDomainError,
    OutOfRangeError
)
from .model import ScenarioSet, default_threshold, default_thresholds, unit_loss
from .portfolio import Obligor, Portfolio
from .risk_metrics import (
    ContributionResult,
    IncrementalRiskResult,
    RiskCalculator,
    RiskDecomposition,
    TailResult,
    TailRiskAnalyzer,
    create_decomposition_report,
    create_irc_report,
    expected_shortfall,
    tail_positions,
    value_at_risk
)
from .simulation import LossMatrix, MonteCarloEngine, simulate
from .streams import RandomStreams

__version__ = "1.0.0"

__all__ = [
    # Portfolio
    "Obligor",
    "Portfolio",
    # Model
    "ScenarioSet",
    "default_threshold",
    "default_thresholds",
    "unit_loss",
    # Streams
    "RandomStreams",
    # Aggregation
    "AggregationKey",
    "Aggregator",
    # Simulation
    "SimulationConfig",
    "MonteCarloEngine",
    "LossMatrix",
    "simulate",
    # Risk metrics
    "TailRiskAnalyzer",
    "TailResult",
    "value_at_risk",
    "expected_shortfall",
    "tail_positions",
    "RiskCalculator",
    "ContributionResult",
    "IncrementalRiskResult",
    "RiskDecomposition",
    "create_irc_report",
    "create_decomposition_report",
    # Errors
    "CreditSimulationError",
    "ConfigurationError",
    "NumericDomainError",
    "OutOfRangeError",
]
