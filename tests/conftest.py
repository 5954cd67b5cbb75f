"""Pytest fixtures for credit portfolio simulator tests."""

import pytest
import numpy as np

from credit_mc import (
    Obligor,
    Portfolio,
    ScenarioSet,
    MonteCarloEngine,
    SimulationConfig,
)


@pytest.fixture
def sample_obligor():
    """Create a simple obligor for testing."""
    return Obligor(
        id="TestObligor",
        pd=0.02,
        lgd=0.45,
        ead=1_000_000,
        loading=0.4,
        rating="BBB",
        sector="technology"
    )


@pytest.fixture
def multi_obligor_portfolio():
    """Create a portfolio with multiple obligors across sectors."""
    return Portfolio([
        Obligor(id="Tech_A", pd=0.02, lgd=0.45, ead=10_000_000,
                loading=0.5, rating="BBB", sector="technology"),
        Obligor(id="Bank_A", pd=0.01, lgd=0.55, ead=15_000_000,
                loading=0.55, rating="A", sector="financials"),
        Obligor(id="Energy_A", pd=0.03, lgd=0.60, ead=20_000_000,
                loading=0.45, rating="BB", sector="energy"),
    ], name="MultiObligorPortfolio")


@pytest.fixture
def large_portfolio():
    """Create a 30-obligor portfolio with integer ids and mixed ratings."""
    ratings = ["A", "BBB", "BB", "B"]
    pds = {"A": 0.01, "BBB": 0.03, "BB": 0.08, "B": 0.15}
    sectors = ["technology", "financials", "energy"]
    obligors = []
    for i in range(30):
        rating = ratings[i % 4]
        obligors.append(Obligor(
            id=100 + i,
            pd=pds[rating],
            lgd=0.4 + 0.01 * (i % 10),
            ead=1_000_000 * (1 + i % 5),
            loading=0.2 + 0.02 * (i % 15),
            rating=rating,
            sector=sectors[i % 3]
        ))
    return Portfolio(obligors, name="LargePortfolio")


@pytest.fixture
def multi_scenarios(multi_obligor_portfolio):
    """Single-factor scenarios for the multi-obligor portfolio."""
    return ScenarioSet.single_factor(multi_obligor_portfolio, num_scenarios=200,
                                     random_state=7)


@pytest.fixture
def large_scenarios(large_portfolio):
    """Single-factor scenarios for the large portfolio."""
    return ScenarioSet.single_factor(large_portfolio, num_scenarios=400,
                                     random_state=11)


@pytest.fixture
def engine():
    """Engine with a fixed seed and small chunks so runs span many chunks."""
    return MonteCarloEngine(SimulationConfig(seed=42, num_threads=4, chunk_size=97))


@pytest.fixture
def golden_portfolio():
    """Two-obligor portfolio of the golden-output regression scenario."""
    return Portfolio([
        Obligor(id=0, pd=0.05, lgd=0.45, ead=1_000_000, loading=0.5),
        Obligor(id=1, pd=0.20, lgd=0.60, ead=500_000, loading=0.3),
    ], name="Golden")


@pytest.fixture
def golden_matrices():
    """Scenario and loading matrices of the golden scenario (3 x 2).

    Factor values are moderate, so defaults depend on the idiosyncratic draws.
    """
    factors = np.array([
        [-1.8, -1.8],
        [0.4, 0.4],
        [-0.9, 1.2],
    ])
    loadings = np.tile([0.5, 0.3], (3, 1))
    return factors, loadings
