"""Tests for model.py - thresholds, loss model and scenario sets."""

import pytest
import numpy as np
from scipy.stats import norm

from credit_mc import (
    Obligor,
    Portfolio,
    ScenarioSet,
    default_threshold,
    default_thresholds,
    unit_loss,
    ConfigurationError,
    NumericDomainError,
)
from credit_mc.model import obligor_losses


class TestDefaultThreshold:
    """Tests for the PD to threshold mapping."""

    def test_threshold_is_inverse_normal(self):
        """Test that the threshold is the standard inverse normal CDF."""
        for pd in [0.001, 0.02, 0.5, 0.9]:
            assert default_threshold(pd) == norm.ppf(pd)

    def test_threshold_boundaries(self):
        """Test that PD 0 and 1 map to infinite thresholds."""
        assert default_threshold(0.0) == -np.inf
        assert default_threshold(1.0) == np.inf

    def test_threshold_domain(self):
        """Test that PDs outside [0, 1] are rejected."""
        with pytest.raises(NumericDomainError):
            default_threshold(1.2)
        with pytest.raises(NumericDomainError):
            default_thresholds(np.array([0.1, np.nan]))

    def test_vectorized_matches_scalar(self):
        """Test the vectorized thresholds."""
        pds = np.array([0.0, 0.01, 0.2, 1.0])
        expected = [default_threshold(p) for p in pds]
        np.testing.assert_array_equal(default_thresholds(pds), expected)

    def test_threshold_monotone(self):
        """Test that higher PD means a higher threshold."""
        thresholds = default_thresholds(np.linspace(0, 1, 21))
        assert np.all(np.diff(thresholds) > 0)


class TestLossModel:
    """Tests for the per-unit loss model."""

    def test_default_below_threshold(self, sample_obligor):
        """Test that a low latent variable triggers default."""
        assert unit_loss(sample_obligor, z=-3.0, loading=0.4, eps=-3.0) == sample_obligor.severity

    def test_no_default_above_threshold(self, sample_obligor):
        """Test that a high latent variable means no loss."""
        assert unit_loss(sample_obligor, z=1.0, loading=0.4, eps=0.5) == 0.0

    def test_latent_variable_formula(self, sample_obligor):
        """Test defaults exactly at the threshold boundary."""
        threshold = norm.ppf(sample_obligor.pd)
        # Loading 0 makes the latent variable equal to eps
        assert unit_loss(sample_obligor, 5.0, 0.0, threshold - 1e-9) == sample_obligor.severity
        assert unit_loss(sample_obligor, -5.0, 0.0, threshold) == 0.0
        # Loading 1 makes the latent variable equal to z
        assert unit_loss(sample_obligor, threshold - 1e-9, 1.0, 100.0) == sample_obligor.severity

    def test_pd_boundaries(self):
        """Test that PD 0 never and PD 1 always defaults."""
        never = Obligor(id="never", pd=0.0, lgd=1.0, ead=10.0)
        always = Obligor(id="always", pd=1.0, lgd=1.0, ead=10.0)
        for z, eps in [(-50.0, -8.3), (50.0, 8.3), (0.0, 0.0)]:
            for loading in [-1.0, 0.0, 0.7, 1.0]:
                assert unit_loss(never, z, loading, eps) == 0.0
                assert unit_loss(always, z, loading, eps) == 10.0

    def test_loading_domain(self, sample_obligor):
        """Test that loadings above 1 in magnitude are rejected."""
        with pytest.raises(NumericDomainError) as excinfo:
            unit_loss(sample_obligor, 0.0, 1.5, 0.0)
        assert excinfo.value.obligor_id == sample_obligor.id

    def test_vectorized_matches_scalar(self, sample_obligor):
        """Test that the vectorized kernel agrees with the scalar model."""
        rng = np.random.default_rng(0)
        z = rng.standard_normal(500)
        eps = rng.standard_normal(500)
        loading = np.full(500, 0.6)
        weight = np.sqrt(1.0 - loading * loading)
        losses = obligor_losses(z, loading, weight, eps,
                                default_threshold(sample_obligor.pd),
                                sample_obligor.severity)
        expected = [unit_loss(sample_obligor, zi, 0.6, ei) for zi, ei in zip(z, eps)]
        np.testing.assert_array_equal(losses, expected)


class TestScenarioSet:
    """Tests for the ScenarioSet class."""

    def test_single_factor_is_column_constant(self, multi_obligor_portfolio):
        """Test that one factor value is shared by all obligors in a scenario."""
        scenarios = ScenarioSet.single_factor(multi_obligor_portfolio, 100, random_state=3)
        assert scenarios.factors.shape == (100, 3)
        assert np.all(scenarios.factors == scenarios.factors[:, [0]])
        np.testing.assert_array_equal(scenarios.loadings[0], [0.5, 0.55, 0.45])
        assert np.all(scenarios.loadings == scenarios.loadings[0])

    def test_single_factor_reproducible(self, multi_obligor_portfolio):
        """Test scenario generation with a fixed seed."""
        a = ScenarioSet.single_factor(multi_obligor_portfolio, 50, random_state=9)
        b = ScenarioSet.single_factor(multi_obligor_portfolio, 50, random_state=9)
        np.testing.assert_array_equal(a.factors, b.factors)

    def test_for_portfolio_selects_columns(self, multi_obligor_portfolio):
        """Test column selection for a sub-portfolio."""
        factors = np.arange(12, dtype=float).reshape(4, 3)
        loadings = np.full((4, 3), 0.2)
        scenarios = ScenarioSet(factors, loadings, multi_obligor_portfolio.obligor_ids)
        sub = multi_obligor_portfolio.subset(["Energy_A", "Tech_A"])
        z, r = scenarios.for_portfolio(sub)
        np.testing.assert_array_equal(z, factors[:, [2, 0]])
        assert r.shape == (4, 2)

    def test_unknown_obligor(self, multi_obligor_portfolio):
        """Test selecting columns for an obligor without scenarios."""
        scenarios = ScenarioSet(np.zeros((2, 1)), np.zeros((2, 1)), ["Tech_A"])
        with pytest.raises(ConfigurationError, match="no column"):
            scenarios.for_portfolio(multi_obligor_portfolio)

    def test_shape_validation(self):
        """Test that mismatched matrices are rejected."""
        with pytest.raises(ConfigurationError, match="does not match"):
            ScenarioSet(np.zeros((3, 2)), np.zeros((2, 2)), ["a", "b"])
        with pytest.raises(ConfigurationError, match="columns"):
            ScenarioSet(np.zeros((3, 2)), np.zeros((3, 2)), ["a"])
        with pytest.raises(ConfigurationError, match="unique"):
            ScenarioSet(np.zeros((3, 2)), np.zeros((3, 2)), ["a", "a"])

    def test_from_factor_requires_vector(self, multi_obligor_portfolio):
        """Test broadcasting factor realizations."""
        with pytest.raises(ConfigurationError):
            ScenarioSet.from_factor(np.zeros((2, 2)), multi_obligor_portfolio)
        scenarios = ScenarioSet.from_factor(np.array([1.0, -1.0]), multi_obligor_portfolio)
        assert scenarios.num_scenarios == 2
        assert scenarios.num_obligors == 3
