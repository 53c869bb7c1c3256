"""
Unit tests for the series simulator.
"""

import numpy as np
import pytest
from numpy.testing import assert_array_equal

from simulation.simulator import SeriesSimulator
from statespace.builder import build_spec
from statespace.errors import ConfigurationError

SS_PARAMS = {"X0": 1.0, "u": 0.2, "tau_pro": 25.0, "tau_obs": 4.0}


class TestSeriesSimulator:
    """Tests for shapes, seeding and parameter checks."""

    def test_state_space_shapes(self) -> None:
        """Test ss returns a response and a latent state of length N."""
        out = SeriesSimulator(build_spec("ss", N=30)).simulate(SS_PARAMS, random_seed=0)
        assert out["Y"].shape == (30,)
        assert out["X"].shape == (30,)
        assert "c" not in out

    def test_seed_reproducible(self) -> None:
        """Test the same seed gives the same series."""
        sim = SeriesSimulator(build_spec("ss", N=20))
        a = sim.simulate(SS_PARAMS, random_seed=3)
        b = sim.simulate(SS_PARAMS, random_seed=3)
        c = sim.simulate(SS_PARAMS, random_seed=4)
        assert_array_equal(a["Y"], b["Y"])
        assert not np.array_equal(a["Y"], c["Y"])

    def test_drift_moves_state(self) -> None:
        """Test a strong drift with little noise produces a rising state."""
        params = dict(SS_PARAMS, u=1.0, tau_pro=1e6)
        X = SeriesSimulator(build_spec("ss", N=10)).simulate(params, random_seed=0)["X"]
        assert np.all(np.diff(X) > 0.9)

    def test_missing_parameter(self) -> None:
        """Test missing parameter values raise ConfigurationError."""
        sim = SeriesSimulator(build_spec("ss", N=10))
        with pytest.raises(ConfigurationError, match="tau_obs"):
            sim.simulate({"X0": 0.0, "u": 0.0, "tau_pro": 1.0})

    def test_parameter_shape(self) -> None:
        """Test a parameter of the wrong shape raises ConfigurationError."""
        spec = build_spec("mss", N=10, n=2, states="independent")
        params = {"X0": np.zeros(3), "u": np.zeros(2), "tau_pro": 1.0, "tau_obs": np.ones(2)}
        with pytest.raises(ConfigurationError, match="X0"):
            SeriesSimulator(spec).simulate(params)

    def test_conditioned_process_starts_at_initial(self) -> None:
        """Test the random walk starts at the given value."""
        spec = build_spec("rw", N=8)
        Y = SeriesSimulator(spec).simulate({"tau_pro": 1.0}, initial=5.0, random_seed=1)["Y"]
        assert Y[0] == 5.0

    def test_regression_returns_covariate(self) -> None:
        """Test regression draws a covariate when none is given."""
        spec = build_spec("regression", N=12)
        out = SeriesSimulator(spec).simulate(
            {"alpha": 0.0, "beta": 1.0, "tau_obs": 1.0}, random_seed=2
        )
        assert out["c"].shape == (12,)

    def test_counts_are_integers(self) -> None:
        """Test count families simulate non-negative integers."""
        for shape, extra in (("poisson", {}), ("negbin", {"r": 5.0})):
            params = dict({"X0": 1.0, "u": 0.0, "tau_pro": 100.0}, **extra)
            Y = SeriesSimulator(build_spec(shape, N=40)).simulate(params, random_seed=5)["Y"]
            assert np.all(Y >= 0)
            assert_array_equal(Y, np.round(Y))

    def test_multivariate_offsets(self) -> None:
        """Test sites sharing a state differ by their offsets."""
        spec = build_spec("mss", N=50, n=2)
        params = {
            "X0": np.zeros(1),
            "u": np.zeros(1),
            "tau_pro": 10.0,
            "tau_obs": np.full(2, 1e6),
            "A": np.array([0.0, 3.0]),
        }
        out = SeriesSimulator(spec).simulate(params, random_seed=6)
        assert out["Y"].shape == (2, 50)
        assert out["X"].shape == (1, 50)
        assert np.allclose(out["Y"][1] - out["Y"][0], 3.0, atol=0.01)

    def test_missing_fraction(self) -> None:
        """Test masking never hides the first value."""
        sim = SeriesSimulator(build_spec("ss", N=200))
        Y = sim.simulate(SS_PARAMS, missing=0.3, random_seed=7)["Y"]
        assert np.isfinite(Y[0])
        assert 0.15 < np.mean(np.isnan(Y)) < 0.45
