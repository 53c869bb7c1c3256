"""
Tests for the forecast extension.

Tests cover:
- Padding series and rebuilding specifications for a horizon
- Horizon validation
- Horizon-indexed intervals
- Joint fits with the PyMC backend (marked ``slow``)
"""

import numpy as np
import pytest
from numpy.testing import assert_allclose, assert_array_equal

from inference.config import FitConfig
from inference.fit import FitDriver
from inference.posterior import FitResult
from statespace.builder import build_spec
from statespace.errors import ConfigurationError, DataError
from statespace.forecast import ForecastExtension, forecast_intervals, pad_series

Y_SHORT = [7.4, 8.0, 12.6, 11.5, 14.3]


class TestPadding:
    """Tests for horizon padding."""

    def test_pad_univariate(self) -> None:
        """Test h missing values are appended."""
        padded = pad_series([1.0, 2.0], 3)
        assert padded.shape == (5,)
        assert np.all(np.isnan(padded[2:]))

    def test_pad_multivariate(self) -> None:
        """Test padding runs along the time axis."""
        padded = pad_series(np.ones((2, 4)), 2)
        assert padded.shape == (2, 6)
        assert np.all(np.isnan(padded[:, 4:]))

    def test_negative_horizon(self) -> None:
        """Test h < 0 raises ConfigurationError."""
        with pytest.raises(ConfigurationError, match="non-negative"):
            pad_series([1.0], -1)


class TestForecastExtension:
    """Tests for extended specifications and data."""

    def test_extend_spec(self) -> None:
        """Test the extended spec has N + h steps and the same options."""
        spec = build_spec("ss", N=5, ar=True)
        extended = ForecastExtension(spec).extend_spec(2)
        assert extended.N == 7
        assert extended.options == spec.options
        assert extended.quantities()["fitted"] == (7,)

    def test_zero_horizon_is_identity(self) -> None:
        """Test h = 0 reproduces the specification and data exactly."""
        spec = build_spec("rw", N=5)
        ext = ForecastExtension(spec)
        assert ext.extend_spec(0) is spec
        assert_array_equal(ext.extend_data(Y_SHORT, 0), Y_SHORT)

    def test_extend_multivariate(self) -> None:
        """Test site groupings survive the extension."""
        spec = build_spec("mss", N=4, n=3, states=(0, 1, 1))
        extended = ForecastExtension(spec).extend_spec(3)
        assert extended.observation.groups == (0, 1, 1)
        assert extended.quantities()["X"] == (2, 7)

    def test_shape_without_recursion(self) -> None:
        """Test shapes without a state recursion cannot forecast."""
        for shape in ("mean", "regression", "ar1_errors"):
            with pytest.raises(ConfigurationError, match="no state recursion"):
                ForecastExtension(build_spec(shape, N=5))

    def test_extend_data_length(self) -> None:
        """Test the observed series must have length N."""
        ext = ForecastExtension(build_spec("ss", N=5))
        with pytest.raises(ConfigurationError, match="expected N=5"):
            ext.extend_data([1.0, 2.0], 2)

    def test_check_horizon(self) -> None:
        """Test an observed value inside the horizon raises DataError."""
        ForecastExtension.check_horizon([1.0, 2.0, np.nan, np.nan], 2)
        ForecastExtension.check_horizon([1.0, 2.0, 3.0], 0)
        with pytest.raises(DataError, match="must be missing"):
            ForecastExtension.check_horizon([1.0, 2.0, np.nan, 4.0], 2)
        with pytest.raises(DataError, match="must be missing"):
            ForecastExtension.check_horizon([1.0, 2.0, np.nan, np.inf], 2)
        with pytest.raises(DataError, match="shorter"):
            ForecastExtension.check_horizon([np.nan], 2)


class TestForecastIntervals:
    """Tests for horizon-indexed summaries."""

    @pytest.fixture
    def fit(self) -> FitResult:
        spec = build_spec("ss", N=6)
        rng = np.random.default_rng(0)
        # Spread grows along the series
        draws = rng.standard_normal((2, 500, 6)) * np.arange(1.0, 7.0)
        return FitResult({"fitted": draws}, spec, FitConfig(chains=2, n_iter=501, burn_in=1))

    def test_tail_summaries(self, fit: FitResult) -> None:
        """Test the last h steps are summarized in order."""
        out = forecast_intervals(fit, 2, prob=0.9)
        assert_array_equal(out["step"], [1, 2])
        assert out["mean"].shape == (2,)
        assert np.all(out["lower"] < out["upper"])
        assert out["width"][1] > out["width"][0]

    def test_zero_horizon(self, fit: FitResult) -> None:
        """Test h = 0 gives empty summaries."""
        out = forecast_intervals(fit, 0)
        assert out["step"].size == 0
        assert out["width"].shape == (0,)

    def test_horizon_too_long(self, fit: FitResult) -> None:
        """Test a horizon longer than the fit raises ConfigurationError."""
        with pytest.raises(ConfigurationError, match="exceeds"):
            forecast_intervals(fit, 7)


@pytest.mark.slow
class TestJointForecast:
    """Forecast fits with the PyMC backend."""

    CONFIG = FitConfig(chains=3, n_iter=1000, burn_in=500, n_adapt=500, random_seed=21)

    def test_widths_grow_beyond_data(self) -> None:
        """Test forecast intervals are wider than the last observed step's."""
        ext = ForecastExtension(build_spec("ss", N=5))
        fit = ext.fit(FitDriver(config=self.CONFIG), Y_SHORT, 2, monitor=["fitted", "X"])
        fitted = fit.pooled("fitted")
        assert fitted.shape == (1500, 7)
        lower, upper = np.percentile(fitted, [2.5, 97.5], axis=0)
        width = upper - lower
        assert width[5] > width[4]
        assert width[6] > width[4]
        assert width[6] >= width[5]

        out = forecast_intervals(fit, 2)
        assert_allclose(out["width"], width[5:])

    def test_zero_horizon_matches_plain_fit(self) -> None:
        """Test h = 0 reproduces the plain fit draw for draw."""
        spec = build_spec("rw", N=5, drift=True)
        driver = FitDriver(config=self.CONFIG.updated(n_iter=300, burn_in=100))
        plain = driver.fit(spec, driver.build_data(spec, Y_SHORT), monitor=["u", "fitted"])
        joint = ForecastExtension(spec).fit(driver, Y_SHORT, 0, monitor=["u", "fitted"])
        assert_array_equal(plain.chains("u"), joint.chains("u"))
        assert_array_equal(plain.chains("fitted"), joint.chains("fitted"))

    def test_process_forecast_draws_vary(self) -> None:
        """Test padded steps of a random walk carry predictive spread."""
        ext = ForecastExtension(build_spec("rw", N=5))
        fit = ext.fit(FitDriver(config=self.CONFIG), Y_SHORT, 3, monitor=["fitted"])
        fitted = fit.pooled("fitted")
        assert_array_equal(fitted[:, :5], np.broadcast_to(Y_SHORT, (fitted.shape[0], 5)))
        spread = fitted[:, 5:].std(axis=0)
        assert np.all(spread > 0)
        assert spread[2] > spread[0]
