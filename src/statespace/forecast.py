"""
Forecasting by joint fitting.

A forecast of horizon ``h`` is the same model fitted to a series padded
with ``h`` missing values: the state recursion carries the latent state
forward and, with no likelihood on the padded positions, their posterior
draws are the predictive draws. Interval widths therefore grow with the
horizon.
"""

import logging
from typing import Any, Dict, Optional, Sequence

import numpy as np
from numpy.typing import NDArray

from statespace.builder import rebuild
from statespace.errors import ConfigurationError, DataError
from statespace.spec import RECURSIVE_SHAPES, ModelSpec

logger = logging.getLogger(__name__)


def _check_h(h: int) -> int:
    if int(h) != h or h < 0:
        raise ConfigurationError(f"Forecast horizon must be a non-negative integer. Got {h}")
    return int(h)


def pad_series(Y: Any, h: int) -> NDArray[np.float64]:
    """Append ``h`` missing values along the time axis of ``Y``."""
    h = _check_h(h)
    Y = np.asarray(Y, dtype=np.float64)
    pad = np.full(Y.shape[:-1] + (h,), np.nan)
    return np.concatenate([Y, pad], axis=-1)


class ForecastExtension:
    """
    Extends a specification with a forecast horizon.

    Attributes
    ----------
    spec : ModelSpec
        Specification fitted to the observed series alone.
    """

    def __init__(self, spec: ModelSpec) -> None:
        if spec.shape not in RECURSIVE_SHAPES:
            raise ConfigurationError(
                f"Shape {spec.shape.value!r} has no state recursion to forecast with. "
                f"Use one of {sorted(s.value for s in RECURSIVE_SHAPES)}"
            )
        self.spec = spec

    def extend_spec(self, h: int) -> ModelSpec:
        """Same shape and options for N + h steps (``h == 0`` returns ``spec``)."""
        h = _check_h(h)
        if h == 0:
            return self.spec
        return rebuild(self.spec, self.spec.N + h)

    def extend_data(self, Y: Any, h: int) -> NDArray[np.float64]:
        """Observed series of length N, padded to N + h."""
        Y = np.asarray(Y, dtype=np.float64)
        if Y.shape[-1] != self.spec.N:
            raise ConfigurationError(
                f"Series has length {Y.shape[-1]}, expected N={self.spec.N}"
            )
        return pad_series(Y, h)

    @staticmethod
    def check_horizon(Y: Any, h: int) -> None:
        """
        Require the last ``h`` positions of ``Y`` to be missing.

        Raises
        ------
        DataError
            If any of the last ``h`` entries is observed.
        """
        h = _check_h(h)
        if h == 0:
            return
        Y = np.asarray(Y, dtype=np.float64)
        if Y.shape[-1] < h:
            raise DataError(f"Series of length {Y.shape[-1]} is shorter than the horizon {h}")
        tail = Y[..., -h:]
        if not np.all(np.isnan(tail)):
            raise DataError(f"The last {h} positions must be missing to forecast them")

    def fit(
        self,
        driver,
        Y: Any,
        h: int,
        monitor: Optional[Sequence[str]] = None,
        config=None,
        **overrides: Any,
    ):
        """
        Fit the extended model jointly with its horizon.

        Parameters
        ----------
        driver : inference.fit.FitDriver
            Driver to fit with.
        Y : array-like
            Observed series of length N.
        h : int
            Forecast horizon.
        monitor : Sequence[str], optional
            Quantities to retain (default: all).
        config : inference.config.FitConfig, optional
            Chain configuration.

        Returns
        -------
        inference.posterior.FitResult
            Draws over N + h steps; the last ``h`` entries of ``fitted`` (and
            ``X``) are the forecasts.
        """
        spec = self.extend_spec(h)
        Y_ext = self.extend_data(Y, h)
        self.check_horizon(Y_ext, h)
        logger.info(
            "Forecasting %s model %d step(s) ahead of N=%d", spec.shape.value, h, self.spec.N
        )
        data = driver.build_data(spec, Y_ext)
        return driver.fit(spec, data, monitor=monitor, config=config, **overrides)


def forecast_intervals(
    fit, h: int, prob: float = 0.95, quantity: str = "fitted"
) -> Dict[str, NDArray[np.float64]]:
    """
    Horizon-indexed posterior mean and credible bounds.

    Parameters
    ----------
    fit : inference.posterior.FitResult
        Result of :meth:`ForecastExtension.fit`.
    h : int
        Forecast horizon used for the fit.
    prob : float
        Credible interval mass.
    quantity : str
        Per-step quantity (``"fitted"`` or ``"X"``).

    Returns
    -------
    Dict[str, NDArray[np.float64]]
        ``step`` (1..h), ``mean``, ``lower``, ``upper`` and ``width``, each
        with the horizon on the last axis.
    """
    h = _check_h(h)
    if not (0.0 < prob < 1.0):
        raise ConfigurationError(f"prob must be in (0, 1). Got {prob}")
    draws = fit.pooled(quantity)
    n_total = draws.shape[-1]
    if h > n_total:
        raise ConfigurationError(f"Horizon {h} exceeds the fitted length {n_total}")
    tail = draws[..., n_total - h:]
    if h == 0:
        empty = np.empty(tail.shape[1:])
        return {
            "step": np.arange(1, 1),
            "mean": empty,
            "lower": empty.copy(),
            "upper": empty.copy(),
            "width": empty.copy(),
        }

    tail_prob = 100.0 * (1.0 - prob) / 2.0
    lower, upper = np.percentile(tail, [tail_prob, 100.0 - tail_prob], axis=0)
    return {
        "step": np.arange(1, h + 1),
        "mean": np.mean(tail, axis=0),
        "lower": lower,
        "upper": upper,
        "width": upper - lower,
    }
