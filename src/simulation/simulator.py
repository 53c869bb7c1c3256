"""
Synthetic series from a model specification.

Draws one realization of the state recursion and the observation model for
given parameter values. Used to check that fits recover known parameters
and to sanity-check priors before fitting real data.

Key components:
- Latent or process recursion (drift, AR coefficient, mean reversion)
- Observation noise (Normal, Poisson or negative binomial)
- Optional missing-value masking
"""

import logging
from typing import Any, Dict, Mapping, Optional

import numpy as np
from numpy.typing import NDArray

from statespace.errors import ConfigurationError
from statespace.spec import ModelSpec

logger = logging.getLogger(__name__)


class SeriesSimulator:
    """
    Forward simulator for one specification.

    Attributes
    ----------
    spec : ModelSpec
        Model specification.
    """

    def __init__(self, spec: ModelSpec) -> None:
        """
        Initialize simulator.

        Parameters
        ----------
        spec : ModelSpec
            Validated model specification.
        """
        self.spec = spec.validate()

    def required_parameters(self) -> Dict[str, tuple]:
        """Parameters ``simulate`` needs, with their shapes."""
        return {p.name: p.shape for p in self.spec.priors}

    def _param(self, params: Mapping[str, Any], name: Optional[str], default: float = 0.0):
        if name is None:
            return default
        value = np.asarray(params[name], dtype=np.float64)
        expected = self.spec.prior(name).shape
        if value.shape not in ((), expected):
            raise ConfigurationError(
                f"Parameter {name!r} has shape {value.shape}, expected {expected or 'scalar'}"
            )
        return value

    def simulate(
        self,
        params: Mapping[str, Any],
        c: Optional[Any] = None,
        initial: float = 0.0,
        missing: float = 0.0,
        random_seed: Optional[int] = None,
    ) -> Dict[str, NDArray[np.float64]]:
        """
        Simulate one series.

        Parameters
        ----------
        params : Mapping[str, Any]
            Value per declared prior (see :meth:`required_parameters`).
        c : array-like, optional
            Covariate of shape (N,) for the covariate shapes. Drawn from a
            standard normal when omitted.
        initial : float
            First value of a conditioned process (rw, ar1 without
            stationary start).
        missing : float
            Fraction of response entries replaced by NaN (never the first).
        random_seed : int, optional
            Random seed for reproducibility.

        Returns
        -------
        series : Dict[str, NDArray]
            ``"Y"`` with shape (N,) or (n, N); ``"X"`` for latent-state
            shapes; ``"c"`` for covariate shapes.
        """
        spec = self.spec
        absent = sorted(set(self.required_parameters()) - set(params))
        if absent:
            raise ConfigurationError(f"Missing parameter values for {absent}")
        if not (0.0 <= missing < 1.0):
            raise ConfigurationError(f"missing must be in [0, 1). Got {missing}")

        rng = np.random.default_rng(random_seed)
        out: Dict[str, NDArray[np.float64]] = {}

        if spec.has_latent_state:
            X = self._simulate_state(params, rng)
            Y = self._observe(params, X, rng)
            out["X"] = X if spec.multivariate else X[0]
        elif spec.is_process:
            Y = self._simulate_process(params, initial, rng)[None, :]
        else:
            c = rng.standard_normal(spec.N) if c is None else np.asarray(c, dtype=np.float64)
            if spec.observation.covariate is not None:
                if c.shape != (spec.N,):
                    raise ConfigurationError(f"c must have shape ({spec.N},). Got {c.shape}")
                out["c"] = c
            Y = self._simulate_regression(params, c, rng)[None, :]

        if missing > 0:
            mask = rng.random(Y.shape) < missing
            mask[:, 0] = False
            Y = np.where(mask, np.nan, Y)
            logger.debug("Masked %d of %d simulated entries", int(mask.sum()), mask.size)

        out["Y"] = Y if spec.multivariate else Y[0]
        return out

    def _simulate_regression(self, params, c, rng) -> NDArray[np.float64]:
        obs = self.spec.observation
        N = self.spec.N
        sd = 1.0 / np.sqrt(self._param(params, obs.precision))

        eta = np.zeros(N)
        for name in obs.location:
            eta = eta + self._param(params, name)
        if obs.slope is not None:
            eta = eta + self._param(params, obs.slope) * c

        if obs.error_coef is None:
            return eta + sd * rng.standard_normal(N)

        phi = self._param(params, obs.error_coef)
        Y = np.empty(N)
        Y[0] = eta[0] + sd * rng.standard_normal()
        for t in range(1, N):
            Y[t] = eta[t] + phi * (Y[t - 1] - eta[t - 1]) + sd * rng.standard_normal()
        return Y

    def _simulate_process(self, params, initial, rng) -> NDArray[np.float64]:
        rec = self.spec.recursion
        N = self.spec.N
        sd = 1.0 / np.sqrt(self._param(params, rec.precision))
        coef = self._param(params, rec.coef, 1.0)
        drift = self._param(params, rec.drift)
        level = self._param(params, rec.mean)

        Y = np.empty(N)
        if rec.init == "stationary":
            sd0 = sd / np.sqrt(1.0 - coef**2)
            Y[0] = level + sd0 * rng.standard_normal()
        else:
            Y[0] = initial
        for t in range(1, N):
            mean = level + coef * (Y[t - 1] - level) + drift
            Y[t] = mean + sd * rng.standard_normal()
        return Y

    def _simulate_state(self, params, rng) -> NDArray[np.float64]:
        rec = self.spec.recursion
        N, k = self.spec.N, rec.n_states
        ones = np.ones(k)
        x = ones * self._param(params, rec.initial_prior)
        coef = ones * self._param(params, rec.coef, 1.0)
        drift = ones * self._param(params, rec.drift)
        sd = ones / np.sqrt(self._param(params, rec.precision))

        X = np.empty((k, N))
        for t in range(N):
            x = coef * x + drift + sd * rng.standard_normal(k)
            X[:, t] = x
        return X

    def _observe(self, params, X, rng) -> NDArray[np.float64]:
        spec = self.spec
        obs = spec.observation
        groups = list(obs.groups) if obs.groups else [0]
        eta = X[groups, :]
        if obs.offsets is not None:
            eta = eta + self._param(params, obs.offsets)[:, None]

        if obs.family == "normal":
            sd = np.ones(spec.n) / np.sqrt(self._param(params, obs.precision))
            return eta + sd[:, None] * rng.standard_normal(eta.shape)
        mean = np.exp(eta)
        if obs.family == "poisson":
            return rng.poisson(mean).astype(np.float64)
        # Gamma-Poisson mixture with shape r and mean exp(eta)
        r = np.ones(spec.n) * self._param(params, obs.dispersion)
        rate = rng.gamma(shape=r[:, None], scale=mean / r[:, None])
        return rng.poisson(rate).astype(np.float64)

    def __repr__(self) -> str:
        """String representation."""
        return f"SeriesSimulator(shape={self.spec.shape.value!r}, N={self.spec.N}, n={self.spec.n})"
