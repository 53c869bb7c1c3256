"""
Fit driver: data assembly, validation and one call into the backend.

Responsibilities:
1. Assemble the data dictionary a specification reads (``Y``, ``N``, ``n``,
   covariate ``c`` and the initial-state centring value ``Y1``)
2. Reject dimension mismatches and data-rule violations before sampling
3. Run the backend with the chain configuration and package the draws in
   an immutable ``FitResult``
"""

import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence

import numpy as np
from numpy.typing import NDArray

from inference.backend import InferenceBackend
from inference.config import FitConfig
from inference.posterior import FitResult
from inference.sampler import PyMCBackend
from statespace.errors import ConfigurationError, DataError
from statespace.spec import COVARIATE_SHAPES, ModelSpec

logger = logging.getLogger(__name__)


def _initial_centre(spec: ModelSpec, Y: NDArray[np.float64]):
    """First finite observation per latent state (log scale for count models)."""
    Y2 = Y.reshape(spec.n, spec.N)
    if spec.observation.link == "log":
        with np.errstate(divide="ignore", invalid="ignore"):
            Y2 = np.where(Y2 > 0, np.log(np.where(Y2 > 0, Y2, 1.0)), np.nan)

    groups = spec.observation.groups or (0,) * spec.n
    centres = np.zeros(spec.n_states)
    for j in range(spec.n_states):
        rows = Y2[[i for i, g in enumerate(groups) if g == j]]
        finite_cols = np.flatnonzero(np.isfinite(rows).any(axis=0))
        if finite_cols.size:
            centres[j] = np.nanmean(rows[:, finite_cols[0]])
    return centres if spec.multivariate else float(centres[0])


class FitDriver:
    """
    Runs specifications through an inference backend.

    Attributes
    ----------
    backend : InferenceBackend
        Sampler implementation (``PyMCBackend`` by default).
    config : FitConfig
        Default chain configuration.
    """

    def __init__(
        self,
        backend: Optional[InferenceBackend] = None,
        config: Optional[FitConfig] = None,
    ) -> None:
        if backend is None:
            backend = PyMCBackend()
        if not isinstance(backend, InferenceBackend):
            raise ConfigurationError(f"{backend!r} does not implement InferenceBackend.run")
        self.backend = backend
        self.config = config if config is not None else FitConfig()

    # ------------------------------------------------------------------
    # Data
    # ------------------------------------------------------------------

    @staticmethod
    def build_data(
        spec: ModelSpec, Y: Any, c: Optional[Any] = None
    ) -> Dict[str, Any]:
        """
        Assemble the data dictionary for ``spec``.

        Parameters
        ----------
        spec : ModelSpec
            Model specification.
        Y : array-like
            Response, shape (N,) or (n, N); NaN marks missing values.
        c : array-like, optional
            Covariate of shape (N,); required by the covariate shapes and
            rejected by all others.

        Returns
        -------
        data : dict
            Keys from ``spec.data_keys()``.
        """
        Y = np.asarray(Y, dtype=np.float64)
        data: Dict[str, Any] = {"Y": Y, "N": spec.N, "n": spec.n}

        covariate = spec.observation.covariate
        if covariate is not None:
            if c is None:
                raise ConfigurationError(
                    f"Shape {spec.shape.value!r} needs a covariate {covariate!r}"
                )
            data[covariate] = np.asarray(c, dtype=np.float64)
        elif c is not None:
            raise ConfigurationError(f"Shape {spec.shape.value!r} takes no covariate")

        if "Y1" in spec.data_keys():
            if Y.size != spec.n * spec.N:
                raise ConfigurationError(
                    f"Y has {Y.size} entries, expected n * N = {spec.n * spec.N}"
                )
            data["Y1"] = _initial_centre(spec, Y)
        return data

    @staticmethod
    def default_monitor(spec: ModelSpec) -> List[str]:
        """Every quantity the specification produces."""
        return list(spec.quantities())

    @staticmethod
    def check_data(spec: ModelSpec, data: Mapping[str, Any]) -> None:
        """
        Validate ``data`` against ``spec``.

        Raises
        ------
        ConfigurationError
            Missing keys or dimensions that disagree with the specification.
        DataError
            Data-rule violations (infinite values, missing covariate values,
            non-integer counts, unusable missing-value patterns).
        """
        missing_keys = [k for k in spec.data_keys() if k not in data]
        if missing_keys:
            raise ConfigurationError(f"Data is missing required entries {missing_keys}")
        if data["N"] != spec.N or data["n"] != spec.n:
            raise ConfigurationError(
                f"Data dimensions (N={data['N']}, n={data['n']}) do not match "
                f"the specification (N={spec.N}, n={spec.n})"
            )

        Y = np.asarray(data["Y"], dtype=np.float64)
        expected = (spec.n, spec.N) if spec.multivariate else (spec.N,)
        if Y.shape != expected and not (spec.multivariate and spec.n == 1 and Y.shape == (spec.N,)):
            raise ConfigurationError(f"Y has shape {Y.shape}, expected {expected}")

        covariate = spec.observation.covariate
        if covariate is not None:
            c = np.asarray(data[covariate], dtype=np.float64)
            if c.shape != (spec.N,):
                raise ConfigurationError(
                    f"Covariate {covariate!r} has shape {c.shape}, expected ({spec.N},)"
                )
            if np.any(np.isinf(c)):
                bad = int(np.flatnonzero(np.isinf(c))[0])
                raise DataError(f"Covariate {covariate!r} has an infinite value at index {bad}")
            if np.any(np.isnan(c)):
                bad = int(np.flatnonzero(np.isnan(c))[0])
                raise DataError(f"Covariate {covariate!r} has a missing value at index {bad}")

        # NaN marks a missing value; infinities are bad data
        if np.any(np.isinf(Y)):
            bad = np.argwhere(np.isinf(Y))[0].tolist()
            where = bad[0] if Y.ndim == 1 else tuple(bad)
            raise DataError(f"Y has an infinite value at index {where}")
        present = ~np.isnan(Y)
        if not present.any():
            raise DataError("Y has no observed values")
        if spec.observation.family != "normal":
            values = Y[present]
            if np.any(values != np.round(values)):
                raise DataError(f"{spec.observation.family!r} observations must be integer counts")
        if spec.shape in COVARIATE_SHAPES and spec.observation.error_coef is not None:
            if not present.all():
                raise DataError("Regression with AR(1) errors needs a fully observed response")
        if spec.is_process and spec.recursion.init == "conditional" and not present.reshape(-1)[0]:
            raise DataError("The first value of a conditioned process must be observed")

    @staticmethod
    def check_monitor(spec: ModelSpec, monitor: Sequence[str]) -> List[str]:
        known = spec.quantities()
        unknown = [m for m in monitor if m not in known]
        if unknown:
            raise ConfigurationError(
                f"Unknown monitored quantities {unknown}. Available: {sorted(known)}"
            )
        if not monitor:
            raise ConfigurationError("Monitor list is empty")
        return list(dict.fromkeys(monitor))

    # ------------------------------------------------------------------
    # Fitting
    # ------------------------------------------------------------------

    def fit(
        self,
        spec: ModelSpec,
        data: Mapping[str, Any],
        monitor: Optional[Sequence[str]] = None,
        config: Optional[FitConfig] = None,
        **overrides: Any,
    ) -> FitResult:
        """
        Fit ``spec`` to ``data``.

        Parameters
        ----------
        spec : ModelSpec
            Validated model specification.
        data : Mapping[str, Any]
            Data dictionary (see :meth:`build_data`).
        monitor : Sequence[str], optional
            Quantities to retain (default: all).
        config : FitConfig, optional
            Chain configuration (default: the driver's).
        **overrides
            ``FitConfig`` fields to change for this call.

        Returns
        -------
        FitResult
            Draws of shape (chains, floor((n_iter - burn_in) / thin), ...)
            per monitored quantity.
        """
        spec.validate()
        config = config if config is not None else self.config
        if overrides:
            try:
                config = config.updated(**overrides)
            except TypeError as err:
                raise ConfigurationError(f"Invalid fit option: {err}") from None

        self.check_data(spec, data)
        monitor = self.check_monitor(
            spec, monitor if monitor is not None else self.default_monitor(spec)
        )

        logger.info(
            "Fitting %s model (N=%d, n=%d): %d chains, %d iterations, burn-in %d, thin %d",
            spec.shape.value,
            spec.N,
            spec.n,
            config.chains,
            config.n_iter,
            config.burn_in,
            config.thin,
        )
        logger.debug("Model listing:\n%s", spec.to_text())

        result = self.backend.run(
            spec,
            data,
            monitor,
            chains=config.chains,
            burn_in=config.burn_in,
            thin=config.thin,
            n_iter=config.n_iter,
            compute_dic=config.compute_dic,
            random_seed=config.random_seed,
            n_adapt=config.n_adapt,
            target_accept=config.target_accept,
            cores=config.cores,
            nuts_sampler=config.nuts_sampler,
            progressbar=config.progressbar,
        )

        quantities = spec.quantities()
        expected_layout = (config.chains, config.retained_draws)
        for name in monitor:
            if name not in result.samples:
                raise RuntimeError(f"Backend returned no draws for {name!r}")
            got = result.samples[name].shape
            if got != expected_layout + quantities[name]:
                raise RuntimeError(
                    f"Backend returned draws of shape {got} for {name!r}, "
                    f"expected {expected_layout + quantities[name]}"
                )

        return FitResult(
            samples={name: result.samples[name] for name in monitor},
            spec=spec,
            config=config,
            dic=result.dic,
            sampling_time=result.sampling_time,
            n_divergences=result.n_divergences,
        )


def fit_model(
    spec: ModelSpec,
    Y: Any,
    c: Optional[Any] = None,
    monitor: Optional[Sequence[str]] = None,
    backend: Optional[InferenceBackend] = None,
    **config_kwargs: Any,
) -> FitResult:
    """
    Build the data dictionary and fit ``spec`` in one call.

    ``config_kwargs`` are ``FitConfig`` fields, e.g. the presets in
    :mod:`inference.config`.
    """
    try:
        config = FitConfig(**config_kwargs)
    except TypeError as err:
        raise ConfigurationError(f"Invalid fit option: {err}") from None
    driver = FitDriver(backend=backend, config=config)
    return driver.fit(spec, driver.build_data(spec, Y, c), monitor=monitor)
