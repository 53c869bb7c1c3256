"""
PyMC inference backend.

Implements the :class:`inference.backend.InferenceBackend` contract on top of
``pm.sample`` (NUTS):

- the sampler adapts for ``n_adapt`` steps, then runs ``n_iter``
  iterations per chain;
- the first ``burn_in`` iterations are discarded and every ``thin``-th
  iteration after that is kept, so each chain retains
  ``floor((n_iter - burn_in) / thin)`` draws;
- the deviance information criterion is computed from the pointwise
  log-likelihood of the retained draws:

      D = -2 log p(y | theta),   DIC = mean(D) + var(D) / 2

Failures to evaluate the model (e.g. a negative count under a Poisson
likelihood) surface as ``NumericalError``. Divergent transitions are
reported in the log only.
"""

import logging
import time
from typing import Any, Dict, Mapping, Optional, Sequence

import numpy as np
from numpy.typing import NDArray
import pymc as pm
from pymc.exceptions import SamplingError

from inference.backend import BackendResult
from inference.model_builder import ModelBuilder
from statespace.errors import NumericalError
from statespace.spec import ModelSpec

logger = logging.getLogger(__name__)


class PyMCBackend:
    """
    NUTS backend for declarative state-space specifications.

    Builds the PyMC model in memory for each call, so no state is shared
    between fits.
    """

    def __init__(
        self,
        target_accept: float = 0.9,
        n_adapt: int = 1000,
        cores: int = 1,
        nuts_sampler: str = "pymc",
        progressbar: bool = False,
    ) -> None:
        """
        Initialize backend.

        Parameters
        ----------
        target_accept : float
            NUTS acceptance rate target. Default 0.9.
        n_adapt : int
            Adaptation steps per chain. Default 1000.
        cores : int
            Chains sampled in parallel. Default 1.
        nuts_sampler : str
            ``"pymc"`` or ``"nutpie"``.
        progressbar : bool
            Show progress bar. Default False.
        """
        if not (0.5 < target_accept < 1.0):
            raise ValueError(f"target_accept must be in (0.5, 1). Got {target_accept}")

        self.target_accept = target_accept
        self.n_adapt = n_adapt
        self.cores = cores
        self.nuts_sampler = nuts_sampler
        self.progressbar = progressbar

    def run(
        self,
        spec: ModelSpec,
        data: Mapping[str, Any],
        monitor: Sequence[str],
        chains: int,
        burn_in: int,
        thin: int,
        n_iter: int,
        compute_dic: bool = False,
        random_seed: Optional[int] = None,
        **options: Any,
    ) -> BackendResult:
        """
        Sample the posterior and return the retained draws.

        Parameters
        ----------
        spec : ModelSpec
            Model specification.
        data : Mapping[str, Any]
            Data dictionary.
        monitor : Sequence[str]
            Quantities to retain.
        chains, burn_in, thin, n_iter : int
            Chain layout (see :class:`inference.config.FitConfig`).
        compute_dic : bool
            Also compute the deviance information criterion.
        random_seed : int, optional
            Random seed for reproducibility.
        **options
            Per-call overrides of ``n_adapt``, ``target_accept``, ``cores``,
            ``nuts_sampler`` and ``progressbar``.

        Returns
        -------
        BackendResult
            Retained draws per monitored quantity.

        Raises
        ------
        NumericalError
            If the model cannot be evaluated at its starting point, or the
            retained draws contain non-finite values.
        """
        settings = dict(
            n_adapt=self.n_adapt,
            target_accept=self.target_accept,
            cores=self.cores,
            nuts_sampler=self.nuts_sampler,
            progressbar=self.progressbar,
        )
        settings.update({k: v for k, v in options.items() if v is not None})

        model = ModelBuilder(spec).build(data)
        start_time = time.time()

        with model:
            try:
                idata = pm.sample(
                    draws=n_iter,
                    tune=settings["n_adapt"],
                    chains=chains,
                    cores=settings["cores"],
                    random_seed=random_seed,
                    progressbar=settings["progressbar"],
                    target_accept=settings["target_accept"],
                    nuts_sampler=settings["nuts_sampler"],
                    discard_tuned_samples=True,
                    compute_convergence_checks=False,
                    return_inferencedata=True,
                    idata_kwargs={"log_likelihood": compute_dic},
                )
            except SamplingError as err:
                quantity = self._offending_quantity(model)
                raise NumericalError(
                    f"Sampler could not evaluate the {spec.shape.value!r} model"
                    + (f" (quantity {quantity!r})" if quantity else "")
                    + f": {err}",
                    quantity=quantity,
                    index=self._offending_index(spec, data, quantity),
                ) from err

        sampling_time = time.time() - start_time
        keep = slice(burn_in + thin - 1, None, thin)
        posterior = idata.posterior.isel(draw=keep)

        samples: Dict[str, NDArray[np.float64]] = {}
        for name in monitor:
            values = np.asarray(posterior[name].values, dtype=np.float64)
            bad = ~np.isfinite(values)
            if bad.any():
                index = self._first_bad_step(bad)
                raise NumericalError(
                    f"Non-finite posterior draws for {name!r}", quantity=name, index=index
                )
            samples[name] = values

        n_divergences = 0
        if hasattr(idata, "sample_stats") and "diverging" in idata.sample_stats:
            n_divergences = int(idata.sample_stats.diverging.isel(draw=keep).sum().item())
        n_draws = int(posterior.sizes["draw"])
        if n_divergences:
            logger.warning(
                "%d divergent transitions among %d retained draws (%.1f%%)",
                n_divergences,
                n_draws * chains,
                100.0 * n_divergences / (n_draws * chains),
            )

        dic = self.dic(idata, keep) if compute_dic else None
        logger.info(
            "Sampled %s model: %d chains x %d draws in %.1fs",
            spec.shape.value,
            chains,
            n_draws,
            sampling_time,
        )
        return BackendResult(
            samples=samples,
            n_chains=chains,
            n_draws=n_draws,
            sampling_time=sampling_time,
            dic=dic,
            n_divergences=n_divergences,
        )

    @staticmethod
    def dic(idata, keep: slice = slice(None)) -> float:
        """
        Deviance information criterion from the log-likelihood group.

        Parameters
        ----------
        idata : arviz.InferenceData
            Inference data with a ``log_likelihood`` group.
        keep : slice
            Draws to use (burn-in and thinning).

        Returns
        -------
        dic : float
            ``mean(D) + var(D) / 2`` with ``D = -2 * total log-likelihood``.
        """
        loglik = idata.log_likelihood.isel(draw=keep)
        total: Optional[NDArray[np.float64]] = None
        for name in loglik.data_vars:
            values = np.asarray(loglik[name].values, dtype=np.float64)
            per_draw = values.reshape(values.shape[0], values.shape[1], -1).sum(axis=-1)
            total = per_draw if total is None else total + per_draw
        if total is None:
            raise NumericalError("No observed quantities to compute the deviance from")

        deviance = -2.0 * total.ravel()
        if not np.all(np.isfinite(deviance)):
            raise NumericalError("Deviance is not finite for every retained draw", quantity="Y")
        penalty = 0.5 * np.var(deviance, ddof=1) if deviance.size > 1 else 0.0
        return float(np.mean(deviance) + penalty)

    @staticmethod
    def _offending_quantity(model: pm.Model) -> Optional[str]:
        try:
            point_logps = model.point_logps()
        except (ValueError, TypeError, FloatingPointError):
            logger.debug("Could not evaluate point log-probabilities", exc_info=True)
            return None
        for name, value in point_logps.items():
            if not np.isfinite(value):
                return name
        return None

    @staticmethod
    def _offending_index(
        spec: ModelSpec, data: Mapping[str, Any], quantity: Optional[str]
    ) -> Optional[int]:
        if quantity != "Y" or spec.observation.family == "normal":
            return None
        Y = np.asarray(data["Y"], dtype=np.float64).reshape(spec.n, spec.N)
        rows, cols = np.nonzero(np.isfinite(Y) & (Y < 0))
        return int(cols[0]) if cols.size else None

    @staticmethod
    def _first_bad_step(bad: NDArray[np.bool_]) -> Optional[int]:
        if bad.ndim <= 2:
            return None
        steps = np.nonzero(bad.any(axis=(0, 1)).reshape(-1, bad.shape[-1]).any(axis=0))[0]
        return int(steps[0]) if steps.size else None

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"PyMCBackend(target_accept={self.target_accept}, n_adapt={self.n_adapt}, "
            f"nuts_sampler={self.nuts_sampler!r})"
        )
