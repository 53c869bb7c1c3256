"""
PyMC model compiler: turns a declarative ``ModelSpec`` plus a data
dictionary into a ``pm.Model``.

Every specification line maps onto PyMC in the same way:

    prior lines       -> pm.Normal / pm.Gamma / pm.Uniform (precision form)
    fixed entries     -> Deterministic vector with constants spliced in
    derived lines     -> pm.Deterministic
    latent recursion  -> non-centred innovations propagated by pytensor.scan:
                         X[t] = b X[t-1] + u + eps[t] / sqrt(tau_pro)
    process recursion -> the observed series is the state; missing values
                         are latent draws propagated through the recursion
    observations      -> one likelihood over the observed (non-NaN) entries

Missing response entries get no likelihood term, so trailing missing
values are forecasts: the recursion carries the state forward and nothing
constrains it there.
"""

import warnings
from typing import Any, Dict, Mapping, Optional

import numpy as np
from numpy.typing import NDArray
import pymc as pm
import pytensor
import pytensor.tensor as pt

from statespace.errors import DataError
from statespace.spec import ModelSpec, Prior


class ModelBuilder:
    """
    Compiles one specification into a PyMC model.

    Attributes
    ----------
    spec : ModelSpec
        Validated specification.
    model : pm.Model or None
        PyMC model (None until built)
    """

    def __init__(self, spec: ModelSpec) -> None:
        """
        Initialize model builder.

        Parameters
        ----------
        spec : ModelSpec
            Model specification; validated here.
        """
        self.spec = spec.validate()
        self.model: Optional[pm.Model] = None

    def build(self, data: Mapping[str, Any]) -> pm.Model:
        """
        Build the full PyMC model.

        Parameters
        ----------
        data : Mapping[str, Any]
            Data dictionary with ``Y`` and every key in ``spec.data_keys()``.

        Returns
        -------
        model : pm.Model
            PyMC model ready for inference.
        """
        Y = np.asarray(data["Y"], dtype=np.float64)

        with pm.Model() as model:
            rv: Dict[str, Any] = {}
            for prior in self.spec.priors:
                rv[prior.name] = self._build_prior(prior, data)
            for derived in self.spec.derived:
                args = [rv[a] for a in derived.args]
                if derived.op == "reciprocal":
                    value = 1.0 / args[0]
                else:
                    value = args[0] / (1.0 - args[1] ** 2)
                rv[derived.name] = pm.Deterministic(derived.name, value)

            if self.spec.has_latent_state:
                self._build_latent(Y, rv)
            elif self.spec.is_process:
                self._build_process(Y, rv)
            else:
                self._build_regression(Y, data, rv)

        self.model = model
        return model

    def get_model(self) -> pm.Model:
        """
        Get the built model.

        Raises
        ------
        RuntimeError
            If model has not been built yet.
        """
        if self.model is None:
            raise RuntimeError("Model has not been built. Call .build() first.")
        return self.model

    # ------------------------------------------------------------------
    # Priors
    # ------------------------------------------------------------------

    @staticmethod
    def _build_prior(prior: Prior, data: Mapping[str, Any]):
        params = [data[p] if isinstance(p, str) else p for p in prior.params]
        shape = prior.shape
        name = prior.name
        if prior.fixed:
            free = [i for i in range(shape[0]) if i not in prior.fixed_indices]
            shape = (len(free),)
            name = f"{prior.name}_free"
            params = [np.asarray(p, dtype=np.float64)[free] if np.ndim(p) else p for p in params]

        kwargs = {"shape": shape} if shape else {}
        if prior.family == "normal":
            var = pm.Normal(name, mu=params[0], tau=params[1], **kwargs)
        elif prior.family == "gamma":
            var = pm.Gamma(name, alpha=params[0], beta=params[1], **kwargs)
        else:
            var = pm.Uniform(name, lower=params[0], upper=params[1], **kwargs)

        if not prior.fixed:
            return var
        full = np.zeros(prior.shape[0])
        for idx, value in prior.fixed:
            full[idx] = value
        vector = pt.set_subtensor(pt.as_tensor_variable(full)[free], var)
        return pm.Deterministic(prior.name, vector)

    # ------------------------------------------------------------------
    # Shapes
    # ------------------------------------------------------------------

    def _build_regression(self, Y: NDArray[np.float64], data: Mapping[str, Any], rv: Dict) -> None:
        obs = self.spec.observation
        N = self.spec.N

        eta = pt.zeros(N)
        for name in obs.location:
            eta = eta + rv[name]
        if obs.slope is not None:
            c = np.asarray(data[obs.covariate], dtype=np.float64)
            eta = eta + rv[obs.slope] * c

        if obs.error_coef is not None:
            if np.any(np.isnan(Y)):
                raise DataError("Regression with AR(1) errors needs a fully observed response")
            # Each step corrects by its own predecessor's residual
            resid = pt.as_tensor_variable(Y[:-1]) - eta[:-1]
            eta = pt.concatenate([eta[:1], eta[1:] + rv[obs.error_coef] * resid])

        fitted = pm.Deterministic("fitted", eta)
        observed = np.flatnonzero(~np.isnan(Y))
        pm.Normal("Y", mu=fitted[observed], tau=rv[obs.precision], observed=Y[observed])

    def _build_process(self, Y: NDArray[np.float64], rv: Dict) -> None:
        rec = self.spec.recursion
        tau = rv[rec.precision]
        sd = 1.0 / pt.sqrt(tau)

        def predictor(previous):
            if rec.mean is not None:
                term = rv[rec.mean] + rv[rec.coef] * (previous - rv[rec.mean])
            elif rec.coef is not None:
                term = rv[rec.coef] * previous
            else:
                term = previous
            if rec.drift is not None:
                term = term + rv[rec.drift]
            return term

        present = ~np.isnan(Y)
        if not present[0] and rec.init != "stationary":
            raise DataError("The first value of a conditioned process must be observed")

        y = pt.as_tensor_variable(np.where(present, Y, 0.0))
        missing = np.flatnonzero(~present)
        if missing.size:
            z = pm.Normal("Y_innovations", 0.0, 1.0, shape=missing.size)
            for k, t in enumerate(missing):
                if t == 0:
                    start = rv[rec.mean] + pt.sqrt(rv[rec.init_variance]) * z[k]
                    y = pt.set_subtensor(y[0], start)
                else:
                    y = pt.set_subtensor(y[t], predictor(y[t - 1]) + sd * z[k])
        pm.Deterministic("fitted", y)

        step_mean = predictor(y[:-1])
        observed = np.flatnonzero(present[1:]) + 1
        if observed.size:
            pm.Normal("Y", mu=step_mean[observed - 1], tau=tau, observed=Y[observed])
        if rec.init == "stationary" and present[0]:
            pm.Normal(
                "Y_init",
                mu=rv[rec.mean],
                tau=1.0 / rv[rec.init_variance],
                observed=Y[0],
            )

    def _build_latent(self, Y: NDArray[np.float64], rv: Dict) -> None:
        spec = self.spec
        rec = spec.recursion
        obs = spec.observation
        N, n, k = spec.N, spec.n, rec.n_states

        eps = pm.Normal("X_innovations", 0.0, 1.0, shape=(N, k))
        # Broadcast parameters to the inner scan type (avoids static-shape drift when k == 1)
        template = pt.zeros_like(eps[0])
        x0 = template + rv[rec.initial_prior]
        coef = template + (rv[rec.coef] if rec.coef is not None else 1.0)
        drift = template + (rv[rec.drift] if rec.drift is not None else 0.0)
        sd = template + 1.0 / pt.sqrt(rv[rec.precision])

        def state_step(e_t, x_prev, b_, u_, sd_):
            return b_ * x_prev + u_ + sd_ * e_t

        # The recursion draws nothing, so there are no updates to return
        with warnings.catch_warnings():
            warnings.filterwarnings(
                "ignore", message="Scan return signature will change", category=DeprecationWarning
            )
            states, _ = pytensor.scan(
                fn=state_step,
                sequences=[eps],
                outputs_info=[x0],
                non_sequences=[coef, drift, sd],
                strict=True,
            )
        X = states.T  # (k, N)

        groups = list(obs.groups) if obs.groups else [0]
        eta = X[groups, :]  # (n, N)
        if obs.offsets is not None:
            eta = eta + rv[obs.offsets][:, None]
        mean = pt.exp(eta) if obs.link == "log" else eta

        if spec.multivariate:
            pm.Deterministic("X", X)
            pm.Deterministic("fitted", mean)
        else:
            pm.Deterministic("X", X[0])
            pm.Deterministic("fitted", mean[0])

        Y2 = Y.reshape(n, N)
        mask = ~np.isnan(Y2)
        rows, cols = np.nonzero(mask)
        mu = mean[rows, cols]
        if obs.family == "normal":
            tau = pt.ones(n) * rv[obs.precision]
            pm.Normal("Y", mu=mu, tau=tau[rows], observed=Y2[mask])
        elif obs.family == "poisson":
            pm.Poisson("Y", mu=mu, observed=Y2[mask].astype(np.int64))
        else:
            r = pt.ones(n) * rv[obs.dispersion]
            pm.NegativeBinomial("Y", mu=mu, alpha=r[rows], observed=Y2[mask].astype(np.int64))

    def __repr__(self) -> str:
        """String representation."""
        return f"ModelBuilder(shape={self.spec.shape.value!r}, N={self.spec.N}, n={self.spec.n})"
