"""
Bayesian inference module for state-space models.

This module provides the PyMC-based inference pipeline:
1. ModelBuilder: Compile a ModelSpec into a PyMC model
2. PyMCBackend: NUTS sampling with burn-in, thinning and DIC
3. FitDriver: Data assembly, validation and fitting
4. DiagnosticsComputer / summarize: Rhat, ESS, autocorrelation, stationarity

**Usage:**
```python
from statespace.builder import build_spec
from inference.config import LIGHT_FIT_KWARGS
from inference.fit import fit_model
from inference.diagnostics import summarize

# 1. Define the model
spec = build_spec("ss", N=len(Y))

# 2. Fit
fit = fit_model(spec, Y, random_seed=1, **LIGHT_FIT_KWARGS)

# 3. Check convergence diagnostics
for label, s in summarize(fit, ["u", "var_pro"]).items():
    print(label, s.mean, s.rhat)
```

**Key Classes:**
- InferenceBackend: Sampler contract (any backend implementing ``run``)
- FitConfig: Chain configuration (chains, n_iter, burn_in, thin)
- FitResult: Immutable posterior draws
- QuantitySummary: Per-element diagnostics
"""

from inference.backend import BackendResult, InferenceBackend
from inference.config import DEFAULT_FIT_KWARGS, LIGHT_FIT_KWARGS, FitConfig
from inference.diagnostics import (
    DiagnosticsComputer,
    QuantitySummary,
    TestResult,
    summarize,
    summary_table,
)
from inference.fit import FitDriver, fit_model
from inference.model_builder import ModelBuilder
from inference.posterior import FitResult
from inference.sampler import PyMCBackend

__all__ = [
    "BackendResult",
    "InferenceBackend",
    "DEFAULT_FIT_KWARGS",
    "LIGHT_FIT_KWARGS",
    "FitConfig",
    "DiagnosticsComputer",
    "QuantitySummary",
    "TestResult",
    "summarize",
    "summary_table",
    "FitDriver",
    "fit_model",
    "ModelBuilder",
    "FitResult",
    "PyMCBackend",
]
