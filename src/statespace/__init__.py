"""
Declarative Bayesian state-space model specifications.

This module defines the model family independently of any sampler:
- Shape: Model variants (mean, regression, ar1_errors, rw, ar1, ss, mss,
  poisson, negbin)
- ModelSpec: Priors, derived quantities, state recursion and observation model
- SpecBuilder / build_spec: Validated specifications from a shape and options
- ForecastExtension: Horizon-padded specifications and data for forecasting

**Usage:**
```python
from statespace import build_spec, ForecastExtension

spec = build_spec("mss", N=30, n=3, states=(0, 0, 1))
print(spec.to_text())

ext = ForecastExtension(build_spec("ss", N=30))
spec_h = ext.extend_spec(5)  # N = 35
```
"""

from statespace.builder import PriorDefaults, SpecBuilder, build_spec, rebuild
from statespace.errors import ConfigurationError, DataError, NumericalError, StateSpaceError
from statespace.forecast import ForecastExtension, forecast_intervals, pad_series
from statespace.spec import ModelSpec, Shape

__all__ = [
    "PriorDefaults",
    "SpecBuilder",
    "build_spec",
    "rebuild",
    "ConfigurationError",
    "DataError",
    "NumericalError",
    "StateSpaceError",
    "ForecastExtension",
    "forecast_intervals",
    "pad_series",
    "ModelSpec",
    "Shape",
]
