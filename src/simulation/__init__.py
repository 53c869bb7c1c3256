"""
Simulation module for state-space models.

Draws synthetic series from a specification and known parameter values:
- SeriesSimulator: Forward simulation of the recursion and observation model

**Usage:**
```python
from statespace.builder import build_spec
from simulation.simulator import SeriesSimulator

spec = build_spec("ss", N=50)
sim = SeriesSimulator(spec)
series = sim.simulate({"X0": 0.0, "u": 0.1, "tau_pro": 25.0, "tau_obs": 4.0}, random_seed=1)
series["Y"], series["X"]
```
"""

from simulation.simulator import SeriesSimulator

__all__ = [
    "SeriesSimulator",
]
