"""
Fit configuration and presets.

``FitConfig`` carries the chain layout shared by every inference call.
Retained draws per chain are ``floor((n_iter - burn_in) / thin)``; the
sampler's own adaptation (``n_adapt``) runs before the ``n_iter``
iterations and is never retained.
"""

from dataclasses import asdict, dataclass, replace
from typing import Any, Dict, Optional

from statespace.errors import ConfigurationError

# Full-length run (matches the classic 10000 iterations / 5000 burn-in layout)
DEFAULT_FIT_KWARGS: Dict[str, Any] = dict(
    chains=3,
    n_iter=10000,
    burn_in=5000,
    thin=1,
    n_adapt=1000,
)

# Lighter configuration for exploratory fits and tests
LIGHT_FIT_KWARGS: Dict[str, Any] = dict(
    chains=3,
    n_iter=1000,
    burn_in=500,
    thin=1,
    n_adapt=500,
)

NUTS_SAMPLERS = ("pymc", "nutpie")


@dataclass(frozen=True)
class FitConfig:
    """
    Chain configuration for one fit.

    Parameters
    ----------
    chains : int
        Number of independent chains (>= 1, 3 or more recommended).
    n_iter : int
        Iterations per chain after adaptation.
    burn_in : int
        Initial iterations discarded per chain; must be < n_iter.
    thin : int
        Keep every ``thin``-th post-burn-in iteration (>= 1).
    n_adapt : int
        Sampler adaptation (tuning) steps per chain, never retained.
    target_accept : float
        NUTS acceptance target in (0.5, 1).
    cores : int
        Chains sampled in parallel by the backend.
    random_seed : int, optional
        Seed for reproducible draws.
    compute_dic : bool
        Report the deviance information criterion.
    nuts_sampler : str
        ``"pymc"`` or ``"nutpie"``.
    progressbar : bool
        Show the backend's progress bar.
    """

    chains: int = 3
    n_iter: int = 10000
    burn_in: int = 5000
    thin: int = 1
    n_adapt: int = 1000
    target_accept: float = 0.9
    cores: int = 1
    random_seed: Optional[int] = None
    compute_dic: bool = False
    nuts_sampler: str = "pymc"
    progressbar: bool = False

    def __post_init__(self) -> None:
        if self.chains < 1:
            raise ConfigurationError(f"chains must be >= 1. Got {self.chains}")
        if self.n_iter < 1:
            raise ConfigurationError(f"n_iter must be >= 1. Got {self.n_iter}")
        if self.burn_in < 0:
            raise ConfigurationError(f"burn_in must be >= 0. Got {self.burn_in}")
        if self.burn_in >= self.n_iter:
            raise ConfigurationError(
                f"burn_in must be smaller than n_iter. Got burn_in={self.burn_in}, "
                f"n_iter={self.n_iter}"
            )
        if self.thin < 1:
            raise ConfigurationError(f"thin must be >= 1. Got {self.thin}")
        if self.retained_draws < 1:
            raise ConfigurationError(
                f"No draws retained: (n_iter - burn_in) / thin = "
                f"({self.n_iter} - {self.burn_in}) / {self.thin} < 1"
            )
        if self.n_adapt < 0:
            raise ConfigurationError(f"n_adapt must be >= 0. Got {self.n_adapt}")
        if not (0.5 < self.target_accept < 1.0):
            raise ConfigurationError(
                f"target_accept must be in (0.5, 1). Got {self.target_accept}"
            )
        if self.cores < 1:
            raise ConfigurationError(f"cores must be >= 1. Got {self.cores}")
        if self.nuts_sampler not in NUTS_SAMPLERS:
            raise ConfigurationError(
                f"nuts_sampler must be one of {NUTS_SAMPLERS}. Got {self.nuts_sampler!r}"
            )

    @property
    def retained_draws(self) -> int:
        """Draws kept per chain."""
        return (self.n_iter - self.burn_in) // self.thin

    @property
    def total_draws(self) -> int:
        """Draws kept across all chains."""
        return self.retained_draws * self.chains

    def updated(self, **changes: Any) -> "FitConfig":
        """Copy with ``changes`` applied (re-validated)."""
        return replace(self, **changes)

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)
