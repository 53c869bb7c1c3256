"""
Inference backend contract.

The sampler is an external collaborator. This module states the minimal
interface the fit driver needs from it: accept a specification, a data
dictionary, the monitored quantity names and the chain configuration; return
posterior draws per quantity, per chain, and optionally a model-comparison
score.

Configuration problems are reported as ``ConfigurationError``; sampler
failures as ``NumericalError`` (see :mod:`statespace.errors`).
"""

from typing import Any, Dict, Mapping, Optional, Protocol, Sequence, runtime_checkable

import numpy as np
from numpy.typing import NDArray

from statespace.spec import ModelSpec


class BackendResult:
    """Raw output of one inference call."""

    def __init__(
        self,
        samples: Dict[str, NDArray[np.float64]],
        n_chains: int,
        n_draws: int,
        sampling_time: float,
        dic: Optional[float] = None,
        n_divergences: int = 0,
    ) -> None:
        """
        Initialize backend result.

        Parameters
        ----------
        samples : Dict[str, NDArray[np.float64]]
            Quantity name -> draws of shape (chains, draws, *quantity_shape),
            burn-in already discarded and thinning applied.
        n_chains : int
            Number of chains.
        n_draws : int
            Retained draws per chain.
        sampling_time : float
            Wall-clock sampling time (seconds).
        dic : float, optional
            Deviance information criterion, when requested.
        n_divergences : int
            Divergent transitions among the retained draws.
        """
        self.samples = samples
        self.n_chains = n_chains
        self.n_draws = n_draws
        self.sampling_time = sampling_time
        self.dic = dic
        self.n_divergences = n_divergences
        self.total_samples = n_draws * n_chains

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"BackendResult(quantities={sorted(self.samples)}, draws={self.n_draws}, "
            f"chains={self.n_chains}, time={self.sampling_time:.1f}s)"
        )


@runtime_checkable
class InferenceBackend(Protocol):
    """Protocol every inference backend implements."""

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
        **options: Any,
    ) -> BackendResult:
        """
        Sample the posterior of ``spec`` given ``data``.

        Parameters
        ----------
        spec : ModelSpec
            Validated model specification.
        data : Mapping[str, Any]
            Data dictionary (``Y``, ``N``, ``n`` and any covariates or
            prior-centring values the specification reads).
        monitor : Sequence[str]
            Quantities to retain.
        chains : int
            Number of independent chains.
        burn_in : int
            Initial iterations discarded per chain.
        thin : int
            Keep every ``thin``-th post-burn-in draw.
        n_iter : int
            Total iterations per chain.
        compute_dic : bool
            Also report the deviance information criterion.
        **options
            Backend-specific settings.

        Returns
        -------
        BackendResult
            Draws of shape (chains, floor((n_iter - burn_in) / thin), ...)
            per monitored quantity.
        """
        ...
