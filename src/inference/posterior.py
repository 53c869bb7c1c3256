"""
Posterior extraction.

``FitResult`` is the immutable outcome of one fit: per monitored quantity an
array of shape (chains, draws, *quantity_shape). Arrays are read-only, so a
result can be shared freely between diagnostics and forecasting code.
"""

from types import MappingProxyType
from typing import Dict, Mapping, Optional, Tuple

import arviz as az
import numpy as np
from numpy.typing import NDArray

from inference.config import FitConfig
from statespace.errors import ConfigurationError
from statespace.spec import ModelSpec


class FitResult:
    """
    Posterior draws of one fit.

    Attributes
    ----------
    spec : ModelSpec
        Specification that was fitted.
    config : FitConfig
        Chain configuration used.
    dic : float or None
        Deviance information criterion, when requested.
    sampling_time : float
        Wall-clock sampling time (seconds).
    n_divergences : int
        Divergent transitions among the retained draws.
    """

    def __init__(
        self,
        samples: Mapping[str, NDArray[np.float64]],
        spec: ModelSpec,
        config: FitConfig,
        dic: Optional[float] = None,
        sampling_time: float = 0.0,
        n_divergences: int = 0,
    ) -> None:
        frozen: Dict[str, NDArray[np.float64]] = {}
        layout: Optional[Tuple[int, int]] = None
        for name, values in samples.items():
            arr = np.array(values, dtype=np.float64, copy=True)
            if arr.ndim < 2:
                raise ValueError(
                    f"Draws for {name!r} must have shape (chains, draws, ...). Got {arr.shape}"
                )
            if layout is None:
                layout = arr.shape[:2]
            elif arr.shape[:2] != layout:
                raise ValueError(
                    f"Draws for {name!r} have layout {arr.shape[:2]}, expected {layout}"
                )
            arr.setflags(write=False)
            frozen[name] = arr

        self._samples = MappingProxyType(frozen)
        self._layout = layout or (0, 0)
        self.spec = spec
        self.config = config
        self.dic = dic
        self.sampling_time = sampling_time
        self.n_divergences = n_divergences

    @property
    def samples(self) -> Mapping[str, NDArray[np.float64]]:
        """Read-only mapping name -> (chains, draws, *shape) array."""
        return self._samples

    @property
    def names(self) -> Tuple[str, ...]:
        return tuple(self._samples)

    @property
    def n_chains(self) -> int:
        return self._layout[0]

    @property
    def n_draws(self) -> int:
        """Retained draws per chain."""
        return self._layout[1]

    @property
    def total_draws(self) -> int:
        return self.n_chains * self.n_draws

    def _get(self, name: str) -> NDArray[np.float64]:
        try:
            return self._samples[name]
        except KeyError:
            raise ConfigurationError(
                f"Quantity {name!r} was not monitored. Available: {sorted(self._samples)}"
            ) from None

    def chains(self, name: str) -> NDArray[np.float64]:
        """Draws of ``name`` per chain, shape (chains, draws, *shape)."""
        return self._get(name)

    def chain(self, name: str, i: int) -> NDArray[np.float64]:
        """Draws of ``name`` from chain ``i``, shape (draws, *shape)."""
        return self._get(name)[i]

    def pooled(self, name: str) -> NDArray[np.float64]:
        """Draws of ``name`` with chains concatenated, shape (chains * draws, *shape)."""
        arr = self._get(name)
        return arr.reshape((-1,) + arr.shape[2:])

    def mean(self, name: str) -> NDArray[np.float64]:
        """Posterior mean of ``name`` over all retained draws."""
        return np.mean(self.pooled(name), axis=0)

    def interval(self, name: str, prob: float = 0.95) -> Tuple[NDArray, NDArray]:
        """Equal-tailed credible interval of ``name`` (lower, upper)."""
        if not (0.0 < prob < 1.0):
            raise ConfigurationError(f"prob must be in (0, 1). Got {prob}")
        tail = 100.0 * (1.0 - prob) / 2.0
        lower, upper = np.percentile(self.pooled(name), [tail, 100.0 - tail], axis=0)
        return lower, upper

    def to_inference_data(self) -> az.InferenceData:
        """Wrap the draws in an ArviZ ``InferenceData`` (posterior group only)."""
        return az.from_dict(posterior={name: np.asarray(v) for name, v in self._samples.items()})

    def __contains__(self, name: object) -> bool:
        return name in self._samples

    def __getitem__(self, name: str) -> NDArray[np.float64]:
        return self._get(name)

    def __repr__(self) -> str:
        """String representation."""
        dic = f", dic={self.dic:.2f}" if self.dic is not None else ""
        return (
            f"FitResult(shape={self.spec.shape.value!r}, quantities={list(self.names)}, "
            f"chains={self.n_chains}, draws={self.n_draws}{dic})"
        )
