"""
Convergence and stationarity diagnostics for fitted chains.

Per monitored quantity, and per element of array quantities:

- posterior mean, sd and equal-tailed credible interval;
- R-hat (potential scale reduction; split-half when only one chain ran);
- effective sample size;
- per-chain autocorrelation at chosen lags;
- a per-chain mean-stability test: segment means compared through a
  chi-square statistic with autocorrelation-adjusted standard errors;
- a per-chain trend test: Geweke z-score of an early segment mean against
  a late segment mean.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import arviz as az
import numpy as np
from numpy.typing import NDArray
from scipy import stats

from inference.posterior import FitResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TestResult:
    """Outcome of one hypothesis test (``passed`` means not rejected)."""

    __test__ = False  # not a pytest class

    passed: bool
    statistic: float
    p_value: float


@dataclass(frozen=True)
class QuantitySummary:
    """Diagnostics of one scalar quantity (or one element of an array)."""

    label: str
    mean: float
    sd: float
    lower: float
    upper: float
    rhat: float
    ess: float
    autocorrelation: Tuple[Dict[int, float], ...] = ()
    stationarity: Tuple[TestResult, ...] = ()
    trend: Tuple[TestResult, ...] = ()
    width: float = field(init=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "width", self.upper - self.lower)

    @property
    def converged(self) -> bool:
        """R-hat below 1.1 (nan counts as not converged)."""
        return bool(self.rhat < 1.1)


class DiagnosticsComputer:
    """
    Compute convergence diagnostics from posterior samples.

    Includes: Rhat, ESS, autocorrelation, stationarity and trend tests.
    """

    @staticmethod
    def rhat(posterior_samples: NDArray[np.float64]) -> float:
        """
        Compute Rhat (potential scale reduction factor).

        Rhat measures whether multiple chains have converged to the same
        posterior distribution. Rhat < 1.01 indicates convergence. With a
        single chain, its two halves are compared instead.

        Parameters
        ----------
        posterior_samples : NDArray[np.float64]
            Posterior samples, shape (chains, draws) or (draws,).

        Returns
        -------
        rhat : float
            Potential scale reduction factor; nan when there are too few
            draws to compare.
        """
        samples = np.asarray(posterior_samples, dtype=np.float64)
        if samples.ndim == 1:
            samples = samples[None, :]
        if samples.ndim != 2:
            raise ValueError(f"Expected shape (chains, draws). Got {samples.shape}")

        n_chains, n_draws = samples.shape
        if n_chains == 1:
            half = n_draws // 2
            if half < 2:
                return float("nan")
            samples = np.stack([samples[0, :half], samples[0, n_draws - half:]])
            n_chains, n_draws = samples.shape
        if n_draws < 2:
            return float("nan")

        # Between-chain variance
        chain_means = np.mean(samples, axis=1)
        B = n_draws * np.var(chain_means, ddof=1)

        # Within-chain variance
        W = np.mean(np.var(samples, axis=1, ddof=1))

        if W <= 0:
            return 1.0 if B <= 0 else float("inf")

        var_hat = ((n_draws - 1) / n_draws) * W + (1 / n_draws) * B
        return float(np.sqrt(var_hat / W))

    @staticmethod
    def ess(posterior_samples: NDArray[np.float64]) -> float:
        """
        Compute effective sample size (ESS).

        ESS accounts for autocorrelation in MCMC samples.
        ESS > 400 per chain is recommended.

        Parameters
        ----------
        posterior_samples : NDArray[np.float64]
            Posterior samples from single chain, shape (draws,).

        Returns
        -------
        ess : float
            Effective sample size.
        """
        x = np.asarray(posterior_samples, dtype=np.float64)
        n = len(x)
        if n < 2:
            return float(n)

        mean = np.mean(x)
        c0 = np.var(x, ddof=1)

        if c0 < 1e-10:
            return float(n)  # No variation → ESS = n

        # Integrated autocorrelation, truncated once it becomes negligible
        tau_int = 0.5
        max_lag = min(n // 2, 100)

        for lag in range(1, max_lag):
            acov = np.mean((x[:-lag] - mean) * (x[lag:] - mean))
            rho = acov / c0

            if rho < 0.05:
                break

            tau_int += rho

        return float(max(1, n / (2 * tau_int)))

    @staticmethod
    def autocorrelation(
        posterior_samples: NDArray[np.float64], lags: Iterable[int] = (1, 5, 10)
    ) -> Dict[int, float]:
        """
        Sample autocorrelation of one chain at the given lags.

        Returns nan for a lag >= the chain length or a constant chain.
        """
        x = np.asarray(posterior_samples, dtype=np.float64)
        n = len(x)
        centred = x - np.mean(x)
        denom = np.sum(centred**2)
        out: Dict[int, float] = {}
        for lag in lags:
            lag = int(lag)
            if lag < 0:
                raise ValueError(f"Lags must be non-negative. Got {lag}")
            if lag >= n or denom <= 0:
                out[lag] = float("nan")
            else:
                out[lag] = float(np.sum(centred[: n - lag] * centred[lag:]) / denom)
        return out

    @staticmethod
    def mean_stability_test(
        posterior_samples: NDArray[np.float64],
        n_segments: int = 4,
        alpha: float = 0.05,
    ) -> TestResult:
        """
        Test that a chain's mean is stable across consecutive segments.

        The chain is cut into ``n_segments`` pieces. Segment means are
        compared with their precision-weighted average; each standard error is
        ``sd / sqrt(ess)`` of its segment. Under stationarity the statistic is
        approximately chi-square with ``n_segments - 1`` degrees of freedom.

        Parameters
        ----------
        posterior_samples : NDArray[np.float64]
            One chain, shape (draws,).
        n_segments : int
            Number of segments (>= 2).
        alpha : float
            Significance level.

        Returns
        -------
        TestResult
            ``passed`` when the p-value is at least ``alpha``.
        """
        x = np.asarray(posterior_samples, dtype=np.float64)
        if n_segments < 2:
            raise ValueError(f"n_segments must be >= 2. Got {n_segments}")
        if len(x) < 2 * n_segments:
            raise ValueError(
                f"Need at least {2 * n_segments} draws for {n_segments} segments. Got {len(x)}"
            )

        segments = np.array_split(x, n_segments)
        means = np.array([np.mean(s) for s in segments])
        se = np.array(
            [np.std(s, ddof=1) / np.sqrt(DiagnosticsComputer.ess(s)) for s in segments]
        )

        if np.any(se <= 0):
            statistic = 0.0 if np.ptp(means) == 0 else float("inf")
        else:
            weights = 1.0 / se**2
            pooled = np.sum(weights * means) / np.sum(weights)
            statistic = float(np.sum(weights * (means - pooled) ** 2))

        p_value = float(stats.chi2.sf(statistic, df=n_segments - 1))
        return TestResult(passed=p_value >= alpha, statistic=statistic, p_value=p_value)

    @staticmethod
    def trend_test(
        posterior_samples: NDArray[np.float64],
        first: float = 0.1,
        last: float = 0.5,
        alpha: float = 0.05,
    ) -> TestResult:
        """
        Geweke test: early-segment mean against late-segment mean.

        Parameters
        ----------
        posterior_samples : NDArray[np.float64]
            One chain, shape (draws,).
        first, last : float
            Fractions of the chain forming the early and late segments.
        alpha : float
            Significance level.

        Returns
        -------
        TestResult
            z-score and two-sided normal p-value.
        """
        x = np.asarray(posterior_samples, dtype=np.float64)
        if not (0 < first < 1 and 0 < last < 1 and first + last <= 1):
            raise ValueError(f"Invalid segment fractions first={first}, last={last}")
        n = len(x)
        n_a = int(np.floor(first * n))
        n_b = int(np.floor(last * n))
        if n_a < 2 or n_b < 2:
            raise ValueError(f"Chain of {n} draws is too short for the trend test")

        a, b = x[:n_a], x[n - n_b:]
        var = np.var(a, ddof=1) / DiagnosticsComputer.ess(a) + np.var(
            b, ddof=1
        ) / DiagnosticsComputer.ess(b)
        diff = np.mean(a) - np.mean(b)
        if var <= 0:
            z = 0.0 if diff == 0 else float(np.copysign(np.inf, diff))
        else:
            z = float(diff / np.sqrt(var))

        p_value = float(2.0 * stats.norm.sf(abs(z)))
        return TestResult(passed=p_value >= alpha, statistic=z, p_value=p_value)

    @staticmethod
    def credible_interval(
        posterior_samples: NDArray[np.float64], prob: float = 0.95, axis: int = 0
    ) -> Tuple[NDArray[np.float64], NDArray[np.float64]]:
        """Equal-tailed interval holding ``prob`` of the draws along ``axis``."""
        if not (0.0 < prob < 1.0):
            raise ValueError(f"prob must be in (0, 1). Got {prob}")
        tail = 100.0 * (1.0 - prob) / 2.0
        lower, upper = np.percentile(posterior_samples, [tail, 100.0 - tail], axis=axis)
        return lower, upper

    @staticmethod
    def divergence_rate(fit: FitResult) -> float:
        """
        Fraction of retained draws that diverged.

        <2% is acceptable, <0.5% is good.
        """
        if fit.total_draws == 0:
            return 0.0
        return float(fit.n_divergences / fit.total_draws)


def _element_labels(name: str, shape: Tuple[int, ...]) -> List[Tuple[str, Tuple[int, ...]]]:
    if not shape:
        return [(name, ())]
    return [(f"{name}[{', '.join(str(i) for i in idx)}]", idx) for idx in np.ndindex(*shape)]


def summarize(
    fit: FitResult,
    names: Optional[Sequence[str]] = None,
    prob: float = 0.95,
    lags: Sequence[int] = (1, 5, 10),
    n_segments: int = 4,
    alpha: float = 0.05,
) -> Dict[str, QuantitySummary]:
    """
    Diagnostics for every element of the requested quantities.

    Parameters
    ----------
    fit : FitResult
        Fitted chains.
    names : Sequence[str], optional
        Quantities to summarize (default: all monitored).
    prob : float
        Credible interval mass.
    lags : Sequence[int]
        Autocorrelation lags.
    n_segments : int
        Segments for the mean-stability test.
    alpha : float
        Significance level of the stationarity and trend tests.

    Returns
    -------
    Dict[str, QuantitySummary]
        Keyed by element label, e.g. ``"mu"``, ``"X[3]"`` or ``"X[0, 3]"``.
        Stationarity and trend tests are left empty when the chains are
        too short for them.
    """
    dc = DiagnosticsComputer
    out: Dict[str, QuantitySummary] = {}
    n_draws = fit.n_draws
    run_stability = n_draws >= 2 * n_segments
    run_trend = int(0.1 * n_draws) >= 2
    if not (run_stability and run_trend):
        logger.debug("Chains of %d draws: skipping stationarity/trend tests", n_draws)

    for name in names if names is not None else fit.names:
        draws = fit.chains(name)
        for label, idx in _element_labels(name, draws.shape[2:]):
            x = draws[(slice(None), slice(None)) + idx]
            pooled = x.reshape(-1)
            lower, upper = dc.credible_interval(pooled, prob)
            per_chain = list(x)
            out[label] = QuantitySummary(
                label=label,
                mean=float(np.mean(pooled)),
                sd=float(np.std(pooled, ddof=1)) if pooled.size > 1 else 0.0,
                lower=float(lower),
                upper=float(upper),
                rhat=dc.rhat(x),
                ess=float(sum(dc.ess(c) for c in per_chain)),
                autocorrelation=tuple(dc.autocorrelation(c, lags) for c in per_chain),
                stationarity=tuple(
                    dc.mean_stability_test(c, n_segments, alpha) for c in per_chain
                )
                if run_stability
                else (),
                trend=tuple(dc.trend_test(c, alpha=alpha) for c in per_chain)
                if run_trend
                else (),
            )

    unconverged = [label for label, s in out.items() if s.rhat > 1.1]
    if unconverged:
        logger.warning(
            "R-hat > 1.1 for %d element(s): %s", len(unconverged), ", ".join(unconverged[:10])
        )
    return out


def summary_table(fit: FitResult, names: Optional[Sequence[str]] = None, prob: float = 0.95):
    """ArviZ summary table (``pandas.DataFrame``) of the requested quantities."""
    var_names = list(names) if names is not None else list(fit.names)
    return az.summary(fit.to_inference_data(), var_names=var_names, hdi_prob=prob)
