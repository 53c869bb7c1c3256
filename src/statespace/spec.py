"""
Declarative model specifications for Bayesian time-series models.

A specification is a plain value object, independent of any sampler. It
lists priors, derived quantities, the latent-state recursion and the
observation model of one model variant, following a single template:

    state[t]       = f(state[t-1], coefficients) + process_noise
    observation[t] = g(state[t]) + observation_noise

Variants (``Shape``) restrict or extend that template:

    mean        Y[t] ~ N(mu, tau_obs)
    regression  Y[t] ~ N(alpha + beta c[t], tau_obs)
    ar1_errors  Y[t] ~ N(alpha + beta c[t] + phi e[t-1], tau_obs)
    rw          Y[t] ~ N(Y[t-1] (+ u), tau_pro)
    ar1         Y[t] ~ N(mu + b (Y[t-1] - mu), tau_pro)
    ss          X[t] ~ N((b) X[t-1] + u, tau_pro);  Y[t] ~ N(X[t], tau_obs)
    mss         X[j,t] as ss per state;  Y[i,t] ~ N(X[g(i),t] + A[i], tau_obs[i])
    poisson     ss recursion;  Y[t] ~ Poisson(exp(X[t]))
    negbin      ss recursion;  Y[t] ~ NegBin(r / (r + exp(X[t])), r)

Precisions (reciprocal variances) parameterize every Normal:
``Normal(mean, precision)``.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Tuple, Union

from statespace.errors import ConfigurationError


class Shape(str, Enum):
    """Model variants understood by the builder and the backend."""

    MEAN = "mean"
    REGRESSION = "regression"
    AR1_ERRORS = "ar1_errors"
    RANDOM_WALK = "rw"
    AR1 = "ar1"
    STATE_SPACE = "ss"
    MULTIVARIATE = "mss"
    POISSON = "poisson"
    NEGBIN = "negbin"


# The observed series is itself the state (no observation noise)
PROCESS_SHAPES: FrozenSet[Shape] = frozenset({Shape.RANDOM_WALK, Shape.AR1})
# Latent state X observed through a noise model
LATENT_SHAPES: FrozenSet[Shape] = frozenset(
    {Shape.STATE_SPACE, Shape.MULTIVARIATE, Shape.POISSON, Shape.NEGBIN}
)
RECURSIVE_SHAPES: FrozenSet[Shape] = PROCESS_SHAPES | LATENT_SHAPES
COVARIATE_SHAPES: FrozenSet[Shape] = frozenset({Shape.REGRESSION, Shape.AR1_ERRORS})

PRIOR_FAMILIES: Dict[str, Tuple[str, Tuple[str, ...]]] = {
    "normal": ("Normal", ("mean", "precision")),
    "gamma": ("Gamma", ("shape", "rate")),
    "uniform": ("Uniform", ("lower", "upper")),
}
OBSERVATION_FAMILIES: Dict[str, str] = {
    "normal": "identity",
    "poisson": "log",
    "negbin": "log",
}
DERIVED_OPS = ("reciprocal", "stationary_variance")

Hyper = Union[float, str]


def _fmt(value: Hyper) -> str:
    if isinstance(value, str):
        return value
    return f"{value:g}"


def _dims(shape: Tuple[int, ...]) -> str:
    if not shape:
        return ""
    return "[" + ", ".join(str(s) for s in shape) + "]"


@dataclass(frozen=True)
class Prior:
    """
    Prior on one free parameter.

    Parameters
    ----------
    name : str
        Parameter name (also the monitored quantity name).
    family : str
        One of ``normal`` (mean, precision), ``gamma`` (shape, rate),
        ``uniform`` (lower, upper).
    params : tuple
        Hyperparameters. A string names a data-dictionary entry (used to
        centre the initial-state prior on the first observation).
    shape : tuple of int
        Parameter shape; ``()`` for scalars.
    fixed : tuple of (index, value)
        Vector entries held constant instead of estimated.
    """

    name: str
    family: str
    params: Tuple[Hyper, ...]
    shape: Tuple[int, ...] = ()
    fixed: Tuple[Tuple[int, float], ...] = ()

    def __post_init__(self) -> None:
        if self.family not in PRIOR_FAMILIES:
            raise ConfigurationError(
                f"Unknown prior family {self.family!r} for {self.name!r}. "
                f"Expected one of {sorted(PRIOR_FAMILIES)}"
            )
        arity = len(PRIOR_FAMILIES[self.family][1])
        if len(self.params) != arity:
            raise ConfigurationError(
                f"Prior {self.name!r} ({self.family}) takes {arity} "
                f"hyperparameters. Got {len(self.params)}"
            )
        if self.fixed:
            if len(self.shape) != 1:
                raise ConfigurationError(
                    f"Fixed entries require a vector prior. {self.name!r} has shape {self.shape}"
                )
            for idx, _ in self.fixed:
                if not 0 <= idx < self.shape[0]:
                    raise ConfigurationError(
                        f"Fixed index {idx} out of range for {self.name!r} with shape {self.shape}"
                    )
            if len({idx for idx, _ in self.fixed}) == self.shape[0]:
                raise ConfigurationError(f"Every entry of {self.name!r} is fixed")

    @property
    def data_refs(self) -> Tuple[str, ...]:
        """Hyperparameters that name data-dictionary entries."""
        return tuple(p for p in self.params if isinstance(p, str))

    @property
    def fixed_indices(self) -> Tuple[int, ...]:
        return tuple(idx for idx, _ in self.fixed)

    def render(self) -> List[str]:
        label, _ = PRIOR_FAMILIES[self.family]
        args = ", ".join(_fmt(p) for p in self.params)
        lines = [f"{self.name}{_dims(self.shape)} ~ {label}({args})"]
        for idx, value in self.fixed:
            lines.append(f"{self.name}[{idx}] <- {_fmt(value)}")
        return lines


@dataclass(frozen=True)
class Derived:
    """Deterministic quantity computed from parameters."""

    name: str
    op: str
    args: Tuple[str, ...]

    def __post_init__(self) -> None:
        if self.op not in DERIVED_OPS:
            raise ConfigurationError(f"Unknown derived op {self.op!r} for {self.name!r}")
        expected = 1 if self.op == "reciprocal" else 2
        if len(self.args) != expected:
            raise ConfigurationError(
                f"Derived {self.name!r} ({self.op}) takes {expected} argument(s). Got {self.args}"
            )

    def render(self) -> str:
        if self.op == "reciprocal":
            return f"{self.name} <- 1 / {self.args[0]}"
        variance, coef = self.args
        return f"{self.name} <- {variance} / (1 - {coef}^2)"


@dataclass(frozen=True)
class Recursion:
    """
    Latent-state recursion.

    Parameters
    ----------
    target : str
        ``"Y"`` when the observed series is the state itself, ``"X"`` for
        a latent state.
    precision : str
        Process-noise precision parameter.
    drift : str, optional
        Additive drift parameter.
    coef : str, optional
        Autoregressive coefficient; identity recursion when absent.
    mean : str, optional
        Mean-reversion level (``mu + b (state - mu)``).
    init : str
        First-step handling: ``"conditional"`` (the first value is
        conditioned on, no likelihood term), ``"stationary"`` (first value
        drawn from the stationary distribution), or the name of an
        initial-state prior such as ``"X0"``.
    init_variance : str, optional
        Derived variance used by a stationary first step.
    n_states : int
        Number of independent latent states.
    """

    target: str
    precision: str
    drift: Optional[str] = None
    coef: Optional[str] = None
    mean: Optional[str] = None
    init: str = "conditional"
    init_variance: Optional[str] = None
    n_states: int = 1

    def __post_init__(self) -> None:
        if self.target not in ("X", "Y"):
            raise ConfigurationError(f"Recursion target must be 'X' or 'Y'. Got {self.target!r}")
        if self.init == "stationary":
            if self.coef is None or self.init_variance is None:
                raise ConfigurationError(
                    "A stationary first step needs an AR coefficient and a stationary variance"
                )
        if self.mean is not None and self.coef is None:
            raise ConfigurationError("Mean reversion requires an AR coefficient")
        if self.n_states < 1:
            raise ConfigurationError(f"n_states must be >= 1. Got {self.n_states}")

    @property
    def initial_prior(self) -> Optional[str]:
        if self.init in ("conditional", "stationary"):
            return None
        return self.init

    def references(self) -> FrozenSet[str]:
        names = [self.precision, self.drift, self.coef, self.mean, self.init_variance]
        names.append(self.initial_prior)
        return frozenset(n for n in names if n is not None)

    def _predictor(self, previous: str) -> str:
        if self.mean is not None:
            term = f"{self.mean} + {self.coef} * ({previous} - {self.mean})"
        elif self.coef is not None:
            term = f"{self.coef} * {previous}"
        else:
            term = previous
        if self.drift is not None:
            term = f"{term} + {self.drift}"
        return term

    def render(self) -> List[str]:
        j = "j, " if self.n_states > 1 else ""
        state = self.target
        if self.init == "conditional":
            first = f"{state}[{j}1] conditioned on (no likelihood term)"
        elif self.init == "stationary":
            first = f"{state}[1] ~ Normal({self.mean or 0}, 1 / {self.init_variance})"
        else:
            prev = f"{self.init}[j]" if self.n_states > 1 else self.init
            first = f"{state}[{j}1] ~ Normal({self._predictor(prev)}, {self.precision})"
        step = (
            f"{state}[{j}t] ~ Normal({self._predictor(f'{state}[{j}t-1]')}, "
            f"{self.precision}), t = 2..N"
        )
        return [first, step]


@dataclass(frozen=True)
class Observation:
    """
    Observation model: how each observed value's distribution parameters
    are computed from the state and covariates.

    Parameters
    ----------
    family : str
        ``normal``, ``poisson`` or ``negbin``.
    link : str
        ``identity`` for Normal, ``log`` for count families.
    state : str, optional
        ``"X"`` (latent state) or ``"Y"`` (observed series is the state).
    location : tuple of str
        Intercept-like parameters added to the linear predictor.
    slope : str, optional
        Coefficient on ``covariate``.
    covariate : str, optional
        Data-dictionary key of the covariate series.
    error_coef : str, optional
        AR(1) coefficient on the previous step's residual.
    offsets : str, optional
        Per-site offset vector (multivariate models).
    precision : str, optional
        Observation-noise precision (Normal family).
    dispersion : str, optional
        Negative-binomial size parameter.
    groups : tuple of int
        Site-to-state assignment (multivariate models).
    """

    family: str = "normal"
    link: str = "identity"
    state: Optional[str] = None
    location: Tuple[str, ...] = ()
    slope: Optional[str] = None
    covariate: Optional[str] = None
    error_coef: Optional[str] = None
    offsets: Optional[str] = None
    precision: Optional[str] = None
    dispersion: Optional[str] = None
    groups: Tuple[int, ...] = ()

    def __post_init__(self) -> None:
        if self.family not in OBSERVATION_FAMILIES:
            raise ConfigurationError(
                f"Unknown observation family {self.family!r}. "
                f"Expected one of {sorted(OBSERVATION_FAMILIES)}"
            )
        if OBSERVATION_FAMILIES[self.family] != self.link:
            raise ConfigurationError(
                f"Family {self.family!r} uses the {OBSERVATION_FAMILIES[self.family]!r} link. "
                f"Got {self.link!r}"
            )
        if (self.slope is None) != (self.covariate is None):
            raise ConfigurationError("A covariate slope needs a covariate series and vice versa")
        if self.family == "negbin" and self.dispersion is None:
            raise ConfigurationError("Negative-binomial observations need a dispersion parameter")
        if self.family == "normal" and self.state != "Y" and self.precision is None:
            raise ConfigurationError("Normal observations need a precision parameter")
        if self.state == "Y" and self.family != "normal":
            raise ConfigurationError("Only Gaussian processes can be observed without noise")

    def references(self) -> FrozenSet[str]:
        names = list(self.location)
        names += [self.slope, self.error_coef, self.offsets, self.precision, self.dispersion]
        return frozenset(n for n in names if n is not None)

    def _linear(self, t: str) -> str:
        terms = list(self.location)
        if self.slope is not None:
            terms.append(f"{self.slope} * {self.covariate}[{t}]")
        return " + ".join(terms)

    def render(
        self, multivariate: bool = False, per_site: FrozenSet[str] = frozenset()
    ) -> List[str]:
        """Listing lines; names in ``per_site`` are indexed by site."""
        i = "i, " if multivariate else ""
        lines: List[str] = []
        if self.state == "Y":
            return ["fitted[t] <- Y[t] (observed, or imputed where missing)"]
        if self.state == "X":
            x = "X[g[i], t]" if multivariate else "X[t]"
            eta = f"{x} + {self.offsets}[i]" if self.offsets else x
            mean = f"exp({eta})" if self.link == "log" else eta
            lines.append(f"fitted[{i}t] <- {mean}")
        elif self.error_coef is not None:
            lines.append(f"fitted[1] <- {self._linear('1')}")
            lines.append(
                f"fitted[t] <- {self._linear('t')} + {self.error_coef} * "
                f"(Y[t-1] - ({self._linear('t-1')})), t = 2..N"
            )
        else:
            lines.append(f"fitted[t] <- {self._linear('t')}")

        if self.family == "normal":
            prec = f"{self.precision}[i]" if self.precision in per_site else self.precision
            lines.append(f"Y[{i}t] ~ Normal(fitted[{i}t], {prec}), t = 1..N")
        elif self.family == "poisson":
            lines.append(f"Y[{i}t] ~ Poisson(fitted[{i}t]), t = 1..N")
        else:
            r = f"{self.dispersion}[i]" if self.dispersion in per_site else self.dispersion
            lines.append(f"Y[{i}t] ~ NegBinomial({r} / ({r} + fitted[{i}t]), {r}), t = 1..N")
        return lines


@dataclass(frozen=True)
class ModelSpec:
    """
    Complete declarative specification of one model variant.

    Instances are produced by :class:`statespace.builder.SpecBuilder` and
    consumed by an inference backend. ``options`` records the builder
    options so the same variant can be rebuilt for another length.
    """

    shape: Shape
    N: int
    n: int
    priors: Tuple[Prior, ...]
    observation: Observation
    recursion: Optional[Recursion] = None
    derived: Tuple[Derived, ...] = ()
    options: Tuple[Tuple[str, Any], ...] = field(default=())

    @property
    def n_states(self) -> int:
        return self.recursion.n_states if self.recursion is not None else 1

    @property
    def multivariate(self) -> bool:
        return self.shape == Shape.MULTIVARIATE

    @property
    def is_process(self) -> bool:
        return self.shape in PROCESS_SHAPES

    @property
    def has_latent_state(self) -> bool:
        return self.shape in LATENT_SHAPES

    def option(self, name: str, default: Any = None) -> Any:
        return dict(self.options).get(name, default)

    def prior(self, name: str) -> Prior:
        for p in self.priors:
            if p.name == name:
                return p
        raise ConfigurationError(f"{self.shape.value!r} declares no prior named {name!r}")

    def data_keys(self) -> Tuple[str, ...]:
        """Data-dictionary entries the model reads."""
        keys = ["Y", "N", "n"]
        if self.observation.covariate is not None:
            keys.append(self.observation.covariate)
        for p in self.priors:
            for ref in p.data_refs:
                if ref not in keys:
                    keys.append(ref)
        return tuple(keys)

    def quantities(self) -> Dict[str, Tuple[int, ...]]:
        """Every quantity the model produces, with its per-draw shape."""
        out: Dict[str, Tuple[int, ...]] = {p.name: p.shape for p in self.priors}
        for d in self.derived:
            out[d.name] = out.get(d.args[0], ())
            if d.op == "stationary_variance":
                out[d.name] = out.get(d.args[1], ()) or out.get(d.args[0], ())
        if self.has_latent_state:
            out["X"] = (self.n_states, self.N) if self.multivariate else (self.N,)
        out["fitted"] = (self.n, self.N) if self.multivariate else (self.N,)
        return out

    def validate(self) -> "ModelSpec":
        """
        Check that declared parameters and referenced names agree.

        Raises
        ------
        ConfigurationError
            If a line references an undeclared name, a prior is never
            referenced, a name is declared twice, or dimensions disagree.
        """
        if self.N < 1 or self.n < 1:
            raise ConfigurationError(f"N and n must be positive. Got N={self.N}, n={self.n}")
        if self.recursion is not None and self.N < 2:
            raise ConfigurationError(f"A state recursion needs N >= 2. Got N={self.N}")
        if self.n > 1 and not self.multivariate:
            raise ConfigurationError(f"{self.shape.value!r} is univariate. Got n={self.n}")

        names = [p.name for p in self.priors] + [d.name for d in self.derived]
        duplicated = sorted({n for n in names if names.count(n) > 1})
        if duplicated:
            raise ConfigurationError(f"Quantities declared more than once: {duplicated}")
        reserved = {"X", "fitted"} & set(names)
        if reserved:
            raise ConfigurationError(
                f"Reserved quantity names used as parameters: {sorted(reserved)}"
            )

        declared = set(names)
        referenced = set(self.observation.references())
        if self.recursion is not None:
            referenced |= self.recursion.references()
        for d in self.derived:
            missing_args = set(d.args) - declared
            if missing_args:
                raise ConfigurationError(
                    f"Derived {d.name!r} references undeclared {sorted(missing_args)}"
                )

        undeclared = referenced - declared
        if undeclared:
            raise ConfigurationError(
                f"{self.shape.value!r} references undeclared parameters {sorted(undeclared)}"
            )
        unused = {p.name for p in self.priors} - referenced
        if unused:
            raise ConfigurationError(
                f"{self.shape.value!r} declares priors never referenced: {sorted(unused)}"
            )

        if self.has_latent_state != (self.observation.state == "X"):
            raise ConfigurationError("Latent-state shapes must observe the latent state X")
        if self.is_process != (self.observation.state == "Y"):
            raise ConfigurationError("Process shapes must observe the series itself")
        if (self.observation.covariate is not None) != (self.shape in COVARIATE_SHAPES):
            raise ConfigurationError(f"Covariate usage does not match shape {self.shape.value!r}")
        self._validate_groups()
        return self

    def _validate_groups(self) -> None:
        groups = self.observation.groups
        if not self.multivariate:
            if groups:
                raise ConfigurationError("Site groupings apply to the multivariate shape only")
            return
        if len(groups) != self.n:
            raise ConfigurationError(
                f"Site grouping must assign all {self.n} sites. Got {len(groups)}"
            )
        if sorted(set(groups)) != list(range(self.n_states)):
            raise ConfigurationError(
                f"Site grouping {groups} must use every state 0..{self.n_states - 1}"
            )
        if self.observation.offsets is not None:
            first_sites = tuple(groups.index(j) for j in range(self.n_states))
            offsets = self.prior(self.observation.offsets)
            if sorted(offsets.fixed_indices) != sorted(first_sites):
                raise ConfigurationError(
                    f"Offsets {offsets.name!r} must be fixed for the first site of each "
                    f"state {first_sites}. Got {offsets.fixed_indices}"
                )

    def to_text(self) -> str:
        """Render the specification as a readable declarative listing."""
        header = f"# {self.shape.value} (N={self.N}, n={self.n}"
        if self.multivariate:
            header += f", states={self.n_states}"
        lines = [header + ")"]
        for p in self.priors:
            lines.extend(p.render())
        for d in self.derived:
            lines.append(d.render())
        if self.recursion is not None:
            lines.extend(self.recursion.render())
        per_site = frozenset(
            p.name for p in self.priors if self.multivariate and p.shape == (self.n,)
        )
        lines.extend(self.observation.render(multivariate=self.multivariate, per_site=per_site))
        return "\n".join(lines)

    def __str__(self) -> str:
        return self.to_text()
