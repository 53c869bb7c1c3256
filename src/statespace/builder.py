"""
Model specification builder.

Every variant is produced by one parameterized template rather than kept as
an independent copy. A shape resolves to:

(a) presence of an autoregressive coefficient,
(b) presence of a covariate,
(c) dimensionality: n observed sites mapped onto k latent states,
(d) observation family: Normal / Poisson / negative binomial,
(e) identifiability constraints: the first offset of each state group is
    fixed at zero.

Priors are vague by convention:

    location parameters     ~ Normal(0, 0.01)
    offsets, initial state  ~ Normal(., 0.001)
    precisions              ~ Gamma(0.001, 0.001)
    AR coefficients         ~ Uniform(-1, 1)
    NB dispersion           ~ Uniform(0, 50)

**Usage:**
```python
from statespace.builder import build_spec

spec = build_spec("ss", N=30)                       # univariate state space
spec = build_spec("mss", N=30, n=5, states="shared")
print(spec.to_text())
```
"""

import logging
from typing import Any, Dict, List, Optional, Tuple, Union

from statespace.errors import ConfigurationError
from statespace.spec import (
    COVARIATE_SHAPES,
    Derived,
    ModelSpec,
    Observation,
    Prior,
    Recursion,
    Shape,
)

logger = logging.getLogger(__name__)


class PriorDefaults:
    """Hyperparameters of the vague priors used by every shape."""

    def __init__(
        self,
        location_precision: float = 0.01,
        offset_precision: float = 0.001,
        initial_precision: float = 0.001,
        precision_shape: float = 0.001,
        precision_rate: float = 0.001,
        ar_lower: float = -1.0,
        ar_upper: float = 1.0,
        dispersion_upper: float = 50.0,
    ) -> None:
        """
        Initialize prior defaults.

        Parameters
        ----------
        location_precision : float
            Precision of the Normal prior on means, intercepts, slopes and
            drifts. Default 0.01 (sd 10).
        offset_precision : float
            Precision of the Normal prior on site offsets. Default 0.001.
        initial_precision : float
            Precision of the Normal prior on the initial state, centred on
            the first observation. Default 0.001.
        precision_shape, precision_rate : float
            Gamma prior on every precision. Default 0.001, 0.001.
        ar_lower, ar_upper : float
            Uniform bounds on autoregressive coefficients. Default (-1, 1).
        dispersion_upper : float
            Upper bound of the Uniform prior on the negative-binomial size.
        """
        for name, value in (
            ("location_precision", location_precision),
            ("offset_precision", offset_precision),
            ("initial_precision", initial_precision),
            ("precision_shape", precision_shape),
            ("precision_rate", precision_rate),
            ("dispersion_upper", dispersion_upper),
        ):
            if value <= 0:
                raise ConfigurationError(f"{name} must be positive. Got {value}")
        if not ar_lower < ar_upper:
            raise ConfigurationError(
                f"ar_lower must be below ar_upper. Got ({ar_lower}, {ar_upper})"
            )

        self.location_precision = location_precision
        self.offset_precision = offset_precision
        self.initial_precision = initial_precision
        self.precision_shape = precision_shape
        self.precision_rate = precision_rate
        self.ar_lower = ar_lower
        self.ar_upper = ar_upper
        self.dispersion_upper = dispersion_upper

    def _key(self) -> Tuple[float, ...]:
        return (
            self.location_precision,
            self.offset_precision,
            self.initial_precision,
            self.precision_shape,
            self.precision_rate,
            self.ar_lower,
            self.ar_upper,
            self.dispersion_upper,
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PriorDefaults):
            return NotImplemented
        return self._key() == other._key()

    def __hash__(self) -> int:
        return hash(self._key())

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"PriorDefaults(location_precision={self.location_precision}, "
            f"precision=Gamma({self.precision_shape}, {self.precision_rate}), "
            f"ar=Uniform({self.ar_lower}, {self.ar_upper}))"
        )


# Options each shape accepts, with their defaults
_SHAPE_OPTIONS: Dict[Shape, Dict[str, Any]] = {
    Shape.MEAN: {},
    Shape.REGRESSION: {},
    Shape.AR1_ERRORS: {},
    Shape.RANDOM_WALK: {"drift": False},
    Shape.AR1: {"stationary": True},
    Shape.STATE_SPACE: {"drift": True, "ar": False, "family": "normal"},
    Shape.POISSON: {"drift": True, "ar": False},
    Shape.NEGBIN: {"drift": True, "ar": False},
    Shape.MULTIVARIATE: {
        "drift": True,
        "ar": False,
        "family": "normal",
        "states": "shared",
        "site_variances": True,
        "shared_process": True,
    },
}


def resolve_groups(states: Union[str, Tuple[int, ...], List[int]], n: int) -> Tuple[int, ...]:
    """
    Map each of ``n`` sites to a latent state index.

    ``"shared"`` puts every site on one state, ``"independent"`` gives each
    site its own; an explicit sequence is used as given.
    """
    if states == "shared":
        return (0,) * n
    if states == "independent":
        return tuple(range(n))
    if isinstance(states, str):
        raise ConfigurationError(
            f"states must be 'shared', 'independent' or a sequence. Got {states!r}"
        )
    groups = tuple(int(g) for g in states)
    if len(groups) != n:
        raise ConfigurationError(f"states must assign all {n} sites. Got {len(groups)}")
    if n and sorted(set(groups)) != list(range(max(groups) + 1)):
        raise ConfigurationError(
            f"Site grouping {groups} must use every state 0..{max(groups)}"
        )
    return groups


class SpecBuilder:
    """
    Builds a validated :class:`ModelSpec` for one shape.

    Attributes
    ----------
    shape : Shape
        Model variant.
    N : int
        Series length (including any forecast horizon).
    n : int
        Number of observed series (sites).
    options : dict
        Resolved shape options (defaults applied).
    """

    def __init__(self, shape: Union[Shape, str], N: int, n: int = 1, **options: Any) -> None:
        """
        Initialize builder.

        Parameters
        ----------
        shape : Shape or str
            Model variant, e.g. ``"ss"`` or ``Shape.STATE_SPACE``.
        N : int
            Series length.
        n : int
            Number of observed series. Only the multivariate shape accepts n > 1.
        **options
            Shape options (``drift``, ``ar``, ``stationary``, ``family``,
            ``states``, ``site_variances``, ``shared_process``) and
            ``priors`` (a :class:`PriorDefaults`).

        Raises
        ------
        ConfigurationError
            For unknown shapes or options, or non-positive dimensions.
        """
        try:
            self.shape = Shape(shape)
        except ValueError:
            raise ConfigurationError(
                f"Unknown shape {shape!r}. Expected one of {[s.value for s in Shape]}"
            ) from None
        if int(N) != N or int(n) != n or N < 1 or n < 1:
            raise ConfigurationError(f"N and n must be positive integers. Got N={N}, n={n}")

        self.N = int(N)
        self.n = int(n)

        priors = options.pop("priors", None)
        allowed = _SHAPE_OPTIONS[self.shape]
        unknown = sorted(set(options) - set(allowed))
        if unknown:
            raise ConfigurationError(
                f"Shape {self.shape.value!r} does not accept options {unknown}. "
                f"Allowed: {sorted(allowed)}"
            )
        self.options: Dict[str, Any] = dict(allowed)
        self.options.update(options)
        if self.shape == Shape.MULTIVARIATE:
            states = self.options["states"]
            if not isinstance(states, str):
                self.options["states"] = tuple(int(g) for g in states)
        self.priors = priors if priors is not None else PriorDefaults()

    @property
    def family(self) -> str:
        if self.shape == Shape.POISSON:
            return "poisson"
        if self.shape == Shape.NEGBIN:
            return "negbin"
        return self.options.get("family", "normal")

    def build(self) -> ModelSpec:
        """
        Build and validate the specification.

        Returns
        -------
        spec : ModelSpec
            Deterministic for a given (shape, N, n, options).
        """
        if self.shape in (Shape.MEAN, Shape.REGRESSION, Shape.AR1_ERRORS):
            parts = self._build_regression()
        elif self.shape in (Shape.RANDOM_WALK, Shape.AR1):
            parts = self._build_process()
        else:
            parts = self._build_latent()

        recorded = dict(self.options)
        recorded["priors"] = self.priors
        spec = ModelSpec(
            shape=self.shape,
            N=self.N,
            n=self.n,
            options=tuple(sorted(recorded.items(), key=lambda kv: kv[0])),
            **parts,
        )
        spec.validate()
        logger.debug("Built %s specification:\n%s", self.shape.value, spec.to_text())
        return spec

    # ------------------------------------------------------------------
    # Template pieces
    # ------------------------------------------------------------------

    def _precision(self, name: str, shape: Tuple[int, ...] = ()) -> Prior:
        return Prior(
            name, "gamma", (self.priors.precision_shape, self.priors.precision_rate), shape
        )

    def _location(self, name: str, shape: Tuple[int, ...] = ()) -> Prior:
        return Prior(name, "normal", (0.0, self.priors.location_precision), shape)

    def _ar_coef(self, name: str, shape: Tuple[int, ...] = ()) -> Prior:
        return Prior(name, "uniform", (self.priors.ar_lower, self.priors.ar_upper), shape)

    def _build_regression(self) -> Dict[str, Any]:
        if self.shape == Shape.MEAN:
            priors = [self._location("mu")]
            location: Tuple[str, ...] = ("mu",)
        else:
            priors = [self._location("alpha"), self._location("beta")]
            location = ("alpha",)
        if self.shape == Shape.AR1_ERRORS:
            priors.append(self._ar_coef("phi"))
        priors.append(self._precision("tau_obs"))

        observation = Observation(
            location=location,
            slope="beta" if self.shape in COVARIATE_SHAPES else None,
            covariate="c" if self.shape in COVARIATE_SHAPES else None,
            error_coef="phi" if self.shape == Shape.AR1_ERRORS else None,
            precision="tau_obs",
        )
        return {
            "priors": tuple(priors),
            "derived": (Derived("var_obs", "reciprocal", ("tau_obs",)),),
            "observation": observation,
        }

    def _build_process(self) -> Dict[str, Any]:
        priors: List[Prior] = []
        derived = [Derived("var_pro", "reciprocal", ("tau_pro",))]
        if self.shape == Shape.RANDOM_WALK:
            drift = "u" if self.options["drift"] else None
            if drift:
                priors.append(self._location("u"))
            recursion = Recursion(target="Y", precision="tau_pro", drift=drift)
        else:
            stationary = bool(self.options["stationary"])
            priors += [self._location("mu"), self._ar_coef("b")]
            if stationary:
                derived.append(Derived("var_stationary", "stationary_variance", ("var_pro", "b")))
            recursion = Recursion(
                target="Y",
                precision="tau_pro",
                coef="b",
                mean="mu",
                init="stationary" if stationary else "conditional",
                init_variance="var_stationary" if stationary else None,
            )
        priors.append(self._precision("tau_pro"))
        return {
            "priors": tuple(priors),
            "derived": tuple(derived),
            "recursion": recursion,
            "observation": Observation(state="Y"),
        }

    def _build_latent(self) -> Dict[str, Any]:
        multivariate = self.shape == Shape.MULTIVARIATE
        if multivariate:
            groups = resolve_groups(self.options["states"], self.n)
            k = max(groups) + 1
        else:
            groups = ()
            k = 1
        state_shape: Tuple[int, ...] = (k,) if multivariate else ()
        site_shape: Tuple[int, ...] = (
            (self.n,) if multivariate and self.options.get("site_variances", True) else ()
        )
        process_shape: Tuple[int, ...] = (
            (k,) if multivariate and not self.options.get("shared_process", True) else ()
        )

        priors = [
            Prior("X0", "normal", ("Y1", self.priors.initial_precision), state_shape)
        ]
        drift = "u" if self.options["drift"] else None
        if drift:
            priors.append(self._location("u", state_shape))
        coef = "b" if self.options["ar"] else None
        if coef:
            priors.append(self._ar_coef("b", state_shape))
        priors.append(self._precision("tau_pro", process_shape))
        derived = [Derived("var_pro", "reciprocal", ("tau_pro",))]

        family = self.family
        precision: Optional[str] = None
        dispersion: Optional[str] = None
        if family == "normal":
            precision = "tau_obs"
            priors.append(self._precision("tau_obs", site_shape))
            derived.append(Derived("var_obs", "reciprocal", ("tau_obs",)))
        elif family == "negbin":
            dispersion = "r"
            priors.append(Prior("r", "uniform", (0.0, self.priors.dispersion_upper), site_shape))

        offsets: Optional[str] = None
        if multivariate and k < self.n:
            # First site of each state anchors that state's level
            offsets = "A"
            fixed = tuple((groups.index(j), 0.0) for j in range(k))
            priors.append(
                Prior("A", "normal", (0.0, self.priors.offset_precision), (self.n,), fixed)
            )

        recursion = Recursion(
            target="X",
            precision="tau_pro",
            drift=drift,
            coef=coef,
            init="X0",
            n_states=k,
        )
        observation = Observation(
            family=family,
            link="log" if family != "normal" else "identity",
            state="X",
            offsets=offsets,
            precision=precision,
            dispersion=dispersion,
            groups=groups,
        )
        return {
            "priors": tuple(priors),
            "derived": tuple(derived),
            "recursion": recursion,
            "observation": observation,
        }


def build_spec(shape: Union[Shape, str], N: int, n: int = 1, **options: Any) -> ModelSpec:
    """Build a validated specification for ``shape`` (see :class:`SpecBuilder`)."""
    return SpecBuilder(shape, N, n, **options).build()


def rebuild(spec: ModelSpec, N: int) -> ModelSpec:
    """Rebuild ``spec`` with the same shape and options for series length ``N``."""
    return build_spec(spec.shape, N, spec.n, **dict(spec.options))
