"""
Unit tests for model specifications and the specification builder.

Tests cover:
- Deterministic builder output
- Declared parameters per shape and option
- Multivariate site groupings and fixed offsets
- Validation of mismatched specifications
- Text rendering
- Rebuilding for a forecast horizon
"""

import dataclasses

import pytest

from statespace.builder import PriorDefaults, SpecBuilder, build_spec, rebuild, resolve_groups
from statespace.errors import ConfigurationError
from statespace.spec import Derived, ModelSpec, Observation, Prior, Recursion, Shape


def prior_names(spec: ModelSpec) -> list:
    return [p.name for p in spec.priors]


class TestBuilderDeterminism:
    """Tests that identical requests produce identical specifications."""

    @pytest.mark.parametrize("shape", [s.value for s in Shape])
    def test_same_inputs_same_spec(self, shape: str) -> None:
        """Test two builds with the same inputs compare equal."""
        n = 3 if shape == "mss" else 1
        spec_a = build_spec(shape, N=12, n=n)
        spec_b = build_spec(shape, N=12, n=n)
        assert spec_a == spec_b
        assert spec_a.to_text() == spec_b.to_text()
        assert hash(spec_a) == hash(spec_b)

    def test_option_order_irrelevant(self) -> None:
        """Test keyword order does not change the recorded options."""
        spec_a = build_spec("ss", N=10, drift=False, ar=True)
        spec_b = build_spec("ss", N=10, ar=True, drift=False)
        assert spec_a == spec_b

    def test_shape_enum_and_string_agree(self) -> None:
        """Test Shape members and their string values build the same spec."""
        assert build_spec(Shape.AR1, N=8) == build_spec("ar1", N=8)


class TestShapes:
    """Tests for the parameters each shape declares."""

    def test_mean(self) -> None:
        """Test the mean shape declares a location and an observation precision."""
        spec = build_spec("mean", N=5)
        assert prior_names(spec) == ["mu", "tau_obs"]
        assert [d.name for d in spec.derived] == ["var_obs"]
        assert spec.recursion is None
        assert spec.data_keys() == ("Y", "N", "n")

    def test_regression_reads_covariate(self) -> None:
        """Test regression declares intercept and slope and reads c."""
        spec = build_spec("regression", N=5)
        assert prior_names(spec) == ["alpha", "beta", "tau_obs"]
        assert "c" in spec.data_keys()

    def test_ar1_errors_declares_phi(self) -> None:
        """Test regression with AR(1) errors adds the error coefficient."""
        spec = build_spec("ar1_errors", N=5)
        assert "phi" in prior_names(spec)
        assert spec.observation.error_coef == "phi"

    def test_random_walk_drift_option(self) -> None:
        """Test the random walk declares a drift only when requested."""
        assert prior_names(build_spec("rw", N=5)) == ["tau_pro"]
        assert prior_names(build_spec("rw", N=5, drift=True)) == ["u", "tau_pro"]

    def test_ar1_stationary_variance(self) -> None:
        """Test the stationary AR(1) derives var_stationary from var_pro and b."""
        spec = build_spec("ar1", N=5)
        derived = {d.name: d for d in spec.derived}
        assert derived["var_stationary"].args == ("var_pro", "b")
        assert spec.recursion.init == "stationary"

        conditional = build_spec("ar1", N=5, stationary=False)
        assert "var_stationary" not in {d.name for d in conditional.derived}
        assert conditional.recursion.init == "conditional"

    def test_state_space_defaults(self) -> None:
        """Test ss declares initial state, drift and both precisions."""
        spec = build_spec("ss", N=5)
        assert prior_names(spec) == ["X0", "u", "tau_pro", "tau_obs"]
        assert spec.prior("X0").params[0] == "Y1"
        assert "Y1" in spec.data_keys()
        assert spec.quantities()["X"] == (5,)
        assert spec.quantities()["fitted"] == (5,)

    def test_state_space_ar_option(self) -> None:
        """Test ar=True adds the state coefficient and drift=False removes u."""
        spec = build_spec("ss", N=5, ar=True, drift=False)
        assert prior_names(spec) == ["X0", "b", "tau_pro", "tau_obs"]

    def test_poisson_has_no_observation_precision(self) -> None:
        """Test the Poisson shape uses a log link and no tau_obs."""
        spec = build_spec("poisson", N=5)
        assert spec.observation.link == "log"
        assert "tau_obs" not in prior_names(spec)

    def test_negbin_dispersion(self) -> None:
        """Test the negative binomial shape declares the size parameter r."""
        spec = build_spec("negbin", N=5)
        assert spec.observation.dispersion == "r"
        assert spec.prior("r").family == "uniform"

    def test_custom_prior_defaults(self) -> None:
        """Test PriorDefaults flow into the declared hyperparameters."""
        spec = build_spec("mean", N=5, priors=PriorDefaults(location_precision=0.5))
        assert spec.prior("mu").params == (0.0, 0.5)


class TestMultivariate:
    """Tests for the multivariate shape and site groupings."""

    def test_resolve_groups(self) -> None:
        """Test the named groupings."""
        assert resolve_groups("shared", 3) == (0, 0, 0)
        assert resolve_groups("independent", 3) == (0, 1, 2)
        assert resolve_groups([0, 1, 1], 3) == (0, 1, 1)

    def test_resolve_groups_rejects_unknown_name(self) -> None:
        """Test an unknown grouping name raises ConfigurationError."""
        with pytest.raises(ConfigurationError, match="states must be"):
            resolve_groups("pooled", 3)

    def test_shared_state_fixes_first_offset(self) -> None:
        """Test one shared state gives offsets with A[0] held at 0."""
        spec = build_spec("mss", N=10, n=3)
        offsets = spec.prior("A")
        assert offsets.shape == (3,)
        assert offsets.fixed == ((0, 0.0),)
        assert spec.quantities()["X"] == (1, 10)
        assert spec.quantities()["fitted"] == (3, 10)

    def test_explicit_groups_fix_first_site_per_state(self) -> None:
        """Test each state's first site anchors that state's level."""
        spec = build_spec("mss", N=10, n=4, states=(1, 0, 1, 0))
        assert spec.n_states == 2
        assert spec.prior("A").fixed_indices == (1, 0)

    def test_independent_states_have_no_offsets(self) -> None:
        """Test one state per site needs no offsets."""
        spec = build_spec("mss", N=10, n=3, states="independent")
        assert "A" not in prior_names(spec)
        assert spec.prior("X0").shape == (3,)

    def test_site_and_process_variance_options(self) -> None:
        """Test the variance-sharing options change the precision shapes."""
        spec = build_spec("mss", N=10, n=2, states="independent", shared_process=False)
        assert spec.prior("tau_pro").shape == (2,)
        assert spec.prior("tau_obs").shape == (2,)
        pooled = build_spec("mss", N=10, n=2, site_variances=False)
        assert pooled.prior("tau_obs").shape == ()

    def test_grouping_must_use_every_state(self) -> None:
        """Test a grouping skipping a state index is rejected."""
        with pytest.raises(ConfigurationError, match="must use every state"):
            build_spec("mss", N=10, n=3, states=(0, 2, 2))


class TestValidation:
    """Tests for rejected requests and mismatched specifications."""

    def test_unknown_shape(self) -> None:
        """Test an unknown shape raises ConfigurationError."""
        with pytest.raises(ConfigurationError, match="Unknown shape"):
            SpecBuilder("garch", N=10)

    def test_unknown_option(self) -> None:
        """Test options a shape does not accept are rejected."""
        with pytest.raises(ConfigurationError, match="does not accept options"):
            build_spec("mean", N=10, drift=True)

    def test_univariate_shape_rejects_several_sites(self) -> None:
        """Test n > 1 is reserved for the multivariate shape."""
        with pytest.raises(ConfigurationError, match="univariate"):
            build_spec("ss", N=10, n=2)

    def test_non_positive_length(self) -> None:
        """Test N = 0 raises ConfigurationError."""
        with pytest.raises(ConfigurationError, match="positive"):
            build_spec("mean", N=0)

    def test_recursion_needs_two_steps(self) -> None:
        """Test a recursive shape with a single step is rejected."""
        with pytest.raises(ConfigurationError, match="N >= 2"):
            build_spec("rw", N=1)

    def test_undeclared_parameter_rejected(self) -> None:
        """Test a spec whose recursion reads an undeclared coefficient."""
        spec = build_spec("ss", N=6)
        broken = dataclasses.replace(spec, recursion=dataclasses.replace(spec.recursion, coef="b"))
        with pytest.raises(ConfigurationError, match="undeclared parameters"):
            broken.validate()

    def test_unused_prior_rejected(self) -> None:
        """Test a prior no line references is rejected."""
        spec = build_spec("mean", N=6)
        extra = spec.priors + (Prior("beta", "normal", (0.0, 0.01)),)
        with pytest.raises(ConfigurationError, match="never referenced"):
            dataclasses.replace(spec, priors=extra).validate()

    def test_duplicate_names_rejected(self) -> None:
        """Test a derived quantity shadowing a prior is rejected."""
        spec = build_spec("mean", N=6)
        derived = spec.derived + (Derived("mu", "reciprocal", ("tau_obs",)),)
        with pytest.raises(ConfigurationError, match="more than once"):
            dataclasses.replace(spec, derived=derived).validate()

    def test_unfixed_offsets_rejected(self) -> None:
        """Test offsets must be fixed at the first site of each state."""
        spec = build_spec("mss", N=6, n=3)
        priors = tuple(
            dataclasses.replace(p, fixed=((1, 0.0),)) if p.name == "A" else p
            for p in spec.priors
        )
        with pytest.raises(ConfigurationError, match="must be fixed"):
            dataclasses.replace(spec, priors=priors).validate()

    def test_invalid_value_objects(self) -> None:
        """Test the value objects check their own fields."""
        with pytest.raises(ConfigurationError, match="Unknown prior family"):
            Prior("mu", "cauchy", (0.0, 1.0))
        with pytest.raises(ConfigurationError, match="takes 2"):
            Prior("mu", "normal", (0.0,))
        with pytest.raises(ConfigurationError, match="link"):
            Observation(family="poisson", link="identity", state="X")
        with pytest.raises(ConfigurationError, match="target"):
            Recursion(target="Z", precision="tau_pro")
        with pytest.raises(ConfigurationError, match="Every entry"):
            Prior("A", "normal", (0.0, 1.0), (1,), ((0, 0.0),))


class TestRendering:
    """Tests for the declarative text listing."""

    def test_state_space_listing(self) -> None:
        """Test the ss listing shows priors, recursion and observation lines."""
        text = build_spec("ss", N=20).to_text()
        assert text.splitlines()[0] == "# ss (N=20, n=1)"
        assert "X0 ~ Normal(Y1, 0.001)" in text
        assert "tau_pro ~ Gamma(0.001, 0.001)" in text
        assert "var_pro <- 1 / tau_pro" in text
        assert "X[t] ~ Normal(X[t-1] + u, tau_pro), t = 2..N" in text
        assert "Y[t] ~ Normal(fitted[t], tau_obs), t = 1..N" in text

    def test_multivariate_listing_shows_fixed_offset(self) -> None:
        """Test the mss listing shows the held-constant offset."""
        text = str(build_spec("mss", N=20, n=2))
        assert "A[2] ~ Normal(0, 0.001)" in text
        assert "A[0] <- 0" in text
        assert "fitted[i, t] <- X[g[i], t] + A[i]" in text

    def test_multivariate_precision_index(self) -> None:
        """Test tau_obs is indexed by site only when each site has its own."""
        text = build_spec("mss", N=20, n=2).to_text()
        assert "Y[i, t] ~ Normal(fitted[i, t], tau_obs[i]), t = 1..N" in text

        text = build_spec("mss", N=20, n=2, site_variances=False).to_text()
        assert "Y[i, t] ~ Normal(fitted[i, t], tau_obs), t = 1..N" in text
        assert "tau_obs[i]" not in text

    def test_stationary_ar1_listing(self) -> None:
        """Test the stationary first step is listed."""
        text = build_spec("ar1", N=20).to_text()
        assert "var_stationary <- var_pro / (1 - b^2)" in text
        assert "Y[1] ~ Normal(mu, 1 / var_stationary)" in text


class TestRebuild:
    """Tests for rebuilding a specification with another length."""

    def test_rebuild_keeps_options(self) -> None:
        """Test rebuild changes N and keeps every option."""
        spec = build_spec("mss", N=10, n=3, states=(0, 1, 1), drift=False)
        longer = rebuild(spec, 14)
        assert longer.N == 14
        assert longer.options == spec.options
        assert prior_names(longer) == prior_names(spec)

    def test_rebuild_same_length_is_identity(self) -> None:
        """Test rebuilding with the same N reproduces the spec."""
        spec = build_spec("ss", N=10, ar=True)
        assert rebuild(spec, 10) == spec
