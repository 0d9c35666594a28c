########################################################################################
##
##                                  TESTS FOR
##                            'opt/profile_tracer.py'
##
##      End-to-end profiles of Gaussian posteriors, where the profile of a linear
##      property is known in closed form.
##
########################################################################################

# IMPORTS ==============================================================================

import math
import warnings

import numpy as np
import pytest

from proplik.opt.multistart import MultiStartResult
from proplik.opt.options import ProfileOptions, SolverOptions
from proplik.opt.problem import (
    Parameter,
    LinearConstraints,
    ParameterSet,
    Property,
    PropertySet,
)
from proplik.opt.profile_store import ProfilePoint
from proplik.opt.profile_tracer import ProfileTracer, compute_profiles


# ═══════════════════════════════════════════════════════════════════════════
# Helpers
# ═══════════════════════════════════════════════════════════════════════════

class _Gauss:
    """Isotropic Gaussian log-posterior with gradient, MAP at the origin."""

    def __init__(self, sigma=1.0, fail_on_call=None, negative=False, wall=None):
        self.s2 = sigma ** 2
        self.wall = wall
        self.fail_on_call = fail_on_call
        self.negative = negative
        self.calls = 0

    def __call__(self, theta):
        self.calls += 1
        if self.calls == self.fail_on_call:
            return np.nan, np.zeros_like(theta)
        if self.wall is not None and theta[0] < self.wall:
            return np.nan, np.zeros_like(theta)
        value, grad = -0.5 * float(theta @ theta) / self.s2, -theta / self.s2
        if self.negative:
            return -value, -grad
        return value, grad


def _theta_1(bounds=(-10.0, 10.0)):
    return Property("theta_1", lambda th: (th[0], np.array([1.0, 0.0])), bounds, gradient=True)


def _theta_sum(bounds=(-10.0, 10.0)):
    return Property("theta_sum", lambda th: (th[0] + th[1], np.ones(2)), bounds, gradient=True)


def _theta_2(bounds=(-10.0, 10.0)):
    return Property("theta_2", lambda th: (th[1], np.array([0.0, 1.0])), bounds, gradient=True)


def _theta_diff(bounds=(-10.0, 10.0)):
    return Property("theta_diff", lambda th: (th[0] - th[1], np.array([1.0, -1.0])), bounds, gradient=True)


def _std_normal(theta):
    return -0.5 * float(theta @ theta), -theta


def _first_component(theta):
    return theta[0], np.array([1.0, 0.0])


def _problem(props=None, constraints=None):
    parameters = ParameterSet(
        [
            Parameter("theta_1", 0.0, (-20.0, 20.0)),
            Parameter("theta_2", 0.0, (-20.0, 20.0)),
        ],
        constraints,
    )
    parameters.ms = MultiStartResult(par=[[0.0, 0.0]], logpost=[0.0], exitflag=[1])
    properties = PropertySet(props if props is not None else [_theta_1()])
    return properties, parameters


def _options(**kwargs):
    kwargs.setdefault("mode", "silent")
    kwargs.setdefault("gradient", True)
    kwargs.setdefault("max_points", 50)
    return ProfileOptions(**kwargs)


def _next_level(logpost, dR_max=0.1, dJ=0.5):
    return -(math.log(1.0 - dR_max) + dJ * logpost + logpost)


# ═══════════════════════════════════════════════════════════════════════════
# Stopping rule and step target
# ═══════════════════════════════════════════════════════════════════════════

class TestTracerRules:

    def _tracer(self, **kwargs):
        properties, parameters = _problem()
        return ProfileTracer(properties, parameters, _Gauss(), _options(**kwargs))

    def test_target_level_at_map(self):
        tracer = self._tracer()
        assert tracer.target_level(0.0) == pytest.approx(-math.log(0.9))

    def test_target_level_damped_towards_optimum(self):
        tracer = self._tracer(dJ=0.5)
        assert tracer.target_level(-1.0) == pytest.approx(_next_level(-1.0))

    def test_keep_going_inside(self):
        assert self._tracer().keep_going(0.0, 0.0, 0, -1)

    def test_ratio_floor_stops(self):
        tracer = self._tracer(R_min=0.03)
        assert not tracer.keep_going(0.0, math.log(0.02), 0, +1)
        assert tracer.keep_going(0.0, math.log(0.04), 0, +1)

    def test_boundary_stops_only_own_direction(self):
        tracer = self._tracer()
        assert not tracer.keep_going(-10.0, 0.0, 0, -1)
        assert tracer.keep_going(-10.0, 0.0, 0, +1)
        assert not tracer.keep_going(10.0, 0.0, 0, +1)
        assert tracer.keep_going(10.0, 0.0, 0, -1)

    def test_zero_ratio_floor_never_stops_on_ratio(self):
        tracer = self._tracer(R_min=0.0)
        assert tracer.keep_going(0.0, -1e6, 0, -1)

    def test_initial_guess_without_history(self):
        tracer = self._tracer()
        theta = np.array([1.0, 0.0])
        assert tracer.initial_guess(theta, None, 2.0) is theta

    def test_initial_guess_extrapolates_step(self):
        tracer = self._tracer()
        guess = tracer.initial_guess(np.array([1.0, 0.0]), np.array([0.5, 0.0]), 2.0)
        assert guess[0] > 1.0
        assert guess[1] == 0.0
        assert 0.5 * guess @ guess <= 2.0


# ═══════════════════════════════════════════════════════════════════════════
# Gaussian profiles
# ═══════════════════════════════════════════════════════════════════════════

class TestGaussianProfiles:

    def test_profile_reaches_both_property_bounds(self):
        # sigma = 8: the ratio stays above R_min up to the property bounds
        properties, parameters = _problem()
        compute_profiles(properties, parameters, _Gauss(sigma=8.0), _options())
        profile = properties.profiles[0]

        assert profile.prop[0] == pytest.approx(-10.0, abs=1e-3)
        assert profile.prop[-1] == pytest.approx(10.0, abs=1e-3)
        assert np.all(np.diff(profile.prop) > 0)
        np.testing.assert_allclose(profile.prop, -profile.prop[::-1], atol=1e-3)
        np.testing.assert_allclose(profile.logpost, -profile.prop ** 2 / 128.0, atol=1e-3)

    def test_anchor_is_map(self):
        properties, parameters = _problem()
        compute_profiles(properties, parameters, _Gauss(), _options())
        profile = properties.profiles[0]
        k = profile.anchor_index
        assert profile.prop[k] == 0.0
        assert profile.logpost[k] == 0.0
        assert profile.R[k] == 1.0
        np.testing.assert_array_equal(profile.par[k], [0.0, 0.0])

    @pytest.mark.parametrize("method", ["trust-constr", "SLSQP"])
    def test_profile_stops_below_ratio_floor(self, method):
        properties, parameters = _problem()
        options = _options(R_min=0.03, solver=SolverOptions(method=method))
        compute_profiles(properties, parameters, _Gauss(), options)
        R = properties.profiles[0].R

        assert R[0] < 0.03 and R[-1] < 0.03
        assert R[1] >= 0.03 and R[-2] >= 0.03
        assert np.all(R <= 1.0 + 1e-8)
        assert np.all(np.diff(properties.profiles[0].prop) > 0)

    def test_points_lie_on_target_levels(self):
        properties, parameters = _problem()
        compute_profiles(properties, parameters, _Gauss(), _options())
        profile = properties.profiles[0]
        lp = profile.logpost
        k0 = profile.anchor_index

        for k in range(k0, profile.n_points - 1):
            assert -lp[k + 1] == pytest.approx(_next_level(lp[k]), abs=1e-3)
        for k in range(k0, 0, -1):
            assert -lp[k - 1] == pytest.approx(_next_level(lp[k]), abs=1e-3)

    def test_ratio_relative_to_map(self):
        properties, parameters = _problem()
        compute_profiles(properties, parameters, _Gauss(), _options())
        profile = properties.profiles[0]
        np.testing.assert_allclose(profile.R, np.exp(profile.logpost), rtol=1e-12)
        np.testing.assert_allclose(profile.logpost, -0.5 * profile.prop ** 2, atol=1e-3)

    def test_negative_log_posterior_convention(self):
        properties, parameters = _problem()
        compute_profiles(properties, parameters, _Gauss(), _options())
        reference = properties.profiles[0]

        properties, parameters = _problem()
        compute_profiles(
            properties, parameters, _Gauss(negative=True),
            _options(obj_type="negative log-posterior"),
        )
        profile = properties.profiles[0]
        assert profile.n_points == reference.n_points
        np.testing.assert_allclose(profile.prop, reference.prop, atol=1e-6)

    def test_linear_equality_constraint_respected(self):
        properties, parameters = _problem(
            constraints=LinearConstraints(Aeq=[[1.0, -1.0]], beq=[0.0]),
        )
        compute_profiles(properties, parameters, _Gauss(), _options())
        profile = properties.profiles[0]
        np.testing.assert_allclose(profile.par[:, 0], profile.par[:, 1], atol=1e-4)
        np.testing.assert_allclose(profile.logpost, -profile.prop ** 2, atol=1e-3)

    def test_property_subset(self):
        properties, parameters = _problem(props=[_theta_1(), _theta_sum()])
        compute_profiles(properties, parameters, _Gauss(), _options(property_index=[1]))
        assert 1 in properties.profiles
        assert 0 not in properties.profiles

    def test_evaluation_failure_does_not_abort(self):
        properties, parameters = _problem()
        compute_profiles(
            properties, parameters, _Gauss(fail_on_call=7), _options(max_points=4),
        )
        R = properties.profiles[0].R
        assert properties.profiles[0].n_points >= 2
        assert np.all((R >= 0.0) & (R <= 1.0 + 1e-8))

    def test_max_points_caps_each_direction(self):
        properties, parameters = _problem()
        compute_profiles(properties, parameters, _Gauss(), _options(max_points=2))
        assert properties.profiles[0].n_points == 5


# ═══════════════════════════════════════════════════════════════════════════
# Parallel engine
# ═══════════════════════════════════════════════════════════════════════════

class TestParallelProfiles:

    def test_parallel_matches_sequential(self):
        seq_props, parameters = _problem(props=[_theta_1(), _theta_sum()])
        compute_profiles(seq_props, parameters, _Gauss(), _options())

        par_props, parameters = _problem(props=[_theta_1(), _theta_sum()])
        compute_profiles(par_props, parameters, _Gauss(), _options(comp_type="parallel"))

        for i in range(2):
            a, b = seq_props.profiles[i], par_props.profiles[i]
            assert a.n_points == b.n_points
            np.testing.assert_allclose(a.prop, b.prop, atol=1e-3)
            np.testing.assert_allclose(a.R, b.R, atol=1e-3)

    def test_progress_called_once_per_property(self):
        properties, parameters = _problem(props=[_theta_1(), _theta_sum()])
        calls = []
        compute_profiles(
            properties, parameters, _Gauss(),
            _options(comp_type="parallel", n_workers=2),
            progress=lambda i, profile: calls.append(i),
        )
        assert sorted(calls) == [0, 1]


# ═══════════════════════════════════════════════════════════════════════════
# Reporting
# ═══════════════════════════════════════════════════════════════════════════

class TestReporting:

    def test_progress_called_per_point(self):
        properties, parameters = _problem()
        calls = []
        compute_profiles(
            properties, parameters, _Gauss(), _options(),
            progress=lambda i, profile: calls.append((i, profile.n_points)),
        )
        n = properties.profiles[0].n_points
        assert len(calls) == n - 1
        assert all(i == 0 for i, _ in calls)
        assert calls[-1][1] == n

    def test_text_mode_prints_points(self, capsys):
        properties, parameters = _problem()
        with pytest.warns(UserWarning, match="max_points"):
            compute_profiles(
                properties, parameters, _Gauss(), _options(mode="text", max_points=1),
            )
        out = capsys.readouterr().out
        assert "1st P: point 1, R =" in out
        assert "1st P: point 2, R =" in out
        assert "FINISHED" in out

    def test_silent_mode_prints_nothing(self, capsys):
        properties, parameters = _problem()
        compute_profiles(properties, parameters, _Gauss(), _options(max_points=2))
        assert capsys.readouterr().out == ""

    def test_missing_gradient_warns(self):
        properties, parameters = _problem(
            props=[Property("theta_1", lambda th: th[0], (-10.0, 10.0))],
        )
        with pytest.warns(UserWarning, match="gradient"):
            compute_profiles(
                properties, parameters, lambda th: -0.5 * float(th @ th),
                _options(mode="text", gradient=False, max_points=1),
            )

    def test_map_outside_bounds_warns(self):
        properties, parameters = _problem(props=[_theta_1(bounds=(1.0, 10.0))])
        tracer = ProfileTracer(properties, parameters, _Gauss(), _options())
        with pytest.warns(UserWarning, match="MAP of 1st property"):
            tracer.check_anchor(0)


# ═══════════════════════════════════════════════════════════════════════════
# Configuration errors
# ═══════════════════════════════════════════════════════════════════════════

class TestConfigurationErrors:

    def test_missing_multi_start(self):
        properties, parameters = _problem()
        parameters.ms = None
        with pytest.raises(ValueError, match="get_multi_starts"):
            compute_profiles(properties, parameters, _Gauss(), _options())

    def test_property_index_out_of_range(self):
        properties, parameters = _problem()
        with pytest.raises(ValueError, match="out of range"):
            compute_profiles(properties, parameters, _Gauss(), _options(property_index=[3]))

    def test_map_index_out_of_range(self):
        properties, parameters = _problem()
        with pytest.raises(ValueError, match="map_index"):
            compute_profiles(properties, parameters, _Gauss(), _options(map_index=2))

    def test_parameter_count_mismatch(self):
        properties, parameters = _problem()
        parameters.ms = MultiStartResult(par=[[0.0, 0.0, 0.0]], logpost=[0.0])
        with pytest.raises(ValueError, match="parameter"):
            compute_profiles(properties, parameters, _Gauss(), _options())

    def test_property_failing_at_map(self):
        def broken(theta):
            raise RuntimeError("model crashed")

        properties, parameters = _problem(props=[Property("broken", broken, (-1.0, 1.0))])
        with pytest.raises(ValueError, match="cannot be evaluated"):
            compute_profiles(properties, parameters, _Gauss(), _options())


# ═══════════════════════════════════════════════════════════════════════════
# Stalled steps
# ═══════════════════════════════════════════════════════════════════════════

class TestStalledSteps:

    def test_repeated_point_ends_direction(self, monkeypatch):
        properties, parameters = _problem()
        tracer = ProfileTracer(properties, parameters, _Gauss(), _options(max_points=None))
        stuck = ProfilePoint(
            prop=-1.0, par=np.array([-1.0, 0.0]), logpost=-0.5, R=math.exp(-0.5), exitflag=-1,
        )
        monkeypatch.setattr(tracer, "step", lambda *args: stuck)

        profile = tracer.anchor(0)
        tracer.trace_direction(0, -1, profile)
        np.testing.assert_array_equal(profile.prop, [-1.0, 0.0])

    def test_nan_region_terminates_without_duplicates(self):
        # objective undefined for theta_1 < -1.5, no point cap
        properties, parameters = _problem()
        compute_profiles(
            properties, parameters, _Gauss(wall=-1.5),
            _options(R_min=0.01, max_points=None),
        )
        profile = properties.profiles[0]
        assert np.all(np.diff(profile.prop) > 0)
        assert profile.prop[-1] > 2.5

    def test_stall_warns_in_text_mode(self, monkeypatch):
        properties, parameters = _problem()
        tracer = ProfileTracer(
            properties, parameters, _Gauss(), _options(mode="text", max_points=None),
        )
        monkeypatch.setattr(tracer, "step", lambda i, s, *args: ProfilePoint(
            prop=0.0, par=np.zeros(2), logpost=0.0, R=1.0, exitflag=-1,
        ))
        with pytest.warns(UserWarning, match="no progress"):
            tracer.trace_direction(0, +1, tracer.anchor(0))


# ═══════════════════════════════════════════════════════════════════════════
# Warning filters and process pool
# ═══════════════════════════════════════════════════════════════════════════

class TestWarningFilters:

    def _props(self):
        return [_theta_1(), _theta_2(), _theta_sum(), _theta_diff()]

    def test_parallel_run_restores_warning_filters(self):
        before = list(warnings.filters)
        for _ in range(5):
            properties, parameters = _problem(props=self._props())
            compute_profiles(
                properties, parameters, _Gauss(),
                _options(comp_type="parallel", max_points=4),
            )
        assert warnings.filters == before

    def test_sequential_run_restores_warning_filters(self):
        before = list(warnings.filters)
        properties, parameters = _problem()
        compute_profiles(properties, parameters, _Gauss(), _options(max_points=4))
        assert warnings.filters == before

    def test_silent_parallel_run_hides_solver_warnings(self):
        properties, parameters = _problem(props=self._props())
        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always")
            compute_profiles(
                properties, parameters, _Gauss(),
                _options(comp_type="parallel", max_points=4),
            )
        assert [w for w in caught if "scipy" in w.filename] == []


class TestProcessPool:

    def test_process_pool_matches_sequential(self):
        seq_props, parameters = _problem(
            props=[Property("theta_1", _first_component, (-10.0, 10.0), gradient=True)],
        )
        compute_profiles(seq_props, parameters, _std_normal, _options())

        proc_props, parameters = _problem(
            props=[Property("theta_1", _first_component, (-10.0, 10.0), gradient=True)],
        )
        compute_profiles(
            proc_props, parameters, _std_normal,
            _options(comp_type="parallel", executor="process", n_workers=1),
        )

        a, b = seq_props.profiles[0], proc_props.profiles[0]
        assert a.n_points == b.n_points
        np.testing.assert_allclose(a.prop, b.prop, atol=1e-3)
        np.testing.assert_allclose(a.R, b.R, atol=1e-3)
