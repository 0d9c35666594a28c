#########################################################################################
##
##                          PROPERTY PROFILE LIKELIHOOD ENGINE
##                               (profile_tracer.py)
##
##         Traces the profile of each property by sequential continuation:
##         starting from the MAP, the property is pushed down / up as far as the
##         posterior allows, re-optimizing the parameters at every step.
##
#########################################################################################

# IMPORTS ===============================================================================

from __future__ import annotations

import math
import warnings
from concurrent.futures import ProcessPoolExecutor, ThreadPoolExecutor, as_completed
from typing import Callable

import numpy as np

from .constraints import ConstraintAdapter
from .options import ProfileOptions
from .problem import ParameterSet, PropertySet
from .profile_store import Profile, ProfilePoint, ProfileStore
from .robust import RobustObjective, RobustProperty
from .solver import ConstrainedSolver, quiet_solver
from .step_proposer import propose_step


__all__ = [
    "ProfileTracer",
    "compute_profiles",
]


# HELPERS ===============================================================================

def _ordinal(n: int) -> str:
    """Ordinal suffix of a 1-based index: 1 -> 'st', 2 -> 'nd', 11 -> 'th'."""
    if 10 <= n % 100 <= 20:
        return "th"
    return {1: "st", 2: "nd", 3: "rd"}.get(n % 10, "th")


def _label(i: int) -> str:
    return f"{i + 1}{_ordinal(i + 1)} P"


def _trace_quietly(tracer: "ProfileTracer", i: int) -> Profile:
    """Worker entry point of the process pool: one warning context per process."""
    with quiet_solver(tracer.options.solver.verbose):
        return tracer.trace(i)


# PROFILE TRACER ========================================================================

class ProfileTracer:
    """Profile state machine for the properties of one estimation problem.

    For a property and a direction ``s`` (``-1`` decreasing, ``+1``
    increasing) each step

    1. sets the log-posterior floor ``-J_target`` with
       ``J_target = -(log(1 - dR_max) + dJ * (logpost - logpost_max) + logpost)``,
    2. minimizes the clamped property (negated for ``s=+1``) subject to the
       floor, the parameter bounds and the linear constraints,
    3. if the property reached its bound, re-maximizes the posterior with the
       property pinned onto that bound,
    4. records the point, front or back of the profile.

    Steps repeat while the likelihood ratio stays at or above ``R_min`` and
    the property stays ``boundary_tol`` away from the bound being approached.
    Solver failures are recorded through the exit flag and never retried; a
    step that does not move the property past the last point is discarded
    and ends the direction.

    Parameters
    ----------
    properties : PropertySet
    parameters : ParameterSet
        Must carry multi-start results in ``parameters.ms``.
    objective : callable
        User log-posterior (or negative log-posterior, see ``options.obj_type``).
    options : ProfileOptions
    warm_start : bool
        Pre-position every solve by a line search along the extrapolated
        parameter step (see :func:`propose_step`).
    """

    def __init__(
        self,
        properties: PropertySet,
        parameters: ParameterSet,
        objective: Callable,
        options: ProfileOptions,
        *,
        warm_start: bool = False,
    ):
        self.properties = properties
        self.parameters = parameters
        self.options = options
        self.warm_start = warm_start

        self.objective = RobustObjective(objective, options.obj_type)
        self.solver = ConstrainedSolver(options.solver)
        self._linear = ConstraintAdapter.linear(parameters.constraints)

        ms = parameters.ms
        k = options.map_index
        self.theta_map = np.asarray(ms.par[k], dtype=float).copy()
        self.logpost_map = float(ms.logpost[k])
        self.logpost_max = float(ms.logpost[0])
        self.exitflag_map = float(ms.exitflag[k]) if ms.exitflag is not None else np.nan

        self._log_R_min = math.log(options.R_min) if options.R_min > 0 else -np.inf
        self._log_step = math.log(1.0 - options.dR_max)


    # ANCHOR ----------------------------------------------------------------------------

    def map_property(self, i: int) -> float:
        """Value of property *i* at the MAP; raises if it cannot be evaluated."""
        ev = RobustProperty(self.properties[i].function).evaluate(self.theta_map)
        if ev.failed:
            raise ValueError(
                f"Property '{self.properties[i].name}' cannot be evaluated at the MAP"
            )
        return ev.value


    def check_anchor(self, i: int) -> None:
        """Warn if the MAP value of property *i* is not inside its bounds."""
        prop = self.properties[i]
        value = self.map_property(i)
        if value <= prop.min or prop.max <= value:
            warnings.warn(
                f"MAP of {i + 1}{_ordinal(i + 1)} property not between "
                f"respective minimum and maximum.",
                stacklevel=2,
            )


    def anchor(self, i: int) -> Profile:
        """Profile of property *i* holding only the MAP point."""
        prop = self.properties[i]
        point = ProfilePoint(
            prop=self.map_property(i),
            par=self.theta_map.copy(),
            logpost=self.logpost_map,
            R=1.0,
            exitflag=self.exitflag_map,
        )
        return Profile(prop.name, prop.bounds, point)


    # STEP LOGIC ------------------------------------------------------------------------

    def keep_going(self, prop_value: float, logpost: float, i: int, s: int) -> bool:
        """Stopping rule, evaluated before every step of direction *s*."""
        prop = self.properties[i]
        tol = self.options.boundary_tol
        return (
            logpost >= self._log_R_min + self.logpost_map
            and (not prop_value <= prop.min + tol or s == +1)
            and (not prop.max - tol <= prop_value or s == -1)
        )


    def target_level(self, logpost: float) -> float:
        """Upper bound on the negative log-posterior of the next point."""
        return -(
            self._log_step
            + self.options.dJ * (logpost - self.logpost_max)
            + logpost
        )


    def initial_guess(
        self,
        theta: np.ndarray,
        theta_prev: np.ndarray | None,
        J_target: float,
    ) -> np.ndarray:
        """Warm start by extrapolating the last parameter step.

        Falls back to *theta* without step history.
        """
        if theta_prev is None:
            return theta

        dtheta = theta - theta_prev
        k = int(np.argmax(np.abs(dtheta)))
        if dtheta[k] == 0.0:
            return theta

        opts = self.options.next_point
        theta_next, _ = propose_step(
            theta,
            self.parameters.lower,
            self.parameters.upper,
            dtheta / abs(dtheta[k]),
            abs(dtheta[k]),
            opts.min,
            opts.max,
            opts.update,
            J_target,
            lambda th: self.objective.evaluate(th).value,
            self.parameters.constraints,
            opts.mode,
            k,
        )
        return theta_next


    def step(
        self,
        i: int,
        s: int,
        theta: np.ndarray,
        logpost: float,
        theta_prev: np.ndarray | None = None,
    ) -> ProfilePoint:
        """Compute the next profile point of property *i* in direction *s*."""
        prop = self.properties[i]
        adapter = ConstraintAdapter(
            self.objective,
            RobustProperty(prop.function),
            prop.min,
            prop.max,
            gradient=self.options.gradient,
            prop_gradient=prop.gradient,
        )
        lower, upper = self.parameters.lower, self.parameters.upper

        J_target = self.target_level(logpost)
        x0 = self.initial_guess(theta, theta_prev, J_target) if self.warm_start else theta

        # proposal: property extremum above the posterior floor
        fun, jac = adapter.property_objective(s)
        res = self.solver.solve(
            fun, x0, lower, upper,
            jac=jac,
            constraints=self._linear + [adapter.posterior_floor(J_target)],
        )
        theta = res.x
        prop_value = res.fun if s == -1 else -res.fun

        # reoptimization at boundary
        if prop_value <= prop.min or prop.max <= prop_value:
            fun, jac = adapter.posterior_objective()
            res_b = self.solver.solve(
                fun, theta, lower, upper,
                jac=jac,
                constraints=self._linear + [adapter.property_boundary(s)],
            )
            theta = res_b.x
            J_opt = res_b.fun
        else:
            J_opt = self.objective.evaluate(theta).value

        logpost = -J_opt
        return ProfilePoint(
            prop=float(prop_value),
            par=theta,
            logpost=float(logpost),
            R=float(np.exp(logpost - self.logpost_map)),
            exitflag=float(res.exitflag),
            n_failures=adapter.n_failures,
        )


    # TRACE -----------------------------------------------------------------------------

    def trace_direction(
        self,
        i: int,
        s: int,
        profile: Profile,
        *,
        report: bool = False,
        progress: Callable | None = None,
    ) -> Profile:
        """Grow *profile* in direction *s* until the stopping rule fails."""
        theta = self.theta_map.copy()
        prop_value = profile.anchor.prop
        logpost = self.logpost_map
        theta_prev = None
        n_steps = 0

        while self.keep_going(prop_value, logpost, i, s):
            if self.options.max_points is not None and n_steps >= self.options.max_points:
                if not self.options.silent:
                    warnings.warn(
                        f"{_label(i)}: stopped after {n_steps} points in direction "
                        f"{s:+d} (max_points reached)",
                        stacklevel=2,
                    )
                break

            point = self.step(i, s, theta, logpost, theta_prev)

            # stalled solve: the property did not move past the last point
            if not s * (point.prop - prop_value) > 0:
                if not self.options.silent:
                    warnings.warn(
                        f"{_label(i)}: no progress in direction {s:+d} "
                        f"(exitflag {point.exitflag:.0f}), direction stopped",
                        stacklevel=2,
                    )
                break

            profile.add(s, point)
            n_steps += 1

            theta_prev, theta = theta, point.par
            prop_value, logpost = point.prop, point.logpost

            if report:
                print(f"{_label(i)}: point {profile.n_points - 1}, R = {point.R:.3e}")
            if progress is not None:
                progress(i, profile)

        return profile


    def trace(
        self,
        i: int,
        *,
        report: bool = False,
        progress: Callable | None = None,
    ) -> Profile:
        """Full profile of property *i*: decreasing, then increasing direction."""
        profile = self.anchor(i)
        for s in (-1, +1):
            self.trace_direction(i, s, profile, report=report, progress=progress)
        return profile


# PUBLIC ENTRY POINT ====================================================================

def _validate(
    properties: PropertySet,
    parameters: ParameterSet,
    options: ProfileOptions,
) -> list[int]:
    """Raise on configuration errors; return the property indices to profile."""
    ms = parameters.ms
    if ms is None:
        raise ValueError(
            "No information from multi-start local optimization available. "
            "Please run get_multi_starts() before compute_profiles()."
        )

    if not 0 <= options.map_index < ms.n_starts:
        raise ValueError(
            f"map_index {options.map_index} out of range "
            f"(0..{ms.n_starts - 1})"
        )

    if ms.par.shape[1] != parameters.n_par:
        raise ValueError(
            f"Multi-start results have {ms.par.shape[1]} parameter(s), "
            f"expected {parameters.n_par}"
        )

    if not np.isfinite(ms.logpost[options.map_index]):
        raise ValueError("Log-posterior at the MAP is not finite")

    indices = (
        list(range(properties.n_prop))
        if options.property_index is None
        else list(options.property_index)
    )
    for i in indices:
        if not 0 <= i < properties.n_prop:
            raise ValueError(
                f"property index {i} out of range (0..{properties.n_prop - 1})"
            )
    return indices


def compute_profiles(
    properties: PropertySet,
    parameters: ParameterSet,
    objective: Callable,
    options: ProfileOptions | None = None,
    *,
    progress: Callable | None = None,
) -> PropertySet:
    """Compute profile likelihoods of model properties.

    Starting from the MAP of a multi-start run, the value of every selected
    property is decreased and increased step by step, re-optimizing the
    posterior at each step, until the likelihood ratio falls below
    ``options.R_min`` or the property reaches its bounds.

    Parameters
    ----------
    properties : PropertySet
        Properties to profile.
    parameters : ParameterSet
        Parameters with multi-start results in ``parameters.ms``.
    objective : callable
        ``objective(theta)`` returning the log-posterior (or negative
        log-posterior), or ``(value, gradient)`` when ``options.gradient``.
    options : ProfileOptions, optional
    progress : callable, optional
        ``progress(index, profile)``; called after every point (sequential)
        or after every finished profile (parallel).

    Returns
    -------
    PropertySet
        *properties*, with the profiles stored in ``properties.profiles``.

    Example
    -------
    .. code-block:: python

        get_multi_starts(parameters, log_post, n_starts=10)
        compute_profiles(properties, parameters, log_post,
                         ProfileOptions(R_min=0.01, mode="silent"))
        properties.profiles[0].confidence_interval(0.95)
    """
    options = options if options is not None else ProfileOptions()
    indices = _validate(properties, parameters, options)

    parallel = options.comp_type == "parallel"
    tracer = ProfileTracer(
        properties, parameters, objective, options, warm_start=parallel,
    )

    if not options.silent:
        if not options.gradient:
            warnings.warn(
                "For efficient and reliable optimization, compute_profiles "
                "requires gradient information.",
                stacklevel=2,
            )
        for i in indices:
            tracer.check_anchor(i)
        print("\nProfile likelihood calculation:")
        print("===============================")
    else:
        for i in indices:
            tracer.map_property(i)

    if properties.profiles is None:
        properties.profiles = ProfileStore()

    with quiet_solver(options.solver.verbose):
        if not parallel:
            for i in indices:
                properties.profiles[i] = tracer.trace(
                    i, report=not options.silent, progress=progress,
                )
        else:
            store = ProfileStore()
            n_workers = min(options.n_workers or len(indices), len(indices))
            Executor = ThreadPoolExecutor if options.executor == "thread" else ProcessPoolExecutor

            with Executor(max_workers=n_workers) as pool:
                if options.executor == "thread":
                    futures = {pool.submit(tracer.trace, i): i for i in indices}
                else:
                    futures = {pool.submit(_trace_quietly, tracer, i): i for i in indices}
                for future in as_completed(futures):
                    i = futures[future]
                    store[i] = future.result()
                    if not options.silent:
                        print(f"{_label(i)}: profile finished with "
                              f"{store[i].n_points} points")
                    if progress is not None:
                        progress(i, store[i])

            properties.profiles.merge(store)

    if not options.silent:
        print("-> Profile calculation FINISHED.")

    return properties
