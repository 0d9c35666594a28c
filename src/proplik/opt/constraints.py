#########################################################################################
##
##                     OBJECTIVE & CONSTRAINT CALLBACKS FOR THE SOLVER
##                                 (constraints.py)
##
#########################################################################################

# IMPORTS ===============================================================================

from __future__ import annotations

from typing import Callable

import numpy as np
import scipy.optimize as sci_opt

from .problem import LinearConstraints
from .robust import Evaluation, RobustObjective, RobustProperty


__all__ = [
    "CachedCallback",
    "ConstraintAdapter",
]


# CACHED CALLBACK =======================================================================

class CachedCallback:
    """Memoise the last evaluation of a wrapped callback.

    SciPy requests constraint values and Jacobians through separate calls at
    the same point; the cache answers the second call without re-running the
    user function. Failed evaluations are tallied in ``n_failures``.

    Parameters
    ----------
    evaluate : callable
        ``evaluate(theta, n_derivatives) -> Evaluation``.
    n_derivatives : int
        Derivative order requested on every call.
    """

    def __init__(self, evaluate: Callable[[np.ndarray, int], Evaluation], n_derivatives: int = 0):
        self._evaluate = evaluate
        self.n_derivatives = n_derivatives
        self.n_failures = 0
        self._cached_x: np.ndarray | None = None
        self._cached: Evaluation | None = None


    def __call__(self, theta: np.ndarray) -> Evaluation:
        x_arr = np.asarray(theta, dtype=float).reshape(-1)

        # Return cached result if x is unchanged
        if self._cached_x is not None and np.array_equal(x_arr, self._cached_x):
            return self._cached

        ev = self._evaluate(x_arr, self.n_derivatives)
        if ev.failed:
            self.n_failures += 1

        self._cached_x = x_arr.copy()
        self._cached = ev
        return ev


    def value(self, theta: np.ndarray) -> float:
        return self(theta).value


    def gradient(self, theta: np.ndarray) -> np.ndarray:
        return self(theta).gradient


    def value_and_gradient(self, theta: np.ndarray) -> tuple[float, np.ndarray]:
        ev = self(theta)
        return ev.value, ev.gradient


# CONSTRAINT ADAPTER ====================================================================

class ConstraintAdapter:
    """Build the objective and constraint callbacks of one profile solve.

    Parameters
    ----------
    objective : RobustObjective
        Wrapped negative log-posterior.
    prop : RobustProperty or None
        Wrapped property function; may be None when only the posterior
        callbacks are needed.
    prop_min, prop_max : float
        Range of property values of interest.
    gradient : bool
        Whether the objective supplies its gradient.
    prop_gradient : bool
        Whether the property supplies its gradient.

    Notes
    -----
    Objectives are returned as ``(fun, jac)`` pairs ready for
    ``scipy.optimize.minimize``: with gradient information ``fun`` returns
    ``(value, gradient)`` and ``jac`` is ``True``; otherwise ``fun`` returns
    the value and ``jac`` is ``"2-point"``.
    """

    def __init__(
        self,
        objective: RobustObjective,
        prop: RobustProperty | None,
        prop_min: float,
        prop_max: float,
        *,
        gradient: bool = False,
        prop_gradient: bool = False,
    ):
        self.objective = objective
        self.prop = prop
        self.prop_min = float(prop_min)
        self.prop_max = float(prop_max)
        self.gradient = gradient
        self.prop_gradient = prop_gradient
        self._callbacks: list[CachedCallback] = []


    def _track(self, cb: CachedCallback) -> CachedCallback:
        self._callbacks.append(cb)
        return cb


    @property
    def n_failures(self) -> int:
        """Failed evaluations across every callback built so far."""
        return sum(cb.n_failures for cb in self._callbacks)


    # OBJECTIVES ------------------------------------------------------------------------

    def property_objective(self, direction: int):
        """Clamped, sign-adapted property to minimize in a profile step."""
        n_der = 1 if self.prop_gradient else 0
        cb = self._track(CachedCallback(
            lambda th, n: self.prop.evaluate_constrained(
                th, self.prop_min, self.prop_max, direction, n
            ),
            n_der,
        ))
        if self.prop_gradient:
            return cb.value_and_gradient, True
        return cb.value, "2-point"


    def posterior_objective(self):
        """Negative log-posterior to minimize at a property boundary."""
        n_der = 1 if self.gradient else 0
        cb = self._track(CachedCallback(self.objective.evaluate, n_der))
        if self.gradient:
            return cb.value_and_gradient, True
        return cb.value, "2-point"


    # NONLINEAR CONSTRAINTS -------------------------------------------------------------

    def posterior_floor(self, J_target: float) -> sci_opt.NonlinearConstraint:
        """Constraint ``J_target - J(theta) >= 0``.

        ``J`` is the negative log-posterior, so the constraint keeps the
        log-posterior at or above ``-J_target``. A failed evaluation yields
        ``-inf`` and marks the point infeasible.
        """
        n_der = 1 if self.gradient else 0
        cb = self._track(CachedCallback(self.objective.evaluate, n_der))

        def fun(theta):
            return np.array([J_target - cb.value(theta)])

        if self.gradient:
            def jac(theta):
                return -cb.gradient(theta).reshape(1, -1)
        else:
            jac = "2-point"

        return sci_opt.NonlinearConstraint(fun, 0.0, np.inf, jac=jac)


    def property_boundary(self, direction: int) -> sci_opt.NonlinearConstraint:
        """Constraint holding the property at or past the approached boundary.

        Uses the signed boundary distance of
        :meth:`RobustProperty.evaluate_boundary_constraint` and requires it to
        be non-positive. Since the posterior optimum lies inside the range of
        interest, the reoptimized point is pinned onto the boundary.
        """
        n_der = 1 if self.prop_gradient else 0
        cb = self._track(CachedCallback(
            lambda th, n: self.prop.evaluate_boundary_constraint(
                th, self.prop_min, self.prop_max, direction, n
            ),
            n_der,
        ))

        def fun(theta):
            return np.array([cb.value(theta)])

        if self.prop_gradient:
            def jac(theta):
                return cb.gradient(theta).reshape(1, -1)
        else:
            jac = "2-point"

        return sci_opt.NonlinearConstraint(fun, -np.inf, 0.0, jac=jac)


    # LINEAR CONSTRAINTS ----------------------------------------------------------------

    @staticmethod
    def linear(constraints: LinearConstraints | None) -> list[sci_opt.LinearConstraint]:
        """Translate ``A θ ≤ b`` and ``Aeq θ = beq`` into SciPy constraints."""
        if constraints is None:
            return []

        out = []
        if constraints.has_inequalities:
            out.append(sci_opt.LinearConstraint(constraints.A, -np.inf, constraints.b))
        if constraints.has_equalities:
            out.append(sci_opt.LinearConstraint(constraints.Aeq, constraints.beq, constraints.beq))
        return out
