#########################################################################################
##
##                       ROBUST OBJECTIVE & PROPERTY WRAPPERS
##                                   (robust.py)
##
##         Interfaces between user callbacks and the constrained solver. Every
##         call returns well-formed data: a failing or NaN-producing callback is
##         reported as +inf with zero derivatives instead of raising.
##
#########################################################################################

# IMPORTS ===============================================================================

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Callable

import numpy as np


__all__ = [
    "ObjectiveType",
    "Evaluation",
    "RobustObjective",
    "RobustProperty",
]


# OBJECTIVE TYPE ========================================================================

class ObjectiveType(Enum):
    """Sign convention of the user objective."""

    LOG_POSTERIOR = "log-posterior"
    NEGATIVE_LOG_POSTERIOR = "negative log-posterior"


    @classmethod
    def resolve(cls, value: "ObjectiveType | str") -> "ObjectiveType":
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            valid = ", ".join(repr(m.value) for m in cls)
            raise ValueError(
                f"Unknown objective type {value!r}; expected one of {valid}"
            ) from None


    @property
    def sign(self) -> float:
        """Multiplier turning the user value into a quantity to minimize."""
        return -1.0 if self is ObjectiveType.LOG_POSTERIOR else 1.0


# EVALUATION RESULT =====================================================================

@dataclass
class Evaluation:
    """Result of a wrapped callback evaluation.

    ``gradient`` is set when at least one derivative was requested,
    ``hessian`` when two were requested. ``failed`` marks the +inf sentinel
    returned after an exception or NaN.
    """

    value: float
    gradient: np.ndarray | None = None
    hessian: np.ndarray | None = None
    failed: bool = False


def _failure(n_par: int, n_derivatives: int) -> Evaluation:
    return Evaluation(
        value=np.inf,
        gradient=np.zeros(n_par) if n_derivatives >= 1 else None,
        hessian=np.zeros((n_par, n_par)) if n_derivatives >= 2 else None,
        failed=True,
    )


def _call(fun: Callable, theta: np.ndarray, n_derivatives: int):
    """Call *fun* and split its output into ``(value, gradient, hessian)``.

    A scalar output is accepted only when no derivatives are requested.
    """
    out = fun(theta)

    if isinstance(out, (tuple, list)):
        if len(out) < n_derivatives + 1:
            raise ValueError(
                f"callback returned {len(out)} output(s), "
                f"{n_derivatives + 1} required"
            )
        value = float(out[0])
        grad = np.asarray(out[1], dtype=float).reshape(-1) if n_derivatives >= 1 else None
        hess = np.asarray(out[2], dtype=float) if n_derivatives >= 2 else None
    else:
        if n_derivatives > 0:
            raise ValueError("callback returned no derivatives")
        value, grad, hess = float(out), None, None

    n_par = theta.size
    if grad is not None and grad.size != n_par:
        raise ValueError(f"gradient has {grad.size} entries, expected {n_par}")
    if hess is not None:
        hess = hess.reshape(n_par, n_par)

    return value, grad, hess


def _has_nan(value, grad, hess) -> bool:
    if np.isnan(value):
        return True
    if grad is not None and np.isnan(grad).any():
        return True
    return hess is not None and bool(np.isnan(hess).any())


# ROBUST OBJECTIVE ======================================================================

class RobustObjective:
    """User log-posterior wrapped into a failure-tolerant quantity to minimize.

    Parameters
    ----------
    fun : callable
        ``fun(theta)`` returning the objective value, or a tuple
        ``(value, gradient[, hessian])``.
    obj_type : ObjectiveType or str
        ``"log-posterior"`` values are negated, ``"negative log-posterior"``
        values pass through unchanged.

    Example
    -------
    .. code-block:: python

        obj = RobustObjective(log_post, "log-posterior")
        ev = obj.evaluate(theta, n_derivatives=1)
        ev.value      # -log_post(theta)
        ev.gradient   # -grad log_post(theta)
    """

    def __init__(self, fun: Callable, obj_type: "ObjectiveType | str" = "log-posterior"):
        self.fun = fun
        self.obj_type = ObjectiveType.resolve(obj_type)
        self._sign = self.obj_type.sign


    def evaluate(self, theta: np.ndarray, n_derivatives: int = 0) -> Evaluation:
        """Evaluate the negative log-posterior and up to two derivatives."""
        theta = np.asarray(theta, dtype=float).reshape(-1)
        try:
            value, grad, hess = _call(self.fun, theta, n_derivatives)
        except Exception:
            return _failure(theta.size, n_derivatives)

        if _has_nan(value, grad, hess):
            return _failure(theta.size, n_derivatives)

        s = self._sign
        return Evaluation(
            value=s * value,
            gradient=s * grad if grad is not None else None,
            hessian=s * hess if hess is not None else None,
        )


    def log_posterior(self, theta: np.ndarray) -> float:
        """Log-posterior at *theta*, ``-inf`` on failure."""
        return -self.evaluate(theta).value


# ROBUST PROPERTY =======================================================================

class RobustProperty:
    """User property function wrapped for profile optimization.

    For the decreasing direction (``direction=-1``) the property is clamped
    from below at ``prop_min`` and minimized as is. For the increasing
    direction (``direction=+1``) it is clamped from above at ``prop_max`` and
    negated, so that minimization drives the property upwards. Derivatives
    are zeroed wherever the clamp is active.
    """

    def __init__(self, fun: Callable):
        self.fun = fun


    def evaluate(self, theta: np.ndarray, n_derivatives: int = 0) -> Evaluation:
        """Raw property value and derivatives, without clamping or sign flip."""
        theta = np.asarray(theta, dtype=float).reshape(-1)
        try:
            value, grad, hess = _call(self.fun, theta, n_derivatives)
        except Exception:
            return _failure(theta.size, n_derivatives)

        if _has_nan(value, grad, hess):
            return _failure(theta.size, n_derivatives)

        return Evaluation(value=value, gradient=grad, hessian=hess)


    def evaluate_constrained(
        self,
        theta: np.ndarray,
        prop_min: float,
        prop_max: float,
        direction: int,
        n_derivatives: int = 0,
    ) -> Evaluation:
        """Clamped and sign-adapted property, the objective of a profile step."""
        ev = self.evaluate(theta, n_derivatives)
        if ev.failed:
            return ev

        value, grad, hess = ev.value, ev.gradient, ev.hessian
        clamped = value < prop_min if direction == -1 else value > prop_max
        if clamped:
            value = prop_min if direction == -1 else prop_max
            grad = np.zeros_like(grad) if grad is not None else None
            hess = np.zeros_like(hess) if hess is not None else None

        if direction == +1:
            value = -value
            grad = -grad if grad is not None else None
            hess = -hess if hess is not None else None

        return Evaluation(value=value, gradient=grad, hessian=hess)


    def evaluate_boundary_constraint(
        self,
        theta: np.ndarray,
        prop_min: float,
        prop_max: float,
        direction: int,
        n_derivatives: int = 0,
    ) -> Evaluation:
        """Signed distance of the property to the boundary being approached.

        Returns ``prop - prop_min`` for ``direction=-1`` and
        ``prop_max - prop`` for ``direction=+1``. The value is positive inside
        the range of interest and non-positive at or past the boundary.
        """
        ev = self.evaluate(theta, min(n_derivatives, 1))
        if ev.failed:
            return ev

        if direction == -1:
            return Evaluation(value=ev.value - prop_min, gradient=ev.gradient)

        grad = -ev.gradient if ev.gradient is not None else None
        return Evaluation(value=prop_max - ev.value, gradient=grad)
