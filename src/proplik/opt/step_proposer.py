#########################################################################################
##
##                        WARM-START STEP PROPOSAL FOR PROFILES
##                                (step_proposer.py)
##
##         Line search along an extrapolated direction for a point whose
##         objective value reaches a target level. Used by the parallel engine
##         to warm-start each constrained profile solve.
##
#########################################################################################

# IMPORTS ===============================================================================

from __future__ import annotations

from typing import Callable

import numpy as np

from .problem import LinearConstraints


__all__ = ["propose_step"]


# STEP PROPOSAL =========================================================================

def propose_step(
    theta: np.ndarray,
    lower: np.ndarray,
    upper: np.ndarray,
    direction: np.ndarray,
    c: float,
    c_min: float,
    c_max: float,
    c_update: float,
    J_target: float,
    objective: Callable[[np.ndarray], float],
    constraints: LinearConstraints | None = None,
    mode: str = "one-dimensional",
    index: int = 0,
) -> tuple[np.ndarray, float]:
    """Propose ``theta + c * direction`` with objective close to ``J_target``.

    Parameters
    ----------
    theta : np.ndarray
        Current point.
    lower, upper : np.ndarray
        Parameter bounds; candidates are clipped into them.
    direction : np.ndarray
        Search direction, scaled so that ``|direction[index]| == 1``.
    c : float
        Initial step multiplier.
    c_min, c_max : float
        Smallest / largest step multiplier.
    c_update : float
        Geometric shrink / growth factor (> 1).
    J_target : float
        Target objective level (objective is minimized).
    objective : callable
        ``objective(theta) -> float``, e.g. a robust negative log-posterior.
    constraints : LinearConstraints, optional
        Linear inequalities a candidate must satisfy.
    mode : str
        ``"one-dimensional"`` restricts the step to component ``index``,
        ``"multi-dimensional"`` uses the full direction.
    index : int
        Active dimension.

    Returns
    -------
    theta_next : np.ndarray
    J : float
        Objective at ``theta_next``; ``inf`` if it violates the inequalities.

    Notes
    -----
    If the initial step overshoots the target, ``c`` is divided by
    ``c_update`` until a feasible point at or below the target is found or
    ``c_min`` is reached. Otherwise ``c`` is multiplied by ``c_update`` while
    the new point stays feasible and at or below the target, up to ``c_max``.
    When the distance to the bound along the active dimension is below
    ``c_min``, the step snaps onto that bound without searching.
    """
    theta = np.asarray(theta, dtype=float).reshape(-1)
    lower = np.asarray(lower, dtype=float)
    upper = np.asarray(upper, dtype=float)
    dtheta = np.array(direction, dtype=float).reshape(-1)

    if mode == "one-dimensional":
        mask = np.zeros_like(dtheta, dtype=bool)
        mask[index] = True
        dtheta[~mask] = 0.0
    elif mode != "multi-dimensional":
        raise ValueError(f"Unsupported update mode {mode!r}")

    # largest step before the active component leaves its bounds
    if dtheta[index] > 0:
        c_bound = (upper[index] - theta[index]) / dtheta[index]
    elif dtheta[index] < 0:
        c_bound = (lower[index] - theta[index]) / dtheta[index]
    else:
        c_bound = np.inf

    if c_bound > c_min:
        c_max = min(c_max, c_bound)
        c = min(max(c, c_min), c_max)
        search = True
    else:
        c_min = c_max = c = c_bound
        search = False

    if constraints is None:
        constraints = LinearConstraints()

    def project(step):
        return np.clip(theta + step * dtheta, lower, upper)

    theta_c = project(c)
    J = objective(theta_c) if constraints.feasible(theta_c) else np.inf

    if not search:
        return theta_c, J

    if J > J_target:
        # initial step too large
        while True:
            c = min(max(c / c_update, c_min), c_max)
            theta_c = project(c)
            if c == c_min:
                J = objective(theta_c)
                break
            if constraints.feasible(theta_c):
                J = objective(theta_c)
                if J <= J_target:
                    break
    else:
        # initial step too small
        while c < c_max:
            c_next = min(max(c * c_update, c_min), c_max)
            theta_next = project(c_next)
            if not constraints.feasible(theta_next):
                break
            J_next = objective(theta_next)
            if J_next > J_target:
                break
            c, theta_c, J = c_next, theta_next, J_next

    return theta_c, J
