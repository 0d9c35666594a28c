#########################################################################################
##
##                          BOUNDED NONLINEAR CONSTRAINED SOLVER
##                                    (solver.py)
##
#########################################################################################

# IMPORTS ===============================================================================

from __future__ import annotations

import warnings
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Sequence

import numpy as np
import scipy.optimize as sci_opt

from .options import SolverOptions


__all__ = [
    "SolverResult",
    "ConstrainedSolver",
    "quiet_solver",
]


# SOLVER RESULT =========================================================================

@dataclass
class SolverResult:
    """Outcome of a constrained solve.

    ``exitflag`` is positive on convergence, ``0`` when the iteration limit
    was hit and negative on failure (``-2``: final point infeasible).
    """

    x: np.ndarray
    fun: float
    exitflag: int
    nfev: int
    message: str


    @property
    def success(self) -> bool:
        return self.exitflag > 0


    def __repr__(self) -> str:
        status = "SUCCESS" if self.success else "FAILED"
        return (
            f"SolverResult({status}, fun={self.fun:.4g}, "
            f"exitflag={self.exitflag}, nfev={self.nfev})"
        )


# WARNING FILTERS =======================================================================

@contextmanager
def quiet_solver(verbose: int = 0):
    """Silence scipy solver warnings for the enclosed block.

    ``warnings.catch_warnings`` swaps the process-wide filter list, so this
    must be entered once by the calling thread around a whole run, never
    inside worker threads. Warnings raised by other modules pass through.
    """
    with warnings.catch_warnings():
        if verbose == 0:
            warnings.filterwarnings("ignore", module=r"scipy\.")
            warnings.filterwarnings("ignore", module=r"proplik\.opt\.solver")
        yield


# SOLVER ================================================================================

class ConstrainedSolver:
    """Thin wrapper around ``scipy.optimize.minimize`` for bounded problems
    with linear and nonlinear constraints.

    Parameters
    ----------
    options : SolverOptions, optional
        Method, tolerances and verbosity.

    Notes
    -----
    ``solve`` leaves the warning filters alone and is safe to call from
    worker threads; wrap a run in :func:`quiet_solver` to hide scipy
    warnings.

    Example
    -------
    .. code-block:: python

        solver = ConstrainedSolver(SolverOptions(method="SLSQP"))
        res = solver.solve(fun, x0, lower, upper, jac=True,
                           constraints=[nonlinear])
        res.x, res.fun, res.exitflag
    """

    def __init__(self, options: SolverOptions | None = None):
        self.options = options if options is not None else SolverOptions()


    def _solver_options(self) -> dict:
        opts = self.options
        if opts.method == "trust-constr":
            return {
                "maxiter": int(opts.max_iter),
                "gtol": float(opts.tolerance),
                "xtol": float(opts.tolerance),
                "verbose": int(opts.verbose),
            }
        return {
            "maxiter": int(opts.max_iter),
            "ftol": float(opts.tolerance),
            "disp": opts.verbose > 0,
        }


    def _exitflag(self, res) -> int:
        method = self.options.method

        if res.success:
            violation = float(getattr(res, "constr_violation", 0.0) or 0.0)
            if violation > self.options.constraint_tolerance:
                return -2
            return int(res.status) if method == "trust-constr" else 1

        # iteration limit: status 0 (trust-constr) / 9 (SLSQP)
        if (method == "trust-constr" and res.status == 0) or (
            method == "SLSQP" and res.status == 9
        ):
            return 0
        return -1


    def _breakdown(self, fun: Callable, x0: np.ndarray, jac, exc: Exception) -> SolverResult:
        if self.options.verbose > 0:
            warnings.warn(f"Solver breakdown: {exc}", stacklevel=3)
        out = fun(x0)
        value = out[0] if jac is True else out
        return SolverResult(x=x0, fun=float(value), exitflag=-1, nfev=1, message=str(exc))


    def solve(
        self,
        fun: Callable,
        x0: np.ndarray,
        lower: np.ndarray,
        upper: np.ndarray,
        *,
        jac=None,
        constraints: Sequence = (),
    ) -> SolverResult:
        """Minimize *fun* from *x0* within ``[lower, upper]``.

        Parameters
        ----------
        fun : callable
            Objective; returns ``(value, gradient)`` when ``jac is True``.
        x0 : array_like
            Initial guess, clipped into the bounds.
        lower, upper : array_like
            Element-wise parameter bounds.
        jac : bool or str, optional
            ``True`` if *fun* returns its gradient, otherwise a finite
            difference scheme such as ``"2-point"``.
        constraints : sequence
            ``scipy.optimize.LinearConstraint`` / ``NonlinearConstraint``
            objects.

        Returns
        -------
        SolverResult
        """
        lower = np.asarray(lower, dtype=float)
        upper = np.asarray(upper, dtype=float)
        x0_arr = np.clip(np.asarray(x0, dtype=float).reshape(-1), lower, upper)

        method = self.options.method
        kwargs = dict(
            x0=x0_arr,
            method=method,
            jac=jac if jac is not None else "2-point",
            bounds=sci_opt.Bounds(lower, upper),
            constraints=list(constraints),
            options=self._solver_options(),
        )
        if method == "trust-constr":
            kwargs["hess"] = sci_opt.BFGS()

        with np.errstate(all="ignore"):
            try:
                res = sci_opt.minimize(fun, **kwargs)
            except (ValueError, np.linalg.LinAlgError) as exc:
                # numerical breakdown on +inf sentinels: keep the start point
                return self._breakdown(fun, x0_arr, jac, exc)

        x = np.clip(np.asarray(res.x, dtype=float), lower, upper)
        return SolverResult(
            x=x,
            fun=float(res.fun),
            exitflag=self._exitflag(res),
            nfev=int(getattr(res, "nfev", 0)),
            message=str(res.message),
        )
