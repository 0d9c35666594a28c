#########################################################################################
##
##                       MULTI-START MAXIMUM-A-POSTERIORI ESTIMATION
##                                  (multistart.py)
##
#########################################################################################

# IMPORTS ===============================================================================

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

import numpy as np
from scipy.stats import qmc

from .constraints import ConstraintAdapter
from .options import SolverOptions
from .problem import ParameterSet
from .robust import RobustObjective
from .solver import ConstrainedSolver, quiet_solver


__all__ = [
    "MultiStartResult",
    "get_multi_starts",
]


# MULTI-START RESULT ====================================================================

@dataclass
class MultiStartResult:
    """Local optima of a multi-start run, best first after :meth:`sort`.

    Parameters
    ----------
    par : np.ndarray, shape (n_starts, n_par)
        Local optima.
    logpost : np.ndarray, shape (n_starts,)
        Log-posterior at each optimum.
    exitflag : np.ndarray, optional
        Solver exit flags.
    par0 : np.ndarray, optional
        Starting points yielding each optimum.
    nfev : np.ndarray, optional
        Objective evaluations used per start.
    """

    par: np.ndarray
    logpost: np.ndarray
    exitflag: np.ndarray | None = None
    par0: np.ndarray | None = None
    nfev: np.ndarray | None = None


    def __post_init__(self) -> None:
        self.par = np.atleast_2d(np.asarray(self.par, dtype=float))
        self.logpost = np.asarray(self.logpost, dtype=float).reshape(-1)
        if self.par.shape[0] != self.logpost.size:
            raise ValueError(
                f"MultiStartResult: {self.par.shape[0]} parameter vector(s) but "
                f"{self.logpost.size} log-posterior value(s)"
            )
        if self.exitflag is not None:
            self.exitflag = np.asarray(self.exitflag, dtype=float).reshape(-1)


    @property
    def n_starts(self) -> int:
        return self.logpost.size


    @property
    def best(self) -> np.ndarray:
        return self.par[0]


    @property
    def logpost_max(self) -> float:
        return float(self.logpost[0])


    def sort(self) -> "MultiStartResult":
        """Order all fields by decreasing log-posterior; NaN entries last."""
        key = np.where(np.isnan(self.logpost), -np.inf, self.logpost)
        order = np.argsort(-key, kind="stable")

        self.par = self.par[order]
        self.logpost = self.logpost[order]
        for attr in ("exitflag", "par0", "nfev"):
            value = getattr(self, attr)
            if value is not None:
                setattr(self, attr, np.asarray(value)[order])
        return self


    def __repr__(self) -> str:
        return (
            f"MultiStartResult(n_starts={self.n_starts}, "
            f"logpost_max={self.logpost_max:.6g})"
        )


# MULTI-START OPTIMIZATION ==============================================================

def _starting_points(parameters: ParameterSet, n_starts: int, seed) -> np.ndarray:
    """Parameter guess followed by Latin-hypercube samples within the bounds."""
    lower, upper = parameters.lower, parameters.upper
    if not (np.all(np.isfinite(lower)) and np.all(np.isfinite(upper))):
        raise ValueError("Multi-start sampling requires finite parameter bounds")

    guess = np.clip(parameters.guess, lower, upper)
    if n_starts == 1:
        return guess[None, :]

    sampler = qmc.LatinHypercube(d=parameters.n_par, seed=seed)
    sample = qmc.scale(sampler.random(n=n_starts - 1), lower, upper)
    return np.vstack([guess, sample])


def get_multi_starts(
    parameters: ParameterSet,
    objective: Callable,
    *,
    n_starts: int = 20,
    obj_type: str = "log-posterior",
    gradient: bool = False,
    seed: int | None = None,
    solver: SolverOptions | None = None,
    verbose: bool = False,
) -> MultiStartResult:
    """Maximize the posterior from several starting points.

    The first start is the parameter guess, the others are Latin-hypercube
    samples within the parameter bounds. Each start is minimized with the
    bounded constrained solver, honouring linear parameter constraints.
    The sorted result is stored on ``parameters.ms`` and returned.

    Parameters
    ----------
    parameters : ParameterSet
        Parameters with finite bounds.
    objective : callable
        Log-posterior (or negative log-posterior) of the parameter vector.
    n_starts : int
        Number of local optimizations.
    obj_type : str
        ``"log-posterior"`` or ``"negative log-posterior"``.
    gradient : bool
        Whether *objective* returns ``(value, gradient)``.
    seed : int, optional
        Seed of the Latin-hypercube sampler.
    solver : SolverOptions, optional
        Solver method and tolerances.
    verbose : bool
        Print one line per start.

    Returns
    -------
    MultiStartResult
    """
    if n_starts < 1:
        raise ValueError("n_starts must be a positive integer")

    robust = RobustObjective(objective, obj_type)
    cs = ConstrainedSolver(solver)
    linear = ConstraintAdapter.linear(parameters.constraints)
    starts = _starting_points(parameters, n_starts, seed)

    par = np.empty_like(starts)
    logpost = np.empty(n_starts)
    exitflag = np.empty(n_starts)
    nfev = np.empty(n_starts, dtype=int)

    with quiet_solver(cs.options.verbose):
        for k, x0 in enumerate(starts):
            adapter = ConstraintAdapter(robust, None, -np.inf, np.inf, gradient=gradient)
            fun, jac = adapter.posterior_objective()
            res = cs.solve(
                fun, x0, parameters.lower, parameters.upper,
                jac=jac, constraints=linear,
            )
            par[k] = res.x
            logpost[k] = robust.log_posterior(res.x)
            exitflag[k] = res.exitflag
            nfev[k] = res.nfev

            if verbose:
                print(f"  start {k + 1:>3}/{n_starts}: log-posterior = {logpost[k]:.6g}, "
                      f"exitflag = {res.exitflag}")

    ms = MultiStartResult(
        par=par, logpost=logpost, exitflag=exitflag, par0=starts, nfev=nfev,
    ).sort()
    parameters.ms = ms
    return ms
