#########################################################################################
##
##                              PROFILE CALCULATION OPTIONS
##                                    (options.py)
##
#########################################################################################

# IMPORTS ===============================================================================

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Sequence

from .robust import ObjectiveType


__all__ = [
    "SolverOptions",
    "NextPointOptions",
    "ProfileOptions",
]

_COMP_TYPES = {"sequential", "parallel"}
_MODES = {"text", "silent"}
_EXECUTORS = {"thread", "process"}
_SOLVER_METHODS = {"trust-constr", "SLSQP"}
_UPDATE_MODES = {"one-dimensional", "multi-dimensional"}


# SOLVER OPTIONS ========================================================================

@dataclass
class SolverOptions:
    """Settings of the bounded constrained solver.

    Parameters
    ----------
    method : str
        ``"trust-constr"`` (interior-point / trust-region, default) or
        ``"SLSQP"``.
    max_iter : int
        Iteration limit per solve.
    tolerance : float
        Optimality / step tolerance (``gtol`` and ``xtol`` for trust-constr,
        ``ftol`` for SLSQP).
    constraint_tolerance : float
        Maximum constraint violation accepted as converged.
    verbose : int
        Solver verbosity (0 = silent).
    """

    method: str = "trust-constr"
    max_iter: int = 300
    tolerance: float = 1e-6
    constraint_tolerance: float = 1e-4
    verbose: int = 0


    def __post_init__(self) -> None:
        if self.method not in _SOLVER_METHODS:
            raise ValueError(
                f"Unsupported solver method {self.method!r}; "
                f"use one of {sorted(_SOLVER_METHODS)}"
            )
        if self.max_iter < 1:
            raise ValueError("max_iter must be a positive integer")
        if self.tolerance <= 0 or self.constraint_tolerance <= 0:
            raise ValueError("Solver tolerances must be positive")


# NEXT-POINT OPTIONS ====================================================================

@dataclass
class NextPointOptions:
    """Line-search settings for the warm start of the parallel engine.

    Parameters
    ----------
    min, max : float
        Smallest / largest step multiplier.
    update : float
        Geometric factor (> 1) by which the step is shrunk or grown.
    mode : str
        ``"one-dimensional"`` steps only along the dominant coordinate,
        ``"multi-dimensional"`` along the full extrapolated direction.
    """

    min: float = 1e-6
    max: float = 1e4
    update: float = 1.5
    mode: str = "one-dimensional"


    def __post_init__(self) -> None:
        if not 0 < self.min <= self.max:
            raise ValueError("NextPointOptions requires 0 < min <= max")
        if self.update <= 1.0:
            raise ValueError("NextPointOptions.update must be larger than 1")
        if self.mode not in _UPDATE_MODES:
            raise ValueError(
                f"Unsupported update mode {self.mode!r}; "
                f"use one of {sorted(_UPDATE_MODES)}"
            )


# PROFILE OPTIONS =======================================================================

@dataclass
class ProfileOptions:
    """Options of :func:`compute_profiles`.

    Parameters
    ----------
    property_index : sequence of int, optional
        Properties to profile; all by default.
    map_index : int
        Multi-start result used as the profile anchor.
    dR_max : float
        Largest admitted drop of the likelihood ratio per profile step.
    dJ : float
        Damping of the step target towards the global optimum.
    R_min : float
        Profiles stop once the likelihood ratio falls below this value.
    boundary_tol : float
        Profiles stop within this distance of the property bounds.
    comp_type : str
        ``"sequential"`` or ``"parallel"`` (one worker per property).
    mode : str
        ``"text"`` prints progress, ``"silent"`` suppresses all output.
    obj_type : str or ObjectiveType
        Sign convention of the objective function.
    gradient : bool
        Whether the objective returns ``(value, gradient)``.
    max_points : int, optional
        Cap on the number of points per profile direction.
    n_workers : int, optional
        Parallel worker count; defaults to the number of profiled properties.
    executor : str
        ``"thread"`` or ``"process"`` pool for the parallel engine. Process
        pools require picklable objective and property functions.
    solver : SolverOptions
    next_point : NextPointOptions
    """

    property_index: Sequence[int] | None = None
    map_index: int = 0
    dR_max: float = 0.10
    dJ: float = 0.5
    R_min: float = 0.03
    boundary_tol: float = 1e-5
    comp_type: str = "sequential"
    mode: str = "text"
    obj_type: "ObjectiveType | str" = "log-posterior"
    gradient: bool = False
    max_points: int | None = None
    n_workers: int | None = None
    executor: str = "thread"
    solver: SolverOptions = field(default_factory=SolverOptions)
    next_point: NextPointOptions = field(default_factory=NextPointOptions)


    def __post_init__(self) -> None:
        self.obj_type = ObjectiveType.resolve(self.obj_type)

        if self.comp_type not in _COMP_TYPES:
            raise ValueError(
                f"Unsupported comp_type {self.comp_type!r}; "
                f"use one of {sorted(_COMP_TYPES)}"
            )
        if self.mode not in _MODES:
            raise ValueError(
                f"Unsupported mode {self.mode!r}; use one of {sorted(_MODES)}"
            )
        if self.executor not in _EXECUTORS:
            raise ValueError(
                f"Unsupported executor {self.executor!r}; "
                f"use one of {sorted(_EXECUTORS)}"
            )
        if not 0.0 < self.dR_max < 1.0:
            raise ValueError("dR_max must lie in (0, 1)")
        if self.dJ < 0.0:
            raise ValueError("dJ must be non-negative")
        if not 0.0 <= self.R_min < 1.0:
            raise ValueError("R_min must lie in [0, 1)")
        if self.boundary_tol < 0.0:
            raise ValueError("boundary_tol must be non-negative")
        if self.max_points is not None and self.max_points < 1:
            raise ValueError("max_points must be a positive integer")
        if self.n_workers is not None and self.n_workers < 1:
            raise ValueError("n_workers must be a positive integer")
        if self.property_index is not None:
            self.property_index = [int(i) for i in self.property_index]

        if self.mode == "silent":
            self.solver = replace(self.solver, verbose=0)


    @property
    def silent(self) -> bool:
        return self.mode == "silent"
