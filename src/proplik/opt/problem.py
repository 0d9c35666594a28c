#########################################################################################
##
##                         PARAMETER & PROPERTY DECLARATIONS
##                                  (problem.py)
##
#########################################################################################

# IMPORTS ===============================================================================

from __future__ import annotations

import warnings
from typing import Any, Callable, Sequence

import numpy as np


__all__ = [
    "Parameter",
    "LinearConstraints",
    "ParameterSet",
    "Property",
    "PropertySet",
]


# PARAMETER DECLARATION =================================================================

class Parameter:
    """Scalar model parameter.

    Parameters
    ----------
    name : str
        Parameter identifier.
    value : float
        Initial guess, used as the first start of a multi-start run.
    bounds : tuple[float, float]
        Lower / upper bounds.

    Example
    -------
    .. code-block:: python

        k = Parameter("log_k", value=0.0, bounds=(-3, 3))
        k.value   # 0.0
        k.bounds  # (-3.0, 3.0)
    """

    def __init__(
        self,
        name: str,
        value: float = 0.0,
        bounds: tuple[float, float] = (-np.inf, np.inf),
    ):
        self.name = name
        self.value = float(value)

        lo, hi = bounds
        if np.isfinite(lo) and np.isfinite(hi) and lo > hi:
            raise ValueError(
                f"Parameter '{name}': lower bound {lo} > upper bound {hi}"
            )
        self.bounds = (float(lo), float(hi))

        if self.value < self.bounds[0] or self.value > self.bounds[1]:
            warnings.warn(
                f"Parameter '{name}': initial value {self.value} lies outside "
                f"bounds {self.bounds}",
                stacklevel=2,
            )


    def __repr__(self) -> str:
        return f"Parameter(name={self.name!r}, value={self.value}, bounds={self.bounds})"


# LINEAR CONSTRAINTS ====================================================================

class LinearConstraints:
    """Linear constraints ``A θ ≤ b`` and ``Aeq θ = beq`` on the parameter vector.

    Either pair may be omitted. Matrices are stored as 2D float arrays with
    one row per constraint.
    """

    def __init__(self, A=None, b=None, Aeq=None, beq=None):
        self.A, self.b = self._pair(A, b, "A", "b")
        self.Aeq, self.beq = self._pair(Aeq, beq, "Aeq", "beq")


    @staticmethod
    def _pair(M, v, name_M, name_v):
        if M is None and v is None:
            return None, None
        if M is None or v is None:
            raise ValueError(f"'{name_M}' and '{name_v}' must be given together")

        M = np.atleast_2d(np.asarray(M, dtype=float))
        v = np.asarray(v, dtype=float).reshape(-1)
        if M.shape[0] != v.size:
            raise ValueError(
                f"'{name_M}' has {M.shape[0]} row(s) but '{name_v}' has {v.size} entries"
            )
        return M, v


    @property
    def has_inequalities(self) -> bool:
        return self.A is not None


    @property
    def has_equalities(self) -> bool:
        return self.Aeq is not None


    @property
    def is_empty(self) -> bool:
        return not (self.has_inequalities or self.has_equalities)


    def check_dimension(self, n_par: int) -> None:
        """Raise if the constraint matrices do not have ``n_par`` columns."""
        for name, M in (("A", self.A), ("Aeq", self.Aeq)):
            if M is not None and M.shape[1] != n_par:
                raise ValueError(
                    f"Constraint matrix '{name}' has {M.shape[1]} column(s), "
                    f"expected {n_par}"
                )


    def feasible(self, theta: np.ndarray) -> bool:
        """Return ``True`` if ``theta`` satisfies every linear inequality."""
        if self.A is None:
            return True
        return bool(np.all(self.A @ theta <= self.b))


# PARAMETER SET =========================================================================

class ParameterSet:
    """Ordered collection of parameters with optional linear constraints.

    Parameters
    ----------
    parameters : list[Parameter]
        Parameter declarations, in parameter-vector order.
    constraints : LinearConstraints, optional
        Linear (in)equality constraints on the parameter vector.
    ms : MultiStartResult, optional
        Multi-start optimization results; required before profiling.
        Populated by :func:`get_multi_starts`.
    """

    def __init__(
        self,
        parameters: Sequence[Parameter],
        constraints: LinearConstraints | None = None,
        ms: Any | None = None,
    ):
        self.parameters = list(parameters)
        if not self.parameters:
            raise ValueError("ParameterSet requires at least one parameter")

        self.constraints = constraints if constraints is not None else LinearConstraints()
        self.constraints.check_dimension(self.n_par)
        self.ms = ms


    @property
    def n_par(self) -> int:
        return len(self.parameters)


    @property
    def names(self) -> list[str]:
        return [p.name for p in self.parameters]


    @property
    def lower(self) -> np.ndarray:
        return np.array([p.bounds[0] for p in self.parameters], dtype=float)


    @property
    def upper(self) -> np.ndarray:
        return np.array([p.bounds[1] for p in self.parameters], dtype=float)


    @property
    def guess(self) -> np.ndarray:
        return np.array([p.value for p in self.parameters], dtype=float)


    def __len__(self) -> int:
        return self.n_par


    def __repr__(self) -> str:
        return f"ParameterSet({self.names})"


# PROPERTY DECLARATION ==================================================================

class Property:
    """Scalar function of the parameter vector whose profile is of interest.

    Parameters
    ----------
    name : str
        Property identifier.
    function : callable
        ``function(theta)`` returning the property value, or a tuple
        ``(value, gradient)`` / ``(value, gradient, hessian)`` when
        ``gradient=True``.
    bounds : tuple[float, float]
        Range of property values of interest; the profile stops at these
        boundaries.
    gradient : bool
        Whether ``function`` supplies the gradient as its second output.

    Example
    -------
    .. code-block:: python

        # Profile of a derived quantity
        total = Property(
            "k1 + k2",
            lambda th: (th[0] + th[1], np.array([1.0, 1.0])),
            bounds=(-10, 10),
            gradient=True,
        )
    """

    def __init__(
        self,
        name: str,
        function: Callable,
        bounds: tuple[float, float] = (-np.inf, np.inf),
        gradient: bool = False,
    ):
        if not callable(function):
            raise ValueError(f"Property '{name}': function must be callable")

        lo, hi = bounds
        if lo >= hi:
            raise ValueError(
                f"Property '{name}': lower bound {lo} must be below upper bound {hi}"
            )

        self.name = name
        self.function = function
        self.bounds = (float(lo), float(hi))
        self.gradient = bool(gradient)


    @property
    def min(self) -> float:
        return self.bounds[0]


    @property
    def max(self) -> float:
        return self.bounds[1]


    def __repr__(self) -> str:
        return f"Property(name={self.name!r}, bounds={self.bounds})"


# PROPERTY SET ==========================================================================

class PropertySet:
    """Ordered collection of properties.

    After :func:`compute_profiles` the attribute ``profiles`` holds a
    :class:`ProfileStore` with one :class:`Profile` per computed property.
    """

    def __init__(self, properties: Sequence[Property]):
        self.properties = list(properties)
        if not self.properties:
            raise ValueError("PropertySet requires at least one property")
        self.profiles = None


    @property
    def n_prop(self) -> int:
        return len(self.properties)


    @property
    def names(self) -> list[str]:
        return [p.name for p in self.properties]


    @property
    def lower(self) -> np.ndarray:
        return np.array([p.min for p in self.properties], dtype=float)


    @property
    def upper(self) -> np.ndarray:
        return np.array([p.max for p in self.properties], dtype=float)


    def __getitem__(self, idx: int) -> Property:
        return self.properties[idx]


    def __len__(self) -> int:
        return self.n_prop


    def __iter__(self):
        return iter(self.properties)


    def __repr__(self) -> str:
        return f"PropertySet({self.names})"
