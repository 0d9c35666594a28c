#########################################################################################
##
##                              PROFILE RESULT CONTAINERS
##                                (profile_store.py)
##
#########################################################################################

# IMPORTS ===============================================================================

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator

import numpy as np
from scipy.stats import chi2


__all__ = [
    "ProfilePoint",
    "Profile",
    "ProfileStore",
]


# PROFILE POINT =========================================================================

@dataclass(frozen=True)
class ProfilePoint:
    """One point of a property profile."""

    prop: float
    par: np.ndarray
    logpost: float
    R: float
    exitflag: float
    n_failures: int = 0


# PROFILE ===============================================================================

class Profile:
    """Profile of a single property, ordered by increasing property value.

    Points of the decreasing direction are kept in a front list and points
    of the increasing direction in a back list around the MAP anchor; the
    array accessors concatenate them on read.

    Parameters
    ----------
    name : str
        Property name.
    bounds : tuple[float, float]
        Property range of interest.
    anchor : ProfilePoint
        MAP point the profile starts from.

    Attributes
    ----------
    prop : np.ndarray, shape (n_points,)
        Property values.
    par : np.ndarray, shape (n_points, n_par)
        Optimal parameters along the profile.
    logpost : np.ndarray, shape (n_points,)
        Maximal log-posterior along the profile.
    R : np.ndarray, shape (n_points,)
        Likelihood ratio relative to the MAP.
    exitflag : np.ndarray, shape (n_points,)
        Solver exit flags (NaN for the anchor when unknown).
    """

    def __init__(self, name: str, bounds: tuple[float, float], anchor: ProfilePoint):
        self.name = name
        self.bounds = (float(bounds[0]), float(bounds[1]))
        self.anchor = anchor
        self._front: list[ProfilePoint] = []
        self._back: list[ProfilePoint] = []


    def add(self, direction: int, point: ProfilePoint) -> None:
        """Prepend (``direction=-1``) or append (``direction=+1``) a point."""
        if direction == -1:
            self._front.append(point)
        elif direction == +1:
            self._back.append(point)
        else:
            raise ValueError(f"direction must be -1 or +1, got {direction}")


    @property
    def points(self) -> list[ProfilePoint]:
        return self._front[::-1] + [self.anchor] + self._back


    @property
    def n_points(self) -> int:
        return len(self._front) + 1 + len(self._back)


    @property
    def anchor_index(self) -> int:
        return len(self._front)


    @property
    def n_failures(self) -> int:
        return sum(p.n_failures for p in self.points)


    @property
    def prop(self) -> np.ndarray:
        return np.array([p.prop for p in self.points], dtype=float)


    @property
    def par(self) -> np.ndarray:
        return np.vstack([p.par for p in self.points])


    @property
    def logpost(self) -> np.ndarray:
        return np.array([p.logpost for p in self.points], dtype=float)


    @property
    def R(self) -> np.ndarray:
        return np.array([p.R for p in self.points], dtype=float)


    @property
    def exitflag(self) -> np.ndarray:
        return np.array([p.exitflag for p in self.points], dtype=float)


    # CONFIDENCE INTERVAL ===============================================================

    def confidence_interval(self, alpha: float = 0.95) -> tuple[float, float]:
        """Profile-likelihood confidence interval of the property.

        The interval contains all property values whose likelihood ratio is
        at least ``exp(-chi2.ppf(alpha, 1) / 2)``. Ends are interpolated
        linearly in ``log R`` between the bracketing points. If a side of the
        profile never drops below the threshold, the property bound of that
        side is reported.
        """
        if not 0.0 < alpha < 1.0:
            raise ValueError("alpha must lie in (0, 1)")

        log_thr = -0.5 * chi2.ppf(alpha, 1)
        with np.errstate(divide="ignore"):
            log_R = np.log(self.R)
        prop = self.prop
        k0 = self.anchor_index

        def _end(indices, bound):
            inside = k0
            for k in indices:
                if log_R[k] < log_thr:
                    lr_in, lr_out = log_R[inside], log_R[k]
                    if not np.isfinite(lr_out):
                        return float(prop[k])
                    w = (log_thr - lr_in) / (lr_out - lr_in)
                    return float(prop[inside] + w * (prop[k] - prop[inside]))
                inside = k
            return bound

        lower = _end(range(k0 - 1, -1, -1), self.bounds[0])
        upper = _end(range(k0 + 1, self.n_points), self.bounds[1])
        return lower, upper


    # DISPLAY ===========================================================================

    def display(self, alpha: float = 0.95) -> None:
        """Print the profile points and the confidence interval."""
        W    = 72
        line = "=" * W
        dash = "-" * W

        print(line)
        print(f"  Profile of property '{self.name}'")
        print(line)
        print(f"  {'#':>4} {'Property':>14} {'log-post':>14} {'R':>12} {'exitflag':>10}")
        print(dash)
        for k, p in enumerate(self.points):
            mark = " *" if k == self.anchor_index else ""
            print(f"  {k:>4} {p.prop:>14.6g} {p.logpost:>14.6g} "
                  f"{p.R:>12.4e} {p.exitflag:>10.0f}{mark}")
        print(dash)

        lo, hi = self.confidence_interval(alpha)
        print(f"  {alpha * 100:.0f}% confidence interval : [{lo:.6g}, {hi:.6g}]")
        if self.n_failures:
            print(f"  Failed evaluations             : {self.n_failures}")
        print(line)


    def __repr__(self) -> str:
        return f"Profile({self.name!r}, n_points={self.n_points})"


# PROFILE STORE =========================================================================

class ProfileStore:
    """Profiles keyed by property index."""

    def __init__(self):
        self._profiles: dict[int, Profile] = {}


    def __setitem__(self, index: int, profile: Profile) -> None:
        self._profiles[int(index)] = profile


    def __getitem__(self, index: int) -> Profile:
        return self._profiles[index]


    def __contains__(self, index: int) -> bool:
        return index in self._profiles


    def __len__(self) -> int:
        return len(self._profiles)


    def __iter__(self) -> Iterator[int]:
        return iter(sorted(self._profiles))


    def items(self):
        return [(i, self._profiles[i]) for i in self]


    def merge(self, other: "ProfileStore") -> "ProfileStore":
        """Take over every profile of *other*, replacing existing indices."""
        for i, profile in other.items():
            self[i] = profile
        return self


    def display(self, alpha: float = 0.95) -> None:
        """Print one summary line per profile."""
        W    = 72
        line = "=" * W
        dash = "-" * W

        print(line)
        print("  Property Profiles")
        print(line)
        print(f"  {'Property':<20} {'MAP':>10} {'Points':>7} "
              f"{'CI lower':>11} {'CI upper':>11} {'Fail':>5}")
        print(dash)
        for _, profile in self.items():
            lo, hi = profile.confidence_interval(alpha)
            print(f"  {profile.name:<20} {profile.anchor.prop:>10.4g} "
                  f"{profile.n_points:>7d} {lo:>11.4g} {hi:>11.4g} "
                  f"{profile.n_failures:>5d}")
        print(dash)
        print(f"  Confidence level: {alpha * 100:.0f}%")
        print(line)
