#########################################################################################
##
##      proplik example: profile likelihoods of a straight-line regression
##
##  Model:   y(x) = a + b * x   with Gaussian measurement noise (sigma = 0.5)
##
##  Two model properties are profiled:
##
##      slope          b
##      prediction     y(12) = a + 12 * b   (extrapolated beyond the data)
##
##  The prediction at x = 12 lies outside the measured range, so its profile
##  is much wider than the profile of the slope.
##
#########################################################################################

# IMPORTS ===============================================================================

import numpy as np

from proplik import (
    Parameter,
    ParameterSet,
    Property,
    PropertySet,
    ProfileOptions,
    get_multi_starts,
    compute_profiles,
)


# SYNTHETIC DATA ========================================================================

SIGMA  = 0.5
TRUE_A = 1.0
TRUE_B = 0.8

rng    = np.random.default_rng(42)
x_meas = np.linspace(0.0, 6.0, 15)
y_meas = TRUE_A + TRUE_B * x_meas + SIGMA * rng.standard_normal(x_meas.size)


# LOG-POSTERIOR =========================================================================

def log_posterior(theta):
    """Gaussian log-likelihood (flat prior) and its gradient."""
    a, b = theta
    r = (y_meas - a - b * x_meas) / SIGMA
    value = -0.5 * float(r @ r)
    grad = np.array([r.sum(), r @ x_meas]) / SIGMA
    return value, grad


# PARAMETERS & PROPERTIES ===============================================================

parameters = ParameterSet([
    Parameter("a", value=0.0, bounds=(-10.0, 10.0)),
    Parameter("b", value=0.0, bounds=(-10.0, 10.0)),
])

properties = PropertySet([
    Property("slope",
             lambda th: (th[1], np.array([0.0, 1.0])),
             bounds=(-5.0, 5.0), gradient=True),
    Property("y(12)",
             lambda th: (th[0] + 12.0 * th[1], np.array([1.0, 12.0])),
             bounds=(-50.0, 50.0), gradient=True),
])


# Run Example ===========================================================================

if __name__ == '__main__':

    # MAP estimate from a handful of local optimizations
    ms = get_multi_starts(parameters, log_posterior, n_starts=5, gradient=True, seed=0)
    print(ms)

    options = ProfileOptions(R_min=0.01, gradient=True)
    compute_profiles(properties, parameters, log_posterior, options)

    properties.profiles.display()
    for i, profile in properties.profiles.items():
        lo, hi = profile.confidence_interval(0.95)
        print(f"{profile.name:>8}: 95% CI = [{lo:.3f}, {hi:.3f}]")
