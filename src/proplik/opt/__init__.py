#########################################################################################
##
##                        PROFILE LIKELIHOOD TOOLKIT: PUBLIC API
##                               (opt/__init__.py)
##
#########################################################################################

from .problem import (
    Parameter,
    LinearConstraints,
    ParameterSet,
    Property,
    PropertySet,
)
from .robust import (
    ObjectiveType,
    Evaluation,
    RobustObjective,
    RobustProperty,
)
from .options import SolverOptions, NextPointOptions, ProfileOptions
from .constraints import CachedCallback, ConstraintAdapter
from .solver import ConstrainedSolver, SolverResult, quiet_solver
from .step_proposer import propose_step
from .profile_store import ProfilePoint, Profile, ProfileStore
from .profile_tracer import ProfileTracer, compute_profiles
from .multistart import MultiStartResult, get_multi_starts
